import base64
import logging

import h2.config
import h2.connection
import h2.events
import h2.settings
import pytest

from rangeprobe.http import H2_CONNECTION_PREFACE
from rangeprobe.http.content import CONTENTS, CONTENT_SIZE
from rangeprobe.http.server import (
    HttpServer,
    InMemoryContents,
    InvalidRangeFormat,
    InvalidRangeNumber,
    InvalidRangeRequest,
    RangedRequest,
    RangeOutOfBounds,
)


class FakeTransport:
    def __init__(self, alpn_protocol=None):
        self.data = b''
        self.closed = False
        self.aborted = False
        self.alpn_protocol = alpn_protocol

    def write(self, data):
        self.data += data

    def close(self):
        self.closed = True

    def abort(self):
        self.aborted = True
        self.closed = True

    def is_closing(self):
        return self.closed

    def get_extra_info(self, name, default=None):
        if name == 'ssl_object' and self.alpn_protocol:
            return self
        return default

    def selected_alpn_protocol(self):
        return self.alpn_protocol


def parse_responses(data):
    responses = []
    while data:
        (head, _, rest) = data.partition(b'\r\n\r\n')
        lines = head.decode('latin-1').split('\r\n')
        status = int(lines[0].split()[1])
        headers = {}
        for line in lines[1:]:
            (name, value) = line.split(': ', 1)
            headers[name.lower()] = value
        length = int(headers['content-length'])
        responses.append((status, headers, rest[:length]))
        data = rest[length:]
    return responses


def serve(raw, secure=False, verbose=False):
    server = HttpServer(verbose=verbose, secure=secure)
    transport = FakeTransport()
    server.connection_made(transport)
    server.data_received(raw)
    return parse_responses(transport.data), transport


def get(path='/', headers=None, secure=False, verbose=False):
    lines = ['GET %s HTTP/1.1' % path, 'Host: localhost']
    for (name, value) in (headers or {}).items():
        lines.append('%s: %s' % (name, value))
    raw = ('\r\n'.join(lines) + '\r\n\r\n').encode('latin-1')
    (responses, _) = serve(raw, secure=secure, verbose=verbose)
    assert len(responses) == 1
    return responses[0]


# =============================================================================
# RangedRequest
# =============================================================================
def test_ranged_request_valid_range():
    rr = RangedRequest.parse('bytes=0-499', 1000)
    assert rr.first_byte == 0
    assert rr.last_byte == 499
    assert rr.length == 500
    assert rr.content_range == 'bytes 0-499/1000'


def test_ranged_request_suffix_length():
    rr = RangedRequest.parse('bytes=-500', 1000)
    assert rr.offset == 500
    assert rr.last_byte == 999
    assert rr.length == 500


def test_ranged_request_no_end():
    rr = RangedRequest.parse('bytes=500-', 1000)
    assert rr.offset == 500
    assert rr.last_byte == 999
    assert rr.length == 500


def test_ranged_request_empty_is_absent():
    assert RangedRequest.parse('', 1000) is None


def test_ranged_request_reversed_range_is_not_rejected_at_parse_time():
    rr = RangedRequest.parse('bytes=1000-500', 4000)
    assert rr.offset == 1000
    assert rr.length == -499


def test_ranged_request_suffix_longer_than_content_is_not_clamped():
    rr = RangedRequest.parse('bytes=-5000', 4000)
    assert rr.offset == -1000
    assert rr.length == 5000


def test_ranged_request_tolerates_whitespace_around_numbers():
    rr = RangedRequest.parse('bytes= 5 - 10', 4000)
    assert (rr.offset, rr.length) == (5, 6)


@pytest.mark.parametrize('requested_range', [
    'bites=0-100',
    '0-100',
    'bytes=0-100-200',
    'bytes=100',
    'bytes=0-1,5-6-7',
])
def test_ranged_request_invalid_format(requested_range):
    with pytest.raises(InvalidRangeFormat):
        RangedRequest.parse(requested_range, 4000)


@pytest.mark.parametrize('requested_range', [
    'bytes=abc-123',
    'bytes=0-xyz',
    'bytes=-',
    'bytes=+5-10',
    'bytes=1_0-20',
    'bytes=-abc',
    'bytes=abc-',
])
def test_ranged_request_invalid_number(requested_range):
    with pytest.raises(InvalidRangeNumber):
        RangedRequest.parse(requested_range, 4000)


def test_invalid_range_errors_share_a_base_class():
    assert issubclass(InvalidRangeFormat, InvalidRangeRequest)
    assert issubclass(InvalidRangeNumber, InvalidRangeRequest)


# =============================================================================
# InMemoryContents
# =============================================================================
def test_contents_canonical_size():
    contents = InMemoryContents()
    assert len(contents) == CONTENT_SIZE == 4000
    assert contents.length == 4000
    assert contents.read_all() == CONTENTS


def test_contents_read_range():
    contents = InMemoryContents(b'0123456789')
    assert contents.read_range(2, 5) == b'234'
    assert contents.read_range(0, 10) == b'0123456789'
    assert contents.read_range(10, 10) == b''


@pytest.mark.parametrize('start,end', [(5, 4), (0, 11), (-1, 3)])
def test_contents_read_range_out_of_bounds(start, end):
    contents = InMemoryContents(b'0123456789')
    with pytest.raises(RangeOutOfBounds):
        contents.read_range(start, end)


@pytest.mark.parametrize('requested_range', [
    'bytes=0-1000',
    'bytes=2500-2599',
    'bytes=-80',
])
def test_content_range_matches_slice_length(requested_range):
    contents = InMemoryContents()
    rr = RangedRequest.parse(requested_range, len(contents))
    body = contents.read_range(rr.offset, rr.offset + rr.length)
    assert rr.last_byte - rr.first_byte + 1 == len(body) == rr.length


# =============================================================================
# Responses over HTTP/1.1
# =============================================================================
@pytest.mark.parametrize('requested_range,content_range,length', [
    ('bytes=0-1000', 'bytes 0-1000/4000', 1001),
    ('bytes=2500-2599', 'bytes 2500-2599/4000', 100),
    ('bytes=-80', 'bytes 3920-3999/4000', 80),
])
def test_range_header(requested_range, content_range, length):
    (status, headers, body) = get(headers={'Range': requested_range})
    assert status == 206
    assert headers['content-range'] == content_range
    assert headers['content-length'] == str(length)
    assert headers['accept-ranges'] == 'bytes'
    assert len(body) == length
    offset = int(content_range.split()[1].split('-')[0])
    assert body == CONTENTS[offset:offset + length]


def test_no_range_serves_all_content():
    (status, headers, body) = get()
    assert status == 200
    assert headers['content-length'] == '4000'
    assert headers['accept-ranges'] == 'bytes'
    assert 'content-range' not in headers
    assert body == CONTENTS


def test_open_prefix_range():
    (status, headers, body) = get(headers={'Range': 'bytes=3990-'})
    assert status == 206
    assert headers['content-range'] == 'bytes 3990-3999/4000'
    assert body == CONTENTS[3990:]


def test_all_channels_yield_identical_responses():
    results = [
        get(headers={'Range': 'bytes=2500-2599'}),
        get(headers={'X-Dolt-Range': 'bytes=2500-2599'}),
        get(path='/?range=bytes%3D2500%2D2599'),
        get(path='/?Range=bytes%3D2500%2D2599'),
    ]
    for (status, headers, body) in results:
        assert status == 206
        assert headers['content-range'] == 'bytes 2500-2599/4000'
        assert body == results[0][2]


def test_header_names_are_case_insensitive():
    (status, _, body) = get(headers={'RANGE': 'bytes=0-9'})
    assert status == 206
    assert body == CONTENTS[:10]

    (status, _, body) = get(headers={'x-dolt-range': 'bytes=0-9'})
    assert status == 206
    assert body == CONTENTS[:10]


def test_query_param_names_are_case_sensitive():
    (status, headers, _) = get(path='/?RANGE=bytes%3D0-9')
    assert status == 200
    assert 'content-range' not in headers


def test_unencoded_query_param():
    (status, _, body) = get(path='/?range=bytes=0-9')
    assert status == 206
    assert body == CONTENTS[:10]


def test_range_header_takes_priority():
    (status, headers, _) = get(
        path='/?range=bytes%3D0-9',
        headers={'X-Dolt-Range': 'bytes=10-19', 'Range': 'bytes=20-29'},
    )
    assert status == 206
    assert headers['content-range'] == 'bytes 20-29/4000'

    (status, headers, _) = get(
        path='/?range=bytes%3D0-9',
        headers={'X-Dolt-Range': 'bytes=10-19'},
    )
    assert headers['content-range'] == 'bytes 10-19/4000'


def test_empty_header_falls_through_to_next_channel():
    (status, headers, _) = get(
        path='/?range=bytes%3D0-9',
        headers={'Range': ''},
    )
    assert status == 206
    assert headers['content-range'] == 'bytes 0-9/4000'


@pytest.mark.parametrize('requested_range', [
    'bytes=abc-123',
    'bytes=0-100-200',
    'items=0-100',
    'bytes=1000-500',
    'bytes=-5000',
    'bytes=3000-4000',
    'bytes=5000-',
])
def test_bad_ranges_are_rejected(requested_range):
    (status, headers, body) = get(headers={'Range': requested_range})
    assert status == 400
    assert headers['accept-ranges'] == 'bytes'
    assert headers['content-length'] == '0'
    assert 'content-range' not in headers
    assert body == b''


@pytest.mark.parametrize('requested_range,content_range', [
    ('bytes=10-9', 'bytes 10-9/4000'),
    ('bytes=-0', 'bytes 4000-3999/4000'),
    ('bytes=4000-', 'bytes 4000-3999/4000'),
])
def test_zero_length_windows_are_served_empty(requested_range,
                                              content_range):
    (status, headers, body) = get(headers={'Range': requested_range})
    assert status == 206
    assert headers['content-range'] == content_range
    assert headers['content-length'] == '0'
    assert body == b''


def test_query_param_names_are_percent_decoded():
    (status, headers, body) = get(path='/?%72ange=bytes%3D0-9')
    assert status == 206
    assert headers['content-range'] == 'bytes 0-9/4000'
    assert body == CONTENTS[:10]


def test_query_param_plus_is_a_space():
    (status, _, body) = get(path='/?range=+bytes%3D0-9')
    # The leading space makes the specifier invalid.
    assert status == 400
    assert body == b''


def test_chunked_request_body_is_consumed():
    raw = (
        b'GET / HTTP/1.1\r\nHost: localhost\r\n'
        b'Transfer-Encoding: chunked\r\n\r\n'
        b'5;ext=1\r\nhello\r\n0\r\nX-Trailer: yes\r\n\r\n'
        b'GET / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-4\r\n\r\n'
    )
    (responses, transport) = serve(raw)
    assert [r[0] for r in responses] == [200, 206]
    assert responses[1][2] == CONTENTS[:5]
    assert not transport.closed


def test_chunked_request_body_split_across_reads():
    server = HttpServer()
    transport = FakeTransport()
    server.connection_made(transport)
    raw = (
        b'GET / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-9\r\n'
        b'Transfer-Encoding: chunked\r\n\r\n'
        b'3\r\nabc\r\n0\r\n\r\n'
    )
    for ix in range(len(raw)):
        server.data_received(raw[ix:ix + 1])
    ((status, _, body),) = parse_responses(transport.data)
    assert status == 206
    assert body == CONTENTS[:10]


def test_malformed_chunked_body():
    raw = (
        b'GET / HTTP/1.1\r\nHost: localhost\r\n'
        b'Transfer-Encoding: chunked\r\n\r\n'
        b'zz\r\nhello\r\n0\r\n\r\n'
    )
    ((status, _, _),), transport = serve(raw)
    assert status == 400
    assert transport.closed


def test_unsupported_transfer_encoding():
    raw = (
        b'GET / HTTP/1.1\r\nHost: localhost\r\n'
        b'Transfer-Encoding: gzip\r\n\r\n'
        b'GET / HTTP/1.1\r\nHost: localhost\r\n\r\n'
    )
    ((status, _, _),), transport = serve(raw)
    assert status == 501
    assert transport.closed


@pytest.mark.parametrize('method', ['POST', 'PUT', 'HEAD', 'DELETE'])
def test_non_get_methods_are_rejected(method):
    raw = (
        '%s / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-10\r\n'
        'Content-Length: 0\r\n\r\n' % method
    ).encode()
    ((status, headers, body),), _ = serve(raw)
    assert status == 400
    assert body == b'only GET requests supported.'
    assert 'accept-ranges' not in headers
    assert 'content-range' not in headers


def test_request_body_is_consumed():
    raw = (
        b'POST / HTTP/1.1\r\nHost: localhost\r\nContent-Length: 5\r\n\r\n'
        b'hello'
        b'GET / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-4\r\n\r\n'
    )
    (responses, _) = serve(raw)
    assert [r[0] for r in responses] == [400, 206]


def test_repeated_requests_are_identical():
    first = get(headers={'Range': 'bytes=-80'})
    for _ in range(3):
        (status, headers, body) = get(headers={'Range': 'bytes=-80'})
        assert (status, body) == (first[0], first[2])
        assert headers['content-range'] == first[1]['content-range']


def test_keep_alive_pipelining():
    raw = (
        b'GET / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-9\r\n\r\n'
        b'GET /?range=bytes%3D-5 HTTP/1.1\r\nHost: localhost\r\n\r\n'
    )
    (responses, transport) = serve(raw)
    assert [r[0] for r in responses] == [206, 206]
    assert responses[0][2] == CONTENTS[:10]
    assert responses[1][2] == CONTENTS[-5:]
    assert not transport.closed


def test_request_split_across_reads():
    server = HttpServer()
    transport = FakeTransport()
    server.connection_made(transport)
    raw = b'GET / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-9\r\n\r\n'
    for ix in range(len(raw)):
        server.data_received(raw[ix:ix + 1])
    ((status, _, body),) = parse_responses(transport.data)
    assert status == 206
    assert body == CONTENTS[:10]


def test_connection_close():
    raw = (
        b'GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n'
    )
    ((status, headers, _),), transport = serve(raw)
    assert status == 200
    assert headers['connection'] == 'close'
    assert transport.closed


def test_malformed_request_line():
    ((status, _, _),), transport = serve(b'GARBAGE\r\n\r\n')
    assert status == 400
    assert transport.closed


def test_malformed_headers():
    raw = b'GET / HTTP/1.1\r\nno colon here\r\n\r\n'
    ((status, _, _),), transport = serve(raw)
    assert status == 400
    assert transport.closed


def test_secure_responses_carry_hsts():
    (_, headers, _) = get(secure=True)
    assert headers['strict-transport-security'] == (
        'max-age=63072000; includeSubDomains'
    )
    (_, headers, _) = get()
    assert 'strict-transport-security' not in headers


def test_verbose_logs_base64_body(caplog):
    with caplog.at_level(logging.INFO):
        (_, _, body) = get(headers={'Range': 'bytes=-80'}, verbose=True)
    assert base64.b64encode(body).decode() in caplog.text


def test_short_write_fails_only_that_response(monkeypatch):
    def short_read_range(self, start, end):
        return self.contents[start:end - 1]

    with monkeypatch.context() as m:
        m.setattr(InMemoryContents, 'read_range', short_read_range)
        ((status, _, _),), transport = serve(
            b'GET / HTTP/1.1\r\nHost: localhost\r\nRange: bytes=0-9\r\n\r\n'
        )
    assert status == 500
    assert transport.closed

    (status, _, body) = get(headers={'Range': 'bytes=0-9'})
    assert status == 206
    assert body == CONTENTS[:10]


# =============================================================================
# HTTP/2
# =============================================================================
class H2Client:
    def __init__(self, server, transport):
        self.server = server
        self.transport = transport
        config = h2.config.H2Configuration(
            client_side=True,
            header_encoding='utf-8',
        )
        self.conn = h2.connection.H2Connection(config=config)
        self.conn.initiate_connection()
        self.headers = {}
        self.bodies = {}
        self.ended = set()

    def request(self, stream_id, path='/', method='GET', headers=None):
        request_headers = [
            (':method', method),
            (':scheme', 'http'),
            (':authority', 'localhost'),
            (':path', path),
        ]
        request_headers.extend(headers or [])
        self.conn.send_headers(stream_id, request_headers, end_stream=True)

    def exchange(self):
        self.server.data_received(self.conn.data_to_send())
        (data, self.transport.data) = (self.transport.data, b'')
        for event in self.conn.receive_data(data):
            if isinstance(event, h2.events.ResponseReceived):
                self.headers[event.stream_id] = dict(event.headers)
            elif isinstance(event, h2.events.DataReceived):
                self.bodies.setdefault(event.stream_id, b'')
                self.bodies[event.stream_id] += event.data
            elif isinstance(event, h2.events.StreamEnded):
                self.ended.add(event.stream_id)
        # Acknowledge settings and the like.
        pending = self.conn.data_to_send()
        if pending:
            self.server.data_received(pending)


def h2c_client(secure=False):
    server = HttpServer(secure=secure)
    transport = FakeTransport(alpn_protocol='h2' if secure else None)
    server.connection_made(transport)
    return H2Client(server, transport)


def test_h2c_prior_knowledge():
    client = h2c_client()
    client.request(1, headers=[('range', 'bytes=0-1000')])
    client.request(3, path='/?range=bytes%3D-80')
    client.request(5, headers=[('x-dolt-range', 'bytes=2500-2599')])
    client.request(7)
    client.exchange()

    assert client.ended == {1, 3, 5, 7}
    assert client.headers[1][':status'] == '206'
    assert client.headers[1]['content-range'] == 'bytes 0-1000/4000'
    assert client.bodies[1] == CONTENTS[:1001]
    assert client.headers[3]['content-range'] == 'bytes 3920-3999/4000'
    assert client.bodies[3] == CONTENTS[-80:]
    assert client.bodies[5] == CONTENTS[2500:2600]
    assert client.headers[7][':status'] == '200'
    assert client.headers[7]['content-length'] == '4000'
    assert 'content-range' not in client.headers[7]
    assert client.bodies[7] == CONTENTS


def test_h2c_preface_split_across_reads():
    server = HttpServer()
    transport = FakeTransport()
    server.connection_made(transport)
    client = H2Client(server, transport)
    client.request(1, headers=[('range', 'bytes=0-9')])
    data = client.conn.data_to_send()
    server.data_received(data[:5])
    assert transport.data == b''
    server.data_received(data[5:])
    for event in client.conn.receive_data(transport.data):
        if isinstance(event, h2.events.DataReceived):
            assert event.data == CONTENTS[:10]
    assert data.startswith(H2_CONNECTION_PREFACE)


def test_h2_bad_range_and_method():
    client = h2c_client()
    client.request(1, headers=[('range', 'bytes=abc-123')])
    client.request(3, method='DELETE')
    client.exchange()
    assert client.headers[1][':status'] == '400'
    assert client.headers[1]['accept-ranges'] == 'bytes'
    assert 1 not in client.bodies
    assert client.headers[3][':status'] == '400'
    assert client.bodies[3] == b'only GET requests supported.'


def test_h2_over_tls_via_alpn():
    client = h2c_client(secure=True)
    client.request(1, headers=[('range', 'bytes=-80')])
    client.exchange()
    headers = client.headers[1]
    assert headers[':status'] == '206'
    assert headers['strict-transport-security'].startswith('max-age=')
    assert client.bodies[1] == CONTENTS[-80:]


def test_h2_flow_control():
    client = h2c_client()
    client.conn.update_settings({
        h2.settings.SettingCodes.INITIAL_WINDOW_SIZE: 100,
    })
    client.request(1, headers=[('range', 'bytes=0-1000')])
    client.exchange()
    assert len(client.bodies[1]) == 100
    assert 1 not in client.ended
    assert 1 in client.server.pending

    client.conn.increment_flow_control_window(2000, stream_id=1)
    client.exchange()
    assert client.bodies[1] == CONTENTS[:1001]
    assert 1 in client.ended
    assert not client.server.pending


def test_h2_reset_stream_drops_pending_data():
    client = h2c_client()
    client.conn.update_settings({
        h2.settings.SettingCodes.INITIAL_WINDOW_SIZE: 100,
    })
    client.request(1)
    client.exchange()
    assert 1 in client.server.pending

    client.conn.reset_stream(1)
    client.request(3, headers=[('range', 'bytes=0-9')])
    client.exchange()
    assert not client.server.pending
    assert client.bodies[3] == CONTENTS[:10]


def test_shutdown_sends_goaway_and_closes_idle_h2_connection():
    client = h2c_client()
    client.request(1)
    client.exchange()
    client.server.shutdown()
    events = client.conn.receive_data(client.transport.data)
    assert any(isinstance(e, h2.events.ConnectionTerminated) for e in events)
    assert client.transport.closed


def test_shutdown_closes_idle_h1_connection():
    server = HttpServer()
    transport = FakeTransport()
    server.connection_made(transport)
    server.data_received(b'GET / HTTP/1.1\r\nHost: localhost\r\n')
    server.shutdown()
    assert not transport.closed

    server.data_received(b'\r\n')
    ((status, headers, _),) = parse_responses(transport.data)
    assert status == 200
    assert headers['connection'] == 'close'
    assert transport.closed

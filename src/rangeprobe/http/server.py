# ===============================================================================
# Imports
# ===============================================================================
import asyncio
import base64
import logging
import re
import time
import urllib.parse
from typing import Dict, List, Optional, Tuple

import h2.config
import h2.connection
import h2.events
import h2.exceptions

from rangeprobe.http import (
    DEFAULT_CONTENT_TYPE,
    DEFAULT_ERROR_CONTENT_TYPE,
    DEFAULT_ERROR_MESSAGE,
    DEFAULT_RESPONSE,
    DEFAULT_SERVER_RESPONSE,
    H2_CONNECTION_PREFACE,
    RESPONSES,
    STRICT_TRANSPORT_SECURITY,
)
from rangeprobe.http.content import CONTENTS

# ===============================================================================
# Aliases
# ===============================================================================
url_unquote = urllib.parse.unquote_plus

# ===============================================================================
# Globals
# ===============================================================================
RANGE_PREFIX = 'bytes='

# Range tokens are unsigned ASCII decimals; int() alone would also accept
# signs, underscores and non-ASCII digits.
DIGITS_REGEX = re.compile(r'[0-9]+')

CONTENT_LENGTH_REGEX = re.compile(
    rb'^content-length:[ \t]*([0-9]+)[ \t]*\r?$',
    re.IGNORECASE | re.MULTILINE,
)

TRANSFER_ENCODING_REGEX = re.compile(
    rb'^transfer-encoding:[ \t]*([^\r\n]*?)[ \t]*\r?$',
    re.IGNORECASE | re.MULTILINE,
)

CHUNK_SIZE_REGEX = re.compile(rb'[0-9a-fA-F]+')

# Upper bound for an HTTP/1.1 request head that has not been terminated yet.
MAX_HEADER_BYTES = 64 * 1024

UNSUPPORTED_METHOD_MESSAGE = 'only GET requests supported.'


# ===============================================================================
# Helpers
# ===============================================================================
weekdayname = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']

monthname = [
    None,
    'Jan',
    'Feb',
    'Mar',
    'Apr',
    'May',
    'Jun',
    'Jul',
    'Aug',
    'Sep',
    'Oct',
    'Nov',
    'Dec',
]


def date_time_string(timestamp=None):
    """Return the current date and time formatted for a message header."""
    if timestamp is None:
        timestamp = time.time()
    year, month, day, hh, mm, ss, wd, y, z = time.gmtime(timestamp)
    return "%s, %02d %3s %4d %02d:%02d:%02d GMT" % (
        weekdayname[wd],
        day,
        monthname[month],
        year,
        hh,
        mm,
        ss,
    )


gmtime = date_time_string


def text_response(request, text):
    response = request.response
    response.content_type = 'text/plain; charset=UTF-8'
    response.body = text
    return request


def parse_path(request, raw_path):
    """
    Splits `raw_path` into the request's path, query and fragment.  Query
    parameter names and values are percent-decoded (`+` is a space) but
    otherwise kept exactly as sent; when a name repeats, the first value wins.
    """
    url = raw_path
    if '#' in url:
        (url, request.fragment) = url.split('#', 1)
    if '?' in url:
        (url, qs) = url.split('?', 1)
        for pair in qs.split('&'):
            # Discard anything that isn't in key=value format.
            if '=' not in pair:
                continue
            (key, value) = pair.split('=', 1)
            request.query.setdefault(url_unquote(key), url_unquote(value))

    request.path = url
    request.raw_path = raw_path


def parse_byte_count(token: str) -> int:
    token = token.strip()
    if not DIGITS_REGEX.fullmatch(token):
        raise InvalidRangeNumber(f'invalid byte count: {token!r}')
    return int(token)


def find_chunked_body_end(data: bytes, pos: int) -> Optional[int]:
    """
    Walks a chunked message body that starts at `pos` and returns the index
    just past its terminating chunk and trailers, or None if `data` does not
    hold the whole body yet.  Raises InvalidChunkedBody on malformed framing.
    """
    while True:
        ix = data.find(b'\r\n', pos)
        if ix == -1:
            return None
        size_text = data[pos:ix].split(b';', 1)[0].strip()
        if not CHUNK_SIZE_REGEX.fullmatch(size_text):
            raise InvalidChunkedBody(f'invalid chunk size: {size_text!r}')
        size = int(size_text, 16)
        pos = ix + 2
        if size == 0:
            if data[pos:pos + 2] == b'\r\n':
                return pos + 2
            end = data.find(b'\r\n\r\n', pos)
            return None if end == -1 else end + 4
        pos += size + 2
        if len(data) < pos:
            return None
        if data[pos - 2:pos] != b'\r\n':
            raise InvalidChunkedBody('chunk data not followed by CRLF')


def get_range_signal(request: 'Request') -> Tuple[Optional[str], str]:
    """
    Finds the range specifier carried by a request.

    The carriers are checked in priority order: the `Range` header, the
    `X-Dolt-Range` header, then the `Range` and `range` query parameters.
    Header names are matched case-insensitively (they are lower-cased when
    parsed); query parameter names are matched literally.

    Args:

        request (Request): Supplies the parsed request.

    Returns:

        tuple: Returns a `(source, value)` pair, where `source` names the
            carrier that supplied the specifier.  If the request carries no
            range signal, `(None, '')` is returned.
    """
    h = request.headers
    query = request.query
    candidates = (
        ("header: 'range'", h.range),
        ("header: 'x-dolt-range'", h.x_dolt_range),
        ("query param: 'Range'", query.get('Range')),
        ("query param: 'range'", query.get('range')),
    )
    for (source, value) in candidates:
        if value:
            return (source, value)
    return (None, '')


# ===============================================================================
# Classes
# ===============================================================================
class InvalidHeaderText(Exception):
    pass


class Headers(dict):
    def __init__(self, text=b''):
        if not text:
            return
        for line in text.split(b'\r\n'):
            ix = line.find(b':')
            if ix == -1:
                raise InvalidHeaderText()
            (key, value) = (line[:ix], line[ix + 1:])
            self.add(key.decode('latin-1'), value.strip().decode('latin-1'))

    def add(self, key, value):
        # Only the first occurrence of a header is visible, matching the
        # usual "get" semantics of repeated headers.
        key = key.lower()
        if key in self:
            return
        self[key] = value
        self[key.replace('-', '_')] = value

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            return None

    def __setattr__(self, name, value):
        self[name] = value


class InvalidRangeRequest(Exception):
    pass


class InvalidRangeFormat(InvalidRangeRequest):
    pass


class InvalidRangeNumber(InvalidRangeRequest):
    pass


class RangeOutOfBounds(Exception):
    pass


class ShortWriteError(Exception):
    pass


class InvalidChunkedBody(Exception):
    pass


class Response:
    __slots__ = (
        'body',
        'code',
        'date',
        'server',
        'request',
        'explain',
        'message',
        'transport',
        'content_type',
        'content_range',
        'other_headers',
        'content_length',
    )

    def __init__(self, request):
        self.body = b''
        self.code = 0
        self.date = None
        self.server = DEFAULT_SERVER_RESPONSE
        self.request = request
        self.explain = ''
        self.message = None
        self.transport = request.transport
        self.content_type = DEFAULT_CONTENT_TYPE
        self.content_range = None
        self.other_headers = []
        self.content_length = None

        if request.secure:
            self.other_headers.append(
                ('Strict-Transport-Security', STRICT_TRANSPORT_SECURITY)
            )

    def finalize(self) -> bytes:
        """
        Encodes the body and settles the Content-Length.  A declared length
        that the body cannot satisfy raises ShortWriteError.
        """
        body = self.body
        if body is None:
            body = b''
        elif isinstance(body, str):
            body = body.encode('UTF-8', 'replace')
        self.body = body

        if self.content_length is None:
            self.content_length = len(body)
        elif self.content_length != len(body):
            raise ShortWriteError(
                'failed to write partial contents: wrote %d of %d' % (
                    len(body),
                    self.content_length,
                )
            )

        self.date = gmtime()
        return body

    def header_pairs(self) -> List[Tuple[str, str]]:
        pairs = [
            ('Server', self.server),
            ('Date', self.date or gmtime()),
            ('Content-Type', self.content_type),
        ]
        pairs.extend(self.other_headers)
        if self.content_range:
            pairs.append(('Content-Range', self.content_range))
        pairs.append(('Content-Length', '%d' % self.content_length))
        return pairs

    def h2_headers(self) -> List[Tuple[str, str]]:
        headers = [(':status', str(self.code))]
        headers.extend(
            (name.lower(), value) for (name, value) in self.header_pairs()
        )
        return headers

    def __bytes__(self):
        body = self.finalize()

        headers = self.header_pairs()
        if not self.request.keep_alive:
            headers.append(('Connection', 'close'))

        kwds = {
            'code': self.code,
            'message': self.message,
            'headers': ''.join('%s: %s\r\n' % pair for pair in headers),
        }
        response = (DEFAULT_RESPONSE % kwds).encode('latin-1', 'replace')
        return response + body


class Request:
    __slots__ = (
        'data',
        'body',
        'path',
        'query',
        'secure',
        'version',
        'headers',
        'command',
        'raw_path',
        'response',
        'fragment',
        'stream_id',
        'transport',
        'keep_alive',
    )

    def __init__(self, transport, data, secure=False):
        self.transport = transport
        self.data = data
        self.secure = secure

        self.body = None
        self.path = None
        self.query = {}
        self.version = None
        self.headers = Headers()
        self.command = None
        self.raw_path = None
        self.fragment = None
        self.stream_id = None
        self.keep_alive = False
        self.response = Response(self)


class RangedRequest:
    """
    A parsed `bytes=` range specifier, resolved against a content size.

    The three accepted shapes are `bytes=A-B` (full), `bytes=A-` (open
    prefix) and `bytes=-N` (suffix).  Parsing never clamps: a window that
    falls outside the content is only detected when the content is read.
    """
    __slots__ = (
        'requested_range',
        'offset',
        'length',
        'content_size',
    )

    def __init__(self, requested_range, offset, length, content_size):
        self.requested_range = requested_range
        self.offset = offset
        self.length = length
        self.content_size = content_size

    @classmethod
    def parse(
        cls, requested_range: str, content_size: int
    ) -> Optional['RangedRequest']:
        """
        Parses a range specifier.

        Args:

            requested_range (str): Supplies the raw specifier, for example
                `bytes=0-1000`.

            content_size (int): Supplies the size of the content the range
                applies to.

        Returns:

            RangedRequest: Returns the parsed range, or None if
                `requested_range` is empty (no range was requested).

        Raises:

            InvalidRangeFormat: If the `bytes=` prefix is missing or the
                remainder is not exactly two `-`-delimited tokens.

            InvalidRangeNumber: If a token is not an unsigned decimal.
        """
        if not requested_range:
            return None

        if not requested_range.startswith(RANGE_PREFIX):
            msg = f'invalid range string: {requested_range!r}'
            raise InvalidRangeFormat(msg)

        tokens = requested_range[len(RANGE_PREFIX):].split('-')
        if len(tokens) != 2:
            msg = f'invalid range string: {requested_range!r}'
            raise InvalidRangeFormat(msg)

        (first, last) = tokens
        if not first:
            # bytes=-N: the last N bytes.
            length = parse_byte_count(last)
            offset = content_size - length
        elif not last:
            # bytes=N-: everything from N onwards.
            offset = parse_byte_count(first)
            length = content_size - offset
        else:
            offset = parse_byte_count(first)
            length = parse_byte_count(last) - offset + 1

        return cls(requested_range, offset, length, content_size)

    @property
    def first_byte(self):
        return self.offset

    @property
    def last_byte(self):
        return self.offset + self.length - 1

    @property
    def content_range(self):
        return 'bytes %d-%d/%d' % (
            self.first_byte,
            self.last_byte,
            self.content_size,
        )


class InMemoryContents:
    """
    Immutable in-memory content with bounds-checked readers.
    """
    __slots__ = ('contents',)

    def __init__(self, contents: bytes = CONTENTS):
        self.contents = bytes(contents)

    def __len__(self):
        return len(self.contents)

    @property
    def length(self) -> int:
        return len(self.contents)

    def read_all(self) -> bytes:
        return self.contents

    def read_range(self, start: int, end: int) -> bytes:
        """
        Returns the bytes in `[start, end)`.  Raises RangeOutOfBounds if
        `end < start`, `end > len(self)` or `start < 0`.
        """
        if end < start or end > len(self) or start < 0:
            raise RangeOutOfBounds(
                'invalid range: [%d, %d) of %d' % (start, end, len(self))
            )
        return self.contents[start:end]


class HttpServer(asyncio.Protocol):
    """
    asyncio protocol serving the range test content.

    Each connection speaks HTTP/1.1, or HTTP/2 when the client either sends
    the h2c connection preface on a plain connection or negotiates `h2` via
    ALPN on a TLS connection.  Every request is answered from a freshly
    constructed InMemoryContents.
    """

    def __init__(
        self,
        verbose: bool = False,
        secure: bool = False,
        connections: Optional[set] = None,
    ):
        self.verbose = verbose
        self.secure = secure
        self.connections = connections
        self.transport = None
        self.buffer = b''
        self.requests_handled = 0
        self.shutting_down = False

        self.h2 = None
        # stream id -> request headers, for streams still receiving data.
        self.streams: Dict[int, List[Tuple[str, str]]] = {}
        # stream id -> [remaining body, total length], for responses blocked
        # on flow control.
        self.pending: Dict[int, list] = {}

    # ---------------------------------------------------------------------------
    # asyncio.Protocol
    # ---------------------------------------------------------------------------
    def connection_made(self, transport):
        self.transport = transport
        if self.connections is not None:
            self.connections.add(self)

        ssl_object = transport.get_extra_info('ssl_object')
        if ssl_object is not None:
            protocol = ssl_object.selected_alpn_protocol()
            logging.debug('Negotiated ALPN protocol: %s', protocol)
            if protocol == 'h2':
                self.start_h2()

    def data_received(self, data):
        if self.h2 is not None:
            return self.h2_data_received(data)

        self.buffer += data

        if not self.secure and not self.requests_handled:
            preface = H2_CONNECTION_PREFACE
            if len(self.buffer) < len(preface):
                if preface.startswith(self.buffer):
                    # Could still turn out to be an h2c preface.
                    return
            elif self.buffer.startswith(preface):
                (data, self.buffer) = (self.buffer, b'')
                logging.debug('Received h2c connection preface.')
                self.start_h2()
                return self.h2_data_received(data)

        self.h1_data_received()

    def connection_lost(self, exc):
        if exc:
            logging.warning(f'Connection lost: {exc}')
        if self.connections is not None:
            self.connections.discard(self)
        self.transport = None
        self.streams.clear()
        self.pending.clear()

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------
    @property
    def is_open(self):
        return self.transport is not None and not self.transport.is_closing()

    @property
    def is_idle(self):
        if self.h2 is not None:
            return not (self.streams or self.pending)
        return not self.buffer

    def shutdown(self):
        """
        Asks the connection to finish.  Idle connections close immediately;
        HTTP/2 connections announce GOAWAY and close once their open streams
        have completed.
        """
        self.shutting_down = True
        if not self.is_open:
            return
        if self.h2 is not None:
            self.h2.close_connection()
            self.flush_h2()
        if self.is_idle:
            self.transport.close()

    def abort(self):
        if self.transport:
            self.transport.abort()

    def _close_if_done(self):
        if self.shutting_down and self.is_open and self.is_idle:
            self.transport.close()

    # ---------------------------------------------------------------------------
    # HTTP/1.1
    # ---------------------------------------------------------------------------
    def h1_data_received(self):
        while self.buffer and self.is_open:
            ix = self.buffer.find(b'\r\n\r\n')
            if ix == -1:
                if len(self.buffer) > MAX_HEADER_BYTES:
                    request = self.new_request(self.buffer)
                    self.buffer = b''
                    return self.error(request, 431)
                return

            end = ix + 4
            te_match = TRANSFER_ENCODING_REGEX.search(self.buffer, 0, ix)
            if te_match:
                coding = te_match.group(1).lower()
                if coding != b'chunked':
                    request = self.new_request(self.buffer[:end])
                    self.buffer = b''
                    msg = 'Unsupported transfer encoding (%s)' % (
                        coding.decode('latin-1')
                    )
                    return self.error(request, 501, msg)
                try:
                    end = find_chunked_body_end(self.buffer, end)
                except InvalidChunkedBody as e:
                    request = self.new_request(self.buffer[:ix + 4])
                    self.buffer = b''
                    return self.error(request, 400, str(e))
                if end is None:
                    return
            else:
                match = CONTENT_LENGTH_REGEX.search(self.buffer, 0, ix)
                if match:
                    end += int(match.group(1))
                if len(self.buffer) < end:
                    return

            (data, self.buffer) = (self.buffer[:end], self.buffer[end:])
            request = self.new_request(data)
            self.process_new_request(request)
            self.requests_handled += 1

        self._close_if_done()

    def new_request(self, data):
        return Request(self.transport, data, secure=self.secure)

    def process_new_request(self, request):
        raw = request.data
        ix = raw.find(b'\r\n\r\n')
        (head, request.body) = (raw[:ix], raw[ix + 4:])
        (requestline, _, raw_headers) = head.partition(b'\r\n')

        words = requestline.split()
        if len(words) != 3:
            msg = "Bad request syntax (%s)" % requestline.decode('latin-1')
            return self.error(request, 400, msg)

        (command, raw_path, version) = words
        if version[:5] != b'HTTP/':
            msg = "Bad request version (%s)" % version.decode('latin-1')
            return self.error(request, 400, msg)
        try:
            base_version_number = version.split(b'/', 1)[1]
            version_number = base_version_number.split(b'.')
            # RFC 2145 section 3.1 says there can be only one "." and
            #   - major and minor numbers MUST be treated as
            #      separate integers;
            #   - HTTP/2.4 is a lower version than HTTP/2.13, which in
            #      turn is lower than HTTP/12.3;
            #   - Leading zeros MUST be ignored by recipients.
            if len(version_number) != 2:
                raise ValueError
            version_number = int(version_number[0]), int(version_number[1])
        except (ValueError, IndexError):
            msg = "Bad request version (%s)" % version.decode('latin-1')
            return self.error(request, 400, msg)
        if version_number >= (1, 1):
            request.keep_alive = True
        if version_number >= (2, 0):
            msg = "Invalid HTTP Version (%s)" % (
                base_version_number.decode('latin-1')
            )
            return self.error(request, 505, msg)

        try:
            h = request.headers = Headers(raw_headers)
        except InvalidHeaderText:
            return self.error(request, 400, "Malformed headers")

        parse_path(request, raw_path.decode('latin-1'))
        request.version = version.decode('latin-1')
        request.command = command.decode('latin-1')

        connection = (h.connection or '').lower()
        if connection == 'close' or self.shutting_down:
            request.keep_alive = False
        elif connection == 'keep-alive':
            request.keep_alive = True

        return self._dispatch(request)

    # ---------------------------------------------------------------------------
    # HTTP/2
    # ---------------------------------------------------------------------------
    def start_h2(self):
        config = h2.config.H2Configuration(
            client_side=False,
            header_encoding='utf-8',
        )
        self.h2 = h2.connection.H2Connection(config=config)
        self.h2.initiate_connection()
        self.flush_h2()

    def flush_h2(self):
        data = self.h2.data_to_send()
        if data and self.transport:
            self.transport.write(data)

    def h2_data_received(self, data):
        try:
            events = self.h2.receive_data(data)
        except h2.exceptions.ProtocolError as e:
            logging.error('HTTP/2 protocol error: %s', e)
            self.flush_h2()
            self.transport.close()
            return

        for event in events:
            if isinstance(event, h2.events.RequestReceived):
                self.streams[event.stream_id] = event.headers
            elif isinstance(event, h2.events.DataReceived):
                self.h2.acknowledge_received_data(
                    event.flow_controlled_length,
                    event.stream_id,
                )
            elif isinstance(event, h2.events.StreamEnded):
                headers = self.streams.pop(event.stream_id, None)
                if headers is not None:
                    self.process_h2_request(event.stream_id, headers)
            elif isinstance(event, h2.events.WindowUpdated):
                self.send_pending_data()
            elif isinstance(event, h2.events.StreamReset):
                self.streams.pop(event.stream_id, None)
                self.pending.pop(event.stream_id, None)
            elif isinstance(event, h2.events.ConnectionTerminated):
                logging.debug('Client closed the HTTP/2 connection.')
                self.flush_h2()
                self.transport.close()
                return

            if not self.transport:
                return

        self.flush_h2()
        self._close_if_done()

    def process_h2_request(self, stream_id, headers):
        request = self.new_request(None)
        request.stream_id = stream_id
        request.version = 'HTTP/2'
        request.keep_alive = True

        raw_path = None
        h = request.headers
        for (name, value) in headers:
            if name == ':method':
                request.command = value
            elif name == ':path':
                raw_path = value
            elif not name.startswith(':'):
                h.add(name, value)

        if not request.command or not raw_path:
            return self.error(request, 400, "Missing pseudo-headers")

        parse_path(request, raw_path)
        return self._dispatch(request)

    def send_pending_data(self):
        for stream_id in list(self.pending):
            entry = self.pending[stream_id]
            (data, total) = entry
            try:
                while data:
                    window = self.h2.local_flow_control_window(stream_id)
                    size = min(
                        window,
                        len(data),
                        self.h2.max_outbound_frame_size,
                    )
                    if size <= 0:
                        break
                    (chunk, data) = (data[:size], data[size:])
                    self.h2.send_data(stream_id, chunk, end_stream=not data)
            except h2.exceptions.StreamClosedError:
                del self.pending[stream_id]
                msg = 'failed to write partial contents: wrote %d of %d' % (
                    total - len(data),
                    total,
                )
                logging.error('Stream %d closed early: %s', stream_id, msg)
                continue

            if data:
                entry[0] = data
            else:
                del self.pending[stream_id]

        self.flush_h2()

    # ---------------------------------------------------------------------------
    # Dispatch
    # ---------------------------------------------------------------------------
    def _dispatch(self, request):
        func = getattr(self, 'do_%s' % request.command, None)
        if func is None:
            return self.unsupported_method(request)
        return func(request)

    def unsupported_method(self, request):
        logging.info(
            'Received unsupported request method: %s',
            request.command,
        )
        response = request.response
        response.code = 400
        response.message = RESPONSES[400][0]
        text_response(request, UNSUPPORTED_METHOD_MESSAGE)
        return self.send_response(request)

    def do_GET(self, request):
        logging.info('Received request: %s', request.raw_path)

        contents = InMemoryContents()
        request.response.other_headers.append(('Accept-Ranges', 'bytes'))

        (source, requested_range) = get_range_signal(request)
        if not requested_range:
            logging.info('For all content.')
            return self.send_contents(request, contents)

        logging.info('Range via %s: %s', source, requested_range)
        return self.send_content_range(request, contents, requested_range)

    # ---------------------------------------------------------------------------
    # Responders
    # ---------------------------------------------------------------------------
    def send_contents(self, request, contents):
        body = contents.read_all()
        self.log_body('Encoded content', body)

        response = request.response
        response.code = 200
        response.message = 'OK'
        response.content_length = len(contents)
        response.body = body

        logging.info(
            'Responding: content-length: %d status-code: %d',
            response.content_length,
            response.code,
        )
        return self.send_response(request)

    def send_content_range(self, request, contents, requested_range):
        try:
            r = RangedRequest.parse(requested_range, len(contents))
            body = contents.read_range(r.offset, r.offset + r.length)
        except (InvalidRangeRequest, RangeOutOfBounds) as e:
            logging.error('Bad request: %s', e)
            return self.response(request, 400)

        response = request.response
        response.code = 206
        response.message = 'Partial Content'
        response.content_range = r.content_range
        response.content_length = r.length
        response.body = body

        logging.info(
            'Responding: content-range: %s content-length: %d '
            'status-code: %d',
            response.content_range,
            response.content_length,
            response.code,
        )
        self.log_body('Encoded range', body)
        return self.send_response(request)

    def log_body(self, label, body):
        if self.verbose:
            logging.info('%s: %s', label, base64.b64encode(body).decode())

    def error(self, request, code, message=None):
        r = RESPONSES[code]
        if not message:
            message = r[0]

        logging.error("Error %d: %s", code, message)

        response = request.response
        response.code = code
        response.content_type = DEFAULT_ERROR_CONTENT_TYPE
        response.message = message
        response.explain = r[1]

        response.body = DEFAULT_ERROR_MESSAGE % {
            'code': code,
            'message': message,
            'explain': response.explain,
        }

        request.keep_alive = False
        return self.send_response(request)

    def response(self, request, code, message=None):
        r = RESPONSES[code]
        if not message:
            message = r[0]

        response = request.response
        response.code = code
        response.message = message
        response.explain = r[1]

        return self.send_response(request)

    def send_response(self, request):
        try:
            if request.stream_id is not None:
                self._send_h2_response(request)
            else:
                self._send_h1_response(request)
        except ShortWriteError as e:
            self.fail_response(request, e)

    def _send_h1_response(self, request):
        response_bytes = bytes(request.response)
        logging.debug(f"Sending {len(response_bytes)} byte(s) response.")
        self.transport.write(response_bytes)
        if not request.keep_alive:
            logging.debug("Closing connection.")
            self.transport.close()

    def _send_h2_response(self, request):
        response = request.response
        body = response.finalize()
        stream_id = request.stream_id
        self.h2.send_headers(
            stream_id,
            response.h2_headers(),
            end_stream=not body,
        )
        if body:
            self.pending[stream_id] = [body, len(body)]
            self.send_pending_data()
        else:
            self.flush_h2()

    def fail_response(self, request, exc):
        """
        Replaces a response that cannot be written in full with a 500 error.
        Only this response fails; the server keeps running.
        """
        logging.error('Failed to write response: %s', exc)
        request.response = Response(request)
        return self.error(request, 500, 'Failed to write response')

# vim:set ts=8 sw=4 sts=4 tw=78 et:                                           #

"""
Client side of the range probe.

Sends the same logical range requests to a rangeprobe server through three
carriers (the `Range` header, the `X-Dolt-Range` header and the `range` query
parameter) and reports every response whose status or body length differs
from what the server should have produced.  Run it against the server
directly and then through a proxy to see which carriers survive.
"""

# =============================================================================
# Imports
# =============================================================================
import argparse
import base64
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional, Tuple

import httpx

from rangeprobe.http.content import CONTENT_SIZE
from rangeprobe.tls import TransportSetupError, make_client_ssl_context
from rangeprobe.util import ElapsedTimer, env_int, env_str

# =============================================================================
# Globals
# =============================================================================
HEADER_CHANNEL = 'header'
ALTERNATE_HEADER_CHANNEL = 'alternate header'
QUERY_PARAM_CHANNEL = 'query param'
NO_RANGE_CHANNEL = 'none'

RANGE_HEADER = 'Range'
ALTERNATE_RANGE_HEADER = 'x-dolt-range'

SUPPORTED_HEADERS = ('range', 'x-dolt-range')

# (range specifier, url encoded query string, expected body length)
SAMPLE_RANGES = [
    ('bytes=0-1000', 'range=bytes%3D0%2D1000', 1001),
    ('bytes=2500-2599', 'range=bytes%3D2500%2D2599', 100),
    ('bytes=-80', 'range=bytes%3D%2D80', 80),
]

VERIFIED = 'verified'
SKIP_VERIFY = 'skip-verify'
NO_VERIFICATION = 'none'


# =============================================================================
# Classes
# =============================================================================
@dataclass(frozen=True)
class TransportConfig:
    """
    Describes how to reach the server: scheme, HTTP version and TLS
    verification mode are all derived from these fields.
    """
    host: str
    port: int
    http2: bool = False
    skip_verify: bool = False
    cert_file: str = ''
    key_file: str = ''

    @property
    def verification(self) -> str:
        if self.skip_verify and not self.cert_file and not self.key_file:
            return SKIP_VERIFY
        if self.cert_file and self.key_file:
            return VERIFIED
        return NO_VERIFICATION

    @property
    def scheme(self) -> str:
        if self.verification == NO_VERIFICATION:
            return 'http'
        return 'https'

    @property
    def protocol(self) -> str:
        return 'h2' if self.http2 else 'h1'

    @property
    def url(self) -> str:
        return f'{self.scheme}://{self.host}:{self.port}'

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> 'TransportConfig':
        return cls(
            host=args.host,
            port=args.port,
            http2=args.http2,
            skip_verify=args.tls_skip_verify,
            cert_file=args.tls_cert_file,
            key_file=args.tls_key_file,
        )


@dataclass(frozen=True)
class Probe:
    channel: str
    signal: str
    expected_status: int
    expected_length: int

    def describe(self) -> str:
        if self.channel in (HEADER_CHANNEL, ALTERNATE_HEADER_CHANNEL):
            return f'header: {self.signal}'
        if self.channel == QUERY_PARAM_CHANNEL:
            return f'params: {self.signal}'
        return 'no range'


@dataclass(frozen=True)
class Mismatch:
    probe: Probe
    url: str
    field: str
    expected: int
    actual: int

    def __str__(self):
        if self.field == 'status':
            return (
                f'did not receive expected status: url: {self.url} '
                f'{self.probe.describe()} expected: {self.expected} '
                f'actual: {self.actual}'
            )
        return (
            f'requested bytes did not match bytes served: url: {self.url} '
            f'{self.probe.describe()} requested: {self.expected} '
            f'served: {self.actual}'
        )


class ProbeHarness:
    """
    Issues probes one at a time over a single client.  Each probe reads its
    whole response body before the next one is sent.  Transport errors
    propagate; status and length mismatches are collected and reported.
    """

    def __init__(
        self,
        client: httpx.Client,
        url: str,
        verbose: bool = False,
        probes: Optional[List[Probe]] = None,
    ):
        self.client = client
        self.url = url
        self.verbose = verbose
        self.probes = probes if probes is not None else sample_probes()

    def run(self) -> List[Mismatch]:
        mismatches = []
        for probe in self.probes:
            timer = ElapsedTimer()
            with timer:
                (status, length) = self.probe(probe)
            logging.debug(
                'Probe %s took %.4f seconds.',
                probe.describe(),
                timer.elapsed,
            )
            mismatches.extend(self.check(probe, status, length))
        logging.info(
            'Sent %d probe(s) to %s, %d mismatch(es).',
            len(self.probes),
            self.url,
            len(mismatches),
        )
        return mismatches

    def probe(self, probe: Probe) -> Tuple[int, int]:
        if probe.channel in (HEADER_CHANNEL, ALTERNATE_HEADER_CHANNEL):
            return self.send_with_header(probe.signal)
        if probe.channel == QUERY_PARAM_CHANNEL:
            return self.send_with_params(probe.signal)
        return self.send_raw()

    def check(self, probe: Probe, status: int, length: int) -> List[Mismatch]:
        mismatches = []
        if status != probe.expected_status:
            mismatches.append(
                Mismatch(probe, self.url, 'status',
                         probe.expected_status, status)
            )
        if length != probe.expected_length:
            mismatches.append(
                Mismatch(probe, self.url, 'length',
                         probe.expected_length, length)
            )
        for mismatch in mismatches:
            print(mismatch)
        return mismatches

    def send_raw(self) -> Tuple[int, int]:
        request = self.client.build_request('GET', self.url)
        return self.send(request)

    def send_with_params(self, params: str) -> Tuple[int, int]:
        request = self.client.build_request('GET', f'{self.url}/?{params}')
        return self.send(request)

    def send_with_header(self, header: str) -> Tuple[int, int]:
        (key, value) = parse_header(header)
        request = self.client.build_request(
            'GET',
            self.url,
            headers={key: value},
        )
        return self.send(request)

    def send(self, request: httpx.Request) -> Tuple[int, int]:
        print('request:')
        for (name, value) in request.headers.items():
            print(f"with header: '{name}: {value}'")
        for (key, value) in request.url.params.multi_items():
            print(f"with url query param: '{key}={value}'")
        print()

        response = self.client.send(request)
        body = response.read()

        print('response:')
        print('status:', response.status_code, response.reason_phrase)
        print('http version:', response.http_version)
        for (name, value) in response.headers.items():
            print(f"with header: '{name}: {value}'")

        if self.verbose:
            print('body (base64):', base64.b64encode(body).decode())
            print()

        print()
        return (response.status_code, len(body))


# =============================================================================
# Helpers
# =============================================================================
def sample_probes() -> List[Probe]:
    """
    Returns the fixed probe battery: every sample range through each of the
    three carriers, then one request with no range signal.
    """
    probes = []
    for (specifier, params, length) in SAMPLE_RANGES:
        probes.extend([
            Probe(HEADER_CHANNEL, f'{RANGE_HEADER}: {specifier}',
                  206, length),
            Probe(ALTERNATE_HEADER_CHANNEL,
                  f'{ALTERNATE_RANGE_HEADER}: {specifier}', 206, length),
            Probe(QUERY_PARAM_CHANNEL, params, 206, length),
        ])
    probes.append(Probe(NO_RANGE_CHANNEL, '', 200, CONTENT_SIZE))
    return probes


def parse_header(header: str) -> Tuple[str, str]:
    """
    Splits a `Name: value` header line.  Only the `Range` and
    `X-Dolt-Range` header names (in any case) are accepted.

    Raises:

        ValueError: If the line is malformed or names another header.
    """
    parts = header.split(':')
    if len(parts) != 2:
        raise ValueError(f'failed to parse header: {header!r}')

    key = parts[0].strip()
    value = parts[1].strip()

    if key.lower() not in SUPPORTED_HEADERS:
        raise ValueError(
            "unsupported header, only 'Range' and 'X-Dolt-Range' supported"
        )
    return (key, value)


def make_client(config: TransportConfig) -> Tuple[str, httpx.Client]:
    """
    Builds the HTTP client for a transport configuration.

    Plain HTTP/2 is h2c with prior knowledge: the client skips the
    HTTP/1.1 upgrade dance and speaks HTTP/2 straight away.  Over TLS,
    HTTP/2 is the only protocol offered.

    Args:

        config (TransportConfig): Supplies the transport configuration.

    Returns:

        tuple: Returns `(base_url, client)`.

    Raises:

        TransportSetupError: If verified TLS was requested and the
            certificate or key cannot be loaded.
    """
    verification = config.verification
    if verification == SKIP_VERIFY:
        verify = False
    elif verification == VERIFIED:
        verify = make_client_ssl_context(config.cert_file, config.key_file)
    else:
        verify = True

    client = httpx.Client(
        verify=verify,
        http1=not config.http2,
        http2=config.http2,
    )
    logging.debug(
        'Created %s client for %s (verification: %s)',
        config.protocol,
        config.url,
        verification,
    )
    return (config.url, client)


# =============================================================================
# Main
# =============================================================================
def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Probe a rangeprobe server with range requests.'
    )
    parser.add_argument(
        '--host',
        type=str,
        default=env_str('RANGEPROBE_HOST'),
        help='Host of the server.',
    )
    parser.add_argument(
        '--port',
        type=int,
        default=env_int('RANGEPROBE_PORT', 0),
        help='Port of the server.',
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        '--header',
        type=str,
        default='',
        help="Header used for a single request, ie 'Range: bytes=0-100'.",
    )
    mode.add_argument(
        '--params',
        type=str,
        default='',
        help=(
            'URL encoded query params used for a single request, '
            "ie 'range=bytes%%3D0%%2D100'."
        ),
    )
    mode.add_argument(
        '--all',
        action='store_true',
        help='Request all contents with a single request.',
    )
    parser.add_argument(
        '--http2',
        action='store_true',
        help='Use HTTP/2 (h2c on plain connections).',
    )
    parser.add_argument(
        '--tls-skip-verify',
        action='store_true',
        help='Use TLS without verifying the server certificate.',
    )
    parser.add_argument(
        '--tls-cert-file',
        type=str,
        default=env_str('RANGEPROBE_TLS_CERT_FILE'),
        help='Path to the PEM tls cert file (also the trusted root).',
    )
    parser.add_argument(
        '--tls-key-file',
        type=str,
        default=env_str('RANGEPROBE_TLS_KEY_FILE'),
        help='Path to the PEM tls key file.',
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Print response bodies (base64 encoded).',
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Set the logging level.',
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """
    Main entry point for the rangeprobe-client command.
    """
    args = parse_arguments(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    if not args.host:
        print('must supply --host')
        sys.exit(1)
    if not args.port:
        print('must supply --port')
        sys.exit(1)

    try:
        (url, client) = make_client(TransportConfig.from_args(args))
    except TransportSetupError as e:
        logging.critical('%s', e)
        sys.exit(1)

    mismatches = []
    with client:
        harness = ProbeHarness(client, url, verbose=args.verbose)
        try:
            if args.header:
                harness.send_with_header(args.header)
            elif args.params:
                harness.send_with_params(args.params)
            elif args.all:
                harness.send_raw()
            else:
                mismatches = harness.run()
        except ValueError as e:
            logging.critical('%s', e)
            sys.exit(1)
        except httpx.HTTPError as e:
            logging.critical('Request to %s failed: %s', url, e)
            sys.exit(1)

    if mismatches:
        sys.exit(1)


if __name__ == '__main__':
    main()

# vim:set ts=8 sw=4 sts=4 tw=78 et:                                           #

# =============================================================================
# Imports
# =============================================================================
import argparse
import asyncio
import logging
import os
import signal
import ssl
import sys
from typing import List, Optional

from rangeprobe.tls import TransportSetupError, make_server_ssl_context
from rangeprobe.util import env_int, env_str, get_class_from_string

# =============================================================================
# Globals
# =============================================================================

# How long in-flight requests get to finish once shutdown has started.  The
# period is shared by both listeners.
SHUTDOWN_GRACE_PERIOD = 20.0

SHUTDOWN_POLL_INTERVAL = 0.1

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


# =============================================================================
# Classes
# =============================================================================
class Listener:
    """
    One listening socket (plain or TLS) plus the set of connections it has
    accepted.  The connection set is maintained by the protocol instances.
    """

    def __init__(
        self,
        name: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        self.name = name
        self.port = port
        self.ssl_context = ssl_context
        self.server = None
        self.connections = set()

    @property
    def secure(self):
        return self.ssl_context is not None

    @property
    def bound_port(self):
        return self.server.sockets[0].getsockname()[1]

    async def start(
        self,
        ip: str,
        protocol_class: type,
        verbose: bool = False,
        backlog: int = 100,
    ) -> None:
        loop = asyncio.get_running_loop()

        def factory():
            return protocol_class(
                verbose=verbose,
                secure=self.secure,
                connections=self.connections,
            )

        self.server = await loop.create_server(
            factory,
            ip,
            self.port,
            ssl=self.ssl_context,
            backlog=backlog,
            reuse_address=True,
        )
        logging.info('Serving %s on :%d', self.name, self.bound_port)


# =============================================================================
# Helpers
# =============================================================================
async def shutdown_listeners(
    listeners: List[Listener],
    grace_period: float = SHUTDOWN_GRACE_PERIOD,
) -> None:
    """
    Stops accepting new connections on every listener, asks open
    connections to finish, waits up to `grace_period` seconds for them to
    close, then aborts whatever is left.

    Args:

        listeners (list): Supplies the started listeners.

        grace_period (float): Supplies the number of seconds in-flight
            requests get to complete, shared by all listeners.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + grace_period

    for listener in listeners:
        logging.info('%s server is shutting down', listener.name)
        listener.server.close()
        for connection in list(listener.connections):
            connection.shutdown()

    while loop.time() < deadline:
        if not any(listener.connections for listener in listeners):
            break
        await asyncio.sleep(SHUTDOWN_POLL_INTERVAL)

    for listener in listeners:
        remaining = list(listener.connections)
        if remaining:
            logging.error(
                'failed to shutdown %s server: %d connection(s) still open '
                'after %.1f seconds',
                listener.name,
                len(remaining),
                grace_period,
            )
        for connection in remaining:
            connection.abort()

    await asyncio.gather(
        *(listener.server.wait_closed() for listener in listeners)
    )


# =============================================================================
# Main
# =============================================================================
def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Run the HTTP range header test server.'
    )
    parser.add_argument(
        '--ip',
        type=str,
        default='0.0.0.0',
        help='IP address to bind the server to.',
    )
    parser.add_argument(
        '--port',
        type=int,
        default=env_int('RANGEPROBE_PORT', 1709),
        help='http listening port.',
    )
    parser.add_argument(
        '--secure-port',
        type=int,
        default=env_int('RANGEPROBE_SECURE_PORT', 443),
        help='https listening port.',
    )
    parser.add_argument(
        '--tls-cert-file',
        type=str,
        default=env_str('RANGEPROBE_TLS_CERT_FILE'),
        help='Path to the PEM tls cert file.',
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
        help='Log response bodies (base64 encoded).',
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug mode for asyncio.',
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Set the logging level.',
    )
    parser.add_argument(
        '--protocol-class',
        type=str,
        default='rangeprobe.http.server.HttpServer',
        help='The protocol class to use for both listeners.',
    )
    parser.add_argument(
        '--listen-backlog',
        type=int,
        default=100,
        help='The listen backlog for the server.',
    )
    return parser.parse_args(argv)


def check_arguments(args: argparse.Namespace) -> Optional[str]:
    """
    Returns a message naming the first required flag that was not supplied,
    or None if everything required is present.
    """
    required = (
        ('port', args.port),
        ('secure-port', args.secure_port),
        ('tls-cert-file', args.tls_cert_file),
        ('tls-key-file', args.tls_key_file),
    )
    for (flag, value) in required:
        if not value:
            return f'must supply --{flag}'
    return None


async def main_async(
    args: argparse.Namespace,
    protocol_class: type,
    ssl_context: ssl.SSLContext,
) -> None:
    """
    Serves the plain and TLS listeners until SIGINT or SIGTERM is received,
    then shuts both down cooperatively.

    Arguments:

        args (argparse.Namespace): Supplies the command-line arguments.

        protocol_class (type): Supplies the protocol class to use.

        ssl_context (ssl.SSLContext): Supplies the context for the TLS
            listener.

    """
    loop = asyncio.get_running_loop()

    stop = asyncio.Event()
    if os.name not in ('nt', 'cygwin'):
        for signum in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(signum, stop.set)

    candidates = [
        Listener('http', args.port),
        Listener('https', args.secure_port, ssl_context),
    ]
    listeners = []
    for listener in candidates:
        try:
            await listener.start(
                args.ip,
                protocol_class,
                verbose=args.verbose,
                backlog=args.listen_backlog,
            )
        except OSError as e:
            logging.error('Error serving %s server: %s', listener.name, e)
            continue
        listeners.append(listener)

    if not listeners:
        raise RuntimeError('No listener could be started.')

    try:
        await stop.wait()
    finally:
        if os.name not in ('nt', 'cygwin'):
            for signum in SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(signum)
        await shutdown_listeners(listeners)


def main(argv: Optional[List[str]] = None):
    """
    Main entry point for the rangeprobe-server command.
    """
    args = parse_arguments(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    message = check_arguments(args)
    if message:
        print(message)
        sys.exit(1)

    try:
        ssl_context = make_server_ssl_context(
            args.tls_cert_file,
            args.tls_key_file,
        )
    except TransportSetupError as e:
        logging.critical('%s', e)
        sys.exit(1)

    protocol_class = get_class_from_string(args.protocol_class)

    asyncio.run(
        main_async(args, protocol_class, ssl_context),
        debug=args.debug,
    )


if __name__ == '__main__':
    main()

# vim:set ts=8 sw=4 sts=4 tw=78 et:                                           #

import asyncio
import shutil
import subprocess
import threading

import pytest

from rangeprobe.http.server import HttpServer
from rangeprobe.server import Listener
from rangeprobe.tls import make_server_ssl_context

OPENSSL_CONFIG = """
[ req ]
default_bits = 2048
distinguished_name = req_dn
x509_extensions = cert_ext
prompt = no

[ req_dn ]
CN = localhost

[ cert_ext ]
basicConstraints = critical, CA:TRUE
keyUsage = critical, digitalSignature, keyEncipherment, keyCertSign
extendedKeyUsage = serverAuth, clientAuth
subjectKeyIdentifier = hash
authorityKeyIdentifier = keyid:always
subjectAltName = DNS:localhost, IP:127.0.0.1
"""


def run_in_background_loop(start):
    """
    Runs the coroutine function `start` on a new event loop in a daemon
    thread.  Returns `(loop, thread, result)`.
    """
    loop = asyncio.new_event_loop()
    result = loop.run_until_complete(start())
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    return (loop, thread, result)


def stop_background_loop(loop, thread, server):
    loop.call_soon_threadsafe(server.close)
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


@pytest.fixture
def server_url():
    """
    Runs an HttpServer on an ephemeral localhost port in a background event
    loop and yields its base URL.
    """
    async def start():
        loop = asyncio.get_running_loop()
        return await loop.create_server(HttpServer, '127.0.0.1', 0)

    (loop, thread, server) = run_in_background_loop(start)
    port = server.sockets[0].getsockname()[1]

    yield f'http://127.0.0.1:{port}'

    stop_background_loop(loop, thread, server)


@pytest.fixture
def tls_files(tmp_path):
    """
    Creates a self-signed certificate for localhost and 127.0.0.1 and
    yields `(cert_file, key_file)`.
    """
    openssl = shutil.which('openssl')
    if not openssl:
        pytest.skip('openssl is not installed')

    conf = tmp_path / 'openssl.cnf'
    conf.write_text(OPENSSL_CONFIG)
    cert = tmp_path / 'cert.pem'
    key = tmp_path / 'key.pem'
    subprocess.run(
        [
            openssl, 'req', '-new', '-x509', '-nodes',
            '-newkey', 'rsa:2048',
            '-days', '2',
            '-config', str(conf),
            '-out', str(cert),
            '-keyout', str(key),
        ],
        check=True,
        capture_output=True,
    )
    yield (str(cert), str(key))


@pytest.fixture
def tls_server_port(tls_files):
    """
    Runs a secure Listener on an ephemeral localhost port in a background
    event loop and yields the port.
    """
    (cert_file, key_file) = tls_files
    listener = Listener(
        'https',
        0,
        make_server_ssl_context(cert_file, key_file),
    )

    async def start():
        await listener.start('127.0.0.1', HttpServer)
        return listener.server

    (loop, thread, server) = run_in_background_loop(start)

    yield listener.bound_port

    stop_background_loop(loop, thread, server)

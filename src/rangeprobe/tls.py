"""
TLS context construction for both ends of the range probe.

The server and the client consume the same PEM certificate/key pair by path.
In verified mode the client trusts nothing but that certificate, and presents
it as its own client certificate.
"""

# =============================================================================
# Imports
# =============================================================================
import logging
import ssl
from typing import List, Optional

# =============================================================================
# Globals
# =============================================================================

# OpenSSL names for the TLS 1.2 cipher allow-list.  TLS 1.3 suites are not
# affected by set_ciphers() and keep their defaults.
TLS_CIPHERS = [
    'ECDHE-RSA-AES256-GCM-SHA384',
    'ECDHE-RSA-AES256-SHA',
    'AES256-GCM-SHA384',
    'AES256-SHA',
    'ECDHE-RSA-AES128-GCM-SHA256',
    'ECDHE-ECDSA-AES128-GCM-SHA256',
]

# Curve preference order.  The ssl module only exposes a single ECDH curve,
# so the first entry is the one that gets configured.
TLS_CURVES = ['secp521r1', 'secp384r1', 'prime256v1']

ALPN_PROTOCOLS = ['h2', 'http/1.1']


# =============================================================================
# Classes
# =============================================================================
class TransportSetupError(Exception):
    """
    Raised when a TLS context cannot be built from the supplied certificate
    and key files (missing, unreadable or mismatched).
    """


# =============================================================================
# Helpers
# =============================================================================
def make_server_ssl_context(
    cert_file: str,
    key_file: str,
    alpn_protocols: Optional[List[str]] = None,
) -> ssl.SSLContext:
    """
    Creates the server-side TLS context used by the secure listener.

    Args:

        cert_file (str): Supplies the path of the PEM certificate.

        key_file (str): Supplies the path of the PEM private key.

        alpn_protocols (list): Optionally supplies the ALPN protocols to
            offer, in preference order.  Defaults to `ALPN_PROTOCOLS`.

    Returns:

        ssl.SSLContext: Returns the configured context.

    Raises:

        TransportSetupError: If the certificate or key cannot be loaded.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(':'.join(TLS_CIPHERS))
    context.set_ecdh_curve(TLS_CURVES[0])
    context.set_alpn_protocols(alpn_protocols or ALPN_PROTOCOLS)
    try:
        context.load_cert_chain(cert_file, key_file)
    except OSError as e:
        msg = (
            f'error loading x509 key pair from cert file {cert_file} '
            f'and key file {key_file}: {e}'
        )
        raise TransportSetupError(msg) from e
    logging.debug('Loaded server certificate from %s', cert_file)
    return context


def make_client_ssl_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """
    Creates a client-side TLS context that presents `cert_file` as the
    client certificate and trusts it as the only root.
    """
    try:
        context = ssl.create_default_context(cafile=cert_file)
        context.load_cert_chain(cert_file, key_file)
    except OSError as e:
        msg = (
            f'error creating x509 keypair from client cert file {cert_file} '
            f'and client key file {key_file}: {e}'
        )
        raise TransportSetupError(msg) from e
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context

# vim:set ts=8 sw=4 sts=4 tw=78 et:                                           #

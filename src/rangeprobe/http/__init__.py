# =============================================================================
# Imports
# =============================================================================
from http import HTTPStatus

# =============================================================================
# Globals
# =============================================================================
DEFAULT_SERVER_RESPONSE = 'rangeprobe/0.1'

DEFAULT_CONTENT_TYPE = 'text/plain; charset=UTF-8'

DEFAULT_ERROR_CONTENT_TYPE = 'text/html; charset=UTF-8'

DEFAULT_ERROR_MESSAGE = """\
<!DOCTYPE HTML>
<html lang="en">
    <head>
        <meta charset="utf-8">
        <title>Error response</title>
    </head>
    <body>
        <h1>Error response</h1>
        <p>Error code: %(code)d</p>
        <p>Message: %(message)s.</p>
        <p>Error code explanation: %(code)s - %(explain)s.</p>
    </body>
</html>
"""

# HTTP/1.1 response head.  `headers` is already rendered as CRLF-terminated
# `Name: value` lines; the body follows the blank line.
DEFAULT_RESPONSE = 'HTTP/1.1 %(code)d %(message)s\r\n%(headers)s\r\n'

# Maps a status code to its (short message, long explanation) pair.
RESPONSES = {
    status.value: (status.phrase, status.description)
    for status in HTTPStatus
}

# The HTTP/2 client connection preface; a plain-text connection that starts
# with these bytes is speaking h2c with prior knowledge.
H2_CONNECTION_PREFACE = b'PRI * HTTP/2.0\r\n\r\nSM\r\n\r\n'

STRICT_TRANSPORT_SECURITY = 'max-age=63072000; includeSubDomains'

# vim:set ts=8 sw=4 sts=4 tw=78 et:                                           #

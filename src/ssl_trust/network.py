"""Network operations: make a server present its certificate."""

import logging
import socket
import ssl
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from ssl_trust import __version__
from ssl_trust.exceptions import (
    ConnectionFailedError,
    InvalidUrlError,
    NetworkUnreachableError,
    RequestFailedError,
    TrustError,
)

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"https": 443, "http": 80}
MAX_STATUS_LINE_BYTES = 8192


def parse_target_url(url: str) -> Tuple[str, str, int, str]:
    """
    Split a URL into connection parameters.

    Args:
        url: Absolute http or https URL

    Returns:
        Tuple of (scheme, hostname, port, request_target)

    Raises:
        InvalidUrlError: If the URL is not an absolute http(s) URL with a host
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError("URL must be a non-empty string")

    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise InvalidUrlError(f"Unsupported URL scheme in '{url}' (expected http or https)")
    if not parts.hostname:
        raise InvalidUrlError(f"URL '{url}' has no host")
    try:
        port = parts.port or DEFAULT_PORTS[scheme]
    except ValueError as e:
        raise InvalidUrlError(f"Invalid port in URL '{url}': {e}") from e

    target = parts.path or "/"
    if parts.query:
        target = f"{target}?{parts.query}"
    return scheme, parts.hostname, port, target


def _capture_context() -> ssl.SSLContext:
    # Verification is off so that untrusted and interception roots are
    # captured too; trust is evaluated later while building the chain.
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _presented_chain(ssl_sock: ssl.SSLSocket) -> List[bytes]:
    """
    Certificates the server sent, leaf first.

    SSLSocket.get_unverified_chain() is public from Python 3.13 on and
    returns DER bytes. Python 3.10 to 3.12 only have it on the underlying
    _ssl socket, where it returns certificate objects.
    """
    if hasattr(ssl_sock, "get_unverified_chain"):
        chain = ssl_sock.get_unverified_chain() or []
    else:
        sslobj = getattr(ssl_sock, "_sslobj", None)
        if sslobj is None or not hasattr(sslobj, "get_unverified_chain"):
            logger.debug("get_unverified_chain() not available, chain will be built from the trust store and AIA")
            return []
        chain = [cert.public_bytes(ssl._ssl.ENCODING_DER) for cert in sslobj.get_unverified_chain() or []]
    chain_der = [cert for cert in chain if isinstance(cert, bytes) and cert]
    logger.debug(f"Server presented {len(chain_der)} certificate(s)")
    return chain_der


def _read_status_line(conn: socket.socket) -> bytes:
    buffer = b""
    while b"\r\n" not in buffer:
        chunk = conn.recv(1024)
        if not chunk:
            break
        buffer += chunk
        if len(buffer) > MAX_STATUS_LINE_BYTES:
            break
    return buffer.split(b"\r\n", 1)[0]


def _send_request(conn: socket.socket, host: str, port: int, scheme: str, target: str) -> int:
    """
    Send a HEAD request over an established connection and read the status.

    Returns:
        HTTP status code (2xx)

    Raises:
        RequestFailedError: On any failure of the request or a non-2xx status
    """
    try:
        host_header = host if host.isascii() else host.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise RequestFailedError(f"Cannot encode host {host!r}: {e}") from e
    if ":" in host_header:
        host_header = f"[{host_header}]"  # IPv6 literal
    if port != DEFAULT_PORTS[scheme]:
        host_header = f"{host_header}:{port}"
    request = (
        f"HEAD {target} HTTP/1.1\r\n"
        f"Host: {host_header}\r\n"
        f"User-Agent: ssl-trust/{__version__}\r\n"
        "Accept: */*\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    try:
        conn.sendall(request.encode("ascii"))
        status_line = _read_status_line(conn)
    except (OSError, UnicodeError) as e:
        raise RequestFailedError(f"Request failed: {e}") from e

    parts = status_line.split(None, 2)
    if len(parts) < 2 or not parts[0].startswith(b"HTTP/") or not parts[1].isdigit():
        raise RequestFailedError(f"Malformed HTTP status line: {status_line[:100]!r}")

    status = int(parts[1])
    if not 200 <= status < 300:
        raise RequestFailedError(f"HTTP {status}", status_code=status)
    logger.debug(f"HTTP {status}")
    return status


def capture_server_certificates(url: str) -> Tuple[Optional[bytes], List[bytes]]:
    """
    Connect to a URL and capture the certificate the server presents.

    Opens exactly one connection, performs the TLS handshake (https only),
    sends one request and discards the response. A failed request after a
    completed handshake is logged and ignored; connection and handshake
    errors propagate.

    Args:
        url: Absolute http or https URL

    Returns:
        Tuple of (leaf_certificate_der or None for plain http, presented_chain_der_list)

    Raises:
        InvalidUrlError: If the URL is malformed
        NetworkUnreachableError: If DNS resolution or the TCP connect fails
        ConnectionFailedError: If the TLS handshake fails
    """
    scheme, host, port, target = parse_target_url(url)
    logger.debug(f"Connecting to {host}:{port} ({scheme})")

    try:
        sock = socket.create_connection((host, port))
    except socket.gaierror as e:
        raise NetworkUnreachableError(f"DNS resolution failed for {host}: {e}") from e
    except OSError as e:
        raise NetworkUnreachableError(f"Could not connect to {host}:{port}: {e}") from e
    logger.debug(f"TCP connection established to {host}:{port}")

    conn: socket.socket = sock
    leaf_cert_der: Optional[bytes] = None
    chain_certs_der: List[bytes] = []
    try:
        if scheme == "https":
            try:
                conn = _capture_context().wrap_socket(sock, server_hostname=host)
            except OSError as e:
                raise ConnectionFailedError(f"TLS handshake with {host}:{port} failed: {e}") from e
            logger.debug(f"TLS handshake completed ({conn.version()})")
            leaf_cert_der = conn.getpeercert(binary_form=True)
            chain_certs_der = _presented_chain(conn)
        else:
            logger.warning(f"{url} is not an https URL, no certificate will be presented")

        try:
            _send_request(conn, host, port, scheme, target)
        except TrustError as e:
            if not e.recoverable_during_handshake:
                raise
            logger.info(f"Request to {url} failed after the handshake, using the captured certificate: {e}")
    finally:
        conn.close()
        sock.close()

    return leaf_cert_der, chain_certs_der

"""Certificate parsing and PEM helpers."""

import base64
import logging
import re
import warnings
from pathlib import Path
from typing import List

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.utils import CryptographyDeprecationWarning

from ssl_trust.exceptions import InvalidCertificateError
from ssl_trust.models import Certificate

logger = logging.getLogger(__name__)

PEM_HEADER = "-----BEGIN CERTIFICATE-----"
PEM_FOOTER = "-----END CERTIFICATE-----"
PEM_LINE_LENGTH = 64

_PEM_BLOCK_RE = re.compile(rb"-----BEGIN CERTIFICATE-----(.*?)-----END CERTIFICATE-----", re.DOTALL)


def load_x509(cert_data: bytes, pem: bool = False) -> x509.Certificate:
    """
    Load a certificate while suppressing CryptographyDeprecationWarning
    (e.g. about non-positive serial numbers).

    Raises:
        InvalidCertificateError: If the data is not a certificate
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", CryptographyDeprecationWarning)
        try:
            if pem:
                return x509.load_pem_x509_certificate(cert_data)
            return x509.load_der_x509_certificate(cert_data)
        except ValueError as e:
            raise InvalidCertificateError(f"Could not parse certificate: {e}") from e


def certificate_from_x509(cert: x509.Certificate) -> Certificate:
    der = cert.public_bytes(serialization.Encoding.DER)
    return Certificate(
        der=der,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
    )


def parse_certificate(cert_der: bytes) -> Certificate:
    """
    Parse a DER-encoded certificate.

    Args:
        cert_der: Certificate (DER)

    Returns:
        Certificate

    Raises:
        InvalidCertificateError: If the bytes are not a DER certificate
    """
    return certificate_from_x509(load_x509(cert_der, pem=False))


def load_certificate_file(path: Path) -> Certificate:
    """
    Load the first certificate from a PEM or DER file.

    Raises:
        InvalidCertificateError: If the file is unreadable or holds no certificate
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        raise InvalidCertificateError(f"Could not read certificate file {path}: {e}") from e

    blocks = split_pem_certificates(data)
    if blocks:
        if len(blocks) > 1:
            logger.warning(f"{path} contains {len(blocks)} certificates, using the first one")
        return certificate_from_x509(load_x509(blocks[0], pem=True))
    return parse_certificate(data)


def der_to_pem(cert_der: bytes) -> str:
    """
    Encode DER bytes as a PEM certificate block.

    The body is wrapped at 64 characters and there is no newline after the
    footer.
    """
    b64 = base64.b64encode(cert_der).decode("ascii")
    lines = [b64[i:i + PEM_LINE_LENGTH] for i in range(0, len(b64), PEM_LINE_LENGTH)]
    return "\n".join([PEM_HEADER, *lines, PEM_FOOTER])


def split_pem_certificates(data: bytes) -> List[bytes]:
    """Split PEM data into individual certificate blocks."""
    matches = _PEM_BLOCK_RE.findall(data)
    return [
        b"-----BEGIN CERTIFICATE-----" + match + b"-----END CERTIFICATE-----\n"
        for match in matches
    ]


def is_valid_pem_bundle(text: str) -> bool:
    """
    Check that a trust bundle is a well-formed PEM container.

    Markers must alternate BEGIN/END and every block body must be base64.
    An empty bundle is valid.
    """
    open_block = False
    body: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line == PEM_HEADER:
            if open_block:
                return False
            open_block = True
            body = []
        elif line == PEM_FOOTER:
            if not open_block:
                return False
            try:
                base64.b64decode("".join(body), validate=True)
            except ValueError:
                return False
            open_block = False
        elif open_block and line:
            body.append(line)
    return not open_block


def is_truly_self_signed(cert: x509.Certificate) -> bool:
    """
    Check if a certificate is self-signed by name AND by signature.

    Cross-signed certificates can have subject == issuer while being signed
    by another CA.
    """
    if cert.subject != cert.issuer:
        return False
    try:
        cert.verify_directly_issued_by(cert)
    except (ValueError, TypeError, InvalidSignature) as e:
        logger.debug(f"'{cert.subject.rfc4514_string()}' has subject==issuer but is not self-signed: {e}")
        return False
    return True

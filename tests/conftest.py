"""Shared fixtures: a small PKI generated on the fly."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID


def make_certificate(
    common_name: str,
    issuer_name: Optional[str] = None,
    issuer_key=None,
    ca: bool = False,
    aia_url: Optional[str] = None,
):
    """Create a certificate; self-signed when no issuer is given. Returns (cert, key)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_name or common_name)])
    now = datetime.now(timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
    )
    if ca:
        builder = builder.add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
    if aia_url:
        builder = builder.add_extension(
            x509.AuthorityInformationAccess(
                [x509.AccessDescription(AuthorityInformationAccessOID.CA_ISSUERS, x509.UniformResourceIdentifier(aia_url))]
            ),
            critical=False,
        )
    cert = builder.sign(issuer_key or key, hashes.SHA256())
    return cert, key


def der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def pki():
    """Root CA -> Intermediate CA -> leaf.example.com, leaf carries an AIA URL."""
    root, root_key = make_certificate("Test Root CA", ca=True)
    intermediate, intermediate_key = make_certificate(
        "Test Intermediate CA", issuer_name="Test Root CA", issuer_key=root_key, ca=True
    )
    leaf, leaf_key = make_certificate(
        "leaf.example.com",
        issuer_name="Test Intermediate CA",
        issuer_key=intermediate_key,
        aia_url="http://ca.example.com/intermediate.cer",
    )
    return SimpleNamespace(
        root=root,
        root_key=root_key,
        intermediate=intermediate,
        intermediate_key=intermediate_key,
        leaf=leaf,
        leaf_key=leaf_key,
    )


@pytest.fixture
def bundle_file(tmp_path, pki):
    """Existing trust bundle with one certificate and a comment header."""
    path = tmp_path / "bundle.crt"
    path.write_bytes(b"## Test bundle\n\n" + pem(pki.intermediate))
    return path

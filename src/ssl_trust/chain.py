"""Certificate chain building against the local trust store."""

import logging
import os
import ssl
import subprocess
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import certifi
import httpx
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import AuthorityInformationAccessOID

from ssl_trust import __version__
from ssl_trust.certificate import (
    certificate_from_x509,
    is_truly_self_signed,
    load_x509,
    split_pem_certificates,
)
from ssl_trust.exceptions import ChainBuildError, InvalidBundlePathError, InvalidCertificateError
from ssl_trust.models import CertificateChain

logger = logging.getLogger(__name__)

SYSTEM_CA_BUNDLE = Path("/etc/ssl/certs/ca-certificates.crt")
MAX_CHAIN_DEPTH = 10
AIA_TIMEOUT = 10.0
KEYCHAIN_TIMEOUT = 10.0


def _fingerprint(cert: x509.Certificate) -> bytes:
    return cert.fingerprint(hashes.SHA256())


def _load_pem_bundle(data: bytes, source: str) -> List[x509.Certificate]:
    certs: List[x509.Certificate] = []
    for cert_pem in split_pem_certificates(data):
        try:
            certs.append(load_x509(cert_pem, pem=True))
        except InvalidCertificateError as e:
            logger.debug(f"Skipping unparsable certificate in {source}: {e}")
    return certs


def _load_macos_keychain_certificates() -> List[x509.Certificate]:
    """Certificates from all macOS keychains, via the security command."""
    try:
        result = subprocess.run(
            ["security", "find-certificate", "-a", "-p"],
            capture_output=True,
            text=True,
            timeout=KEYCHAIN_TIMEOUT,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.debug("Timeout loading Keychain certificates")
        return []
    except OSError as e:
        logger.debug(f"security command not available: {e}")
        return []

    if result.returncode != 0 or not result.stdout:
        logger.debug(f"security find-certificate exited with {result.returncode}")
        return []
    return _load_pem_bundle(result.stdout.encode("utf-8"), "macOS Keychain")


class TrustStore:
    """Trust anchors available to chain building, indexed by subject."""

    def __init__(self, certificates: Iterable[x509.Certificate] = ()):
        self._by_subject: Dict[x509.Name, List[x509.Certificate]] = {}
        self._fingerprints: Set[bytes] = set()
        for cert in certificates:
            self.add(cert)

    def add(self, cert: x509.Certificate) -> None:
        fingerprint = _fingerprint(cert)
        if fingerprint in self._fingerprints:
            return
        self._fingerprints.add(fingerprint)
        self._by_subject.setdefault(cert.subject, []).append(cert)

    def issuers_for(self, cert: x509.Certificate) -> List[x509.Certificate]:
        """Anchors whose subject matches the certificate's issuer name."""
        return list(self._by_subject.get(cert.issuer, []))

    def contains(self, cert: x509.Certificate) -> bool:
        return _fingerprint(cert) in self._fingerprints

    def __len__(self) -> int:
        return len(self._fingerprints)

    @classmethod
    def load(cls, ca_bundle: Optional[Path] = None) -> "TrustStore":
        """
        Load trust anchors from certifi, the platform store and an optional extra bundle.

        Args:
            ca_bundle: Additional PEM bundle with trust anchors

        Returns:
            TrustStore

        Raises:
            InvalidBundlePathError: If ca_bundle cannot be read
        """
        store = cls()

        certifi_path = Path(certifi.where())
        for cert in _load_pem_bundle(certifi_path.read_bytes(), str(certifi_path)):
            store.add(cert)
        logger.debug(f"Loaded {len(store)} certificate(s) from certifi")

        if sys.platform == "win32":
            for store_name in ("ROOT", "CA"):
                for cert_bytes, encoding, _trust in ssl.enum_certificates(store_name):
                    if encoding != "x509_asn":
                        continue
                    try:
                        store.add(load_x509(cert_bytes, pem=False))
                    except InvalidCertificateError as e:
                        logger.debug(f"Skipping unparsable certificate in Windows {store_name} store: {e}")
        elif sys.platform == "darwin":
            keychain_certs = _load_macos_keychain_certificates()
            for cert in keychain_certs:
                store.add(cert)
            logger.debug(f"Loaded {len(keychain_certs)} certificate(s) from the macOS Keychain")
        elif os.name == "posix" and SYSTEM_CA_BUNDLE.exists():
            for cert in _load_pem_bundle(SYSTEM_CA_BUNDLE.read_bytes(), str(SYSTEM_CA_BUNDLE)):
                store.add(cert)

        if ca_bundle:
            try:
                data = ca_bundle.read_bytes()
            except OSError as e:
                raise InvalidBundlePathError(f"Could not read CA bundle {ca_bundle}: {e}") from e
            for cert in _load_pem_bundle(data, str(ca_bundle)):
                store.add(cert)
            logger.debug(f"Using additional CA bundle: {ca_bundle}")

        logger.debug(f"Trust store holds {len(store)} certificate(s)")
        return store


def ca_issuers_urls(cert: x509.Certificate) -> List[str]:
    """AIA caIssuers URLs of a certificate."""
    try:
        aia = cert.extensions.get_extension_for_class(x509.AuthorityInformationAccess).value
    except x509.ExtensionNotFound:
        return []
    return [
        description.access_location.value
        for description in aia
        if description.access_method == AuthorityInformationAccessOID.CA_ISSUERS
        and isinstance(description.access_location, x509.UniformResourceIdentifier)
    ]


def _parse_issuer_download(content: bytes) -> List[x509.Certificate]:
    """Parse an AIA download: DER, PEM or a PKCS#7 bundle (.p7c)."""
    try:
        return [load_x509(content, pem=False)]
    except InvalidCertificateError:
        pass
    if b"-----BEGIN CERTIFICATE-----" in content:
        return _load_pem_bundle(content, "AIA download")
    try:
        return pkcs7.load_der_pkcs7_certificates(content)
    except ValueError:
        return []


def fetch_issuer_candidates(cert: x509.Certificate, client: httpx.Client) -> List[x509.Certificate]:
    """
    Download issuer candidates via the certificate's AIA caIssuers URLs.

    Args:
        cert: Certificate whose issuer is missing
        client: HTTP client used for the downloads

    Returns:
        Parsed certificates from the first URL that yields any
    """
    for url in ca_issuers_urls(cert):
        try:
            logger.debug(f"Fetching issuer certificate from {url}")
            response = client.get(
                url,
                headers={
                    "User-Agent": f"ssl-trust/{__version__}",
                    "Accept": "application/pkix-cert,application/x-x509-ca-cert,application/pkcs7-mime,*/*",
                },
            )
        except httpx.TimeoutException:
            logger.debug(f"Timeout fetching certificate from {url}")
            continue
        except httpx.RequestError as e:
            logger.debug(f"Request error fetching certificate from {url}: {e}")
            continue

        if response.status_code != 200:
            logger.debug(f"Failed to fetch certificate from {url}: HTTP {response.status_code}")
            continue

        candidates = _parse_issuer_download(response.content)
        if candidates:
            return candidates
        logger.debug(f"Could not parse certificate downloaded from {url}")
    return []


def _find_issuer(cert: x509.Certificate, candidates: Iterable[x509.Certificate]) -> Optional[x509.Certificate]:
    for candidate in candidates:
        if candidate.subject != cert.issuer:
            continue
        try:
            cert.verify_directly_issued_by(candidate)
        except (ValueError, TypeError, InvalidSignature) as e:
            logger.debug(f"'{candidate.subject.rfc4514_string()}' did not sign '{cert.subject.rfc4514_string()}': {e}")
            continue
        return candidate
    return None


def build_chain(
    leaf_cert_der: bytes,
    presented_certs_der: Optional[List[bytes]] = None,
    trust_store: Optional[TrustStore] = None,
    fetch_missing: bool = True,
    http_client: Optional[httpx.Client] = None,
    max_depth: int = MAX_CHAIN_DEPTH,
) -> CertificateChain:
    """
    Build the chain leaf -> root for a leaf certificate.

    Issuers are looked up in the local trust store first, then among the
    certificates the server presented, then via AIA downloads. Every link
    is signature-checked. Building ends at a truly self-signed certificate;
    a top that is not in the trust store is reported via ``trusted``.

    Args:
        leaf_cert_der: Leaf certificate (DER)
        presented_certs_der: Certificates sent by the server (DER, any order, may include the leaf)
        trust_store: Trust anchors (loaded from the platform when omitted)
        fetch_missing: Download missing issuers via AIA
        http_client: Client for AIA downloads (created on demand when omitted)
        max_depth: Maximum number of issuers above the leaf

    Returns:
        CertificateChain

    Raises:
        ChainBuildError: If no chain up to a self-signed certificate can be built
        InvalidCertificateError: If the leaf cannot be parsed
    """
    leaf = load_x509(leaf_cert_der, pem=False)
    leaf_fingerprint = _fingerprint(leaf)

    presented: List[x509.Certificate] = []
    for cert_der in presented_certs_der or []:
        try:
            cert = load_x509(cert_der, pem=False)
        except InvalidCertificateError as e:
            logger.warning(f"Error parsing presented certificate: {e}")
            continue
        if _fingerprint(cert) != leaf_fingerprint:
            presented.append(cert)

    if trust_store is None:
        trust_store = TrustStore.load()

    chain: List[x509.Certificate] = [leaf]
    seen = {leaf_fingerprint}
    fetched_count = 0
    own_client: Optional[httpx.Client] = None
    current = leaf

    try:
        while not is_truly_self_signed(current):
            if len(chain) > max_depth:
                raise ChainBuildError(f"Certificate chain exceeds maximum depth of {max_depth}")

            issuer_name = current.issuer.rfc4514_string()
            issuer = _find_issuer(current, trust_store.issuers_for(current))
            if issuer is None:
                issuer = _find_issuer(current, presented)
            if issuer is None and fetch_missing:
                if http_client is None and own_client is None:
                    own_client = httpx.Client(timeout=AIA_TIMEOUT, follow_redirects=True)
                issuer = _find_issuer(current, fetch_issuer_candidates(current, http_client or own_client))
                if issuer is not None:
                    fetched_count += 1
                    logger.debug(f"Fetched issuer '{issuer_name}' via AIA")

            if issuer is None:
                raise ChainBuildError(
                    f"Issuer '{issuer_name}' of '{current.subject.rfc4514_string()}' was not found "
                    f"in the presented chain, the local trust store{' or via AIA' if fetch_missing else ''}"
                )

            issuer_fingerprint = _fingerprint(issuer)
            if issuer_fingerprint in seen:
                raise ChainBuildError(f"Circular reference in certificate chain at '{issuer_name}'")
            seen.add(issuer_fingerprint)
            chain.append(issuer)
            logger.debug(f"Chain link: '{current.subject.rfc4514_string()}' issued by '{issuer_name}'")
            current = issuer
    finally:
        if own_client is not None:
            own_client.close()

    trusted = trust_store.contains(current)
    root_subject = current.subject.rfc4514_string()
    if trusted:
        logger.debug(f"Root CA '{root_subject}' found in trust store")
    else:
        logger.warning(f"Root CA '{root_subject}' is not in the local trust store")

    return CertificateChain(
        certificates=[certificate_from_x509(cert) for cert in chain],
        trusted=trusted,
        fetched_via_aia=fetched_count,
    )

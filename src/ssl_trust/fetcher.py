"""Fetch the root certificate a web server chains up to."""

import logging
from typing import Optional

from ssl_trust.certificate import parse_certificate
from ssl_trust.chain import TrustStore, build_chain
from ssl_trust.config import TrustSettings
from ssl_trust.exceptions import ChainBuildError
from ssl_trust.models import Certificate, CertificateChain
from ssl_trust.network import capture_server_certificates

logger = logging.getLogger(__name__)


def fetch_certificate_chain(
    url: str,
    trust_store: Optional[TrustStore] = None,
    settings: Optional[TrustSettings] = None,
) -> CertificateChain:
    """
    Connect to a URL and build the chain of the certificate it presents.

    Args:
        url: Absolute http or https URL
        trust_store: Trust anchors (loaded per settings when omitted)
        settings: Runtime settings

    Returns:
        CertificateChain ordered leaf -> root

    Raises:
        InvalidUrlError, NetworkUnreachableError, ConnectionFailedError, ChainBuildError
    """
    settings = settings or TrustSettings()

    leaf_cert_der, presented_certs_der = capture_server_certificates(url)
    if not leaf_cert_der:
        raise ChainBuildError(f"{url} did not present a certificate")

    leaf = parse_certificate(leaf_cert_der)
    logger.info(f"Server certificate: {leaf.subject} (issuer: {leaf.issuer})")

    if trust_store is None:
        trust_store = TrustStore.load(settings.extra_ca_bundle)

    chain = build_chain(
        leaf_cert_der,
        presented_certs_der,
        trust_store=trust_store,
        fetch_missing=settings.fetch_missing_issuers,
    )
    if not chain.certificates:
        raise ChainBuildError(f"Chain building for {url} produced no certificates")
    logger.debug(f"Built chain of {len(chain)} certificate(s) for {url}")
    return chain


def fetch_root_certificate(
    url: str,
    trust_store: Optional[TrustStore] = None,
    settings: Optional[TrustSettings] = None,
) -> Certificate:
    """
    Return the topmost certificate of the chain the server at ``url`` presents.

    See fetch_certificate_chain() for arguments and errors.
    """
    root = fetch_certificate_chain(url, trust_store=trust_store, settings=settings).root
    logger.info(f"Root certificate: {root.subject}")
    return root

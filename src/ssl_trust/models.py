"""Data models for certificates, chains and install results."""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ssl_trust.config import GIT_CA_CONFIG_KEY
from ssl_trust.exceptions import ChainBuildError


@dataclass(frozen=True)
class Certificate:
    """An immutable X.509 certificate."""

    der: bytes
    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str

    @property
    def is_self_issued(self) -> bool:
        """True if subject and issuer names match (signature not checked)."""
        return self.subject == self.issuer

    def to_pem(self) -> str:
        """PEM block for this certificate, without a trailing newline."""
        from ssl_trust.certificate import der_to_pem

        return der_to_pem(self.der)


@dataclass
class CertificateChain:
    """Certificates ordered leaf -> root, each signed by the next one."""

    certificates: List[Certificate]
    trusted: bool = False  # Top certificate is an anchor of the local trust store
    fetched_via_aia: int = 0  # Issuers downloaded via AIA caIssuers URLs

    @property
    def leaf(self) -> Certificate:
        if not self.certificates:
            raise ChainBuildError("Certificate chain is empty")
        return self.certificates[0]

    @property
    def root(self) -> Certificate:
        if not self.certificates:
            raise ChainBuildError("Certificate chain is empty")
        return self.certificates[-1]

    def __len__(self) -> int:
        return len(self.certificates)


@dataclass
class InstallResult:
    """Outcome of a successful install."""

    bundle_path: Path
    certificate: Certificate
    copied_from: Optional[Path] = None  # Shipped bundle the copy was made from
    config_key: str = GIT_CA_CONFIG_KEY

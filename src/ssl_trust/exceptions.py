"""Exception hierarchy for certificate fetching and installation."""

from pathlib import Path
from typing import Optional


class TrustError(Exception):
    """Base class for all ssl-trust errors."""

    exit_code: int = 1
    # Only errors raised after a completed TLS handshake may set this. The
    # fetcher swallows them and keeps the certificate captured during the
    # handshake.
    recoverable_during_handshake: bool = False


class InvalidUrlError(TrustError):
    """URL is not an absolute http(s) URL with a host."""

    exit_code = 3


class NetworkUnreachableError(TrustError):
    """Host could not be resolved or reached before the handshake."""

    exit_code = 4


class ConnectionFailedError(TrustError):
    """TCP connection was established but the TLS handshake failed."""

    exit_code = 5


class RequestFailedError(TrustError):
    """The request sent after the handshake failed or returned a non-2xx status."""

    exit_code = 5
    recoverable_during_handshake = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChainBuildError(TrustError):
    """No chain up to a self-signed certificate could be built."""

    exit_code = 6


class ToolNotFoundError(TrustError):
    """git's shipped CA bundle was not found in any known location."""

    exit_code = 7


class InvalidBundlePathError(TrustError):
    """Supplied trust bundle path is missing, has a wrong extension or is not PEM."""

    exit_code = 8


class FileWriteError(TrustError):
    """Copying or appending to the trust bundle failed."""

    exit_code = 9


class ConfigWriteError(TrustError):
    """
    git config could not be updated.

    The bundle file has already been modified when this is raised; the
    append is not rolled back. ``bundle_path`` tells the caller which file
    to point git at manually.
    """

    exit_code = 10

    def __init__(self, message: str, bundle_path: Path, bundle_modified: bool = True):
        super().__init__(message)
        self.bundle_path = bundle_path
        self.bundle_modified = bundle_modified


class InvalidCertificateError(TrustError):
    """Certificate bytes or file could not be parsed."""

    exit_code = 11

"""Runtime settings."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_USER_BUNDLE_DIR = Path.home() / ".ssl"
DEFAULT_BUNDLE_EXTENSIONS: Tuple[str, ...] = (".crt", ".pem", ".cer")
DEFAULT_GIT_EXECUTABLE = "git"
GIT_CA_CONFIG_KEY = "http.sslCAInfo"


@dataclass
class TrustSettings:
    """
    Settings shared by the fetcher and the installer.

    Built from CLI options; library callers can pass their own instance.
    """

    user_bundle_dir: Path = field(default_factory=lambda: DEFAULT_USER_BUNDLE_DIR)
    bundle_extensions: Tuple[str, ...] = DEFAULT_BUNDLE_EXTENSIONS
    git_executable: str = DEFAULT_GIT_EXECUTABLE
    extra_ca_bundle: Optional[Path] = None  # Additional trust anchors for chain building
    fetch_missing_issuers: bool = True  # Download missing issuers via AIA

    def accepts_bundle_extension(self, path: Path) -> bool:
        return path.suffix.lower() in {ext.lower() for ext in self.bundle_extensions}

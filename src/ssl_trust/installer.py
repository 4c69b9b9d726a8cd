"""Install a certificate into git's CA bundle and point git at it."""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Union

from ssl_trust.certificate import is_valid_pem_bundle
from ssl_trust.config import GIT_CA_CONFIG_KEY, TrustSettings
from ssl_trust.exceptions import (
    ConfigWriteError,
    FileWriteError,
    InvalidBundlePathError,
    ToolNotFoundError,
)
from ssl_trust.models import Certificate, InstallResult

logger = logging.getLogger(__name__)

# git for Windows ships its CA bundle below the install directory
GIT_BUNDLE_64 = Path("Git") / "mingw64" / "ssl" / "certs" / "ca-bundle.crt"
GIT_BUNDLE_32 = Path("Git") / "mingw32" / "ssl" / "certs" / "ca-bundle.crt"

CommandRunner = Callable[..., subprocess.CompletedProcess]


class InstallationLocator(Protocol):
    """Finds candidate CA bundles shipped with git, most preferred first."""

    def candidate_bundle_paths(self) -> List[Path]:
        ...


class GitInstallationLocator:
    """Probes the 64-bit, then the 32-bit git for Windows install directory."""

    def __init__(
        self,
        program_files: Optional[Union[str, Path]] = None,
        program_files_x86: Optional[Union[str, Path]] = None,
    ):
        self.program_files = Path(program_files or os.environ.get("ProgramFiles", r"C:\Program Files"))
        self.program_files_x86 = Path(
            program_files_x86 or os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
        )

    def known_bundle_paths(self) -> List[Path]:
        return [self.program_files / GIT_BUNDLE_64, self.program_files_x86 / GIT_BUNDLE_32]

    def candidate_bundle_paths(self) -> List[Path]:
        found = [path for path in self.known_bundle_paths() if path.is_file()]
        logger.debug(f"git CA bundle candidates: {[str(path) for path in found]}")
        return found


class StaticInstallationLocator:
    """Returns the existing files among a fixed list of paths."""

    def __init__(self, paths: Sequence[Union[str, Path]]):
        self.paths = [Path(path) for path in paths]

    def candidate_bundle_paths(self) -> List[Path]:
        return [path for path in self.paths if path.is_file()]


class GitConfigurator:
    """Writes git's global http.sslCAInfo setting."""

    def __init__(self, git_executable: str = "git", runner: Optional[CommandRunner] = None):
        self.git_executable = git_executable
        self.runner = runner or subprocess.run

    def command_for(self, bundle_path: Path) -> List[str]:
        return [self.git_executable, "config", "--global", GIT_CA_CONFIG_KEY, str(bundle_path)]

    def set_ca_bundle(self, bundle_path: Path) -> None:
        """
        Point git's TLS verification at a CA bundle for the current user.

        Raises:
            ConfigWriteError: If git is missing or the command fails
        """
        cmd = self.command_for(bundle_path)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = self.runner(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ConfigWriteError(f"Could not run {self.git_executable}: {e}", bundle_path) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ConfigWriteError(
                f"git config exited with {result.returncode}: {stderr or 'no error output'}",
                bundle_path,
            )
        logger.info(f"git {GIT_CA_CONFIG_KEY} set to {bundle_path}")


def validate_bundle_path(bundle_path: Union[str, Path], settings: TrustSettings) -> Path:
    """
    Check a caller-supplied trust bundle before any mutation.

    Returns:
        Absolute path of the bundle

    Raises:
        InvalidBundlePathError: If the file is missing, has an unknown extension or is not PEM
    """
    path = Path(bundle_path).expanduser()
    if not path.is_file():
        raise InvalidBundlePathError(f"Trust bundle {path} does not exist or is not a file")
    if not settings.accepts_bundle_extension(path):
        raise InvalidBundlePathError(
            f"Trust bundle {path} must have one of the extensions {', '.join(settings.bundle_extensions)}"
        )
    _check_pem_container(path)
    return path.resolve()


def _check_pem_container(path: Path) -> None:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidBundlePathError(f"Could not read trust bundle {path}: {e}") from e
    if not is_valid_pem_bundle(text):
        raise InvalidBundlePathError(f"Trust bundle {path} is not a well-formed PEM file")


def locate_default_bundle(locator: InstallationLocator) -> Path:
    """
    Raises:
        ToolNotFoundError: If no shipped bundle exists
    """
    candidates = locator.candidate_bundle_paths()
    if not candidates:
        raise ToolNotFoundError("git CA bundle not found in any known install location; pass a bundle path")
    return candidates[0]


def copy_default_bundle(source: Path, user_bundle_dir: Path) -> Path:
    """
    Copy git's shipped bundle into a user-writable directory.

    An existing copy is overwritten. The shipped bundle is never modified.

    Raises:
        InvalidBundlePathError: If the shipped bundle is not PEM
        FileWriteError: If the copy fails
    """
    _check_pem_container(source)
    target = Path(user_bundle_dir).expanduser() / source.name
    if target.exists():
        logger.warning(f"Overwriting existing bundle copy {target}")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
    except OSError as e:
        raise FileWriteError(f"Could not copy {source} to {target}: {e}") from e
    logger.info(f"Copied {source} to {target}")
    return target.resolve()


def append_certificate(bundle_path: Path, certificate: Certificate) -> None:
    """
    Append a newline and the certificate's PEM block to a bundle.

    No newline is written after the footer. Appending the same
    certificate twice produces two blocks.

    Raises:
        FileWriteError: If the file cannot be written
    """
    try:
        with open(bundle_path, "a", encoding="utf-8", newline="") as f:
            f.write("\n" + certificate.to_pem())
    except OSError as e:
        raise FileWriteError(f"Could not append certificate to {bundle_path}: {e}") from e
    logger.info(f"Appended '{certificate.subject}' to {bundle_path}")


def install_certificate(
    certificate: Certificate,
    bundle_path: Optional[Union[str, Path]] = None,
    *,
    locator: Optional[InstallationLocator] = None,
    configurator: Optional[GitConfigurator] = None,
    settings: Optional[TrustSettings] = None,
) -> InstallResult:
    """
    Append a certificate to a trust bundle and make git use that bundle.

    Without ``bundle_path`` git's shipped bundle is copied to
    ``settings.user_bundle_dir`` and the copy is modified. The append is
    not rolled back when the git config write fails.

    Args:
        certificate: Certificate to install
        bundle_path: Existing bundle to append to
        locator: Finds git's shipped bundle (git for Windows locations by default)
        configurator: Writes the git setting
        settings: Runtime settings

    Returns:
        InstallResult

    Raises:
        InvalidBundlePathError: Supplied bundle unusable (nothing modified)
        ToolNotFoundError: No bundle supplied and git not found (nothing modified)
        FileWriteError: Copy or append failed
        ConfigWriteError: Bundle modified but git config not updated
    """
    settings = settings or TrustSettings()
    locator = locator or GitInstallationLocator()
    configurator = configurator or GitConfigurator(settings.git_executable)

    copied_from: Optional[Path] = None
    if bundle_path is not None:
        target = validate_bundle_path(bundle_path, settings)
    else:
        copied_from = locate_default_bundle(locator)
        logger.debug(f"Using git CA bundle {copied_from}")
        target = copy_default_bundle(copied_from, settings.user_bundle_dir)

    append_certificate(target, certificate)
    configurator.set_ca_bundle(target)

    return InstallResult(bundle_path=target, certificate=certificate, copied_from=copied_from)

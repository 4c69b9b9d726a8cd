"""Tests for installing a certificate into git's trust bundle."""

import subprocess
from unittest.mock import Mock

import pytest

from conftest import der, pem
from ssl_trust.certificate import load_x509, parse_certificate, split_pem_certificates
from ssl_trust.config import TrustSettings
from ssl_trust.exceptions import (
    ConfigWriteError,
    FileWriteError,
    InvalidBundlePathError,
    ToolNotFoundError,
)
from ssl_trust.installer import (
    GIT_BUNDLE_32,
    GIT_BUNDLE_64,
    GitConfigurator,
    GitInstallationLocator,
    StaticInstallationLocator,
    append_certificate,
    install_certificate,
)


def _runner(returncode=0, stderr=""):
    return Mock(return_value=subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr))


@pytest.fixture
def root_certificate(pki):
    return parse_certificate(der(pki.root))


@pytest.fixture
def settings(tmp_path):
    return TrustSettings(user_bundle_dir=tmp_path / "user-ssl")


@pytest.fixture
def shipped_bundle(tmp_path, pki):
    """git for Windows layout with only the 64-bit bundle installed."""
    program_files = tmp_path / "Program Files"
    path = program_files / GIT_BUNDLE_64
    path.parent.mkdir(parents=True)
    path.write_bytes(pem(pki.intermediate))
    return path


def test_install_into_supplied_bundle_appends_exact_block(bundle_file, root_certificate, settings):
    original = bundle_file.read_bytes()
    runner = _runner()

    result = install_certificate(
        root_certificate,
        bundle_file,
        locator=StaticInstallationLocator([]),
        configurator=GitConfigurator(runner=runner),
        settings=settings,
    )

    content = bundle_file.read_bytes()
    assert content == original + b"\n" + root_certificate.to_pem().encode("ascii")
    assert content.startswith(original)
    assert content.endswith(b"-----END CERTIFICATE-----")
    assert result.bundle_path == bundle_file.resolve()
    assert result.copied_from is None
    # prior entries still parse, new block is the installed certificate
    blocks = split_pem_certificates(content)
    assert len(blocks) == 2
    assert der(load_x509(blocks[-1], pem=True)) == root_certificate.der
    runner.assert_called_once()
    assert runner.call_args[0][0] == ["git", "config", "--global", "http.sslCAInfo", str(bundle_file.resolve())]


def test_install_twice_appends_twice(bundle_file, root_certificate, settings):
    configurator = GitConfigurator(runner=_runner())

    install_certificate(root_certificate, bundle_file, configurator=configurator, settings=settings)
    install_certificate(root_certificate, bundle_file, configurator=configurator, settings=settings)

    blocks = split_pem_certificates(bundle_file.read_bytes())
    assert len(blocks) == 3
    assert blocks[1] == blocks[2]


def test_missing_bundle_path_has_no_side_effects(tmp_path, root_certificate, settings):
    runner = _runner()
    missing = tmp_path / "missing.crt"

    with pytest.raises(InvalidBundlePathError, match="does not exist"):
        install_certificate(root_certificate, missing, configurator=GitConfigurator(runner=runner), settings=settings)

    assert not missing.exists()
    assert not settings.user_bundle_dir.exists()
    runner.assert_not_called()


def test_wrong_extension_has_no_side_effects(tmp_path, pki, root_certificate, settings):
    bundle = tmp_path / "bundle.txt"
    bundle.write_bytes(pem(pki.intermediate))
    original = bundle.read_bytes()
    runner = _runner()

    with pytest.raises(InvalidBundlePathError, match="extensions"):
        install_certificate(root_certificate, bundle, configurator=GitConfigurator(runner=runner), settings=settings)

    assert bundle.read_bytes() == original
    runner.assert_not_called()


def test_extension_check_is_case_insensitive(tmp_path, pki, root_certificate, settings):
    bundle = tmp_path / "BUNDLE.PEM"
    bundle.write_bytes(pem(pki.intermediate))

    install_certificate(root_certificate, bundle, configurator=GitConfigurator(runner=_runner()), settings=settings)

    assert len(split_pem_certificates(bundle.read_bytes())) == 2


def test_malformed_bundle_is_rejected(tmp_path, root_certificate, settings):
    bundle = tmp_path / "broken.crt"
    bundle.write_text("-----BEGIN CERTIFICATE-----\nAAAA\n", encoding="ascii")
    runner = _runner()

    with pytest.raises(InvalidBundlePathError, match="well-formed"):
        install_certificate(root_certificate, bundle, configurator=GitConfigurator(runner=runner), settings=settings)

    assert bundle.read_text(encoding="ascii") == "-----BEGIN CERTIFICATE-----\nAAAA\n"
    runner.assert_not_called()


def test_tool_not_found_has_no_side_effects(tmp_path, root_certificate, settings):
    runner = _runner()
    locator = GitInstallationLocator(program_files=tmp_path / "pf", program_files_x86=tmp_path / "pf86")

    with pytest.raises(ToolNotFoundError):
        install_certificate(root_certificate, locator=locator, configurator=GitConfigurator(runner=runner), settings=settings)

    assert not settings.user_bundle_dir.exists()
    runner.assert_not_called()


def test_default_bundle_is_copied_and_original_untouched(tmp_path, shipped_bundle, root_certificate, settings):
    shipped_content = shipped_bundle.read_bytes()
    runner = _runner()
    locator = GitInstallationLocator(program_files=tmp_path / "Program Files", program_files_x86=tmp_path / "pf86")

    result = install_certificate(
        root_certificate, locator=locator, configurator=GitConfigurator(runner=runner), settings=settings
    )

    copy = settings.user_bundle_dir / "ca-bundle.crt"
    assert result.bundle_path == copy.resolve()
    assert result.copied_from == shipped_bundle
    assert shipped_bundle.read_bytes() == shipped_content
    assert copy.read_bytes() == shipped_content + b"\n" + root_certificate.to_pem().encode("ascii")
    assert runner.call_args[0][0][-1] == str(copy.resolve())


def test_64_bit_bundle_preferred_over_32_bit(tmp_path, pki):
    program_files = tmp_path / "pf"
    program_files_x86 = tmp_path / "pf86"
    for path in (program_files / GIT_BUNDLE_64, program_files_x86 / GIT_BUNDLE_32):
        path.parent.mkdir(parents=True)
        path.write_bytes(pem(pki.root))

    locator = GitInstallationLocator(program_files=program_files, program_files_x86=program_files_x86)

    assert locator.candidate_bundle_paths() == [
        program_files / GIT_BUNDLE_64,
        program_files_x86 / GIT_BUNDLE_32,
    ]


def test_32_bit_bundle_used_when_64_bit_missing(tmp_path, pki, root_certificate, settings):
    program_files_x86 = tmp_path / "pf86"
    shipped = program_files_x86 / GIT_BUNDLE_32
    shipped.parent.mkdir(parents=True)
    shipped.write_bytes(pem(pki.intermediate))
    locator = GitInstallationLocator(program_files=tmp_path / "pf", program_files_x86=program_files_x86)

    result = install_certificate(
        root_certificate, locator=locator, configurator=GitConfigurator(runner=_runner()), settings=settings
    )

    assert result.copied_from == shipped


def test_config_failure_keeps_appended_bundle(bundle_file, root_certificate, settings):
    original = bundle_file.read_bytes()
    runner = _runner(returncode=255, stderr="error: could not lock config file")

    with pytest.raises(ConfigWriteError, match="could not lock") as exc_info:
        install_certificate(root_certificate, bundle_file, configurator=GitConfigurator(runner=runner), settings=settings)

    assert exc_info.value.bundle_modified
    assert exc_info.value.bundle_path == bundle_file.resolve()
    # no rollback
    assert bundle_file.read_bytes() == original + b"\n" + root_certificate.to_pem().encode("ascii")


def test_git_missing_is_config_write_error(bundle_file, root_certificate, settings):
    runner = Mock(side_effect=FileNotFoundError("git"))

    with pytest.raises(ConfigWriteError, match="Could not run git"):
        install_certificate(root_certificate, bundle_file, configurator=GitConfigurator(runner=runner), settings=settings)


def test_append_failure_is_file_write_error(tmp_path, root_certificate):
    directory = tmp_path / "not-a-file.crt"
    directory.mkdir()

    with pytest.raises(FileWriteError):
        append_certificate(directory, root_certificate)


def test_custom_git_executable(bundle_file, root_certificate, tmp_path):
    runner = _runner()
    settings = TrustSettings(user_bundle_dir=tmp_path / "u", git_executable="/opt/git/bin/git")

    install_certificate(
        root_certificate,
        bundle_file,
        configurator=GitConfigurator(settings.git_executable, runner=runner),
        settings=settings,
    )

    assert runner.call_args[0][0][0] == "/opt/git/bin/git"

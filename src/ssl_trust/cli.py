"""CLI entry point using Typer."""

import logging
import shlex
import sys
from pathlib import Path
from typing import Optional

import typer

from ssl_trust.certificate import load_certificate_file
from ssl_trust.config import DEFAULT_USER_BUNDLE_DIR, TrustSettings
from ssl_trust.exceptions import ConfigWriteError, FileWriteError, TrustError
from ssl_trust.fetcher import fetch_certificate_chain
from ssl_trust.installer import GitConfigurator, install_certificate
from ssl_trust.models import Certificate
from ssl_trust.reporter import (
    generate_install_summary,
    generate_json_report,
    generate_text_report,
    set_color_output,
)

app = typer.Typer(help="Fetch a server's root certificate and install it into git's trust bundle")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)


def _set_verbose(verbose: bool) -> None:
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("ssl_trust").setLevel(logging.DEBUG)


def _fail(error: TrustError) -> None:
    logger.error(str(error))
    sys.exit(error.exit_code)


@app.command("fetch-root-cert")
def fetch_root_cert(
    url: str = typer.Argument(..., help="Server URL (e.g., https://example.com)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Also write the root certificate (PEM) to this file"),
    json_output: bool = typer.Option(False, "--json", "-j", help="JSON output"),
    show_chain: bool = typer.Option(False, "--show-chain", help="Print the built chain to stderr"),
    ca_bundle: Optional[Path] = typer.Option(None, "--ca-bundle", help="Additional trust anchors (PEM)"),
    no_aia: bool = typer.Option(False, "--no-aia", help="Do not download missing issuers via AIA"),
    color: bool = typer.Option(True, "--color/--no-color", help="Enable/disable colored output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Print the root certificate the server at URL chains up to.
    """
    _set_verbose(verbose)
    set_color_output(color)
    settings = TrustSettings(extra_ca_bundle=ca_bundle, fetch_missing_issuers=not no_aia)

    try:
        chain = fetch_certificate_chain(url, settings=settings)
    except TrustError as e:
        _fail(e)
        return

    if show_chain:
        typer.echo(generate_text_report(chain), err=True)

    root_pem = chain.root.to_pem()
    if output:
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(root_pem + "\n", encoding="ascii")
        except OSError as e:
            _fail(FileWriteError(f"Could not write root certificate to {output}: {e}"))
            return
        logger.info(f"Root certificate saved to {output}")

    if json_output:
        typer.echo(generate_json_report(chain))
    else:
        typer.echo(root_pem)
    sys.exit(0)


@app.command("install-cert")
def install_cert(
    cert: Optional[Path] = typer.Option(None, "--cert", "-c", help="Certificate file to install (PEM or DER)"),
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Fetch the root certificate of this URL and install it"),
    bundle_path: Optional[Path] = typer.Option(
        None, "--bundle-path", "-b", help="Existing trust bundle to append to (default: copy of git's bundle)"
    ),
    user_bundle_dir: Path = typer.Option(
        DEFAULT_USER_BUNDLE_DIR, "--user-bundle-dir", help="Directory for the copy of git's bundle"
    ),
    git_executable: str = typer.Option("git", "--git", help="git executable"),
    ca_bundle: Optional[Path] = typer.Option(None, "--ca-bundle", help="Additional trust anchors (PEM) for --url"),
    no_aia: bool = typer.Option(False, "--no-aia", help="Do not download missing issuers via AIA (--url)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Append a certificate to a trust bundle and set git's http.sslCAInfo to it.
    """
    _set_verbose(verbose)
    if (cert is None) == (url is None):
        raise typer.BadParameter("Pass exactly one of --cert or --url")

    settings = TrustSettings(
        user_bundle_dir=user_bundle_dir,
        git_executable=git_executable,
        extra_ca_bundle=ca_bundle,
        fetch_missing_issuers=not no_aia,
    )

    try:
        certificate: Certificate
        if cert is not None:
            certificate = load_certificate_file(cert)
        else:
            certificate = fetch_certificate_chain(url, settings=settings).root
        result = install_certificate(certificate, bundle_path, settings=settings)
    except ConfigWriteError as e:
        logger.error(f"Certificate was appended to {e.bundle_path}, but git was not reconfigured: {e}")
        command = GitConfigurator(settings.git_executable).command_for(e.bundle_path)
        logger.error(f"Run manually: {shlex.join(command)}")
        sys.exit(e.exit_code)
    except TrustError as e:
        _fail(e)
        return

    typer.echo(generate_install_summary(result))
    sys.exit(0)


if __name__ == "__main__":
    app()

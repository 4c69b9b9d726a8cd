"""Report generation (text and JSON)."""

import json
from dataclasses import asdict
from datetime import datetime
from io import StringIO
from typing import Any, Dict, List

from rich.console import Console

from ssl_trust.models import Certificate, CertificateChain, InstallResult

# Global flag for colored output
_use_color = True


def set_color_output(enabled: bool) -> None:
    """Enable or disable colored output."""
    global _use_color
    _use_color = enabled


def _format_trust(trusted: bool) -> str:
    """Format trust status with visual indicator."""
    label = "TRUSTED ✓" if trusted else "NOT IN LOCAL TRUST STORE ⚠"
    if not _use_color:
        return label
    output = StringIO()
    console = Console(file=output, force_terminal=True, color_system="standard", width=1000)
    console.print(f"[{'green' if trusted else 'yellow'}]{label}[/]", end="")
    return output.getvalue().strip()


def _certificate_lines(cert: Certificate, role: str) -> List[str]:
    return [
        f"  [{role}] {cert.subject}",
        f"    Issuer:      {cert.issuer}",
        f"    Serial:      {cert.serial_number}",
        f"    Valid:       {cert.not_before:%Y-%m-%d} .. {cert.not_after:%Y-%m-%d}",
        f"    SHA-256:     {cert.fingerprint_sha256}",
    ]


def generate_text_report(chain: CertificateChain) -> str:
    """
    Generate human-readable chain summary.

    Args:
        chain: CertificateChain to report

    Returns:
        Formatted text report
    """
    lines = ["=" * 70, "Certificate Chain", "=" * 70]
    last = len(chain.certificates) - 1
    for index, cert in enumerate(chain.certificates):
        if index == last:
            role = "Root"
        elif index == 0:
            role = "Leaf"
        else:
            role = "Intermediate"
        lines.extend(_certificate_lines(cert, role))
    lines.append("")
    lines.append(f"  {chain.leaf.subject} chains up to {chain.root.subject} ({len(chain)} certificate(s))")
    if chain.fetched_via_aia:
        lines.append(f"  {chain.fetched_via_aia} issuer certificate(s) were fetched via AIA")
    lines.append(f"  Root status: {_format_trust(chain.trusted)}")
    lines.append("=" * 70)
    return "\n".join(lines)


def _certificate_dict(cert: Certificate) -> Dict[str, Any]:
    data = asdict(cert)
    data.pop("der")
    return data


def _serialize_datetime(obj: Any) -> str:
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Type {type(obj)} not serializable")


def generate_json_report(chain: CertificateChain) -> str:
    """
    Generate JSON report of a chain, including the root's PEM.

    Args:
        chain: CertificateChain to report

    Returns:
        JSON string
    """
    data = {
        "chain": [_certificate_dict(cert) for cert in chain.certificates],
        "trusted": chain.trusted,
        "fetched_via_aia": chain.fetched_via_aia,
        "root": _certificate_dict(chain.root),
        "root_pem": chain.root.to_pem(),
    }
    return json.dumps(data, indent=2, default=_serialize_datetime)


def generate_install_summary(result: InstallResult) -> str:
    lines = [f"Installed '{result.certificate.subject}' into {result.bundle_path}"]
    if result.copied_from:
        lines.append(f"  (copied from {result.copied_from})")
    lines.append(f"git {result.config_key} -> {result.bundle_path}")
    return "\n".join(lines)

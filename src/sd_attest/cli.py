"""
Command-line interface for sd-attest.

Usage:
    sd-attest inspect token.txt
    sd-attest verify token.txt --issuer did:web:issuer.example
    cat token.txt | sd-attest verify -
    sd-attest merkle-root sha-256:abc... sha-256:def...
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from sd_attest.config import Settings
from sd_attest.did_resolver import DIDResolver
from sd_attest.errors import AttestError
from sd_attest.issuers import IssuerClass, IssuerPolicy, IssuerRegistry
from sd_attest.merkle import compute_merkle_root
from sd_attest.token import SelectiveDisclosureToken, parse_token
from sd_attest.verifier import SDJWTVerifier, VerificationOutcome


console = Console()


def load_token(source: str) -> str:
    """Load a token from a file, stdin, or the argument itself.

    Args:
        source: File path, "-" for stdin, or the compact token.
    """
    if source == "-":
        return sys.stdin.read().strip()

    # os.path.isfile tolerates arguments too long to be paths
    if os.path.isfile(source):
        return Path(source).read_text(encoding="utf-8").strip()

    return source.strip()


def _read_token(source: str) -> str:
    """load_token for commands: an unreadable source is a usage error (exit 2)."""
    try:
        return load_token(source)
    except (OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Error:[/] Cannot read {source}: {e}")
        sys.exit(2)


def _format_time(timestamp: int | None) -> str:
    if not timestamp:
        return "[dim]none[/]"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_token(token: SelectiveDisclosureToken) -> None:
    """Print the decoded contents of a token."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Holder", token.holder_id or "[dim]none[/]")
    table.add_row("Issuer", token.issuer_id or "[dim]none[/]")
    table.add_row("Credential", token.credential_reference or "[dim]none[/]")
    table.add_row("Algorithm", token.algorithm or "[dim]none[/]")
    table.add_row("Issued", _format_time(token.issued_at))
    table.add_row("Expiry", _format_time(token.expiry))
    table.add_row("Merkle Root", compute_merkle_root(token.disclosure_digests) or "[dim]empty[/]")

    console.print(Panel(table, title="Selective-Disclosure Token", border_style="blue"))

    claims = token.disclosed_claims()
    if claims:
        disclosures = Table(title="Disclosures")
        disclosures.add_column("Claim")
        disclosures.add_column("Value")
        disclosures.add_column("Digest", style="dim")
        for claim in claims:
            disclosures.add_row(str(claim.name), str(claim.value), claim.digest())
        console.print(disclosures)


def format_outcome(outcome: VerificationOutcome) -> None:
    """Format and print a verification outcome."""
    if outcome.is_valid:
        status_icon = "[bold green]VALID[/]"
        panel_style = "green"
    else:
        status_icon = "[bold red]INVALID[/]"
        panel_style = "red"

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", status_icon)

    if outcome.is_valid:
        table.add_row("Holder", outcome.holder_id)
        table.add_row("Issuer", outcome.issuer_id)
        table.add_row("Credential", outcome.credential_reference or "[dim]none[/]")
        table.add_row("Merkle Root", outcome.merkle_root or "[dim]empty[/]")
        table.add_row("Expiry", _format_time(outcome.expiry))
    elif outcome.error is not None:
        table.add_row("Error", f"[red]{type(outcome.error).__name__}[/]")
        table.add_row("Reason", outcome.reason)

    console.print(Panel(table, title="Verification Result", border_style=panel_style))


def _registry(issuers: tuple[str, ...]) -> IssuerRegistry:
    if not issuers:
        return IssuerRegistry.from_settings(Settings.from_env())
    return IssuerRegistry(
        IssuerPolicy(
            key=f"issuer{i}",
            did=did,
            issuer_class=IssuerClass.SINGLETON,
            schema_name="",
            schema_version=1,
            credential_type="",
        )
        for i, did in enumerate(issuers)
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log verification steps")
@click.version_option(package_name="sd-attest")
def main(verbose: bool) -> None:
    """Verify selective-disclosure credential tokens."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )


@main.command()
@click.argument("source", required=True)
def inspect(source: str) -> None:
    """Decode a token without verifying it.

    SOURCE is a file path, "-" for stdin, or the token itself.
    """
    token = _read_token(source)
    try:
        format_token(parse_token(token))
    except AttestError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(2)


@main.command()
@click.argument("source", required=True)
@click.option(
    "--issuer",
    "issuers",
    multiple=True,
    help="Accepted issuer DID (repeatable); defaults to the configured issuers",
)
@click.option(
    "--no-ssl-verify",
    is_flag=True,
    help="Disable SSL certificate verification",
)
@click.option(
    "--json-output",
    is_flag=True,
    help="Output result as JSON",
)
@click.option(
    "--timeout",
    type=float,
    default=5.0,
    help="DID resolution timeout in seconds",
)
def verify(
    source: str,
    issuers: tuple[str, ...],
    no_ssl_verify: bool,
    json_output: bool,
    timeout: float,
) -> None:
    """Verify a selective-disclosure token against its issuer's did:web key.

    Exits 0 when valid, 1 when invalid and 2 on usage errors.

    Examples:

        sd-attest verify token.txt

        cat token.txt | sd-attest verify - --issuer did:web:issuer.example
    """
    token = _read_token(source)
    verifier = SDJWTVerifier(
        _registry(issuers),
        did_resolver=DIDResolver(timeout=timeout, verify_ssl=not no_ssl_verify),
    )
    outcome = verifier.verify(token)

    if json_output:
        console.print_json(
            data={
                "status": outcome.status.value,
                "valid": outcome.is_valid,
                "holder_id": outcome.holder_id or None,
                "issuer_id": outcome.issuer_id or None,
                "credential_reference": outcome.credential_reference or None,
                "merkle_root": outcome.merkle_root or None,
                "expiry": outcome.expiry or None,
                "error": outcome.error.code if outcome.error else None,
                "reason": outcome.reason,
            }
        )
    else:
        format_outcome(outcome)

    sys.exit(0 if outcome.is_valid else 1)


@main.command("merkle-root")
@click.argument("digests", nargs=-1)
def merkle_root(digests: tuple[str, ...]) -> None:
    """Print the Merkle commitment of disclosure digests, in order."""
    try:
        click.echo(compute_merkle_root(list(digests)))
    except AttestError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(2)


if __name__ == "__main__":
    main()

"""
Command-line interface for VC Pipeline.

Usage:
    vc-pipeline QmCid
    vc-pipeline QmCid --public-key <base64-or-hex> --ledger-url https://ledger.example
    vc-pipeline QmCid --json-output
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from vc_pipeline.config import (
    PipelineConfig,
    RevocationFailurePolicy,
)
from vc_pipeline.models import VerificationResult
from vc_pipeline.pipeline import VerificationPipeline


console = Console()

CHECKS = (
    ("Structure", "structure_valid", None),
    ("Content store", "ipfs_valid", None),
    ("Document hash", "hash_match", "hashNote"),
    ("Proof", "bbs_proof_valid", "bbsNote"),
    ("Ledger", "blockchain_valid", "blockchainNote"),
)


def _flag(value: bool | None, good: str = "Valid", bad: str = "Invalid") -> str:
    if value is None:
        return "[dim]Not evaluated[/]"
    return f"[green]{good}[/]" if value else f"[red]{bad}[/]"


def format_result(result: VerificationResult) -> None:
    """Format and print verification result."""
    if not result.success:
        status_icon = "[bold yellow]ERROR[/]"
        panel_style = "yellow"
    elif result.verified:
        status_icon = "[bold green]VERIFIED[/]"
        panel_style = "green"
    else:
        status_icon = "[bold red]NOT VERIFIED[/]"
        panel_style = "red"

    details = result.details
    not_applicable = set(details.get("notApplicable", []))

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", status_icon)
    for key in ("issuer", "subject", "issuanceDate", "proofType", "presentationType"):
        if details.get(key):
            table.add_row(key, str(details[key]))
    if details.get("disclosedFields"):
        table.add_row("disclosedFields", ", ".join(details["disclosedFields"]))

    for label, attr, note_key in CHECKS:
        if attr == "hash_match" and "hashMatch" in not_applicable:
            table.add_row(label, "[dim]Not applicable[/]")
        else:
            table.add_row(label, _flag(getattr(result, attr)))
        if note_key and details.get(note_key):
            table.add_row("", f"[dim]{details[note_key]}[/]")

    if result.revoked is not None:
        table.add_row("Revocation", _flag(not result.revoked, "Not revoked", "Revoked"))
        if details.get("revocationNote"):
            table.add_row("", f"[dim]{details['revocationNote']}[/]")

    console.print(Panel(table, title="Verification Result", border_style=panel_style))

    if result.error:
        console.print(f"\n[bold red]Error:[/] {result.error}")
        for key, value in (result.error_details or {}).items():
            console.print(f"  [red]x[/] {key}: {value}")


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )
    else:
        logging.basicConfig(level=logging.WARNING)


@click.command()
@click.argument("cid", required=True)
@click.option("--public-key", default=None, help="Issuer public key (base64, hex, PEM or JWK)")
@click.option("--issuer", default=None, help="Issuer ID for the ledger check if the fetch fails")
@click.option(
    "--credential-id",
    default=None,
    help="Credential ID for the revocation check if the fetch fails",
)
@click.option("--gateway", default=None, help="IPFS HTTP gateway base URL")
@click.option("--ledger-url", default=None, help="Ledger index base URL")
@click.option("--revocation-url", default=None, help="Revocation registry base URL")
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Per-request HTTP timeout in seconds; raises the check budget to match",
)
@click.option(
    "--check-timeout",
    type=float,
    default=None,
    help="Overall budget in seconds for the fetch and for each check",
)
@click.option("--retries", type=int, default=None, help="Retries on transient timeouts")
@click.option(
    "--revocation-failure-policy",
    type=click.Choice([p.value for p in RevocationFailurePolicy]),
    default=None,
    help="Outcome when the revocation lookup fails",
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
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline progress to stderr")
@click.version_option(package_name="vc-pipeline")
def main(
    cid: str,
    public_key: str | None,
    issuer: str | None,
    credential_id: str | None,
    gateway: str | None,
    ledger_url: str | None,
    revocation_url: str | None,
    timeout: float | None,
    check_timeout: float | None,
    retries: int | None,
    revocation_failure_policy: str | None,
    no_ssl_verify: bool,
    json_output: bool,
    verbose: bool,
) -> None:
    """Verify the Verifiable Credential or presentation stored at CID.

    Settings not given on the command line are read from VC_PIPELINE_*
    environment variables.

    Examples:

        vc-pipeline QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG

        vc-pipeline bafy... --ledger-url https://ledger.example --json-output
    """
    _configure_logging(verbose)

    overrides: dict[str, Any] = {}
    if gateway:
        overrides["ipfs_gateway"] = gateway
    if ledger_url:
        overrides["ledger_url"] = ledger_url
    if revocation_url:
        overrides["revocation_url"] = revocation_url
    if timeout is not None:
        overrides["fetch_timeout"] = timeout
    if check_timeout is not None:
        overrides["check_timeout"] = check_timeout
    if retries is not None:
        overrides["fetch_retries"] = retries
    if revocation_failure_policy is not None:
        overrides["revocation_failure_policy"] = RevocationFailurePolicy(
            revocation_failure_policy
        )
    if no_ssl_verify:
        overrides["verify_ssl"] = False

    try:
        base = PipelineConfig.from_env()
        if timeout is not None and check_timeout is None:
            overrides["check_timeout"] = max(base.check_timeout, timeout)
        config = dataclasses.replace(base, **overrides)
    except ValueError as e:
        raise click.UsageError(str(e)) from None

    pipeline = VerificationPipeline(config=config)
    result = asyncio.run(
        pipeline.verify(cid, public_key, issuer=issuer, credential_id=credential_id)
    )

    if json_output:
        console.print_json(data=result.to_dict())
    else:
        format_result(result)

    if not result.success:
        sys.exit(2)
    sys.exit(0 if result.verified else 1)


if __name__ == "__main__":
    main()

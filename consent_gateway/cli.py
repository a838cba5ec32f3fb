"""Command Line Interface for the Consent Gateway.

Operator commands for the identity wallet, one-off access grant operations
against the configured ledger, the reconciliation queue of a running server,
and starting the API server.

Security Impact:
    - Private key files are read once and stored with owner-only permissions
    - Key material is never echoed
    - Ledger identities are always taken from the IdentityPolicy
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import requests
import typer
from pydantic import SecretStr
from rich.console import Console
from rich.table import Table

from consent_gateway.adapters.identity import FileSystemIdentityStore
from consent_gateway.domain.models import Identity
from consent_gateway.domain.ports import GatewayError, IdentityStorePort
from consent_gateway.infrastructure.logging_config import setup_logging
from consent_gateway.infrastructure.settings import APP_VERSION, settings
from consent_gateway.main import Gateway, build_gateway

T = TypeVar("T")

app = typer.Typer(
    name="consent-gateway",
    help="Consent Gateway: access delegation over a permissioned ledger",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def _identity_store(wallet: Optional[Path]) -> IdentityStorePort:
    return FileSystemIdentityStore(wallet or settings.ledger_config.identity_store_path)


def _fail(error: GatewayError) -> None:
    console.print(f"[red]✗[/red] {error.error_code}: {error.message}")
    for key, value in error.details.items():
        console.print(f"  [dim]{key}:[/dim] {value}")
    raise typer.Exit(code=1)


def _run_with_gateway(operation: Callable[[Gateway], Awaitable[T]]) -> T:
    """Build the gateway, run one operation, always release its resources."""

    async def runner() -> T:
        gateway = build_gateway(settings)
        try:
            return await operation(gateway)
        finally:
            await gateway.aclose()

    try:
        return asyncio.run(runner())
    except GatewayError as e:
        _fail(e)


@app.command("import-identity")
def import_identity(
    label: str = typer.Argument(..., help="Wallet label, e.g. auditOrgAdmin"),
    msp_id: str = typer.Option(..., "--msp-id", "-m", help="Organizational membership id, e.g. AuditOrgMSP"),
    cert: Path = typer.Option(..., "--cert", "-c", exists=True, dir_okay=False, help="PEM certificate file"),
    key: Path = typer.Option(..., "--key", "-k", exists=True, dir_okay=False, help="PEM private key file"),
    wallet: Optional[Path] = typer.Option(None, "--wallet", "-w", help="Wallet directory (defaults to configuration)"),
) -> None:
    """Import already-issued certificate/key material into the wallet.

    Examples:
        consent-gateway import-identity auditOrgAdmin -m AuditOrgMSP -c cert.pem -k key.pem
    """
    identity = Identity(
        label=label,
        msp_id=msp_id,
        certificate=cert.read_text(encoding="utf-8"),
        private_key=SecretStr(key.read_text(encoding="utf-8")),
    )
    try:
        store = _identity_store(wallet)
        replaced = store.exists(label)
        store.put(label, identity)
    except GatewayError as e:
        _fail(e)
    verb = "Replaced" if replaced else "Imported"
    console.print(f"[green]✓[/green] {verb} identity [bold]{label}[/bold] ({msp_id})")


@app.command("list-identities")
def list_identities(
    wallet: Optional[Path] = typer.Option(None, "--wallet", "-w", help="Wallet directory (defaults to configuration)"),
) -> None:
    """List enrolled identities and the operations the policy routes to them."""
    store = _identity_store(wallet)
    policy = settings.identity_policy
    roles = {
        "registrar": policy.registrar,
        "access": policy.access,
        "audit": policy.audit,
        "verifier": policy.verifier,
    }

    table = Table(title="Identities")
    table.add_column("Label", style="bold")
    table.add_column("MSP")
    table.add_column("Policy roles")
    labels = store.labels()
    for label in labels:
        try:
            msp_id = store.get(label).msp_id
        except GatewayError as e:
            msp_id = f"[red]{e.error_code}[/red]"
        used_for = ", ".join(role for role, mapped in roles.items() if mapped == label)
        table.add_row(label, msp_id, used_for or "[dim]-[/dim]")
    console.print(table)

    missing = [label for label in policy.labels() if label not in labels]
    if missing:
        console.print(f"[yellow]⚠[/yellow] Policy identities not enrolled: {', '.join(missing)}")


@app.command("remove-identity")
def remove_identity(
    label: str = typer.Argument(..., help="Wallet label to remove"),
    wallet: Optional[Path] = typer.Option(None, "--wallet", "-w", help="Wallet directory (defaults to configuration)"),
) -> None:
    try:
        store = _identity_store(wallet)
        if not store.exists(label):
            console.print(f"[yellow]⚠[/yellow] Identity {label} is not enrolled")
            raise typer.Exit(code=1)
        store.remove(label)
    except GatewayError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Removed identity [bold]{label}[/bold]")


@app.command()
def grant(
    patient_id: str = typer.Argument(..., help="Patient granting access"),
    doctor_id: str = typer.Argument(..., help="Doctor receiving access"),
    hours: int = typer.Option(24, "--hours", "-h", help="Validity window in hours (1-720)"),
    purpose: str = typer.Option(..., "--purpose", "-p", help="Purpose of access (5-500 characters)"),
) -> None:
    """Grant a doctor time-bounded access to a patient's records."""
    grant_key = _run_with_gateway(
        lambda gw: gw.access.grant_access(patient_id, doctor_id, hours, purpose)
    )
    console.print(f"[green]✓[/green] Access granted: [bold]{grant_key}[/bold]")


@app.command()
def revoke(grant_key: str = typer.Argument(..., help="Grant key to revoke")) -> None:
    _run_with_gateway(lambda gw: gw.access.revoke_access(grant_key))
    console.print(f"[green]✓[/green] Revoked {grant_key}")


@app.command()
def check(grant_key: str = typer.Argument(..., help="Grant key to check")) -> None:
    """Show whether a grant is currently valid, and why not if it is not."""
    report = _run_with_gateway(lambda gw: gw.access.check_validity(grant_key))

    table = Table(show_header=False, box=None, padding=(0, 2))
    status = "[green]valid[/green]" if report.valid else f"[red]{report.reason.value}[/red]"
    table.add_row("Grant:", report.grant_key)
    table.add_row("Status:", status)
    table.add_row("Patient:", report.patient_id)
    table.add_row("Doctor:", report.doctor_id)
    table.add_row("Issued:", report.issued_at.isoformat())
    table.add_row("Expires:", report.expires_at.isoformat())
    if report.revoked_at:
        table.add_row("Revoked:", report.revoked_at.isoformat())
    console.print(table)
    if not report.valid:
        raise typer.Exit(code=2)


@app.command()
def reconciliation(
    api_url: str = typer.Option("http://127.0.0.1:8000", "--api-url", help="Base URL of a running gateway API"),
    include_resolved: bool = typer.Option(False, "--all", help="Include resolved entries"),
) -> None:
    """List ledger registrations that have no credential record."""
    try:
        response = requests.get(
            f"{api_url.rstrip('/')}/api/v1/admin/reconciliation",
            params={"include_resolved": str(include_resolved).lower()},
            timeout=10,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        console.print(f"[red]✗[/red] Could not reach gateway API: {e}")
        raise typer.Exit(code=1)

    data = response.json()["data"]
    if not data["entries"]:
        console.print("[green]✓[/green] Nothing to reconcile")
        return

    table = Table(title=f"Reconciliation ({data['open']} open)")
    table.add_column("Entity", style="bold")
    table.add_column("Role")
    table.add_column("Detected")
    table.add_column("Cause")
    table.add_column("Resolved")
    for entry in data["entries"]:
        table.add_row(
            entry["entity_id"],
            entry["role"],
            str(entry["detected_at"]),
            entry["cause"],
            "yes" if entry["resolved"] else "[red]no[/red]",
        )
    console.print(table)
    if data["open"]:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "consent_gateway.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


@app.callback(invoke_without_command=True)
def main_callback(
    version: bool = typer.Option(False, "--version", help="Show version information"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Consent Gateway operator CLI."""
    setup_logging(use_json=settings.log_json, log_level="DEBUG" if verbose else "WARNING")
    if version:
        console.print(f"Consent Gateway v{APP_VERSION}")
        raise typer.Exit()


if __name__ == "__main__":
    app()

"""
PIX checkout operator CLI.

Command-line tools for configuration checks, processor lookups, status
polling and webhook signature diagnosis.
"""

import asyncio
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="pix-checkout",
    help="PIX checkout operations CLI",
    add_completion=False,
)
console = Console()


# =============================================================================
# Configuration Commands
# =============================================================================

@app.command()
def check_config():
    """Show the effective configuration and production readiness."""
    from shared.config.settings import get_settings
    from shared.config.logging import mask_token

    settings = get_settings()

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("environment", settings.environment)
    table.add_row("database_url", settings.database_url)
    table.add_row("mercadopago_access_token", mask_token(settings.mercadopago_access_token))
    table.add_row("simulated payments (TEST- token)", str(settings.uses_test_token))
    table.add_row("webhook_secret", "set" if settings.webhook_secret else "not set")
    table.add_row("signature mode", settings.effective_signature_mode)
    table.add_row("print_webhook_url", settings.print_webhook_url or "not set")
    table.add_row("dev endpoints", "enabled" if settings.dev_endpoints_enabled else "disabled")
    table.add_row("local PIX fallback", str(settings.enable_local_pix_fallback))
    console.print(table)

    errors = settings.validate_production_secrets()
    if errors:
        for error in errors:
            console.print(f"[red]✗ {error}[/red]")
        raise typer.Exit(1)
    console.print("[green]✓ Configuration OK[/green]")


@app.command()
def validate_token():
    """Check the Mercado Pago access token against /users/me."""
    from shared.config.settings import get_settings
    from rest_api.services.payments.errors import ProcessorUnauthorized, UpstreamUnavailable
    from rest_api.services.payments.gateway import MercadoPagoGateway

    gateway = MercadoPagoGateway(get_settings())

    try:
        account = asyncio.run(gateway.validate_credentials())
    except ProcessorUnauthorized as e:
        console.print(f"[red]✗ Token rejected: {e}[/red]")
        raise typer.Exit(1)
    except UpstreamUnavailable as e:
        console.print(f"[yellow]Could not reach Mercado Pago: {e}[/yellow]")
        raise typer.Exit(2)

    table = Table(title="Mercado Pago Account")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for field in ("id", "nickname", "site_id", "country_id"):
        table.add_row(field, str(account.get(field, "-")))
    console.print(table)
    console.print("[green]✓ Token valid[/green]")


# =============================================================================
# Payment Commands
# =============================================================================

@app.command()
def payment_status(
    payment_id: str = typer.Argument(..., help="Mercado Pago payment id"),
):
    """Look a payment up at Mercado Pago and show the local record next to it."""
    from shared.config.settings import get_settings
    from shared.infrastructure.db import SessionLocal
    from rest_api.services.payments.errors import UpstreamUnavailable
    from rest_api.services.payments.gateway import MercadoPagoGateway
    from rest_api.services.payments.store import PaymentStore

    gateway = MercadoPagoGateway(get_settings())
    table = Table(title=f"Payment {payment_id}")
    table.add_column("Source", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Detail", style="yellow")

    try:
        fetched = asyncio.run(gateway.fetch_payment(payment_id))
        table.add_row("mercadopago", str(fetched.status), str(fetched.status_detail or "-"))
    except UpstreamUnavailable as e:
        table.add_row("mercadopago", "[red]unavailable[/red]", str(e))

    try:
        record = PaymentStore(SessionLocal).get(payment_id)
    except Exception as e:
        console.print(f"[red]✗ Could not read local store: {e}[/red]")
        record = None
    if record is not None:
        detail = f"dispatched={record.dispatched} source={record.status_source}"
        table.add_row("local", record.status, detail)
    else:
        table.add_row("local", "-", "no record")

    console.print(table)


@app.command()
def poll(
    payment_id: str = typer.Argument(..., help="Payment id to follow"),
    base_url: str = typer.Option("http://localhost:3000", help="Checkout API base URL"),
    interval: float = typer.Option(3.0, help="Seconds between polls"),
    deadline: float = typer.Option(600.0, help="Give up after this many seconds"),
):
    """Poll /api/check-payment until the payment is approved, fails or expires."""
    from checkout_client.poller import PaymentStatusPoller, PollOutcome

    def _on_complete(status, body):
        console.print(f"[green]✓ Payment {payment_id} approved[/green]")

    def _on_failure(status, body):
        console.print(f"[red]✗ Payment {payment_id} {status}[/red]")

    poller = PaymentStatusPoller(
        base_url,
        payment_id,
        on_complete=_on_complete,
        on_failure=_on_failure,
        interval=interval,
        deadline=deadline,
    )
    console.print(f"[blue]Polling {base_url} for {payment_id} every {interval}s[/blue]")
    result = asyncio.run(poller.run())

    if result.outcome == PollOutcome.EXPIRED:
        console.print(f"[yellow]Deadline reached after {result.attempts} polls[/yellow]")
    if result.outcome != PollOutcome.COMPLETED:
        raise typer.Exit(1)


# =============================================================================
# Webhook Commands
# =============================================================================

@app.command()
def diagnose_signature(
    body_file: Path = typer.Option(..., exists=True, readable=True, help="Raw webhook body"),
    header: str = typer.Option(..., help="Signature header value as received"),
    secret: list[str] = typer.Option(
        None,
        help="Candidate secret as LABEL=VALUE (repeatable)",
    ),
):
    """
    Find which secret signed a captured webhook.

    Candidates are the configured WEBHOOK_SECRET, the MP_WEBHOOK_SECRET and
    MERCADO_PAGO_WEBHOOK_SECRET environment variables and any --secret given.
    """
    from shared.config.settings import get_settings
    from rest_api.services.payments.signature import diagnose_signature as _diagnose, extract_digest

    candidates: dict[str, str] = {"WEBHOOK_SECRET": get_settings().webhook_secret}
    for name in ("MP_WEBHOOK_SECRET", "MERCADO_PAGO_WEBHOOK_SECRET"):
        if os.environ.get(name):
            candidates[name] = os.environ[name]
    for item in secret or []:
        label, sep, value = item.partition("=")
        if not sep:
            console.print(f"[red]--secret must be LABEL=VALUE, got {label!r}[/red]")
            raise typer.Exit(2)
        candidates[label] = value

    body = body_file.read_bytes()
    match = _diagnose(body, extract_digest(header), candidates)

    table = Table(title="Signature Diagnosis")
    table.add_column("Candidate", style="cyan")
    table.add_column("Configured", style="yellow")
    table.add_column("Matches", style="green")
    for label, value in candidates.items():
        table.add_row(label, "yes" if value else "no", "✓" if label == match else "")
    console.print(table)

    if match is None:
        console.print("[red]✗ No candidate secret produced this signature[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Signed with {match}[/green]")


@app.command()
def version():
    """Show version information."""
    table = Table(title="PIX Checkout Version")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")

    table.add_row("API", "0.1.0")
    table.add_row("Python", sys.version.split()[0])

    console.print(table)


if __name__ == "__main__":
    app()

"""
Main CLI application using Typer.
"""

import asyncio
import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional, Annotated

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.http_transfer_client import HttpTransferClient
from ..adapters.memory_repository import JsonFileRepository
from ..adapters.mock_transfer_client import MockTransferClient
from ..config import AppConfig, AvailabilityDocument, get_default_config_path
from ..domain.availability_expander import AvailabilityExpander, group_by_date, resolve_window
from ..domain.exceptions import AccessDeniedError, ConfigurationError, SlotBookingError
from ..domain.models import to_date
from ..services.scheduling_service import SchedulingService

app = typer.Typer(
    name="slotbooking",
    help="Publish weekly availability, book slots and verify access to booked sessions",
    add_completion=False
)

console = Console()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(ctx: typer.Context) -> AppConfig:
    """
    Load the configuration selected by the global --config option.

    Without --config, ./config.yaml is used if present, otherwise defaults.
    """
    explicit: Optional[Path] = ctx.obj.get("config_path") if ctx.obj else None
    config_path = explicit or get_default_config_path()

    if explicit is None and not config_path.exists():
        config = AppConfig()
    else:
        config = AppConfig.load_from_yaml(config_path)

    _configure_logging(config.log_level)
    return config


def _build_service(config: AppConfig, transfer_client=None) -> SchedulingService:
    repository = JsonFileRepository(config.data_path())
    return SchedulingService.from_config(
        config,
        repository=repository,
        transfer_client=transfer_client or MockTransferClient(),
    )


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")] = None,
):
    """
    Availability scheduling and slot booking.
    """
    ctx.obj = {"config_path": config_file}


@app.command()
def preview(
    ctx: typer.Context,
    availability_file: Annotated[Path, typer.Argument(help="Availability YAML file")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum number of days to list")] = 14,
):
    """
    Expand an availability file and show the slots it would generate.

    Examples:

        slotbooking preview availability.yaml
        slotbooking preview availability.yaml --limit 30
    """
    try:
        config = _load_config(ctx)
        document = AvailabilityDocument.load_from_yaml(availability_file)
        pattern, exclusions, settings = document.to_domain()

        for warning in pattern.validate():
            console.print(f"[yellow]⚠ {warning}[/yellow]")

        start, end = resolve_window(
            settings.timezone,
            settings.window_start,
            settings.window_end,
            horizon_days=config.scheduling.default_window_days,
        )
        expander = AvailabilityExpander(max_days=config.scheduling.max_days)
        slots = expander.expand(
            pattern, exclusions, start, end,
            settings.timezone, settings.interval_minutes, settings.provider_id,
        )

        console.print()
        if not slots:
            console.print(
                "[yellow]⚠ This availability generates no slots.[/yellow]\n"
                "Enable at least one day or widen the booking window."
            )
            return

        days = group_by_date(slots)
        table = Table(
            title=f"Slots for {settings.provider_id} ({settings.timezone})",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Date", style="bold yellow")
        table.add_column("Slots")
        table.add_column("Price", justify="right", style="dim")

        for day, day_slots in days[:limit]:
            table.add_row(
                day_slots[0].format_display().split(" | ")[0],
                ", ".join(str(slot.start) for slot in day_slots),
                str(settings.quote(day_slots[0])),
            )

        console.print(table)
        console.print(
            f"\n[bold green]✓ {len(slots)} slot(s) on {len(days)} day(s)[/bold green] "
            f"from {start.isoformat()} to {end.isoformat()}"
        )
        if len(days) > limit:
            console.print(f"[dim]Showing the first {limit} day(s).[/dim]")
        console.print()

    except (SlotBookingError, FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def save(
    ctx: typer.Context,
    availability_file: Annotated[Path, typer.Argument(help="Availability YAML file")],
):
    """
    Save an availability file and regenerate the provider's slots.

    Booked slots are never changed; conflicts with them are reported.
    """
    try:
        config = _load_config(ctx)
        document = AvailabilityDocument.load_from_yaml(availability_file)
        pattern, exclusions, settings = document.to_domain()

        service = _build_service(config)
        result = service.save_availability(
            settings.provider_id,
            pattern,
            exclusions,
            settings.interval_minutes,
            timezone=settings.timezone,
            window_start=settings.window_start,
            window_end=settings.window_end,
            hourly_rate=settings.hourly_rate,
        )

        for warning in result.warnings:
            console.print(f"[yellow]⚠ {warning}[/yellow]")

        console.print(Panel.fit(
            f"[bold green]✓ Availability saved for {settings.provider_id}[/bold green]\n\n"
            f"[bold]Generated:[/bold] {result.generated}\n"
            f"[bold]Inserted:[/bold] {len(result.upsert.inserted)}\n"
            f"[bold]Removed:[/bold] {len(result.upsert.removed)}\n"
            f"[bold]Unchanged:[/bold] {len(result.upsert.unchanged)}\n"
            f"[bold]Booked (kept):[/bold] {len(result.upsert.preserved)}",
            title="Save"
        ))

        for conflict in result.upsert.locked:
            console.print(f"[yellow]⚠ {conflict}[/yellow]")
        console.print()

    except (SlotBookingError, FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def slots(
    ctx: typer.Context,
    provider_id: Annotated[str, typer.Argument(help="Provider whose slots to list")],
    start: Annotated[Optional[str], typer.Option("--start", help="First date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="Last date (YYYY-MM-DD)")] = None,
):
    """
    List bookable slots for a provider.
    """
    try:
        config = _load_config(ctx)
        service = _build_service(config)
        bookable = service.bookable_slots(
            provider_id,
            to_date(start) if start else None,
            to_date(end) if end else None,
        )

        console.print()
        if not bookable:
            console.print("[yellow]⚠ No bookable slots found.[/yellow]\n")
            return

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Slot ID", style="bold yellow")
        table.add_column("When")
        for slot in bookable:
            table.add_row(slot.id, slot.format_display())

        console.print(table)
        console.print(f"\n[bold green]✓ {len(bookable)} bookable slot(s)[/bold green]\n")

    except (SlotBookingError, FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def book(
    ctx: typer.Context,
    slot_id: Annotated[str, typer.Argument(help="Slot to book")],
    buyer: Annotated[str, typer.Argument(help="Buyer identity (e.g. wallet address)")],
    contact: Annotated[str, typer.Option("--contact", help="Contact details stored with the booking")] = "",
    mock: Annotated[bool, typer.Option("--mock", help="Use the simulated payment system.")] = False,
    balance: Annotated[str, typer.Option("--balance", help="Buyer balance in mock mode")] = "1000",
):
    """
    Book a slot, paying through the configured payment gateway.

    Examples:

        slotbooking book "alice:2025-01-06:09:00" 0xbuyer --mock
        slotbooking book "alice:2025-01-06:09:00" 0xbuyer --contact "@buyer"
    """
    try:
        config = _load_config(ctx)

        if mock:
            console.print("[yellow]⚠  MOCK MODE: using the simulated payment system[/yellow]\n")
            transfer_client = MockTransferClient(balances={buyer: Decimal(balance)})
        else:
            if not config.transfer.gateway_url:
                raise ConfigurationError(
                    "No payment gateway configured. Set transfer.gateway_url or use --mock."
                )
            transfer_client = HttpTransferClient(
                base_url=config.transfer.gateway_url,
                api_key=config.transfer.api_key,
                timeout=config.transfer.request_timeout_seconds,
            )

        service = _build_service(config, transfer_client)
        attempt = asyncio.run(service.reserve_slot(slot_id, buyer, contact))

        if attempt.succeeded:
            record = attempt.record
            console.print(Panel.fit(
                f"[bold green]✓ Slot booked![/bold green]\n\n"
                f"[bold]Booking:[/bold] {record.booking_id}\n"
                f"[bold]Slot:[/bold] {record.slot_id}\n"
                f"[bold]Paid:[/bold] {record.price_quoted}\n"
                f"[bold]Receipt:[/bold] {record.transfer_receipt_id}",
                title="Booking"
            ))
            console.print()
            return

        console.print(f"[bold red]✗ {attempt.failure_reason.user_message}[/bold red]")
        console.print(f"[dim]{attempt.failure_reason.value}: {attempt.failure_detail}[/dim]")
        if attempt.refund_due or attempt.failure_reason.requires_reconciliation:
            console.print(f"[yellow]Reference for support: {attempt.attempt_id}[/yellow]")
        raise typer.Exit(1)

    except (SlotBookingError, FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def verify(
    ctx: typer.Context,
    booking_id: Annotated[str, typer.Argument(help="Booking to join")],
    holder: Annotated[str, typer.Argument(help="Identity of the requester")],
):
    """
    Check access to a booked session and print the join link.
    """
    try:
        config = _load_config(ctx)
        service = _build_service(config)
        capability = service.verify_access(holder, booking_id)

        remaining = capability.remaining_seconds(pendulum.now()) // 60
        console.print(Panel.fit(
            f"[bold green]✓ Access granted[/bold green]\n\n"
            f"[bold]Join link:[/bold] {capability.url}\n"
            f"[bold]Valid until:[/bold] {capability.expires_at.to_datetime_string()} "
            f"({remaining} min left)",
            title="Session"
        ))
        console.print()

    except AccessDeniedError as e:
        console.print(f"[bold red]✗ Access denied:[/bold red] {e}")
        raise typer.Exit(1)

    except (SlotBookingError, FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def reconcile(ctx: typer.Context):
    """
    List failed bookings where the buyer may have paid.
    """
    try:
        config = _load_config(ctx)
        service = _build_service(config)
        pending = service.orchestrator.pending_reconciliation()

        console.print()
        if not pending:
            console.print("[green]✓ Nothing to reconcile.[/green]\n")
            return

        table = Table(
            title="Pending reconciliation",
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Attempt", style="bold yellow")
        table.add_column("Slot")
        table.add_column("Buyer")
        table.add_column("Amount", justify="right")
        table.add_column("Reason")
        table.add_column("Refund due")

        for attempt in pending:
            table.add_row(
                attempt.attempt_id,
                attempt.intent.slot_id,
                attempt.intent.buyer_identity,
                str(attempt.price_quoted or ""),
                attempt.failure_reason.value,
                "yes" if attempt.refund_due else "unknown",
            )

        console.print(table)
        console.print()

    except (SlotBookingError, FileNotFoundError, ValueError) as e:
        _fail(str(e))


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotbooking[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()

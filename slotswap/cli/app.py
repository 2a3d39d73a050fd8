"""
Main CLI application using Typer.

The CLI is the boundary layer: it resolves the caller identity from the
configured user directory, calls the slot store and swap negotiator, and
turns domain errors into messages and exit codes.
"""

import logging
from collections import namedtuple
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, List, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ..adapters.sql_store import SqlStorage
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SlotSwapError,
    ValidationError,
)
from ..domain.models import Slot, SlotPatch, SlotStatus, SwapRequestView, SwapStatus
from ..services.slot_store import SlotStore
from ..services.swap_negotiator import SwapNegotiator

app = typer.Typer(
    name="slotswap",
    help="Publish calendar slots and swap them with other users",
    add_completion=False,
)
slots_app = typer.Typer(help="Manage your own slots", add_completion=False)
requests_app = typer.Typer(help="Inspect swap requests", add_completion=False)
app.add_typer(slots_app, name="slots")
app.add_typer(requests_app, name="requests")

console = Console()

EXIT_CODES = (
    (ValidationError, 2),
    (NotFoundError, 3),
    (ForbiddenError, 4),
    (ConflictError, 5),
    (AuthenticationError, 6),
)

STATUS_STYLES = {
    SlotStatus.BUSY: "dim",
    SlotStatus.SWAPPABLE: "green",
    SlotStatus.SWAP_PENDING: "yellow",
    SwapStatus.PENDING: "yellow",
    SwapStatus.ACCEPTED: "green",
    SwapStatus.REJECTED: "red",
}

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
UserOption = Annotated[
    str,
    typer.Option("--as", "-u", envvar="SLOTSWAP_USER", help="Act as this user (id, name or email)."),
]

Session = namedtuple("Session", ["config", "caller", "slots", "negotiator"])


def _exit_code(error: SlotSwapError) -> int:
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return 1


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _resolve_caller(config: AppConfig, identifier: str):
    try:
        return config.resolve_user(identifier)
    except ValueError as exc:
        raise AuthenticationError(str(exc)) from exc


@contextmanager
def _session(config_file: Optional[Path], as_user: Optional[str] = None):
    """
    Load config, open storage and translate errors for one command.

    Yields a ``Session`` with the resolved caller (or ``None``) and the two
    services wired to the configured database.
    """
    try:
        config = AppConfig.load_from_yaml(config_file or get_default_config_path())
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    _configure_logging(config.log_level)
    storage = SqlStorage.from_url(config.database_url)

    try:
        caller = _resolve_caller(config, as_user) if as_user is not None else None
        storage.create_schema()
        yield Session(
            config=config,
            caller=caller,
            slots=SlotStore(storage),
            negotiator=SwapNegotiator(storage, directory=config),
        )
    except SlotSwapError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(_exit_code(e))
    finally:
        storage.dispose()


def _parse_time(value: Optional[str], tz: str) -> Optional[pendulum.DateTime]:
    if value is None:
        return None
    try:
        parsed = pendulum.parse(value, tz=tz)
    except ValueError as exc:
        raise ValidationError(f"Could not parse time '{value}': {exc}") from exc
    if not isinstance(parsed, pendulum.DateTime):
        raise ValidationError(f"'{value}' is not a date and time")
    return parsed


def _styled(status) -> str:
    return f"[{STATUS_STYLES[status]}]{status.value}[/{STATUS_STYLES[status]}]"


def _owner_name(config: AppConfig, user_id: str) -> str:
    user = config.find_user(user_id)
    return user.display_name() if user else user_id


def _print_slots(slots: List[Slot], config: AppConfig, title: str, show_owner: bool = False) -> None:
    if not slots:
        console.print("[yellow]No slots found.[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Time")
    table.add_column("Status")
    if show_owner:
        table.add_column("Owner", style="bold yellow")

    for slot in slots:
        row = [
            slot.id,
            escape(slot.title),
            slot.time_range.format_display(config.timezone),
            _styled(slot.status),
        ]
        if show_owner:
            row.append(_owner_name(config, slot.owner_id))
        table.add_row(*row)

    console.print()
    console.print(table)
    console.print()


def _describe_slot(slot: Optional[Slot], tz: str) -> str:
    if slot is None:
        return "[dim](deleted)[/dim]"
    return f"{escape(slot.title)} ({slot.time_range.format_display(tz)})"


def _print_requests(views: List[SwapRequestView], config: AppConfig, title: str) -> None:
    if not views:
        console.print("[yellow]No swap requests found.[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("From", style="bold yellow")
    table.add_column("Offered")
    table.add_column("To", style="bold yellow")
    table.add_column("Requested")
    table.add_column("Status")
    table.add_column("Created")

    for view in views:
        table.add_row(
            view.request.id,
            view.requester.name,
            _describe_slot(view.offered_slot, config.timezone),
            view.owner.name,
            _describe_slot(view.requested_slot, config.timezone),
            _styled(view.request.status),
            view.request.created_at.in_timezone(config.timezone).format("DD.MM.YYYY HH:mm"),
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def init_db(config_file: ConfigOption = None):
    """
    Create the database tables.
    """
    with _session(config_file) as session:
        console.print(f"[green]✓ Database ready:[/green] {session.config.database_url}")


@app.command()
def users(config_file: ConfigOption = None):
    """
    List all configured users.
    """
    with _session(config_file) as session:
        if not session.config.users:
            console.print("[yellow]No users defined in the config file.[/yellow]")
            return

        table = Table(title="Configured users", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="bold yellow")
        table.add_column("E-Mail", style="dim")
        for user in session.config.users:
            table.add_row(user.id, user.name, user.email)

        console.print()
        console.print(table)
        console.print()


@slots_app.command("list")
def list_slots(as_user: UserOption, config_file: ConfigOption = None):
    """
    List your slots in chronological order.
    """
    with _session(config_file, as_user) as session:
        slots = session.slots.list_slots(session.caller.id)
        _print_slots(slots, session.config, title=f"Slots of {session.caller.name}")


@slots_app.command("show")
def show_slot(
    slot_id: Annotated[str, typer.Argument(help="Slot ID")],
    as_user: UserOption,
    config_file: ConfigOption = None,
):
    """
    Show one of your slots.
    """
    with _session(config_file, as_user) as session:
        slot = session.slots.get_slot(slot_id, caller_id=session.caller.id)
        _print_slots([slot], session.config, title=escape(slot.title))


@slots_app.command("create")
def create_slot(
    title: Annotated[str, typer.Argument(help="Slot title")],
    start: Annotated[str, typer.Option("--start", help="Start time, e.g. '2024-11-25 09:00'")],
    end: Annotated[str, typer.Option("--end", help="End time, e.g. '2024-11-25 10:00'")],
    as_user: UserOption,
    swappable: Annotated[bool, typer.Option("--swappable", help="Offer the slot for swapping right away.")] = False,
    config_file: ConfigOption = None,
):
    """
    Create a new slot (BUSY unless --swappable is given).

    Examples:

        slotswap slots create "Team sync" --start "2024-11-25 09:00" --end "2024-11-25 10:00" --as alice
    """
    with _session(config_file, as_user) as session:
        tz = session.config.timezone
        slot = session.slots.create_slot(
            owner_id=session.caller.id,
            title=title,
            start=_parse_time(start, tz),
            end=_parse_time(end, tz),
            initial_status=SlotStatus.SWAPPABLE if swappable else SlotStatus.BUSY,
        )
        console.print(f"[green]✓ Slot created:[/green] {slot.id}")


@slots_app.command("update")
def update_slot(
    slot_id: Annotated[str, typer.Argument(help="Slot ID")],
    as_user: UserOption,
    title: Annotated[Optional[str], typer.Option("--title", help="New title")] = None,
    start: Annotated[Optional[str], typer.Option("--start", help="New start time")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="New end time")] = None,
    config_file: ConfigOption = None,
):
    """
    Change title or time of one of your slots.
    """
    with _session(config_file, as_user) as session:
        tz = session.config.timezone
        patch = SlotPatch(title=title, start=_parse_time(start, tz), end=_parse_time(end, tz))
        if patch.is_empty():
            console.print("[yellow]Nothing to update.[/yellow]")
            return
        slot = session.slots.update_slot(slot_id, session.caller.id, patch)
        console.print(f"[green]✓ Slot updated:[/green] {escape(slot.title)}")


@slots_app.command("status")
def set_status(
    slot_id: Annotated[str, typer.Argument(help="Slot ID")],
    status: Annotated[SlotStatus, typer.Argument(help="BUSY or SWAPPABLE", case_sensitive=False)],
    as_user: UserOption,
    config_file: ConfigOption = None,
):
    """
    Mark one of your slots as BUSY or SWAPPABLE.
    """
    with _session(config_file, as_user) as session:
        slot = session.slots.set_status(slot_id, session.caller.id, status)
        console.print(f"[green]✓ Slot is now[/green] {_styled(slot.status)}")


@slots_app.command("delete")
def delete_slot(
    slot_id: Annotated[str, typer.Argument(help="Slot ID")],
    as_user: UserOption,
    config_file: ConfigOption = None,
):
    """
    Delete one of your slots.
    """
    with _session(config_file, as_user) as session:
        session.slots.delete_slot(slot_id, session.caller.id)
        console.print("[green]✓ Slot deleted.[/green]")


@app.command()
def market(as_user: UserOption, config_file: ConfigOption = None):
    """
    List slots other users offer for swapping.
    """
    with _session(config_file, as_user) as session:
        slots = session.slots.list_swappable(session.caller.id)
        _print_slots(slots, session.config, title="Swappable slots", show_owner=True)


@app.command()
def propose(
    offered_slot_id: Annotated[str, typer.Argument(help="Your SWAPPABLE slot")],
    requested_slot_id: Annotated[str, typer.Argument(help="The slot you want in exchange")],
    as_user: UserOption,
    config_file: ConfigOption = None,
):
    """
    Propose to swap one of your slots for someone else's.
    """
    with _session(config_file, as_user) as session:
        request = session.negotiator.propose_swap(
            session.caller.id, offered_slot_id, requested_slot_id
        )
        owner = _owner_name(session.config, request.owner_id)
        console.print(f"[green]✓ Swap request sent to {escape(owner)}:[/green] {request.id}")


@app.command()
def respond(
    request_id: Annotated[str, typer.Argument(help="Swap request ID")],
    accept: Annotated[bool, typer.Option("--accept/--reject", help="Accept or reject the swap.")],
    as_user: UserOption,
    config_file: ConfigOption = None,
):
    """
    Accept or reject a swap request addressed to you.
    """
    with _session(config_file, as_user) as session:
        request = session.negotiator.respond_to_swap(request_id, session.caller.id, accept)
        if request.status is SwapStatus.ACCEPTED:
            console.print("[green]✓ Swap accepted. The slots have changed hands.[/green]")
        else:
            console.print("[yellow]Swap rejected. Both slots are swappable again.[/yellow]")


@requests_app.command("incoming")
def incoming(as_user: UserOption, config_file: ConfigOption = None):
    """
    Swap requests other users sent to you, newest first.
    """
    with _session(config_file, as_user) as session:
        views = session.negotiator.list_incoming(session.caller.id)
        _print_requests(views, session.config, title="Incoming swap requests")


@requests_app.command("outgoing")
def outgoing(as_user: UserOption, config_file: ConfigOption = None):
    """
    Swap requests you sent, newest first.
    """
    with _session(config_file, as_user) as session:
        views = session.negotiator.list_outgoing(session.caller.id)
        _print_requests(views, session.config, title="Outgoing swap requests")


@requests_app.command("show")
def show_request(
    request_id: Annotated[str, typer.Argument(help="Swap request ID")],
    as_user: UserOption,
    config_file: ConfigOption = None,
):
    """
    Show a swap request you are part of.
    """
    with _session(config_file, as_user) as session:
        view = session.negotiator.get_request(request_id, session.caller.id)
        _print_requests([view], session.config, title="Swap request")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotswap[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()

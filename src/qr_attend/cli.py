"""Command-line front end for QR Attend."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Column, Table

from .api import AttendanceApi
from .auth import AuthService
from .config import Settings
from .errors import AttendanceError, ConfigError, ErrorKind, Remediation
from .flow import AttendanceFlowController, FlowSnapshot, FlowState
from .history import AttendanceFilters, HistoryService, calculate_stats
from .location import FixedLocationBackend, GeolocationProvider, IpLocationBackend, LocationBackend
from .models import AttendanceRecord, UserAttendanceStats
from .session import FileTokenStore, SessionStore
from .submitter import AttendanceSubmitter
from .utils.env_utils import env_flag
from .utils.logger import get_logger, progress, set_log_profile, spinner, step, success

log = get_logger("cli")

REMEDIATION_HINTS = {
    Remediation.RESCAN: "Scan the event QR code again.",
    Remediation.OPEN_SETTINGS: "Open your location settings and allow access.",
    Remediation.RETRY: "Try again in a moment.",
    Remediation.WAIT: "Wait a little and try again.",
    Remediation.MOVE_CLOSER: "Move closer to the event location and scan again.",
    Remediation.FIX_INPUT: "Check the submitted data and try again.",
    Remediation.REAUTHENTICATE: "Run `qr-attend login` to sign in again.",
    Remediation.CONTACT_ORGANIZER: "Contact the event organizer.",
    Remediation.NONE: "No action needed.",
}

STATE_LABELS = {
    FlowState.SCANNING: "Waiting for a scan",
    FlowState.VALIDATING: "Validating QR code",
    FlowState.REQUESTING_LOCATION: "Getting your location",
    FlowState.SUBMITTING: "Submitting attendance",
}


def _console() -> Console:
    return Console(highlight=False)


def _spinner_enabled() -> bool:
    return sys.stdout.isatty() and not env_flag("CI")


def _render_error(console: Console, error: AttendanceError, title: str = "Attendance failed") -> None:
    body = f"[bold red]✗ {escape(error.message)}[/]\n{REMEDIATION_HINTS[error.remediation]}"
    for field, messages in error.field_errors.items():
        body += f"\n  [yellow]{escape(field)}[/]: {escape(', '.join(messages))}"
    console.print(Panel.fit(body, title=title, border_style="red", padding=(0, 2)))


def _render_record(console: Console, snapshot: FlowSnapshot) -> None:
    result = snapshot.result
    record = snapshot.record
    if result is None or record is None:
        return
    event_name = record.event.name if record.event else f"Event #{record.event_id}"
    verified = "[bold green]yes[/]" if record.verified else "[bold yellow]no (outside radius)[/]"
    lines = [
        f"[bold green]✅ {escape(event_name)}[/]",
        f"Distance: [bright_blue]{result.distance:.1f} m[/]",
        f"Verified: {verified}",
        f"Checked in: {record.checked_in_at:%Y-%m-%d %H:%M:%S %Z}",
    ]
    if result.advisory_distance is not None:
        lines.append(f"[dim]Client estimate: {result.advisory_distance:.1f} m[/]")
    console.print(Panel.fit("\n".join(lines), title="Attendance registered", border_style="blue", padding=(0, 2)))


def _records_table(records: List[AttendanceRecord]) -> Table:
    table = Table(
        Column(header="#", justify="right", style="blue"),
        Column(header="Event", style="bold"),
        Column(header="Checked in", style="blue"),
        Column(header="Distance", justify="right", style="bright_blue"),
        Column(header="Verified", justify="center"),
        box=None,
        show_header=True,
        header_style="bold blue",
        expand=False,
    )
    for index, record in enumerate(records, 1):
        table.add_row(
            f"{index}",
            escape(record.event.name) if record.event else f"#{record.event_id}",
            f"{record.checked_in_at:%Y-%m-%d %H:%M}",
            f"{record.distance_meters:.1f} m",
            "✓" if record.verified else "✗",
        )
    return table


def _stats_table(stats: UserAttendanceStats) -> Table:
    table = Table(Column(header="Metric", style="bold"), Column(header="Value", justify="right"), box=None)
    table.add_row("Total attendances", str(stats.total_attendances))
    table.add_row("Verified", str(stats.verified_attendances))
    table.add_row("Unverified", str(stats.unverified_attendances))
    table.add_row("Events attended", str(stats.events_attended))
    table.add_row("Average distance", f"{stats.average_distance:.2f} m")
    return table


def _location_backend(settings: Settings, args: argparse.Namespace) -> LocationBackend:
    latitude = args.lat if args.lat is not None else settings.latitude
    longitude = args.lon if args.lon is not None else settings.longitude
    if args.lat is not None or args.lon is not None or settings.location_source == "fixed":
        if latitude is None or longitude is None:
            raise ConfigError("No location configured: pass --lat/--lon or set LOCATION_LATITUDE/LOCATION_LONGITUDE")
        return FixedLocationBackend(latitude, longitude, accuracy=settings.accuracy)
    if settings.ip_location_url:
        return IpLocationBackend(settings.ip_location_url)
    return IpLocationBackend()


# ---------------------------------------------------------------------------
# Commands


async def _cmd_scan(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    console = _console()
    if not session.is_authenticated:
        log.warning("No saved session; the server will likely reject this scan")

    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        locator = GeolocationProvider(_location_backend(settings, args))
        controller = AttendanceFlowController(
            AttendanceSubmitter(api),
            locator,
            tier=args.tier or settings.location_tier,
        )

        controller.start_scanning()
        step("Registering attendance")
        async with spinner("Registering attendance", enabled=_spinner_enabled()) as spin:

            def on_change(snapshot: FlowSnapshot) -> None:
                label = STATE_LABELS.get(snapshot.state)
                if label:
                    spin.update(label)
                    progress(label)

            unsubscribe = controller.subscribe(on_change)
            try:
                snapshot = await controller.on_scan(args.code)
            finally:
                unsubscribe()
                controller.dispose()
            if snapshot.state is FlowState.SUCCESS:
                spin.update("Attendance registered")
                spin.succeed()
            else:
                spin.update("Attendance not registered")
                spin.fail()

    if snapshot.state is FlowState.SUCCESS:
        _render_record(console, snapshot)
        return 0
    if snapshot.error is not None:
        _render_error(console, snapshot.error)
        if snapshot.error.kind is ErrorKind.UNAUTHORIZED:
            session.clear()
    return 1


async def _cmd_login(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    password = args.password or getpass.getpass("Password: ")
    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        user = await AuthService(api, session).login(args.email, password)
    success(f"Logged in as {user.name} <{user.email}>")
    return 0


async def _cmd_register(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    password = args.password or getpass.getpass("Password: ")
    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        user = await AuthService(api, session).register(args.name, args.employee_id, args.email, password)
    success(f"Registered {user.name} <{user.email}>")
    return 0


async def _cmd_logout(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    # Logout is local only; no request is made.
    AuthService(AttendanceApi(settings.api_url, session), session).logout()
    success("Logged out")
    return 0


async def _cmd_whoami(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    if not session.is_authenticated:
        log.warning("Not logged in")
        return 1
    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        user = await AuthService(api, session).check_status()
    role = " (admin)" if user.is_admin else ""
    _console().print(f"[bold]{user.name}[/] <{user.email}>{role}")
    return 0


async def _cmd_history(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        service = HistoryService(api)
        if args.mine:
            filters = AttendanceFilters(verified=args.verified, event_name=args.event)
            records = await service.my_attendances(page=args.page, filters=filters)
            footer = f"{len(records)} records"
        else:
            page = await service.history(args.page)
            records = page.attendances
            footer = f"Page {page.current_page}" + (f" of {page.last_page}" if page.last_page else "") + f" • {page.total} total"
    console = _console()
    if not records:
        console.print("[dim]No attendances yet.[/]")
        return 0
    console.print(_records_table(records))
    console.print(f"[dim]{footer}[/]")
    return 0


async def _cmd_stats(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        service = HistoryService(api)
        if args.local:
            stats = calculate_stats(await service.my_attendances())
        else:
            stats = await service.my_stats()
    console = _console()
    console.print(_stats_table(stats))
    if stats.recent_attendances:
        console.print()
        console.print(_records_table(stats.recent_attendances))
    return 0


async def _cmd_matricula(args: argparse.Namespace, settings: Settings, session: SessionStore) -> int:
    async with AttendanceApi(settings.api_url, session, timeout=settings.request_timeout) as api:
        exists = await AuthService(api, session).validate_matricula(args.value)
    if exists is None:
        log.warning("Could not verify matricula %s", args.value)
        return 1
    _console().print(f"Matricula [bold]{args.value.strip()}[/]: {'registered' if exists else 'not registered'}")
    return 0


COMMANDS = {
    "scan": _cmd_scan,
    "login": _cmd_login,
    "register": _cmd_register,
    "logout": _cmd_logout,
    "whoami": _cmd_whoami,
    "history": _cmd_history,
    "stats": _cmd_stats,
    "matricula": _cmd_matricula,
}


def _verified_arg(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes"):
        return True
    if lowered in ("0", "false", "no"):
        return False
    raise argparse.ArgumentTypeError("expected true or false")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qr-attend", description="QR Attend: scan-based event attendance")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging")
    parser.add_argument("--env-file", help="Read settings from this .env file (default: ENV_FILE or .env)")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Register attendance with a scanned QR payload")
    scan.add_argument("code", help="QR payload (event UUID)")
    scan.add_argument("--tier", choices=["high", "balanced", "low"], help="Location accuracy tier")
    scan.add_argument("--lat", type=float, help="Latitude override")
    scan.add_argument("--lon", type=float, help="Longitude override")

    login = sub.add_parser("login", help="Sign in and store the session token")
    login.add_argument("email")
    login.add_argument("--password", help="Password (prompted when omitted)")

    register = sub.add_parser("register", help="Create an account")
    register.add_argument("name")
    register.add_argument("employee_id")
    register.add_argument("email")
    register.add_argument("--password", help="Password (prompted when omitted)")

    sub.add_parser("logout", help="Forget the stored session")
    sub.add_parser("whoami", help="Check the stored session against the server")

    history = sub.add_parser("history", help="List attendance records")
    history.add_argument("--page", type=int, default=1)
    history.add_argument("--mine", action="store_true", help="Use /attendances/my with filters")
    history.add_argument("--verified", type=_verified_arg, help="Filter by verified flag (with --mine)")
    history.add_argument("--event", help="Filter by event name (with --mine)")

    stats = sub.add_parser("stats", help="Show attendance statistics")
    stats.add_argument("--local", action="store_true", help="Compute from records instead of the stats endpoint")

    matricula = sub.add_parser("matricula", help="Check whether a matricula is registered")
    matricula.add_argument("value")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        set_log_profile("debug")

    try:
        settings = Settings.from_env(args.env_file)
    except ConfigError as exc:
        log.error(str(exc))
        return 2

    session = SessionStore(FileTokenStore(settings.session_file))
    handler = COMMANDS[args.command]
    try:
        return asyncio.run(handler(args, settings, session))
    except ConfigError as exc:
        log.error(str(exc))
        return 2
    except AttendanceError as exc:
        _render_error(_console(), exc, title=f"{args.command} failed")
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())

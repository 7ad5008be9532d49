"""Command-line interface for Commesse.

Commands:
- start / stop / switch: open and close the running session
- add / edit / delete / discard: manage recorded sessions
- status / history / total: inspect sessions
- expense: log an expense
- export: write the monthly report
- sync: push and pull now
- login / logout: manage remote mirror credentials
"""

import functools
import logging
import sys
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

import click

from .app import CommesseApp
from .config import Config, setup_logging
from .expenses import DEFAULT_CATEGORIES, InvalidAmount
from .models import WorkSession
from .reports import ExportError, month_bounds
from .rounding import RoundingRule, format_minutes
from .sessions import UNSET, WorkSessionError
from .storage import StorageError

logger = logging.getLogger(__name__)

ROUNDING_CHOICES = [rule.value for rule in RoundingRule]
INSTANT_FORMATS = ["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S"]


class InstantType(click.ParamType):
    """Local wall-clock time, ``HH:MM`` (today) or ``YYYY-MM-DD HH:MM``, as UTC."""

    name = "time"

    def convert(self, value, param, ctx):
        if isinstance(value, datetime):
            return value
        text = value.strip()
        try:
            parsed = datetime.strptime(text, "%H:%M")
            parsed = datetime.combine(date.today(), parsed.time())
        except ValueError:
            for fmt in INSTANT_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            else:
                self.fail(f"{value!r} is not a time (use HH:MM or YYYY-MM-DD HH:MM)", param, ctx)
        return parsed.astimezone().astimezone(timezone.utc)


class MonthType(click.ParamType):
    """Calendar month as ``YYYY-MM``."""

    name = "month"

    def convert(self, value, param, ctx):
        if isinstance(value, tuple):
            return value
        try:
            parsed = datetime.strptime(value.strip(), "%Y-%m")
        except ValueError:
            self.fail(f"{value!r} is not a month (use YYYY-MM)", param, ctx)
        return parsed.year, parsed.month


INSTANT = InstantType()
MONTH = MonthType()


def _this_month() -> tuple[int, int]:
    today = date.today()
    return today.year, today.month


def _local(instant: Optional[datetime]) -> str:
    if instant is None:
        return "--:--"
    return instant.astimezone().strftime("%Y-%m-%d %H:%M")


def _describe(app: CommesseApp, session: WorkSession) -> str:
    project = app.projects.get(session.project_id)
    name = project.name if project else "no project"
    if session.is_open:
        return f"{str(session.id)[:8]}  {_local(session.start)} -> open  [{name}]"
    return (
        f"{str(session.id)[:8]}  {_local(session.start)} -> {_local(session.end)}  "
        f"break {session.break_minutes}m  {format_minutes(session.payable_minutes)}  [{name}]"
    )


def handle_errors(func):
    """Print business and storage errors as one line and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (WorkSessionError, InvalidAmount, ExportError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except StorageError as e:
            logger.error(f"Storage error: {e}")
            click.echo(f"Save failed ({e.code})", err=True)
            sys.exit(1)

    return wrapper


def _resolve_session_id(app: CommesseApp, value: str) -> uuid.UUID:
    """Accept a full id or the short prefix printed by ``history``."""
    try:
        return uuid.UUID(value)
    except ValueError:
        pass
    matches = [s.id for s in app.store.all_sessions() if str(s.id).startswith(value.lower())]
    if len(matches) != 1:
        problem = "matches several sessions" if matches else "matches no session"
        click.echo(f"Error: '{value}' {problem}", err=True)
        sys.exit(1)
    return matches[0]


@click.group()
@click.version_option(package_name="commesse")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file to use instead of the default one.",
)
@click.option("--debug", is_flag=True, help="Verbose logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], debug: bool) -> None:
    """Commesse - time tracking per project (commessa)."""
    if ctx.obj is not None:
        return
    config = Config.load(config_path)
    setup_logging(debug or config.debug_mode)
    app = CommesseApp(config)
    app.bootstrap()
    ctx.obj = app
    ctx.call_on_close(app.shutdown)


# Session commands


@cli.command()
@click.option("--project", "-p", default=None, help="Project name (created if new).")
@click.option("--rounding", "-r", type=click.Choice(ROUNDING_CHOICES), default=None)
@click.option("--at", type=INSTANT, default=None, help="Start time (default: now).")
@click.option("--note", "-n", default=None)
@click.pass_obj
@handle_errors
def start(app: CommesseApp, project, rounding, at, note) -> None:
    """Start a session. Does nothing if one is already open."""
    existing = app.current_session()
    session = app.start_session(project_name=project, rounding=rounding, at=at, note=note)
    if existing is not None:
        click.echo("A session is already open:")
    click.echo(_describe(app, session))


@cli.command()
@click.option("--break", "-b", "break_minutes", type=click.IntRange(min=0), default=0)
@click.option("--at", type=INSTANT, default=None, help="End time (default: now).")
@click.pass_obj
@handle_errors
def stop(app: CommesseApp, break_minutes, at) -> None:
    """Stop the open session."""
    session = app.stop_session(break_minutes=break_minutes, at=at)
    click.echo(_describe(app, session))


@cli.command()
@click.option("--project", "-p", default=None, help="Project of the new session.")
@click.option("--rounding", "-r", type=click.Choice(ROUNDING_CHOICES), default=None)
@click.option("--at", type=INSTANT, default=None)
@click.pass_obj
@handle_errors
def switch(app: CommesseApp, project, rounding, at) -> None:
    """Stop the open session and start a new one at the same time."""
    session = app.switch_session(project_name=project, rounding=rounding, at=at)
    click.echo(_describe(app, session))


@cli.command()
@click.argument("start_at", metavar="START", type=INSTANT)
@click.argument("end_at", metavar="[END]", type=INSTANT, required=False)
@click.option("--break", "-b", "break_minutes", type=click.IntRange(min=0), default=0)
@click.option("--project", "-p", default=None)
@click.option("--note", "-n", default=None)
@click.option("--rounding", "-r", type=click.Choice(ROUNDING_CHOICES), default=None)
@click.pass_obj
@handle_errors
def add(app: CommesseApp, start_at, end_at, break_minutes, project, note, rounding) -> None:
    """Record a session by hand. Without END the session is left open."""
    session = app.add_session(
        start_at,
        end_at,
        break_minutes=break_minutes,
        project_name=project,
        note=note,
        rounding=rounding,
    )
    click.echo(_describe(app, session))


@cli.command()
@click.argument("session_id")
@click.option("--start", "start_at", type=INSTANT, default=None)
@click.option("--end", "end_at", type=INSTANT, default=None)
@click.option("--reopen", is_flag=True, help="Clear the end time.")
@click.option("--break", "-b", "break_minutes", type=click.IntRange(min=0), default=None)
@click.option("--note", "-n", default=None)
@click.option("--project", "-p", default=None, help="Project name; empty to unlink.")
@click.option("--rounding", "-r", type=click.Choice(ROUNDING_CHOICES), default=None)
@click.pass_obj
@handle_errors
def edit(app: CommesseApp, session_id, start_at, end_at, reopen, break_minutes, note, project, rounding) -> None:
    """Edit a recorded session."""
    if reopen and end_at is not None:
        raise click.UsageError("--reopen and --end are mutually exclusive")

    changes = {}
    if start_at is not None:
        changes["start"] = start_at
    if end_at is not None:
        changes["end"] = end_at
    if reopen:
        changes["end"] = None
    if break_minutes is not None:
        changes["break_minutes"] = break_minutes
    if note is not None:
        changes["note"] = note
    if rounding is not None:
        changes["rounding"] = rounding

    session = app.edit_session(
        _resolve_session_id(app, session_id),
        project_name=project if project is not None else UNSET,
        **changes,
    )
    click.echo(_describe(app, session))


@cli.command()
@click.argument("session_id")
@click.pass_obj
@handle_errors
def delete(app: CommesseApp, session_id) -> None:
    """Delete a recorded session."""
    target = _resolve_session_id(app, session_id)
    if not app.delete_session(target):
        click.echo(f"Error: session {session_id} not found", err=True)
        sys.exit(1)
    click.echo(f"Deleted {target}")


@cli.command()
@click.pass_obj
@handle_errors
def discard(app: CommesseApp) -> None:
    """Throw away the open session."""
    session = app.discard_session()
    if session is None:
        click.echo("No open session")
    else:
        click.echo(f"Discarded session started {_local(session.start)}")


@cli.command()
@click.pass_obj
@handle_errors
def status(app: CommesseApp) -> None:
    """Show the open session."""
    session = app.current_session()
    if session is None:
        click.echo("No open session")
        return
    click.echo(_describe(app, session))


@cli.command()
@click.option("--month", "-m", type=MONTH, default=None, help="YYYY-MM (default: this month).")
@click.option("--project", "-p", default=None)
@click.pass_obj
@handle_errors
def history(app: CommesseApp, month, project) -> None:
    """List sessions of a month, newest first."""
    start_at, end_at = month_bounds(*(month or _this_month()))
    sessions = app.history(start_at, end_at, project_name=project)
    if not sessions:
        click.echo("No sessions")
        return
    for session in sessions:
        click.echo(_describe(app, session))


@cli.command()
@click.option("--month", "-m", type=MONTH, default=None, help="YYYY-MM (default: this month).")
@click.pass_obj
@handle_errors
def total(app: CommesseApp, month) -> None:
    """Payable time of the closed sessions of a month."""
    start_at, end_at = month_bounds(*(month or _this_month()))
    click.echo(format_minutes(app.total_minutes(start_at, end_at)))


# Expenses and reports


@cli.command()
@click.argument("amount")
@click.argument("category", required=False, default=DEFAULT_CATEGORIES[-1])
@click.option("--date", "spent_on", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.option("--note", "-n", default=None)
@click.option("--project", "-p", default=None)
@click.option("--receipt", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None)
@click.pass_obj
@handle_errors
def expense(app: CommesseApp, amount, category, spent_on, note, project, receipt) -> None:
    """Log an expense, e.g. ``commesse expense 12,50 Meals``."""
    logged = app.log_expense(
        amount,
        category,
        spent_on=spent_on.date() if spent_on else None,
        note=note,
        project_name=project,
        receipt=receipt.read_bytes() if receipt else None,
    )
    click.echo(f"Logged {logged.amount:.2f} {logged.category} on {logged.date.isoformat()}")


@cli.command()
@click.option("--month", "-m", type=MONTH, default=None, help="YYYY-MM (default: this month).")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path.cwd,
)
@click.option("--title", "-t", default=None)
@click.pass_obj
@handle_errors
def export(app: CommesseApp, month, output_dir, title) -> None:
    """Write the monthly report archive."""
    year, number = month or _this_month()
    result = app.export_month(year, number, output_dir, title=title)
    click.echo(
        f"Exported {result.session_count} sessions and {result.expense_count} expenses "
        f"to {result.path}"
    )


# Sync and credentials


@cli.command()
@click.pass_obj
@handle_errors
def sync(app: CommesseApp) -> None:
    """Push local changes and pull remote ones now."""
    stats = app.sync_now()
    if stats is None:
        click.echo("Sync is disabled (no remote configured)")
        return
    click.echo(
        f"Pushed {stats.records_pushed}, pulled {stats.records_fetched} "
        f"({stats.records_inserted} new, {stats.records_updated} updated)"
    )
    for error in stats.errors:
        click.echo(f"Warning: {error}", err=True)
    if not stats.success:
        sys.exit(1)


@cli.command()
@click.argument("api_url")
@click.option("--token", prompt="API token", hide_input=True)
@click.pass_obj
def login(app: CommesseApp, api_url, token) -> None:
    """Store an API token for a remote mirror and enable sync."""
    if not app.login(api_url, token):
        click.echo("Error: could not store credentials in the keychain", err=True)
        sys.exit(1)
    click.echo(f"Logged in to {api_url.rstrip('/')}")


@cli.command()
@click.pass_obj
def logout(app: CommesseApp) -> None:
    """Forget the remote credentials. Local data is kept."""
    if not app.logout():
        click.echo("Error: could not remove credentials from the keychain", err=True)
        sys.exit(1)
    click.echo("Logged out")


def main() -> None:
    cli(prog_name="commesse")


if __name__ == "__main__":
    main()

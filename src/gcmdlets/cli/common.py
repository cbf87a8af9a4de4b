"""Helpers shared by the command groups: output, errors, project and input."""

import json
import logging
import signal
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, TextIO

import typer
from google.api_core import exceptions as gcp_exceptions
from rich.console import Console

from gcmdlets.config import resolve_project
from gcmdlets.core import GCmdletsError, InvalidArgumentError, PermissionDeniedError
from gcmdlets.formatters import build_table, format_json, format_name
from gcmdlets.paging import CancellationToken
from gcmdlets.services import build_service

logger = logging.getLogger(__name__)

console = Console()
error_console = Console(stderr=True)


class OutputFormat(str, Enum):
    json = "json"
    table = "table"
    name = "name"


def report_error(e: Exception) -> None:
    """Print an error to stderr without exiting."""
    if isinstance(e, PermissionDeniedError):
        error_console.print(f"[red]Permission Denied:[/red] {e}")
        error_console.print(
            "[dim]Hint: Run 'gcloud auth application-default login' or check IAM roles.[/dim]"
        )
    elif isinstance(e, GCmdletsError):
        target = f" [dim]({e.resource})[/dim]" if e.resource else ""
        error_console.print(f"[red]Error ({e.category}):[/red] {e}{target}")
    elif isinstance(e, gcp_exceptions.ServiceUnavailable):
        error_console.print(
            "[red]Service Unavailable:[/red] The GCP API is currently unreachable."
        )
    elif isinstance(e, gcp_exceptions.GoogleAPICallError):
        error_console.print(f"[red]API Error:[/red] {e}")
    else:
        error_console.print(f"[red]Unexpected Error:[/red] {e}")
        logging.exception("Unexpected error occurred")


def handle_error(e: Exception) -> None:
    """Central error handler for CLI."""
    if isinstance(e, (typer.Exit, typer.Abort)):
        raise e
    report_error(e)
    raise typer.Exit(code=1)


def get_project(ctx: typer.Context) -> str:
    return resolve_project(ctx.obj.get("project"))


def get_service(api: str) -> Any:
    return build_service(api)


def emit(ctx: typer.Context, items: Iterable[Any], kind: Optional[str] = None) -> int:
    """Write resources to stdout in the selected format.

    JSON and name output are streamed item by item. Table output is
    rendered once all items have arrived.

    Returns:
        The number of items written.
    """
    fmt = ctx.obj.get("format", OutputFormat.json)
    if fmt == OutputFormat.table:
        items = list(items)
        console.print(build_table(items, kind))
        return len(items)

    count = 0
    for item in items:
        if fmt == OutputFormat.name:
            print(format_name(item, kind))
        else:
            print(format_json(item))
        count += 1
    return count


@contextmanager
def interruptible() -> Iterator[CancellationToken]:
    """Turn the first Ctrl-C into a cancellation request between pages.

    A second Ctrl-C interrupts immediately.
    """
    token = CancellationToken()

    def on_interrupt(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        error_console.print(
            "[yellow]Interrupted, stopping after the current page...[/yellow]"
        )
        token.cancel()

    previous = signal.signal(signal.SIGINT, on_interrupt)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def for_each(targets: Sequence[Any], action: Callable[[Any], None]) -> None:
    """Apply ``action`` to every target.

    With a single target errors propagate. With several, each failure is
    reported and the rest still run; the command exits 1 at the end.
    """
    if len(targets) == 1:
        action(targets[0])
        return

    failures = 0
    for target in targets:
        try:
            action(target)
        except (GCmdletsError, gcp_exceptions.GoogleAPICallError) as e:
            report_error(e)
            failures += 1
    if failures:
        logger.debug(f"{failures} of {len(targets)} target(s) failed")
        raise typer.Exit(code=1)


def read_resources(stream: TextIO) -> List[Dict[str, Any]]:
    """Read resources piped from another command.

    Accepts a JSON object, a JSON array, or JSON lines.
    """
    text = stream.read().strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = [json.loads(line) for line in text.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise InvalidArgumentError(f"Input is not valid JSON: {e}") from e
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise InvalidArgumentError("Input must be a JSON object or a list of objects.")
    return data


def parse_key_values(values: Optional[Sequence[str]], option: str) -> Dict[str, str]:
    """Parse repeated ``key=value`` options into a dict."""
    result: Dict[str, str] = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise InvalidArgumentError(f"{option} expects key=value, got '{value}'.")
        result[key] = val
    return result

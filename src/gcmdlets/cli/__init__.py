import logging
from typing import Optional

import typer

from gcmdlets.cache import CACHE_FILE, clear_cache
from gcmdlets.cli import bigquery, logs, pubsub, storage
from gcmdlets.cli.common import OutputFormat, console, handle_error

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="gcmdlets",
    help="Google Cloud BigQuery, Pub/Sub, Logging and Storage from the shell",
    add_completion=False,
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Manage the local resource type cache.", no_args_is_help=True)

app.add_typer(bigquery.app, name="bq")
app.add_typer(pubsub.app, name="pubsub")
app.add_typer(logs.app, name="logging")
app.add_typer(storage.app, name="storage")
app.add_typer(cache_app, name="cache")


@app.callback()
def main(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project ID. Defaults to the gcloud or environment configuration.",
    ),
    output_format: OutputFormat = typer.Option(
        OutputFormat.json, "--format", "-f", help="Output format"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """
    gcmdlets - Google Cloud REST resources from the shell
    """
    ctx.ensure_object(dict)
    ctx.obj["project"] = project
    ctx.obj["format"] = output_format

    if debug:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.ERROR)

    # Always suppress urllib3 and discovery cache debug logs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.WARNING)


@cache_app.command("clear")
def cache_clear() -> None:
    """
    Delete the cached monitored resource types.
    """
    try:
        if clear_cache():
            console.print(f"Removed {CACHE_FILE}")
        else:
            console.print("No cache to remove.")
    except Exception as e:
        handle_error(e)


def run() -> None:
    app()


if __name__ == "__main__":
    app()

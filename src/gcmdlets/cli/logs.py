import json
import logging
from datetime import datetime
from typing import List, Optional

import typer
from typing_extensions import Annotated

from gcmdlets import logs
from gcmdlets.cli.common import (
    emit,
    error_console,
    for_each,
    get_project,
    get_service,
    handle_error,
    interruptible,
    parse_key_values,
)
from gcmdlets.core import InvalidArgumentError

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Cloud Logging entries, logs, sinks, metrics and resources.", no_args_is_help=True
)
entry_app = typer.Typer(help="Read and write log entries.", no_args_is_help=True)
log_app = typer.Typer(help="Manage logs.", no_args_is_help=True)
sink_app = typer.Typer(help="Manage log sinks.", no_args_is_help=True)
metric_app = typer.Typer(help="Manage log-based metrics.", no_args_is_help=True)
resource_type_app = typer.Typer(help="Monitored resource types.", no_args_is_help=True)
resource_app = typer.Typer(help="Build monitored resources.", no_args_is_help=True)
app.add_typer(entry_app, name="entry")
app.add_typer(log_app, name="log")
app.add_typer(sink_app, name="sink")
app.add_typer(metric_app, name="metric")
app.add_typer(resource_type_app, name="resource-type")
app.add_typer(resource_app, name="resource")

LogNameOption = Annotated[Optional[str], typer.Option("--log-name", help="Only this log")]
SeverityOption = Annotated[
    Optional[str], typer.Option("--severity", help="Only entries with this severity")
]
ResourceTypeOption = Annotated[
    Optional[str],
    typer.Option("--resource-type", help="Only entries from this monitored resource type"),
]
FilterOption = Annotated[
    Optional[str], typer.Option("--filter", help="Advanced logs filter expression")
]


def _resource_type(resource_type: Optional[str]) -> Optional[str]:
    if resource_type is None:
        return None
    cache = logs.resource_type_cache(get_service("logging"))
    return cache.validate(resource_type)


def _structured_filter(
    project: str,
    log_name: Optional[str],
    severity: Optional[str],
    resource_type: Optional[str],
    before: Optional[datetime] = None,
    after: Optional[datetime] = None,
    other: Optional[str] = None,
) -> str:
    return logs.build_filter(
        log_name=logs.log_path(log_name, project) if log_name else None,
        severity=severity,
        resource_type=_resource_type(resource_type),
        before=before,
        after=after,
        other=other,
    )


# --- Entries ---


@entry_app.command("list")
def entry_list(
    ctx: typer.Context,
    log_name: LogNameOption = None,
    severity: SeverityOption = None,
    resource_type: ResourceTypeOption = None,
    before: Optional[datetime] = typer.Option(
        None, "--before", help="Only entries at or before this time (local time)"
    ),
    after: Optional[datetime] = typer.Option(
        None, "--after", help="Only entries at or after this time (local time)"
    ),
    filter_expr: FilterOption = None,
    order_by: Optional[str] = typer.Option(
        None, "--order-by", help="'timestamp asc' (default) or 'timestamp desc'"
    ),
) -> None:
    """
    List log entries of a project.
    """
    try:
        project = get_project(ctx)
        structured = any(v is not None for v in (log_name, severity, resource_type, before, after))
        if filter_expr and structured:
            raise InvalidArgumentError(
                "--filter cannot be combined with --log-name, --severity, "
                "--resource-type, --before or --after."
            )
        if not filter_expr:
            filter_expr = _structured_filter(
                project, log_name, severity, resource_type, before, after
            )
        with interruptible() as cancel:
            items = logs.list_entries(
                get_service("logging"), project, filter_expr or None, order_by, cancel
            )
            emit(ctx, items, "entry")
    except Exception as e:
        handle_error(e)


@entry_app.command("write")
def entry_write(
    ctx: typer.Context,
    log_name: Annotated[str, typer.Argument(help="Log to write to")],
    text: Annotated[
        Optional[List[str]], typer.Option("--text", help="Text payload (repeatable)")
    ] = None,
    json_payload: Annotated[
        Optional[List[str]],
        typer.Option("--json", help="JSON object payload (repeatable)"),
    ] = None,
    severity: str = typer.Option("DEFAULT", "--severity", help="Entry severity"),
    resource_type: Optional[str] = typer.Option(
        None, "--resource-type", help="Monitored resource type (default: global)"
    ),
    labels: Annotated[
        Optional[List[str]],
        typer.Option("--label", help="key=value label of the monitored resource"),
    ] = None,
) -> None:
    """
    Write entries to a log.
    """
    try:
        project = get_project(ctx)
        payloads = []
        for raw in json_payload or []:
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as e:
                raise InvalidArgumentError(f"--json is not valid JSON: {e}") from e
            if not isinstance(payload, dict):
                raise InvalidArgumentError("--json must be a JSON object.")
            payloads.append(payload)

        resource = None
        if resource_type is not None:
            cache = logs.resource_type_cache(get_service("logging"))
            resource = logs.new_monitored_resource(
                cache, resource_type, parse_key_values(labels, "--label")
            )
        elif labels:
            raise InvalidArgumentError("--label requires --resource-type.")

        entries = logs.build_entries(
            log_name, project, list(text or []), payloads, severity, resource
        )
        logs.write_entries(get_service("logging"), project, entries)
    except Exception as e:
        handle_error(e)


# --- Logs ---


@log_app.command("list")
def log_list(ctx: typer.Context) -> None:
    """
    List the logs of a project.
    """
    try:
        project = get_project(ctx)
        with interruptible() as cancel:
            emit(ctx, logs.list_logs(get_service("logging"), project, cancel), "log")
    except Exception as e:
        handle_error(e)


@log_app.command("delete")
def log_delete(
    ctx: typer.Context,
    names: Annotated[List[str], typer.Argument(help="Log names")],
) -> None:
    """
    Delete logs and all of their entries.
    """
    try:
        project = get_project(ctx)
        service = get_service("logging")
        for_each(names, lambda n: logs.delete_log(service, project, n))
    except Exception as e:
        handle_error(e)


# --- Sinks ---


@sink_app.command("list")
def sink_list(ctx: typer.Context) -> None:
    """
    List the sinks of a project.
    """
    try:
        project = get_project(ctx)
        with interruptible() as cancel:
            emit(ctx, logs.list_sinks(get_service("logging"), project, cancel), "sink")
    except Exception as e:
        handle_error(e)


@sink_app.command("get")
def sink_get(
    ctx: typer.Context,
    names: Annotated[List[str], typer.Argument(help="Sink names")],
) -> None:
    """
    Get sinks by name.
    """
    try:
        project = get_project(ctx)
        service = get_service("logging")
        for_each(names, lambda n: emit(ctx, [logs.get_sink(service, project, n)], "sink"))
    except Exception as e:
        handle_error(e)


@sink_app.command("create")
def sink_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Sink name")],
    bucket: Optional[str] = typer.Option(None, "--bucket", help="Export to this bucket"),
    dataset: Optional[str] = typer.Option(
        None, "--dataset", help="Export to this BigQuery dataset"
    ),
    topic: Optional[str] = typer.Option(None, "--topic", help="Export to this topic"),
    log_name: LogNameOption = None,
    severity: SeverityOption = None,
    resource_type: ResourceTypeOption = None,
    filter_expr: FilterOption = None,
    unique_writer_identity: bool = typer.Option(
        True,
        "--unique-writer-identity/--no-unique-writer-identity",
        help="Give the sink its own service account",
    ),
) -> None:
    """
    Create a sink that exports matching entries.
    """
    try:
        project = get_project(ctx)
        destination, permission = logs.sink_destination(project, bucket, dataset, topic)
        filter_string = _structured_filter(
            project, log_name, severity, resource_type, other=filter_expr
        )
        sink = logs.create_sink(
            get_service("logging"),
            project,
            name,
            destination,
            filter_string or None,
            unique_writer_identity,
        )
        emit(ctx, [sink], "sink")
        if sink.get("writerIdentity"):
            error_console.print(
                f"Please remember to grant '{sink['writerIdentity']}' {permission}."
            )
    except Exception as e:
        handle_error(e)


# --- Metrics ---


@metric_app.command("list")
def metric_list(ctx: typer.Context) -> None:
    """
    List the log-based metrics of a project.
    """
    try:
        project = get_project(ctx)
        with interruptible() as cancel:
            emit(ctx, logs.list_metrics(get_service("logging"), project, cancel), "metric")
    except Exception as e:
        handle_error(e)


@metric_app.command("get")
def metric_get(
    ctx: typer.Context,
    names: Annotated[List[str], typer.Argument(help="Metric names")],
) -> None:
    """
    Get log-based metrics by name.
    """
    try:
        project = get_project(ctx)
        service = get_service("logging")
        for_each(names, lambda n: emit(ctx, [logs.get_metric(service, project, n)], "metric"))
    except Exception as e:
        handle_error(e)


@metric_app.command("create")
def metric_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Metric name")],
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
    log_name: LogNameOption = None,
    severity: SeverityOption = None,
    resource_type: ResourceTypeOption = None,
    before: Optional[datetime] = typer.Option(
        None, "--before", help="Only count entries at or before this time"
    ),
    after: Optional[datetime] = typer.Option(
        None, "--after", help="Only count entries at or after this time"
    ),
    filter_expr: FilterOption = None,
) -> None:
    """
    Create a log-based metric counting the matching entries.
    """
    try:
        project = get_project(ctx)
        filter_string = _structured_filter(
            project, log_name, severity, resource_type, before, after, filter_expr
        )
        metric = logs.create_metric(
            get_service("logging"), project, name, filter_string, description
        )
        emit(ctx, [metric], "metric")
    except Exception as e:
        handle_error(e)


# --- Monitored resources ---


@resource_type_app.command("list")
def resource_type_list(ctx: typer.Context) -> None:
    """
    List monitored resource types, from the local cache when available.
    """
    try:
        cache = logs.resource_type_cache(get_service("logging"))
        emit(ctx, cache.descriptors, "resource-type")
    except Exception as e:
        handle_error(e)


@resource_app.command("new")
def resource_new(
    ctx: typer.Context,
    resource_type: Annotated[str, typer.Argument(help="Monitored resource type")],
    labels: Annotated[
        Optional[List[str]], typer.Option("--label", help="key=value label (repeatable)")
    ] = None,
) -> None:
    """
    Print a monitored resource, checking its labels against the resource type.
    """
    try:
        cache = logs.resource_type_cache(get_service("logging"))
        resource = logs.new_monitored_resource(
            cache, resource_type, parse_key_values(labels, "--label")
        )
        print(json.dumps(resource))
    except Exception as e:
        handle_error(e)

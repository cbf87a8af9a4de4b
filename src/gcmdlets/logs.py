"""Cloud Logging v2 bindings: entries, logs, sinks, metrics and monitored resources."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from gcmdlets.cache import ResourceTypeCache
from gcmdlets.core import (
    InvalidArgumentError,
    ResourceConflictError,
    qualify_name,
)
from gcmdlets.paging import (
    CancellationToken,
    NullResponsePolicy,
    execute,
    get_or_raise,
    iter_items,
)

logger = logging.getLogger(__name__)

SEVERITIES = (
    "DEFAULT",
    "DEBUG",
    "INFO",
    "NOTICE",
    "WARNING",
    "ERROR",
    "CRITICAL",
    "ALERT",
    "EMERGENCY",
)

GLOBAL_RESOURCE_TYPE = "global"


def log_path(name: str, project: str) -> str:
    """Fully qualify a log name, URL-encoding short names such as ``a/b``."""
    if not name or name.startswith(f"projects/{project}/logs"):
        return name
    return qualify_name(quote(name, safe=""), project, "logs")


def sink_path(name: str, project: str) -> str:
    return qualify_name(name, project, "sinks")


def metric_path(name: str, project: str) -> str:
    return qualify_name(name, project, "metrics")


def validate_severity(severity: str) -> str:
    value = severity.upper()
    if value not in SEVERITIES:
        raise InvalidArgumentError(
            f"Unknown severity '{severity}'. Valid values: {', '.join(SEVERITIES)}."
        )
    return value


def format_timestamp(value: datetime) -> str:
    """RFC 3339 with offset; naive datetimes are taken as local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


def build_filter(
    log_name: Optional[str] = None,
    severity: Optional[str] = None,
    resource_type: Optional[str] = None,
    before: Optional[datetime] = None,
    after: Optional[datetime] = None,
    other: Optional[str] = None,
) -> str:
    """Join the structured constraints (and an optional raw filter) with AND.

    ``log_name`` must already be fully qualified.
    """
    terms = []
    if log_name and log_name.strip():
        terms.append(f'logName = "{log_name}"')
    if severity:
        terms.append(f"severity = {validate_severity(severity)}")
    if resource_type:
        terms.append(f'resource.type = "{resource_type}"')
    if before is not None:
        terms.append(f'timestamp <= "{format_timestamp(before)}"')
    if after is not None:
        terms.append(f'timestamp >= "{format_timestamp(after)}"')
    if other and other.strip():
        terms.append(other.strip())
    return " AND ".join(terms)


# --- Entries ---


def list_entries(
    service: Any,
    project: str,
    filter_expr: Optional[str] = None,
    order_by: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Dict[str, Any]]:
    logger.debug(f"GCP API: entries.list(project={project}, filter={filter_expr!r})")

    def make_request(page_token):
        body: Dict[str, Any] = {"resourceNames": [f"projects/{project}"]}
        if filter_expr:
            body["filter"] = filter_expr
        if order_by:
            body["orderBy"] = order_by
        if page_token:
            body["pageToken"] = page_token
        return service.entries().list(body=body)

    return iter_items(make_request, "entries", f"log entries of project '{project}'", cancel)


def global_resource(project: str) -> Dict[str, Any]:
    return {"type": GLOBAL_RESOURCE_TYPE, "labels": {"project_id": project}}


def build_entries(
    log_name: str,
    project: str,
    text_payloads: Sequence[str] = (),
    json_payloads: Sequence[Mapping[str, Any]] = (),
    severity: str = "DEFAULT",
    resource: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """One LogEntry per payload, all in the same log."""
    if not text_payloads and not json_payloads:
        raise InvalidArgumentError("Provide at least one text or JSON payload.")
    if text_payloads and json_payloads:
        raise InvalidArgumentError("Text and JSON payloads cannot be mixed in one write.")

    base = {
        "logName": log_path(log_name, project),
        "severity": validate_severity(severity),
        "resource": resource or global_resource(project),
    }
    entries = [dict(base, textPayload=text) for text in text_payloads]
    entries.extend(dict(base, jsonPayload=dict(payload)) for payload in json_payloads)
    return entries


def write_entries(service: Any, project: str, entries: List[Dict[str, Any]]) -> None:
    execute(
        service.entries().write(body={"entries": entries}),
        entries[0]["logName"] if entries else "log",
        project,
        action="write to",
    )
    logger.debug(f"GCP API: entries.write() wrote {len(entries)} entr(ies)")


# --- Logs ---


def list_logs(
    service: Any, project: str, cancel: Optional[CancellationToken] = None
) -> Iterator[str]:
    def make_request(page_token):
        return service.projects().logs().list(
            parent=f"projects/{project}", pageToken=page_token
        )

    return iter_items(make_request, "logNames", f"logs of project '{project}'", cancel)


def delete_log(service: Any, project: str, name: str) -> None:
    log = log_path(name, project)
    execute(
        service.projects().logs().delete(logName=log),
        log,
        project,
        action="delete",
    )


# --- Sinks ---


def sink_destination(
    project: str,
    bucket: Optional[str] = None,
    dataset: Optional[str] = None,
    topic: Optional[str] = None,
) -> Tuple[str, str]:
    """Return the sink destination and the permission its writer identity needs."""
    given = [d for d in (bucket, dataset, topic) if d]
    if len(given) != 1:
        raise InvalidArgumentError(
            "Specify exactly one destination: a bucket, a dataset or a topic."
        )
    if bucket:
        return (
            f"storage.googleapis.com/{bucket}",
            f"'Owner' permission to the bucket '{bucket}'",
        )
    if dataset:
        return (
            f"bigquery.googleapis.com/projects/{project}/datasets/{dataset}",
            f"'Can edit' permission to the dataset '{dataset}'",
        )
    return (
        f"pubsub.googleapis.com/projects/{project}/topics/{topic}",
        f"'Editor' permission in the project '{project}'",
    )


def list_sinks(
    service: Any, project: str, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.projects().sinks().list(
            parent=f"projects/{project}", pageToken=page_token
        )

    return iter_items(make_request, "sinks", f"sinks of project '{project}'", cancel)


def get_sink(service: Any, project: str, name: str) -> Dict[str, Any]:
    sink = sink_path(name, project)
    return get_or_raise(service.projects().sinks().get(sinkName=sink), sink, project)


def create_sink(
    service: Any,
    project: str,
    name: str,
    destination: str,
    filter_expr: Optional[str] = None,
    unique_writer_identity: bool = True,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"name": name, "destination": destination}
    if filter_expr:
        body["filter"] = filter_expr
    return execute(
        service.projects().sinks().create(
            parent=f"projects/{project}",
            body=body,
            uniqueWriterIdentity=unique_writer_identity,
        ),
        name,
        project,
        action="create",
        messages={
            ResourceConflictError: f"Sink '{name}' already exists in project '{project}'."
        },
    )


# --- Metrics ---


def list_metrics(
    service: Any, project: str, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.projects().metrics().list(
            parent=f"projects/{project}", pageToken=page_token
        )

    return iter_items(make_request, "metrics", f"metrics of project '{project}'", cancel)


def get_metric(service: Any, project: str, name: str) -> Dict[str, Any]:
    metric = metric_path(name, project)
    return get_or_raise(
        service.projects().metrics().get(metricName=metric), metric, project
    )


def create_metric(
    service: Any,
    project: str,
    name: str,
    filter_expr: str,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    if not filter_expr or not filter_expr.strip():
        raise InvalidArgumentError(
            "A log-based metric needs a filter. Use --log-name, --severity, "
            "--resource-type or --filter.",
            resource=name,
        )
    body: Dict[str, Any] = {"name": name, "filter": filter_expr}
    if description:
        body["description"] = description
    return execute(
        service.projects().metrics().create(parent=f"projects/{project}", body=body),
        name,
        project,
        action="create",
        messages={
            ResourceConflictError: f"Metric '{name}' already exists in project '{project}'."
        },
    )


# --- Monitored resources ---


def list_resource_descriptors(
    service: Any,
    cancel: Optional[CancellationToken] = None,
    on_null: NullResponsePolicy = NullResponsePolicy.WARN,
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.monitoredResourceDescriptors().list(pageToken=page_token)

    return iter_items(
        make_request,
        "resourceDescriptors",
        "monitored resource descriptors",
        cancel,
        on_null=on_null,
    )


def resource_type_cache(service: Any, persist: bool = True) -> ResourceTypeCache:
    # A truncated listing must never reach the cache file.
    return ResourceTypeCache(
        lambda: list_resource_descriptors(service, on_null=NullResponsePolicy.ABORT),
        persist=persist,
    )


def new_monitored_resource(
    cache: ResourceTypeCache, resource_type: str, labels: Mapping[str, str]
) -> Dict[str, Any]:
    """Build a MonitoredResource, checking label keys against its descriptor."""
    canonical = cache.validate(resource_type)
    valid_keys = cache.label_keys(canonical)
    for key in labels:
        if key not in valid_keys:
            raise InvalidArgumentError(
                f"Label '{key}' is not valid for resource type '{canonical}'. "
                f"The available labels are '{', '.join(valid_keys)}'.",
                resource=canonical,
            )
    return {"type": canonical, "labels": dict(labels)}

"""BigQuery v2 bindings: datasets, tables, schemas, rows and jobs.

Every function takes the discovery ``service`` as its first argument and
works on the plain JSON dicts the REST API returns.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from googleapiclient.http import MediaFileUpload

from gcmdlets.core import (
    DatasetReference,
    FetchResult,
    FetchStatus,
    InvalidArgumentError,
    JobFailedError,
    JobReference,
    ResourceConflictError,
    ResourceNotFoundError,
    TableReference,
)
from gcmdlets.paging import (
    CancellationToken,
    execute,
    fetch,
    get_or_raise,
    iter_items,
)
from gcmdlets.polling import POLL_INTERVAL, poll_until_done
from gcmdlets.prompts import ConfirmationGate

logger = logging.getLogger(__name__)

DATASET_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_]{1,1024}$")
TABLE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_]{1,1024}$")
COLUMN_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]{0,299}$")
LABEL_FILTER_PATTERN = re.compile(r"^labels\.[a-z0-9_-]+(:[a-z0-9_-]*)?$")

MIN_DATASET_EXPIRATION_SECONDS = 3600

COLUMN_TYPES = (
    "STRING",
    "BYTES",
    "INTEGER",
    "INT64",
    "FLOAT",
    "FLOAT64",
    "BOOLEAN",
    "BOOL",
    "TIMESTAMP",
    "DATE",
    "TIME",
    "DATETIME",
    "RECORD",
    "STRUCT",
)
RECORD_TYPES = ("RECORD", "STRUCT")
COLUMN_MODES = ("NULLABLE", "REQUIRED", "REPEATED")
JOB_STATES = ("done", "pending", "running")
WRITE_DISPOSITIONS = ("WRITE_TRUNCATE", "WRITE_APPEND", "WRITE_EMPTY")
SOURCE_FORMATS = {
    "csv": "CSV",
    "json": "NEWLINE_DELIMITED_JSON",
    "avro": "AVRO",
}


# --- Datasets ---


def validate_dataset_id(dataset_id: str) -> None:
    if not DATASET_ID_PATTERN.match(dataset_id or ""):
        raise InvalidArgumentError(
            f"Dataset ID '{dataset_id}' must contain only letters, numbers and "
            "underscores, and be at most 1024 characters long.",
            resource=dataset_id,
        )


def build_label_filter(terms: Sequence[str]) -> Optional[str]:
    """Validate ``labels.key[:value]`` terms and join them for datasets.list."""
    if not terms:
        return None
    for term in terms:
        if not LABEL_FILTER_PATTERN.match(term):
            raise InvalidArgumentError(
                f"Invalid label filter '{term}'. Use 'labels.<name>[:<value>]'."
            )
    return " ".join(terms)


def list_datasets(
    service: Any,
    project: str,
    include_hidden: bool = False,
    label_filter: Optional[Sequence[str]] = None,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Dict[str, Any]]:
    filter_expr = build_label_filter(label_filter or [])
    logger.debug(f"GCP API: datasets.list(project={project}, filter={filter_expr!r})")

    def make_request(page_token):
        return service.datasets().list(
            projectId=project,
            all=include_hidden or None,
            filter=filter_expr,
            pageToken=page_token,
        )

    return iter_items(make_request, "datasets", f"datasets of project '{project}'", cancel)


def fetch_dataset(service: Any, ref: DatasetReference) -> FetchResult:
    request = service.datasets().get(projectId=ref.project_id, datasetId=ref.dataset_id)
    return fetch(request, ref.dataset_id, ref.project_id)


def get_dataset(service: Any, ref: DatasetReference) -> Dict[str, Any]:
    return fetch_dataset(service, ref).unwrap()


def build_dataset(
    ref: DatasetReference,
    name: Optional[str] = None,
    description: Optional[str] = None,
    expiration: Optional[int] = None,
) -> Dict[str, Any]:
    """Build a Dataset resource. ``expiration`` is the default table lifetime in seconds."""
    validate_dataset_id(ref.dataset_id)
    body: Dict[str, Any] = {"datasetReference": ref.to_api()}
    if name:
        body["friendlyName"] = name
    if description:
        body["description"] = description
    if expiration is not None:
        if expiration < MIN_DATASET_EXPIRATION_SECONDS:
            raise InvalidArgumentError(
                f"Default table expiration must be at least {MIN_DATASET_EXPIRATION_SECONDS} seconds.",
                resource=ref.dataset_id,
            )
        body["defaultTableExpirationMs"] = str(expiration * 1000)
    return body


def create_dataset(service: Any, dataset: Dict[str, Any]) -> Dict[str, Any]:
    ref = DatasetReference.from_resource(dataset)
    validate_dataset_id(ref.dataset_id)
    request = service.datasets().insert(projectId=ref.project_id, body=dataset)
    result = execute(
        request,
        ref.dataset_id,
        ref.project_id,
        action="create",
        messages={
            ResourceConflictError: f"Dataset '{ref.dataset_id}' already exists in project '{ref.project_id}'."
        },
    )
    logger.debug(f"GCP API: datasets.insert() created {ref}")
    return result


def update_dataset(service: Any, dataset: Dict[str, Any]) -> Dict[str, Any]:
    ref = DatasetReference.from_resource(dataset)
    request = service.datasets().update(
        projectId=ref.project_id, datasetId=ref.dataset_id, body=dataset
    )
    return execute(
        request,
        ref.dataset_id,
        ref.project_id,
        action="modify",
        messages={
            ResourceConflictError: f"Dataset '{ref.dataset_id}' was modified concurrently; fetch it again and retry.",
        },
    )


def delete_dataset(
    service: Any, ref: DatasetReference, gate: ConfirmationGate
) -> bool:
    """Delete a dataset, asking first when it still holds tables.

    Returns:
        True if the delete request was sent, False if the user declined.
    """
    delete_contents = gate.force
    if not gate.force:
        page = get_or_raise(
            service.tables().list(
                projectId=ref.project_id, datasetId=ref.dataset_id, maxResults=1
            ),
            ref.dataset_id,
            ref.project_id,
        )
        if int(page.get("totalItems", 0) or 0) > 0 or page.get("tables"):
            if not gate.confirm(
                f"Dataset '{ref}' contains tables. Delete it along with all of its tables?"
            ):
                logger.debug(f"Delete of {ref} declined")
                return False
            delete_contents = True

    execute(
        service.datasets().delete(
            projectId=ref.project_id,
            datasetId=ref.dataset_id,
            deleteContents=delete_contents,
        ),
        ref.dataset_id,
        ref.project_id,
        action="delete",
    )
    logger.debug(f"GCP API: datasets.delete() removed {ref}")
    return True


# --- Tables ---


def list_tables(
    service: Any, ref: DatasetReference, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.tables().list(
            projectId=ref.project_id, datasetId=ref.dataset_id, pageToken=page_token
        )

    return iter_items(make_request, "tables", f"tables of dataset '{ref}'", cancel)


def fetch_table(service: Any, ref: TableReference) -> FetchResult:
    request = service.tables().get(
        projectId=ref.project_id, datasetId=ref.dataset_id, tableId=ref.table_id
    )
    return fetch(request, ref.table_id, str(ref.dataset))


def get_table(service: Any, ref: TableReference) -> Dict[str, Any]:
    return fetch_table(service, ref).unwrap()


def build_table(
    ref: TableReference,
    name: Optional[str] = None,
    description: Optional[str] = None,
    expiration: Optional[int] = None,
    fields: Optional[List[Dict[str, Any]]] = None,
    now: Callable[[], float] = time.time,
) -> Dict[str, Any]:
    """Build a Table resource. ``expiration`` is seconds from now."""
    if not TABLE_ID_PATTERN.match(ref.table_id or ""):
        raise InvalidArgumentError(
            f"Table ID '{ref.table_id}' must contain only letters, numbers and underscores.",
            resource=ref.table_id,
        )
    body: Dict[str, Any] = {"tableReference": ref.to_api()}
    if name:
        body["friendlyName"] = name
    if description:
        body["description"] = description
    if expiration is not None:
        if expiration <= 0:
            raise InvalidArgumentError(
                "Table expiration must be a positive number of seconds.",
                resource=ref.table_id,
            )
        body["expirationTime"] = str(int(now() * 1000) + expiration * 1000)
    if fields:
        body["schema"] = build_schema(fields)
    return body


def create_table(service: Any, table: Dict[str, Any]) -> Dict[str, Any]:
    ref = TableReference.from_resource(table)
    request = service.tables().insert(
        projectId=ref.project_id, datasetId=ref.dataset_id, body=table
    )
    return execute(
        request,
        ref.table_id,
        str(ref.dataset),
        action="create",
        messages={
            ResourceConflictError: f"Table '{ref.table_id}' already exists in dataset '{ref.dataset}'.",
            ResourceNotFoundError: f"Dataset '{ref.dataset_id}' not found in project '{ref.project_id}'.",
        },
    )


def update_table(service: Any, table: Dict[str, Any]) -> Dict[str, Any]:
    """Update a table, or insert it if the table is missing from an existing dataset."""
    ref = TableReference.from_resource(table)
    existing = fetch_table(service, ref)
    if existing.status is FetchStatus.FAILED:
        raise existing.error  # type: ignore[misc]

    if existing.found:
        request = service.tables().update(
            projectId=ref.project_id,
            datasetId=ref.dataset_id,
            tableId=ref.table_id,
            body=table,
        )
        return execute(request, ref.table_id, str(ref.dataset), action="modify")

    dataset = fetch_dataset(service, ref.dataset)
    if not dataset.found:
        raise dataset.error  # type: ignore[misc]
    logger.debug(f"Table {ref} does not exist, inserting it")
    return create_table(service, table)


def delete_table(service: Any, ref: TableReference, gate: ConfirmationGate) -> bool:
    """Delete a table, asking first when it holds rows."""
    if not gate.force:
        table = get_table(service, ref)
        rows = int(table.get("numRows", 0) or 0)
        if rows > 0 and not gate.confirm(
            f"Table '{ref}' contains {rows} row(s). Delete it?"
        ):
            logger.debug(f"Delete of {ref} declined")
            return False

    execute(
        service.tables().delete(
            projectId=ref.project_id, datasetId=ref.dataset_id, tableId=ref.table_id
        ),
        ref.table_id,
        str(ref.dataset),
        action="delete",
    )
    return True


# --- Schemas ---


def new_column(
    name: str,
    column_type: str,
    mode: str = "NULLABLE",
    description: Optional[str] = None,
    fields: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build a TableFieldSchema dict."""
    if not COLUMN_NAME_PATTERN.match(name or ""):
        raise InvalidArgumentError(
            f"Column name '{name}' must start with a letter or underscore and contain "
            "only letters, numbers and underscores.",
            resource=name,
        )
    column_type = column_type.upper()
    if column_type not in COLUMN_TYPES:
        raise InvalidArgumentError(
            f"Unknown column type '{column_type}'. Valid types: {', '.join(COLUMN_TYPES)}.",
            resource=name,
        )
    mode = mode.upper()
    if mode not in COLUMN_MODES:
        raise InvalidArgumentError(
            f"Unknown column mode '{mode}'. Valid modes: {', '.join(COLUMN_MODES)}.",
            resource=name,
        )

    column: Dict[str, Any] = {"name": name, "type": column_type, "mode": mode}
    if description:
        column["description"] = description
    if fields:
        if column_type not in RECORD_TYPES:
            raise InvalidArgumentError(
                f"Only RECORD columns can have nested fields ('{name}' is {column_type}).",
                resource=name,
            )
        column["fields"] = build_schema(fields)["fields"]
    elif column_type in RECORD_TYPES:
        raise InvalidArgumentError(
            f"RECORD column '{name}' needs at least one nested field.", resource=name
        )
    return column


def build_schema(columns: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Collect columns into a TableSchema, rejecting duplicate names."""
    seen = set()
    for column in columns:
        key = column["name"].lower()
        if key in seen:
            raise InvalidArgumentError(
                f"Duplicate column name '{column['name']}' in schema.",
                resource=column["name"],
            )
        seen.add(key)
    return {"fields": list(columns)}


def parse_schema(text: str) -> List[Dict[str, Any]]:
    """Parse a schema given as a JSON list of fields or a ``{"fields": [...]}`` object."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidArgumentError(f"Schema is not valid JSON: {e}") from e
    if isinstance(data, dict):
        data = data.get("fields")
    if not isinstance(data, list):
        raise InvalidArgumentError("Schema must be a list of fields.")

    columns = [
        new_column(
            f.get("name", ""),
            f.get("type", ""),
            f.get("mode", "NULLABLE"),
            f.get("description"),
            f.get("fields"),
        )
        for f in data
    ]
    return build_schema(columns)["fields"]


def set_table_schema(
    service: Any, ref: TableReference, fields: List[Dict[str, Any]]
) -> Dict[str, Any]:
    request = service.tables().patch(
        projectId=ref.project_id,
        datasetId=ref.dataset_id,
        tableId=ref.table_id,
        body={"schema": build_schema(fields)},
    )
    return execute(request, ref.table_id, str(ref.dataset), action="modify")


# --- Rows ---


def _convert_value(field: Dict[str, Any], value: Any) -> Any:
    if value is None:
        return None
    field_type = field.get("type", "STRING").upper()
    if field_type in RECORD_TYPES:
        return row_to_dict(field.get("fields", []), value)
    if field_type in ("INTEGER", "INT64"):
        return int(value)
    if field_type in ("FLOAT", "FLOAT64"):
        return float(value)
    if field_type in ("BOOLEAN", "BOOL"):
        return str(value).lower() == "true"
    return value


def row_to_dict(fields: List[Dict[str, Any]], row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a ``{"f": [{"v": ...}]}`` row into a dict keyed by column name."""
    result = {}
    for field, cell in zip(fields, row.get("f") or []):
        value = cell.get("v")
        if field.get("mode") == "REPEATED":
            result[field["name"]] = [
                _convert_value(field, item.get("v")) for item in value or []
            ]
        else:
            result[field["name"]] = _convert_value(field, value)
    return result


def list_rows(
    service: Any,
    ref: TableReference,
    max_results: Optional[int] = None,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Dict[str, Any]]:
    fields = get_table(service, ref).get("schema", {}).get("fields", [])

    def make_request(page_token):
        return service.tabledata().list(
            projectId=ref.project_id,
            datasetId=ref.dataset_id,
            tableId=ref.table_id,
            maxResults=max_results,
            pageToken=page_token,
        )

    for row in iter_items(
        make_request, "rows", f"rows of table '{ref}'", cancel, token_field="pageToken"
    ):
        yield row_to_dict(fields, row)


# --- Jobs ---


def list_jobs(
    service: Any,
    project: str,
    state: Optional[str] = None,
    all_users: bool = False,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Dict[str, Any]]:
    if state is not None and state.lower() not in JOB_STATES:
        raise InvalidArgumentError(
            f"Unknown job state '{state}'. Valid states: {', '.join(JOB_STATES)}."
        )

    def make_request(page_token):
        return service.jobs().list(
            projectId=project,
            stateFilter=state.lower() if state else None,
            allUsers=all_users or None,
            projection="full",
            pageToken=page_token,
        )

    return iter_items(make_request, "jobs", f"jobs of project '{project}'", cancel)


def get_job(service: Any, ref: JobReference) -> Dict[str, Any]:
    request = service.jobs().get(
        projectId=ref.project_id, jobId=ref.job_id, location=ref.location
    )
    return get_or_raise(request, ref.job_id, ref.project_id)


def _new_job_reference(project: str, location: Optional[str]) -> Dict[str, Any]:
    job_reference: Dict[str, Any] = {"projectId": project}
    if location:
        job_reference["location"] = location
    return job_reference


def normalize_write_disposition(write_disposition: str) -> str:
    write_disposition = write_disposition.upper()
    if write_disposition not in WRITE_DISPOSITIONS:
        raise InvalidArgumentError(
            f"Unknown write mode '{write_disposition}'. Valid modes: {', '.join(WRITE_DISPOSITIONS)}."
        )
    return write_disposition


def start_query(
    service: Any,
    project: str,
    query: str,
    write_disposition: Optional[str] = None,
    destination: Optional[TableReference] = None,
    use_legacy_sql: bool = False,
    location: Optional[str] = None,
) -> Dict[str, Any]:
    if not query or not query.strip():
        raise InvalidArgumentError("Query must not be empty.")
    config: Dict[str, Any] = {"query": query, "useLegacySql": use_legacy_sql}
    if write_disposition:
        config["writeDisposition"] = normalize_write_disposition(write_disposition)
    if destination is not None:
        config["destinationTable"] = destination.to_api()

    body = {
        "jobReference": _new_job_reference(project, location),
        "configuration": {"query": config},
    }
    job = execute(
        service.jobs().insert(projectId=project, body=body),
        "query job",
        project,
        action="create jobs",
    )
    logger.debug(f"GCP API: jobs.insert() started {job.get('jobReference', {}).get('jobId')}")
    return job


def start_load(
    service: Any,
    ref: TableReference,
    source_format: str,
    path: Path,
    write_disposition: Optional[str] = None,
    allow_unknown_fields: bool = False,
    allow_jagged_rows: bool = False,
    allow_quoted_newlines: bool = False,
    field_delimiter: Optional[str] = None,
    quote: Optional[str] = None,
    skip_leading_rows: Optional[int] = None,
    location: Optional[str] = None,
) -> Dict[str, Any]:
    """Upload a local file into a table as a load job.

    Args:
        source_format: ``csv``, ``json`` (newline-delimited) or ``avro``.
        allow_unknown_fields: Ignore values that match no column instead of
            failing the job.
        allow_jagged_rows, allow_quoted_newlines, field_delimiter, quote,
            skip_leading_rows: CSV parsing options, rejected for other formats.

    Returns:
        The inserted job, usually still running. Pass it to wait_for_job.
    """
    fmt = SOURCE_FORMATS.get((source_format or "").lower())
    if fmt is None:
        raise InvalidArgumentError(
            f"Unknown data format '{source_format}'. Valid formats: {', '.join(SOURCE_FORMATS)}.",
            resource=ref.table_id,
        )
    path = Path(path)
    if not path.is_file():
        raise InvalidArgumentError(f"File not found: {path}", resource=str(path))

    csv_options = {
        "allowJaggedRows": allow_jagged_rows or None,
        "allowQuotedNewlines": allow_quoted_newlines or None,
        "fieldDelimiter": field_delimiter,
        "quote": quote,
        "skipLeadingRows": skip_leading_rows,
    }
    csv_options = {k: v for k, v in csv_options.items() if v is not None}
    if csv_options and fmt != "CSV":
        raise InvalidArgumentError(
            f"Options {', '.join(sorted(csv_options))} only apply to CSV files.",
            resource=str(path),
        )

    config: Dict[str, Any] = {
        "destinationTable": ref.to_api(),
        "sourceFormat": fmt,
        **csv_options,
    }
    if write_disposition:
        config["writeDisposition"] = normalize_write_disposition(write_disposition)
    if allow_unknown_fields:
        config["ignoreUnknownValues"] = True

    body = {
        "jobReference": _new_job_reference(ref.project_id, location),
        "configuration": {"load": config},
    }
    media = MediaFileUpload(str(path), mimetype="application/octet-stream", resumable=True)
    job = execute(
        service.jobs().insert(projectId=ref.project_id, body=body, media_body=media),
        ref.table_id,
        str(ref.dataset),
        action="load data into",
    )
    logger.debug(
        f"GCP API: jobs.insert() started load of {path} into {ref}: "
        f"{job.get('jobReference', {}).get('jobId')}"
    )
    return job


def is_job_done(job: Dict[str, Any]) -> bool:
    return job.get("status", {}).get("state") == "DONE"


def wait_for_job(
    service: Any,
    ref: JobReference,
    timeout: Optional[float] = None,
    job: Optional[Dict[str, Any]] = None,
    interval: float = POLL_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Poll a job until it is DONE.

    Raises:
        JobFailedError: The job finished with an errorResult.
        PollTimeoutError: ``timeout`` seconds passed first.
    """
    done = poll_until_done(
        lambda: get_job(service, ref),
        is_job_done,
        interval=interval,
        timeout=timeout,
        initial=job,
        description=f"job '{ref}'",
        sleep=sleep,
    )
    error = done.get("status", {}).get("errorResult")
    if error:
        raise JobFailedError(
            f"Job '{ref}' failed: {error.get('message', error.get('reason', 'unknown error'))}",
            resource=ref.job_id,
            scope=ref.project_id,
        )
    return done


def cancel_job(service: Any, ref: JobReference) -> Dict[str, Any]:
    request = service.jobs().cancel(
        projectId=ref.project_id, jobId=ref.job_id, location=ref.location
    )
    response = execute(request, ref.job_id, ref.project_id, action="cancel")
    return response.get("job", response)


def list_query_results(
    service: Any, ref: JobReference, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    """Stream the rows of a finished query job."""
    head = get_or_raise(
        service.jobs().getQueryResults(
            projectId=ref.project_id,
            jobId=ref.job_id,
            location=ref.location,
            maxResults=0,
        ),
        ref.job_id,
        ref.project_id,
    )
    if not head.get("jobComplete", False):
        raise InvalidArgumentError(
            f"Job '{ref}' has not completed. Run 'gcmdlets bq job wait' first.",
            resource=ref.job_id,
            scope=ref.project_id,
        )
    fields = head.get("schema", {}).get("fields", [])

    def make_request(page_token):
        return service.jobs().getQueryResults(
            projectId=ref.project_id,
            jobId=ref.job_id,
            location=ref.location,
            pageToken=page_token,
        )

    for row in iter_items(
        make_request, "rows", f"results of job '{ref}'", cancel, token_field="pageToken"
    ):
        yield row_to_dict(fields, row)



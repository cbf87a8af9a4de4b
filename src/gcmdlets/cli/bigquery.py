import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from gcmdlets import bigquery
from gcmdlets.cli.common import (
    emit,
    error_console,
    for_each,
    get_project,
    get_service,
    handle_error,
    interruptible,
    read_resources,
)
from gcmdlets.core import (
    DatasetReference,
    InvalidArgumentError,
    JobReference,
    TableReference,
)
from gcmdlets.prompts import ConfirmationGate

logger = logging.getLogger(__name__)

app = typer.Typer(help="BigQuery datasets, tables, schemas, rows and jobs.", no_args_is_help=True)
dataset_app = typer.Typer(help="Manage datasets.", no_args_is_help=True)
table_app = typer.Typer(help="Manage tables.", no_args_is_help=True)
schema_app = typer.Typer(help="Build and apply table schemas.", no_args_is_help=True)
rows_app = typer.Typer(help="Read and load table rows.", no_args_is_help=True)
job_app = typer.Typer(help="Run and inspect jobs.", no_args_is_help=True)
app.add_typer(dataset_app, name="dataset")
app.add_typer(table_app, name="table")
app.add_typer(schema_app, name="schema")
app.add_typer(rows_app, name="rows")
app.add_typer(job_app, name="job")

InputOption = Annotated[
    Optional[typer.FileText],
    typer.Option(
        "--input",
        "-i",
        help="Read resources (JSON or JSON lines) from a file, '-' for stdin.",
    ),
]


def _load_json(stream: typer.FileText) -> dict:
    try:
        data = json.load(stream)
    except json.JSONDecodeError as e:
        raise InvalidArgumentError(f"Input is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidArgumentError("Input must be a single JSON object.")
    return data


def _dataset_refs(
    project: str, datasets: Optional[List[str]], input_file
) -> List[DatasetReference]:
    refs = [DatasetReference(project, d) for d in datasets or []]
    if input_file is not None:
        refs.extend(DatasetReference.from_resource(r) for r in read_resources(input_file))
    if not refs:
        raise InvalidArgumentError("Specify at least one dataset, or pipe datasets with --input.")
    return refs


def _table_refs(
    project: str, dataset: Optional[str], tables: Optional[List[str]], input_file
) -> List[TableReference]:
    refs = []
    if tables:
        if not dataset:
            raise InvalidArgumentError("A dataset is required when naming tables.")
        refs = [TableReference(project, dataset, t) for t in tables]
    if input_file is not None:
        refs.extend(TableReference.from_resource(r) for r in read_resources(input_file))
    if not refs:
        raise InvalidArgumentError("Specify a dataset and tables, or pipe tables with --input.")
    return refs


def _job_refs(project: str, jobs: Optional[List[str]], location, input_file) -> List[JobReference]:
    refs = [JobReference(project, j, location) for j in jobs or []]
    if input_file is not None:
        refs.extend(JobReference.from_resource(r) for r in read_resources(input_file))
    if not refs:
        raise InvalidArgumentError("Specify at least one job, or pipe jobs with --input.")
    return refs


# --- Datasets ---


@dataset_app.command("list")
def dataset_list(
    ctx: typer.Context,
    include_hidden: bool = typer.Option(
        False, "--all", "-a", help="Include hidden datasets"
    ),
    label_filter: Annotated[
        Optional[List[str]],
        typer.Option("--filter", help="Label filter, e.g. labels.dept:eng (repeatable)"),
    ] = None,
) -> None:
    """
    List the datasets of a project.
    """
    try:
        project = get_project(ctx)
        logger.debug(f"dataset list: project={project}, filter={label_filter}")
        with interruptible() as cancel:
            items = bigquery.list_datasets(
                get_service("bigquery"), project, include_hidden, label_filter, cancel
            )
            emit(ctx, items, "dataset")
    except Exception as e:
        handle_error(e)


@dataset_app.command("get")
def dataset_get(
    ctx: typer.Context,
    datasets: Annotated[Optional[List[str]], typer.Argument(help="Dataset IDs")] = None,
    input_file: InputOption = None,
) -> None:
    """
    Get one or more datasets.
    """
    try:
        service = get_service("bigquery")
        refs = _dataset_refs(get_project(ctx), datasets, input_file)
        for_each(refs, lambda ref: emit(ctx, [bigquery.get_dataset(service, ref)], "dataset"))
    except Exception as e:
        handle_error(e)


@dataset_app.command("create")
def dataset_create(
    ctx: typer.Context,
    dataset: Annotated[str, typer.Argument(help="Dataset ID")],
    name: Optional[str] = typer.Option(None, "--name", help="Friendly name"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
    expiration: Optional[int] = typer.Option(
        None,
        "--expiration",
        help="Default table lifetime in seconds (at least 3600)",
    ),
) -> None:
    """
    Create a dataset.
    """
    try:
        ref = DatasetReference(get_project(ctx), dataset)
        body = bigquery.build_dataset(ref, name, description, expiration)
        emit(ctx, [bigquery.create_dataset(get_service("bigquery"), body)], "dataset")
    except Exception as e:
        handle_error(e)


@dataset_app.command("update")
def dataset_update(
    ctx: typer.Context,
    input_file: Annotated[
        typer.FileText, typer.Argument(help="Dataset JSON file, '-' for stdin")
    ],
) -> None:
    """
    Replace a dataset with the given dataset JSON (as returned by 'get').
    """
    try:
        dataset = _load_json(input_file)
        emit(ctx, [bigquery.update_dataset(get_service("bigquery"), dataset)], "dataset")
    except Exception as e:
        handle_error(e)


@dataset_app.command("delete")
def dataset_delete(
    ctx: typer.Context,
    datasets: Annotated[Optional[List[str]], typer.Argument(help="Dataset IDs")] = None,
    input_file: InputOption = None,
    force: bool = typer.Option(
        False, "--force", help="Delete datasets and their tables without asking"
    ),
) -> None:
    """
    Delete datasets. Asks before deleting a dataset that still has tables.
    """
    try:
        service = get_service("bigquery")
        refs = _dataset_refs(get_project(ctx), datasets, input_file)
        gate = ConfirmationGate(force=force)

        def delete(ref):
            if not bigquery.delete_dataset(service, ref, gate):
                error_console.print(f"Skipped dataset {ref}")

        for_each(refs, delete)
    except Exception as e:
        handle_error(e)


# --- Tables ---


@table_app.command("list")
def table_list(
    ctx: typer.Context,
    datasets: Annotated[Optional[List[str]], typer.Argument(help="Dataset IDs")] = None,
    input_file: InputOption = None,
) -> None:
    """
    List the tables of one or more datasets.
    """
    try:
        service = get_service("bigquery")
        refs = _dataset_refs(get_project(ctx), datasets, input_file)
        with interruptible() as cancel:
            for_each(
                refs,
                lambda ref: emit(ctx, bigquery.list_tables(service, ref, cancel), "table"),
            )
    except Exception as e:
        handle_error(e)


@table_app.command("get")
def table_get(
    ctx: typer.Context,
    dataset: Annotated[Optional[str], typer.Argument(help="Dataset ID")] = None,
    tables: Annotated[Optional[List[str]], typer.Argument(help="Table IDs")] = None,
    input_file: InputOption = None,
) -> None:
    """
    Get one or more tables.
    """
    try:
        service = get_service("bigquery")
        refs = _table_refs(get_project(ctx), dataset, tables, input_file)
        for_each(refs, lambda ref: emit(ctx, [bigquery.get_table(service, ref)], "table"))
    except Exception as e:
        handle_error(e)


@table_app.command("create")
def table_create(
    ctx: typer.Context,
    dataset: Annotated[str, typer.Argument(help="Dataset ID")],
    table: Annotated[str, typer.Argument(help="Table ID")],
    name: Optional[str] = typer.Option(None, "--name", help="Friendly name"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
    expiration: Optional[int] = typer.Option(
        None, "--expiration", help="Seconds from now until the table expires"
    ),
    schema_file: Optional[typer.FileText] = typer.Option(
        None, "--schema", help="Schema JSON file (list of fields), '-' for stdin"
    ),
) -> None:
    """
    Create a table.
    """
    try:
        ref = TableReference(get_project(ctx), dataset, table)
        fields = bigquery.parse_schema(schema_file.read()) if schema_file else None
        body = bigquery.build_table(ref, name, description, expiration, fields)
        emit(ctx, [bigquery.create_table(get_service("bigquery"), body)], "table")
    except Exception as e:
        handle_error(e)


@table_app.command("update")
def table_update(
    ctx: typer.Context,
    input_file: Annotated[
        typer.FileText, typer.Argument(help="Table JSON file, '-' for stdin")
    ],
) -> None:
    """
    Update a table from its JSON, creating it if the dataset exists but the table does not.
    """
    try:
        table = _load_json(input_file)
        emit(ctx, [bigquery.update_table(get_service("bigquery"), table)], "table")
    except Exception as e:
        handle_error(e)


@table_app.command("delete")
def table_delete(
    ctx: typer.Context,
    dataset: Annotated[Optional[str], typer.Argument(help="Dataset ID")] = None,
    tables: Annotated[Optional[List[str]], typer.Argument(help="Table IDs")] = None,
    input_file: InputOption = None,
    force: bool = typer.Option(False, "--force", help="Delete without asking"),
) -> None:
    """
    Delete tables. Asks before deleting a table that has rows.
    """
    try:
        service = get_service("bigquery")
        refs = _table_refs(get_project(ctx), dataset, tables, input_file)
        gate = ConfirmationGate(force=force)

        def delete(ref):
            if not bigquery.delete_table(service, ref, gate):
                error_console.print(f"Skipped table {ref}")

        for_each(refs, delete)
    except Exception as e:
        handle_error(e)


# --- Schemas ---


@schema_app.command("column")
def schema_column(
    name: Annotated[str, typer.Argument(help="Column name")],
    column_type: Annotated[str, typer.Argument(help="Column type, e.g. STRING")],
    mode: str = typer.Option("NULLABLE", "--mode", help="NULLABLE, REQUIRED or REPEATED"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
    fields_file: Optional[typer.FileText] = typer.Option(
        None, "--fields", help="Nested fields JSON for RECORD columns"
    ),
) -> None:
    """
    Print one column definition as JSON. Pipe several into 'schema build'.
    """
    try:
        fields = bigquery.parse_schema(fields_file.read()) if fields_file else None
        print(json.dumps(bigquery.new_column(name, column_type, mode, description, fields)))
    except Exception as e:
        handle_error(e)


@schema_app.command("build")
def schema_build(
    input_file: Annotated[
        typer.FileText, typer.Argument(help="Column JSON lines, '-' for stdin")
    ],
) -> None:
    """
    Collect column definitions into a schema, rejecting duplicate names.
    """
    try:
        columns = read_resources(input_file)
        fields = bigquery.parse_schema(json.dumps(columns))
        print(json.dumps(fields, indent=2))
    except Exception as e:
        handle_error(e)


@schema_app.command("set")
def schema_set(
    ctx: typer.Context,
    dataset: Annotated[str, typer.Argument(help="Dataset ID")],
    table: Annotated[str, typer.Argument(help="Table ID")],
    schema_file: Annotated[
        typer.FileText, typer.Argument(help="Schema JSON file, '-' for stdin")
    ],
) -> None:
    """
    Apply a schema to an existing table.
    """
    try:
        ref = TableReference(get_project(ctx), dataset, table)
        fields = bigquery.parse_schema(schema_file.read())
        emit(ctx, [bigquery.set_table_schema(get_service("bigquery"), ref, fields)], "table")
    except Exception as e:
        handle_error(e)


# --- Rows ---


@rows_app.command("list")
def rows_list(
    ctx: typer.Context,
    dataset: Annotated[str, typer.Argument(help="Dataset ID")],
    table: Annotated[str, typer.Argument(help="Table ID")],
    max_results: Optional[int] = typer.Option(
        None, "--max-results", help="Rows per page"
    ),
) -> None:
    """
    List the rows of a table, keyed by column name.
    """
    try:
        ref = TableReference(get_project(ctx), dataset, table)
        with interruptible() as cancel:
            emit(ctx, bigquery.list_rows(get_service("bigquery"), ref, max_results, cancel))
    except Exception as e:
        handle_error(e)


@rows_app.command("load")
def rows_load(
    ctx: typer.Context,
    dataset: Annotated[str, typer.Argument(help="Dataset ID")],
    table: Annotated[str, typer.Argument(help="Table ID")],
    file: Annotated[Path, typer.Argument(help="Local file holding the rows")],
    source_format: str = typer.Option(
        ..., "--format", help="csv, json (newline-delimited) or avro"
    ),
    write_mode: Optional[str] = typer.Option(
        None,
        "--write-mode",
        help="WRITE_TRUNCATE, WRITE_APPEND or WRITE_EMPTY",
    ),
    allow_unknown_fields: bool = typer.Option(
        False, "--allow-unknown-fields", help="Ignore values that match no column"
    ),
    allow_jagged_rows: bool = typer.Option(
        False, "--allow-jagged-rows", help="CSV: accept rows missing trailing columns"
    ),
    allow_quoted_newlines: bool = typer.Option(
        False, "--allow-quoted-newlines", help="CSV: accept newlines inside quoted values"
    ),
    field_delimiter: Optional[str] = typer.Option(
        None, "--field-delimiter", help="CSV: field separator, defaults to ','"
    ),
    quote: Optional[str] = typer.Option(
        None, "--quote", help="CSV: quoting character, defaults to '\"'"
    ),
    skip_leading_rows: Optional[int] = typer.Option(
        None, "--skip-leading-rows", help="CSV: header rows to skip"
    ),
    location: Optional[str] = typer.Option(None, "--location", help="Job location"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the load job before giving up"
    ),
) -> None:
    """
    Load rows from a local CSV, JSON or Avro file into a table and wait for the job.
    """
    try:
        ref = TableReference(get_project(ctx), dataset, table)
        service = get_service("bigquery")
        job = bigquery.start_load(
            service,
            ref,
            source_format,
            file,
            write_disposition=write_mode,
            allow_unknown_fields=allow_unknown_fields,
            allow_jagged_rows=allow_jagged_rows,
            allow_quoted_newlines=allow_quoted_newlines,
            field_delimiter=field_delimiter,
            quote=quote,
            skip_leading_rows=skip_leading_rows,
            location=location,
        )
        job = bigquery.wait_for_job(
            service, JobReference.from_resource(job), timeout=timeout, job=job
        )
        emit(ctx, [job], "job")
    except Exception as e:
        handle_error(e)


# --- Jobs ---


@job_app.command("list")
def job_list(
    ctx: typer.Context,
    state: Optional[str] = typer.Option(
        None, "--state", help="Only jobs in this state: done, pending or running"
    ),
    all_users: bool = typer.Option(
        False, "--all-users", help="Include jobs of all users (needs project owner)"
    ),
) -> None:
    """
    List the jobs of a project.
    """
    try:
        project = get_project(ctx)
        with interruptible() as cancel:
            items = bigquery.list_jobs(get_service("bigquery"), project, state, all_users, cancel)
            emit(ctx, items, "job")
    except Exception as e:
        handle_error(e)


@job_app.command("get")
def job_get(
    ctx: typer.Context,
    jobs: Annotated[Optional[List[str]], typer.Argument(help="Job IDs")] = None,
    location: Optional[str] = typer.Option(None, "--location", help="Job location"),
    input_file: InputOption = None,
) -> None:
    """
    Get one or more jobs.
    """
    try:
        service = get_service("bigquery")
        refs = _job_refs(get_project(ctx), jobs, location, input_file)
        for_each(refs, lambda ref: emit(ctx, [bigquery.get_job(service, ref)], "job"))
    except Exception as e:
        handle_error(e)


@job_app.command("query")
def job_query(
    ctx: typer.Context,
    query: Annotated[str, typer.Argument(help="SQL query")],
    write_mode: Optional[str] = typer.Option(
        None,
        "--write-mode",
        help="WRITE_TRUNCATE, WRITE_APPEND or WRITE_EMPTY",
    ),
    destination: Optional[str] = typer.Option(
        None, "--destination", help="Destination table, [project:]dataset.table"
    ),
    legacy_sql: bool = typer.Option(False, "--legacy-sql", help="Use legacy SQL"),
    location: Optional[str] = typer.Option(None, "--location", help="Job location"),
    wait: bool = typer.Option(False, "--wait", help="Wait until the job is done"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait before giving up (with --wait)"
    ),
) -> None:
    """
    Start a query job.
    """
    try:
        project = get_project(ctx)
        service = get_service("bigquery")
        dest = TableReference.parse(destination, project) if destination else None
        job = bigquery.start_query(
            service, project, query, write_mode, dest, legacy_sql, location
        )
        if wait:
            ref = JobReference.from_resource(job)
            job = bigquery.wait_for_job(service, ref, timeout=timeout, job=job)
        emit(ctx, [job], "job")
    except Exception as e:
        handle_error(e)


@job_app.command("wait")
def job_wait(
    ctx: typer.Context,
    jobs: Annotated[Optional[List[str]], typer.Argument(help="Job IDs")] = None,
    location: Optional[str] = typer.Option(None, "--location", help="Job location"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait per job before giving up"
    ),
    input_file: InputOption = None,
) -> None:
    """
    Wait for jobs to finish and print their final state.
    """
    try:
        service = get_service("bigquery")
        refs = _job_refs(get_project(ctx), jobs, location, input_file)
        for_each(
            refs,
            lambda ref: emit(ctx, [bigquery.wait_for_job(service, ref, timeout=timeout)], "job"),
        )
    except Exception as e:
        handle_error(e)


@job_app.command("cancel")
def job_cancel(
    ctx: typer.Context,
    jobs: Annotated[Optional[List[str]], typer.Argument(help="Job IDs")] = None,
    location: Optional[str] = typer.Option(None, "--location", help="Job location"),
    input_file: InputOption = None,
) -> None:
    """
    Request cancellation of jobs.
    """
    try:
        service = get_service("bigquery")
        refs = _job_refs(get_project(ctx), jobs, location, input_file)
        for_each(refs, lambda ref: emit(ctx, [bigquery.cancel_job(service, ref)], "job"))
    except Exception as e:
        handle_error(e)


@job_app.command("results")
def job_results(
    ctx: typer.Context,
    job: Annotated[str, typer.Argument(help="Job ID")],
    location: Optional[str] = typer.Option(None, "--location", help="Job location"),
) -> None:
    """
    List the result rows of a finished query job.
    """
    try:
        ref = JobReference(get_project(ctx), job, location)
        with interruptible() as cancel:
            emit(ctx, bigquery.list_query_results(get_service("bigquery"), ref, cancel))
    except Exception as e:
        handle_error(e)

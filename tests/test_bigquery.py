from unittest.mock import MagicMock, patch

import pytest

from gcmdlets import bigquery
from gcmdlets.core import (
    DatasetReference,
    InvalidArgumentError,
    JobFailedError,
    JobReference,
    ResourceConflictError,
    ResourceNotFoundError,
    TableReference,
)
from gcmdlets.prompts import Answer, ConfirmationGate


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def ds_ref():
    return DatasetReference("my-project", "sales")


@pytest.fixture
def table_ref():
    return TableReference("my-project", "sales", "orders")


def gate_answering(*answers):
    return ConfirmationGate(ask=MagicMock(side_effect=list(answers)))


# --- Datasets ---


def test_list_datasets_pages_with_filter(service):
    service.datasets.return_value.list.return_value.execute.side_effect = [
        {"datasets": [{"id": "my-project:a"}], "nextPageToken": "A"},
        {"datasets": [{"id": "my-project:b"}]},
    ]

    items = list(bigquery.list_datasets(service, "my-project", label_filter=["labels.dept:eng"]))

    assert [i["id"] for i in items] == ["my-project:a", "my-project:b"]
    calls = service.datasets.return_value.list.call_args_list
    assert calls[0].kwargs["filter"] == "labels.dept:eng"
    assert calls[0].kwargs["pageToken"] is None
    assert calls[1].kwargs["pageToken"] == "A"


def test_list_datasets_rejects_bad_filter_before_request(service):
    with pytest.raises(InvalidArgumentError, match="labels"):
        bigquery.list_datasets(service, "my-project", label_filter=["dept=eng"])
    service.datasets.return_value.list.assert_not_called()


def test_build_label_filter_joins_terms():
    assert bigquery.build_label_filter(["labels.a", "labels.b:c"]) == "labels.a labels.b:c"
    assert bigquery.build_label_filter([]) is None


def test_get_dataset_not_found(service, ds_ref, http_error):
    service.datasets.return_value.get.return_value.execute.side_effect = http_error(404)
    with pytest.raises(ResourceNotFoundError) as excinfo:
        bigquery.get_dataset(service, ds_ref)
    assert excinfo.value.resource == "sales"
    assert excinfo.value.scope == "my-project"


@pytest.mark.parametrize("dataset_id", ["", "has-dash", "a b", "x" * 1025])
def test_build_dataset_rejects_bad_ids(dataset_id):
    with pytest.raises(InvalidArgumentError):
        bigquery.build_dataset(DatasetReference("p", dataset_id))


def test_build_dataset_expiration(ds_ref):
    body = bigquery.build_dataset(ds_ref, name="Sales", description="d", expiration=7200)
    assert body == {
        "datasetReference": {"projectId": "my-project", "datasetId": "sales"},
        "friendlyName": "Sales",
        "description": "d",
        "defaultTableExpirationMs": "7200000",
    }


def test_build_dataset_expiration_too_short(ds_ref):
    with pytest.raises(InvalidArgumentError, match="3600"):
        bigquery.build_dataset(ds_ref, expiration=3599)


def test_create_dataset_conflict(service, ds_ref, http_error):
    service.datasets.return_value.insert.return_value.execute.side_effect = http_error(409)
    with pytest.raises(ResourceConflictError, match="already exists in project 'my-project'"):
        bigquery.create_dataset(service, bigquery.build_dataset(ds_ref))


def test_update_dataset_uses_reference_from_body(service):
    dataset = {"datasetReference": {"projectId": "p", "datasetId": "d"}, "description": "x"}
    service.datasets.return_value.update.return_value.execute.return_value = dataset
    assert bigquery.update_dataset(service, dataset) == dataset
    service.datasets.return_value.update.assert_called_once_with(
        projectId="p", datasetId="d", body=dataset
    )


def test_delete_empty_dataset_does_not_ask(service, ds_ref):
    service.tables.return_value.list.return_value.execute.return_value = {"totalItems": 0}
    ask = MagicMock()

    assert bigquery.delete_dataset(service, ds_ref, ConfirmationGate(ask=ask)) is True

    ask.assert_not_called()
    service.datasets.return_value.delete.assert_called_once_with(
        projectId="my-project", datasetId="sales", deleteContents=False
    )


def test_delete_non_empty_dataset_declined(service, ds_ref):
    service.tables.return_value.list.return_value.execute.return_value = {
        "totalItems": 2,
        "tables": [{"id": "t"}],
    }

    assert bigquery.delete_dataset(service, ds_ref, gate_answering(Answer.NO)) is False
    service.datasets.return_value.delete.assert_not_called()


def test_delete_non_empty_dataset_accepted(service, ds_ref):
    service.tables.return_value.list.return_value.execute.return_value = {"totalItems": 2}

    assert bigquery.delete_dataset(service, ds_ref, gate_answering(Answer.YES)) is True
    service.datasets.return_value.delete.assert_called_once_with(
        projectId="my-project", datasetId="sales", deleteContents=True
    )
    service.datasets.return_value.delete.return_value.execute.assert_called_once()


def test_delete_dataset_force_skips_listing(service, ds_ref):
    assert bigquery.delete_dataset(service, ds_ref, ConfirmationGate(force=True)) is True
    service.tables.return_value.list.assert_not_called()
    service.datasets.return_value.delete.assert_called_once_with(
        projectId="my-project", datasetId="sales", deleteContents=True
    )


# --- Tables ---


def test_build_table_expiration_is_absolute(table_ref):
    body = bigquery.build_table(table_ref, expiration=60, now=lambda: 1000.0)
    assert body["expirationTime"] == str(1000 * 1000 + 60 * 1000)


def test_build_table_with_schema(table_ref):
    fields = [bigquery.new_column("id", "INTEGER", "REQUIRED")]
    body = bigquery.build_table(table_ref, fields=fields)
    assert body["schema"] == {"fields": [{"name": "id", "type": "INTEGER", "mode": "REQUIRED"}]}


def test_create_table_in_missing_dataset(service, table_ref, http_error):
    service.tables.return_value.insert.return_value.execute.side_effect = http_error(404)
    with pytest.raises(ResourceNotFoundError, match="Dataset 'sales' not found"):
        bigquery.create_table(service, bigquery.build_table(table_ref))


def test_update_table_updates_existing(service, table_ref):
    table = bigquery.build_table(table_ref, description="new")
    service.tables.return_value.get.return_value.execute.return_value = table
    service.tables.return_value.update.return_value.execute.return_value = table

    assert bigquery.update_table(service, table) == table
    service.tables.return_value.insert.assert_not_called()


def test_update_table_inserts_missing_table(service, table_ref, http_error):
    table = bigquery.build_table(table_ref)
    service.tables.return_value.get.return_value.execute.side_effect = http_error(404)
    service.datasets.return_value.get.return_value.execute.return_value = {"id": "sales"}
    service.tables.return_value.insert.return_value.execute.return_value = table

    assert bigquery.update_table(service, table) == table
    service.tables.return_value.update.assert_not_called()
    service.tables.return_value.insert.assert_called_once_with(
        projectId="my-project", datasetId="sales", body=table
    )


def test_update_table_missing_dataset(service, table_ref, http_error):
    service.tables.return_value.get.return_value.execute.side_effect = http_error(404)
    service.datasets.return_value.get.return_value.execute.side_effect = http_error(404)

    with pytest.raises(ResourceNotFoundError) as excinfo:
        bigquery.update_table(service, bigquery.build_table(table_ref))
    assert excinfo.value.resource == "sales"
    service.tables.return_value.insert.assert_not_called()


def test_delete_table_with_rows_asks(service, table_ref):
    service.tables.return_value.get.return_value.execute.return_value = {"numRows": "12"}
    assert bigquery.delete_table(service, table_ref, gate_answering(Answer.NO)) is False
    service.tables.return_value.delete.assert_not_called()


def test_delete_empty_table_does_not_ask(service, table_ref):
    service.tables.return_value.get.return_value.execute.return_value = {"numRows": "0"}
    ask = MagicMock()
    assert bigquery.delete_table(service, table_ref, ConfirmationGate(ask=ask)) is True
    ask.assert_not_called()
    service.tables.return_value.delete.return_value.execute.assert_called_once()


def test_delete_tables_yes_to_all(service):
    service.tables.return_value.get.return_value.execute.return_value = {"numRows": "5"}
    ask = MagicMock(return_value=Answer.YES_TO_ALL)
    gate = ConfirmationGate(ask=ask)

    for table_id in ("a", "b", "c"):
        assert bigquery.delete_table(service, TableReference("p", "d", table_id), gate)

    ask.assert_called_once()
    assert service.tables.return_value.delete.call_count == 3


# --- Schemas ---


def test_new_column_normalises_case():
    assert bigquery.new_column("name", "string", "required", "who") == {
        "name": "name",
        "type": "STRING",
        "mode": "REQUIRED",
        "description": "who",
    }


@pytest.mark.parametrize(
    "args",
    [
        ("1bad", "STRING"),
        ("ok", "VARCHAR"),
        ("ok", "STRING", "OPTIONAL"),
        ("rec", "RECORD"),
    ],
)
def test_new_column_invalid(args):
    with pytest.raises(InvalidArgumentError):
        bigquery.new_column(*args)


def test_record_column_with_fields():
    column = bigquery.new_column(
        "address", "RECORD", fields=[bigquery.new_column("city", "STRING")]
    )
    assert column["fields"] == [{"name": "city", "type": "STRING", "mode": "NULLABLE"}]


def test_build_schema_rejects_duplicates():
    columns = [bigquery.new_column("id", "INTEGER"), bigquery.new_column("ID", "STRING")]
    with pytest.raises(InvalidArgumentError, match="Duplicate column name 'ID'"):
        bigquery.build_schema(columns)


def test_parse_schema_accepts_list_or_object():
    text = '[{"name": "id", "type": "INT64"}]'
    assert bigquery.parse_schema(text) == [{"name": "id", "type": "INT64", "mode": "NULLABLE"}]
    assert bigquery.parse_schema('{"fields": ' + text + "}") == bigquery.parse_schema(text)


def test_parse_schema_invalid_json():
    with pytest.raises(InvalidArgumentError, match="not valid JSON"):
        bigquery.parse_schema("[{")


def test_set_table_schema_patches(service, table_ref):
    fields = [bigquery.new_column("id", "INTEGER")]
    bigquery.set_table_schema(service, table_ref, fields)
    service.tables.return_value.patch.assert_called_once_with(
        projectId="my-project",
        datasetId="sales",
        tableId="orders",
        body={"schema": {"fields": fields}},
    )


# --- Rows ---


SCHEMA = [
    {"name": "id", "type": "INTEGER", "mode": "REQUIRED"},
    {"name": "price", "type": "FLOAT"},
    {"name": "paid", "type": "BOOLEAN"},
    {"name": "tags", "type": "STRING", "mode": "REPEATED"},
    {
        "name": "buyer",
        "type": "RECORD",
        "fields": [{"name": "name", "type": "STRING"}],
    },
]


def test_row_to_dict_converts_types():
    row = {
        "f": [
            {"v": "7"},
            {"v": "1.5"},
            {"v": "true"},
            {"v": [{"v": "a"}, {"v": "b"}]},
            {"v": {"f": [{"v": "Ann"}]}},
        ]
    }
    assert bigquery.row_to_dict(SCHEMA, row) == {
        "id": 7,
        "price": 1.5,
        "paid": True,
        "tags": ["a", "b"],
        "buyer": {"name": "Ann"},
    }


def test_row_to_dict_nulls():
    row = {"f": [{"v": "1"}, {"v": None}, {"v": None}, {"v": []}, {"v": None}]}
    assert bigquery.row_to_dict(SCHEMA, row) == {
        "id": 1,
        "price": None,
        "paid": None,
        "tags": [],
        "buyer": None,
    }


def test_list_rows_uses_page_token_field(service, table_ref):
    service.tables.return_value.get.return_value.execute.return_value = {
        "schema": {"fields": [{"name": "id", "type": "INTEGER"}]}
    }
    service.tabledata.return_value.list.return_value.execute.side_effect = [
        {"rows": [{"f": [{"v": "1"}]}], "pageToken": "next"},
        {"rows": [{"f": [{"v": "2"}]}]},
    ]

    assert list(bigquery.list_rows(service, table_ref)) == [{"id": 1}, {"id": 2}]
    tokens = [c.kwargs["pageToken"] for c in service.tabledata.return_value.list.call_args_list]
    assert tokens == [None, "next"]


# --- Jobs ---


def test_list_jobs_state_filter(service):
    service.jobs.return_value.list.return_value.execute.return_value = {"jobs": [{"id": "j"}]}
    assert list(bigquery.list_jobs(service, "p", state="DONE", all_users=True)) == [{"id": "j"}]
    kwargs = service.jobs.return_value.list.call_args.kwargs
    assert kwargs["stateFilter"] == "done"
    assert kwargs["allUsers"] is True


def test_list_jobs_bad_state(service):
    with pytest.raises(InvalidArgumentError):
        bigquery.list_jobs(service, "p", state="finished")


def test_start_query_body(service):
    service.jobs.return_value.insert.return_value.execute.return_value = {
        "jobReference": {"projectId": "p", "jobId": "j1"}
    }
    dest = TableReference("p", "d", "t")

    bigquery.start_query(service, "p", "SELECT 1", "write_truncate", dest)

    body = service.jobs.return_value.insert.call_args.kwargs["body"]
    assert body["configuration"]["query"] == {
        "query": "SELECT 1",
        "useLegacySql": False,
        "writeDisposition": "WRITE_TRUNCATE",
        "destinationTable": {"projectId": "p", "datasetId": "d", "tableId": "t"},
    }


def test_start_query_bad_write_mode(service):
    with pytest.raises(InvalidArgumentError, match="write mode"):
        bigquery.start_query(service, "p", "SELECT 1", "WRITE_SOMETIMES")
    service.jobs.return_value.insert.assert_not_called()


@patch("gcmdlets.bigquery.MediaFileUpload")
def test_start_load_csv_body(mock_media, service, table_ref, tmp_path):
    source = tmp_path / "orders.csv"
    source.write_text("id,total\n1,9.5\n")
    service.jobs.return_value.insert.return_value.execute.return_value = {
        "jobReference": {"projectId": "my-project", "jobId": "load1", "location": "EU"}
    }

    job = bigquery.start_load(
        service,
        table_ref,
        "CSV",
        source,
        write_disposition="write_append",
        allow_unknown_fields=True,
        field_delimiter=";",
        skip_leading_rows=1,
        location="EU",
    )

    assert job["jobReference"]["jobId"] == "load1"
    mock_media.assert_called_once_with(
        str(source), mimetype="application/octet-stream", resumable=True
    )
    insert = service.jobs.return_value.insert
    assert insert.call_args.kwargs["projectId"] == "my-project"
    assert insert.call_args.kwargs["media_body"] is mock_media.return_value
    body = insert.call_args.kwargs["body"]
    assert body["jobReference"] == {"projectId": "my-project", "location": "EU"}
    assert body["configuration"]["load"] == {
        "destinationTable": {
            "projectId": "my-project",
            "datasetId": "sales",
            "tableId": "orders",
        },
        "sourceFormat": "CSV",
        "writeDisposition": "WRITE_APPEND",
        "ignoreUnknownValues": True,
        "fieldDelimiter": ";",
        "skipLeadingRows": 1,
    }


@patch("gcmdlets.bigquery.MediaFileUpload")
def test_start_load_json_format(mock_media, service, table_ref, tmp_path):
    source = tmp_path / "orders.json"
    source.write_text('{"id": 1}\n')

    bigquery.start_load(service, table_ref, "json", source)

    load = service.jobs.return_value.insert.call_args.kwargs["body"]["configuration"]["load"]
    assert load["sourceFormat"] == "NEWLINE_DELIMITED_JSON"
    assert "writeDisposition" not in load
    assert "ignoreUnknownValues" not in load


@pytest.mark.parametrize(
    "kwargs, match",
    [
        ({"source_format": "parquet"}, "Unknown data format"),
        ({"source_format": "avro", "allow_jagged_rows": True}, "only apply to CSV"),
        ({"source_format": "json", "skip_leading_rows": 1}, "only apply to CSV"),
        ({"source_format": "csv", "write_disposition": "WRITE_LATER"}, "write mode"),
    ],
)
@patch("gcmdlets.bigquery.MediaFileUpload")
def test_start_load_rejects_bad_options(mock_media, service, table_ref, tmp_path, kwargs, match):
    source = tmp_path / "rows"
    source.write_text("x")
    with pytest.raises(InvalidArgumentError, match=match):
        bigquery.start_load(service, table_ref, path=source, **kwargs)
    service.jobs.return_value.insert.assert_not_called()
    mock_media.assert_not_called()


def test_start_load_missing_file(service, table_ref, tmp_path):
    with pytest.raises(InvalidArgumentError, match="File not found"):
        bigquery.start_load(service, table_ref, "csv", tmp_path / "nope.csv")
    service.jobs.return_value.insert.assert_not_called()


def test_wait_for_job_polls_until_done(service):
    service.jobs.return_value.get.return_value.execute.side_effect = [
        {"status": {"state": "RUNNING"}},
        {"status": {"state": "DONE"}, "id": "j1"},
    ]
    sleep = MagicMock()

    job = bigquery.wait_for_job(service, JobReference("p", "j1"), sleep=sleep)

    assert job["id"] == "j1"
    assert sleep.call_count == 2
    sleep.assert_called_with(0.25)


def test_wait_for_job_failure(service):
    service.jobs.return_value.get.return_value.execute.return_value = {
        "status": {"state": "DONE", "errorResult": {"reason": "invalidQuery", "message": "Syntax error"}}
    }
    with pytest.raises(JobFailedError, match="Syntax error"):
        bigquery.wait_for_job(service, JobReference("p", "j1"), sleep=MagicMock())


def test_cancel_job_returns_job(service):
    service.jobs.return_value.cancel.return_value.execute.return_value = {"job": {"id": "j1"}}
    assert bigquery.cancel_job(service, JobReference("p", "j1")) == {"id": "j1"}


def test_list_query_results(service):
    service.jobs.return_value.getQueryResults.return_value.execute.side_effect = [
        {"jobComplete": True, "schema": {"fields": [{"name": "n", "type": "INTEGER"}]}},
        {"rows": [{"f": [{"v": "3"}]}]},
    ]
    assert list(bigquery.list_query_results(service, JobReference("p", "j1"))) == [{"n": 3}]


def test_list_query_results_incomplete(service):
    service.jobs.return_value.getQueryResults.return_value.execute.return_value = {
        "jobComplete": False
    }
    with pytest.raises(InvalidArgumentError, match="has not completed"):
        list(bigquery.list_query_results(service, JobReference("p", "j1")))

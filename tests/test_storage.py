from unittest.mock import MagicMock, patch

import pytest

from gcmdlets import storage
from gcmdlets.core import (
    InvalidArgumentError,
    PermissionDeniedError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from gcmdlets.prompts import Answer, ConfirmationGate


@pytest.fixture
def service():
    return MagicMock()


def test_list_buckets_pages(service):
    service.buckets.return_value.list.return_value.execute.side_effect = [
        {"items": [{"name": "a"}], "nextPageToken": "n1"},
        {"items": [{"name": "b"}]},
    ]
    assert [b["name"] for b in storage.list_buckets(service, "p")] == ["a", "b"]
    tokens = [c.kwargs["pageToken"] for c in service.buckets.return_value.list.call_args_list]
    assert tokens == [None, "n1"]


def test_bucket_exists_only_404_is_missing(service, http_error):
    get = service.buckets.return_value.get.return_value
    get.execute.side_effect = [{"name": "b"}, http_error(404), http_error(403)]
    assert storage.bucket_exists(service, "b") is True
    assert storage.bucket_exists(service, "b") is False
    assert storage.bucket_exists(service, "b") is True


def test_create_bucket_validates_location(service):
    with pytest.raises(InvalidArgumentError, match="Unknown location"):
        storage.create_bucket(service, "p", "b", location="MARS")
    service.buckets.return_value.insert.assert_not_called()


def test_create_bucket_body(service):
    storage.create_bucket(service, "p", "b", location="eu", storage_class="nearline")
    service.buckets.return_value.insert.assert_called_once_with(
        project="p", body={"name": "b", "location": "EU", "storageClass": "NEARLINE"}
    )


def test_create_bucket_conflict(service, http_error):
    service.buckets.return_value.insert.return_value.execute.side_effect = http_error(409)
    with pytest.raises(ResourceConflictError, match="names are global"):
        storage.create_bucket(service, "p", "b")


def test_delete_bucket_declined(service):
    gate = ConfirmationGate(ask=MagicMock(return_value=Answer.NO))
    assert storage.delete_bucket(service, "b", gate) is False
    service.buckets.return_value.delete.assert_not_called()


def test_delete_empty_bucket(service):
    assert storage.delete_bucket(service, "b", ConfirmationGate(force=True)) is True
    service.buckets.return_value.delete.assert_called_once_with(bucket="b")


def test_delete_non_empty_bucket_without_delete_objects(service, http_error):
    service.buckets.return_value.delete.return_value.execute.side_effect = http_error(409)
    with pytest.raises(ResourceConflictError, match="--delete-objects"):
        storage.delete_bucket(service, "b", ConfirmationGate(force=True))
    service.objects.return_value.delete.assert_not_called()


def test_delete_non_empty_bucket_with_delete_objects(service, http_error):
    service.buckets.return_value.delete.return_value.execute.side_effect = [
        http_error(409),
        {},
    ]
    service.objects.return_value.list.return_value.execute.return_value = {
        "items": [{"name": "o1"}, {"name": "o2"}]
    }

    assert storage.delete_bucket(
        service, "b", ConfirmationGate(force=True), delete_objects=True
    ) is True

    deleted = [c.kwargs["object"] for c in service.objects.return_value.delete.call_args_list]
    assert deleted == ["o1", "o2"]
    assert service.buckets.return_value.delete.call_count == 2


def test_list_objects_prefix(service):
    service.objects.return_value.list.return_value.execute.return_value = {}
    assert list(storage.list_objects(service, "b", prefix="logs/")) == []
    service.objects.return_value.list.assert_called_once_with(
        bucket="b", prefix="logs/", delimiter=None, pageToken=None
    )


def test_upload_missing_file(service, tmp_path):
    with pytest.raises(InvalidArgumentError, match="File not found"):
        storage.upload_object(service, "b", "o", tmp_path / "nope.txt")


@patch("gcmdlets.storage.MediaFileUpload")
def test_upload_object(mock_media, service, tmp_path):
    source = tmp_path / "data.csv"
    source.write_text("a,b\n")

    storage.upload_object(service, "b", "data.csv", source, content_type="text/csv")

    mock_media.assert_called_once_with(str(source), mimetype="text/csv", resumable=True)
    service.objects.return_value.insert.assert_called_once_with(
        bucket="b",
        name="data.csv",
        body={"name": "data.csv", "contentType": "text/csv"},
        media_body=mock_media.return_value,
    )


@patch("gcmdlets.storage.MediaIoBaseDownload")
def test_download_object_writes_chunks(mock_download, service, tmp_path):
    target = tmp_path / "data.csv"
    service.objects.return_value.get.return_value.execute.return_value = {
        "name": "data.csv",
        "size": "4",
    }

    def fake_downloader(f, request):
        downloader = MagicMock()

        def next_chunk():
            f.write(b"a,b\n")
            return None, True

        downloader.next_chunk.side_effect = next_chunk
        return downloader

    mock_download.side_effect = fake_downloader

    obj = storage.download_object(service, "b", "data.csv", target)

    assert obj["name"] == "data.csv"
    assert target.read_bytes() == b"a,b\n"
    service.objects.return_value.get_media.assert_called_once_with(bucket="b", object="data.csv")
    assert mock_download.call_args.args[1] is service.objects.return_value.get_media.return_value


@patch("gcmdlets.storage.MediaIoBaseDownload")
def test_download_object_follows_chunks_until_done(mock_download, service, tmp_path):
    mock_download.return_value.next_chunk.side_effect = [(None, False), (None, False), (None, True)]
    storage.download_object(service, "b", "big.bin", tmp_path / "big.bin")
    assert mock_download.return_value.next_chunk.call_count == 3


@patch("gcmdlets.storage.MediaIoBaseDownload")
def test_download_object_refuses_existing_file(mock_download, service, tmp_path):
    target = tmp_path / "data.csv"
    target.write_text("keep me")

    with pytest.raises(InvalidArgumentError, match="--overwrite"):
        storage.download_object(service, "b", "data.csv", target)

    assert target.read_text() == "keep me"
    service.objects.return_value.get.assert_not_called()
    mock_download.assert_not_called()


@patch("gcmdlets.storage.MediaIoBaseDownload")
def test_download_object_overwrite(mock_download, service, tmp_path):
    target = tmp_path / "data.csv"
    target.write_text("old contents")
    mock_download.return_value.next_chunk.return_value = (None, True)

    storage.download_object(service, "b", "data.csv", target, overwrite=True)

    assert target.read_bytes() == b""
    mock_download.assert_called_once()


@patch("gcmdlets.storage.MediaIoBaseDownload")
def test_download_missing_object_creates_no_file(mock_download, service, tmp_path, http_error):
    target = tmp_path / "data.csv"
    service.objects.return_value.get.return_value.execute.side_effect = http_error(404)

    with pytest.raises(ResourceNotFoundError) as excinfo:
        storage.download_object(service, "b", "gone.csv", target)

    assert excinfo.value.resource == "gone.csv"
    assert excinfo.value.scope == "b"
    assert not target.exists()
    mock_download.assert_not_called()


@patch("gcmdlets.storage.MediaIoBaseDownload")
def test_download_error_is_translated(mock_download, service, tmp_path, http_error):
    mock_download.return_value.next_chunk.side_effect = http_error(403)

    with pytest.raises(PermissionDeniedError, match="permission to download 'data.csv'"):
        storage.download_object(service, "b", "data.csv", tmp_path / "data.csv")

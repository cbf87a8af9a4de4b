"""Cloud Storage v1 bindings: buckets and objects."""

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload

from gcmdlets.core import (
    FetchStatus,
    InvalidArgumentError,
    ResourceConflictError,
    translate_http_error,
)
from gcmdlets.paging import CancellationToken, execute, fetch, get_or_raise, iter_items
from gcmdlets.prompts import ConfirmationGate

logger = logging.getLogger(__name__)

BUCKET_LOCATIONS = ("ASIA", "EU", "US")
STORAGE_CLASSES = (
    "STANDARD",
    "NEARLINE",
    "COLDLINE",
    "ARCHIVE",
    "DURABLE_REDUCED_AVAILABILITY",
)
DEFAULT_CONTENT_TYPE = "application/octet-stream"


# --- Buckets ---


def list_buckets(
    service: Any, project: str, cancel: Optional[CancellationToken] = None
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.buckets().list(project=project, pageToken=page_token)

    return iter_items(make_request, "items", f"buckets of project '{project}'", cancel)


def get_bucket(service: Any, name: str) -> Dict[str, Any]:
    return get_or_raise(service.buckets().get(bucket=name, projection="full"), name)


def bucket_exists(service: Any, name: str) -> bool:
    """Only a 404 means the bucket does not exist.

    Any other failure (e.g. 403 on someone else's bucket) means the name is taken.
    """
    result = fetch(service.buckets().get(bucket=name), name)
    if result.status is FetchStatus.FAILED:
        logger.debug(f"Bucket {name} lookup failed with {result.error}, treating as existing")
    return result.status is not FetchStatus.NOT_FOUND


def create_bucket(
    service: Any,
    project: str,
    name: str,
    location: Optional[str] = None,
    storage_class: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"name": name}
    if location:
        location = location.upper()
        if location not in BUCKET_LOCATIONS:
            raise InvalidArgumentError(
                f"Unknown location '{location}'. Valid locations: {', '.join(BUCKET_LOCATIONS)}.",
                resource=name,
            )
        body["location"] = location
    if storage_class:
        storage_class = storage_class.upper()
        if storage_class not in STORAGE_CLASSES:
            raise InvalidArgumentError(
                f"Unknown storage class '{storage_class}'. Valid classes: {', '.join(STORAGE_CLASSES)}.",
                resource=name,
            )
        body["storageClass"] = storage_class

    return execute(
        service.buckets().insert(project=project, body=body),
        name,
        project,
        action="create",
        messages={
            ResourceConflictError: f"Bucket '{name}' already exists. Bucket names are global."
        },
    )


def delete_all_objects(
    service: Any, bucket: str, cancel: Optional[CancellationToken] = None
) -> int:
    """Delete every object in a bucket, page by page. Returns the count deleted."""
    deleted = 0
    for obj in list_objects(service, bucket, cancel=cancel):
        delete_object(service, bucket, obj["name"])
        deleted += 1
    logger.debug(f"Deleted {deleted} object(s) from bucket {bucket}")
    return deleted


def delete_bucket(
    service: Any,
    name: str,
    gate: ConfirmationGate,
    delete_objects: bool = False,
    cancel: Optional[CancellationToken] = None,
) -> bool:
    """Delete a bucket after confirmation.

    A non-empty bucket is rejected by the server with 409. With
    ``delete_objects`` its objects are removed first, then the delete is
    repeated once.
    """
    if not gate.confirm(f"Delete bucket '{name}'?"):
        return False

    try:
        execute(service.buckets().delete(bucket=name), name, action="delete")
    except ResourceConflictError as e:
        logger.debug(f"Bucket {name} not empty: {e}")
        if not delete_objects:
            raise ResourceConflictError(
                f"Bucket '{name}' is not empty. Use --delete-objects to delete its objects too.",
                resource=name,
            ) from e
        delete_all_objects(service, name, cancel)
        execute(service.buckets().delete(bucket=name), name, action="delete")
    return True


# --- Objects ---


def list_objects(
    service: Any,
    bucket: str,
    prefix: Optional[str] = None,
    delimiter: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Dict[str, Any]]:
    def make_request(page_token):
        return service.objects().list(
            bucket=bucket, prefix=prefix, delimiter=delimiter, pageToken=page_token
        )

    return iter_items(make_request, "items", f"objects of bucket '{bucket}'", cancel)


def get_object(service: Any, bucket: str, name: str) -> Dict[str, Any]:
    return get_or_raise(service.objects().get(bucket=bucket, object=name), name, bucket)


def upload_object(
    service: Any,
    bucket: str,
    name: str,
    path: Path,
    content_type: Optional[str] = None,
) -> Dict[str, Any]:
    path = Path(path)
    if not path.is_file():
        raise InvalidArgumentError(f"File not found: {path}", resource=str(path))
    content_type = content_type or DEFAULT_CONTENT_TYPE
    media = MediaFileUpload(str(path), mimetype=content_type, resumable=True)
    return execute(
        service.objects().insert(
            bucket=bucket, name=name, body={"name": name, "contentType": content_type}, media_body=media
        ),
        name,
        bucket,
        action="upload",
    )


def download_object(
    service: Any,
    bucket: str,
    name: str,
    path: Path,
    overwrite: bool = False,
) -> Dict[str, Any]:
    """Write an object's contents to a local file and return its metadata.

    The object is looked up first so a missing object is reported as not
    found before any local file is created.
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise InvalidArgumentError(
            f"File '{path}' already exists. Use --overwrite to replace it.",
            resource=str(path),
        )
    metadata = get_object(service, bucket, name)

    request = service.objects().get_media(bucket=bucket, object=name)
    try:
        with open(path, "wb") as f:
            downloader = MediaIoBaseDownload(f, request)
            done = False
            while not done:
                status, done = downloader.next_chunk()
                if status is not None:
                    logger.debug(f"Downloaded {status.progress():.0%} of {name}")
    except HttpError as e:
        raise translate_http_error(e, name, bucket, action="download") from e
    logger.debug(f"GCP API: objects.get_media() wrote {name} to {path}")
    return metadata


def delete_object(service: Any, bucket: str, name: str) -> None:
    execute(service.objects().delete(bucket=bucket, object=name), name, bucket, action="delete")

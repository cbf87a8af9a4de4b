import logging
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from gcmdlets import storage
from gcmdlets.cli.common import (
    emit,
    error_console,
    for_each,
    get_project,
    get_service,
    handle_error,
    interruptible,
)
from gcmdlets.prompts import ConfirmationGate

logger = logging.getLogger(__name__)

app = typer.Typer(help="Cloud Storage buckets and objects.", no_args_is_help=True)
bucket_app = typer.Typer(help="Manage buckets.", no_args_is_help=True)
object_app = typer.Typer(help="Manage objects.", no_args_is_help=True)
app.add_typer(bucket_app, name="bucket")
app.add_typer(object_app, name="object")


@bucket_app.command("list")
def bucket_list(ctx: typer.Context) -> None:
    """
    List the buckets of a project.
    """
    try:
        project = get_project(ctx)
        with interruptible() as cancel:
            emit(ctx, storage.list_buckets(get_service("storage"), project, cancel), "bucket")
    except Exception as e:
        handle_error(e)


@bucket_app.command("get")
def bucket_get(
    ctx: typer.Context,
    names: Annotated[List[str], typer.Argument(help="Bucket names")],
) -> None:
    """
    Get buckets by name.
    """
    try:
        service = get_service("storage")
        for_each(names, lambda n: emit(ctx, [storage.get_bucket(service, n)], "bucket"))
    except Exception as e:
        handle_error(e)


@bucket_app.command("create")
def bucket_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Bucket name")],
    location: Optional[str] = typer.Option(
        None, "--location", help="ASIA, EU or US"
    ),
    storage_class: Optional[str] = typer.Option(
        None, "--storage-class", help="e.g. STANDARD, NEARLINE"
    ),
) -> None:
    """
    Create a bucket.
    """
    try:
        project = get_project(ctx)
        bucket = storage.create_bucket(
            get_service("storage"), project, name, location, storage_class
        )
        emit(ctx, [bucket], "bucket")
    except Exception as e:
        handle_error(e)


@bucket_app.command("delete")
def bucket_delete(
    ctx: typer.Context,
    names: Annotated[List[str], typer.Argument(help="Bucket names")],
    delete_objects: bool = typer.Option(
        False, "--delete-objects", help="Delete the objects of non-empty buckets too"
    ),
    force: bool = typer.Option(False, "--force", help="Delete without asking"),
) -> None:
    """
    Delete buckets.
    """
    try:
        service = get_service("storage")
        gate = ConfirmationGate(force=force)
        with interruptible() as cancel:

            def delete(name):
                if not storage.delete_bucket(service, name, gate, delete_objects, cancel):
                    error_console.print(f"Skipped bucket {name}")

            for_each(names, delete)
    except Exception as e:
        handle_error(e)


@bucket_app.command("exists")
def bucket_exists(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Bucket name")],
) -> None:
    """
    Print true if a bucket with this name exists, false otherwise.
    """
    try:
        print("true" if storage.bucket_exists(get_service("storage"), name) else "false")
    except Exception as e:
        handle_error(e)


@object_app.command("list")
def object_list(
    ctx: typer.Context,
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Only names with this prefix"),
    delimiter: Optional[str] = typer.Option(
        None, "--delimiter", help="Group names by this delimiter, e.g. '/'"
    ),
) -> None:
    """
    List the objects of a bucket.
    """
    try:
        with interruptible() as cancel:
            items = storage.list_objects(
                get_service("storage"), bucket, prefix, delimiter, cancel
            )
            emit(ctx, items, "object")
    except Exception as e:
        handle_error(e)


@object_app.command("get")
def object_get(
    ctx: typer.Context,
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    names: Annotated[List[str], typer.Argument(help="Object names")],
) -> None:
    """
    Get object metadata.
    """
    try:
        service = get_service("storage")
        for_each(
            names, lambda n: emit(ctx, [storage.get_object(service, bucket, n)], "object")
        )
    except Exception as e:
        handle_error(e)


@object_app.command("upload")
def object_upload(
    ctx: typer.Context,
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    name: Annotated[str, typer.Argument(help="Object name")],
    file: Annotated[Path, typer.Argument(help="Local file to upload")],
    content_type: Optional[str] = typer.Option(
        None, "--content-type", help="Defaults to application/octet-stream"
    ),
) -> None:
    """
    Upload a local file as an object.
    """
    try:
        obj = storage.upload_object(get_service("storage"), bucket, name, file, content_type)
        emit(ctx, [obj], "object")
    except Exception as e:
        handle_error(e)


@object_app.command("download")
def object_download(
    ctx: typer.Context,
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    name: Annotated[str, typer.Argument(help="Object name")],
    file: Annotated[Path, typer.Argument(help="Local file to write")],
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing local file"),
) -> None:
    """
    Download an object's contents to a local file.
    """
    try:
        obj = storage.download_object(get_service("storage"), bucket, name, file, overwrite)
        emit(ctx, [obj], "object")
    except Exception as e:
        handle_error(e)


@object_app.command("delete")
def object_delete(
    ctx: typer.Context,
    bucket: Annotated[str, typer.Argument(help="Bucket name")],
    names: Annotated[List[str], typer.Argument(help="Object names")],
) -> None:
    """
    Delete objects.
    """
    try:
        service = get_service("storage")
        for_each(names, lambda n: storage.delete_object(service, bucket, n))
    except Exception as e:
        handle_error(e)

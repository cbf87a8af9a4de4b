"""gcmdlets - Google Cloud REST resources from the shell."""

from gcmdlets.core import (
    DatasetReference,
    TableReference,
    JobReference,
    FetchResult,
    FetchStatus,
    GCmdletsError,
    ResourceNotFoundError,
    PermissionDeniedError,
    ResourceConflictError,
    InvalidArgumentError,
    ReadError,
    PollTimeoutError,
    JobFailedError,
    translate_http_error,
)
from gcmdlets.paging import (
    CancellationToken,
    NullResponsePolicy,
    ResourcePage,
    iter_pages,
    iter_items,
    fetch,
    get_or_raise,
)
from gcmdlets.polling import poll_until_done
from gcmdlets.cache import ResourceTypeCache
from gcmdlets.config import resolve_project
from gcmdlets.prompts import ConfirmationGate
from gcmdlets.cli import run

__all__ = [
    # References and outcomes
    "DatasetReference",
    "TableReference",
    "JobReference",
    "FetchResult",
    "FetchStatus",
    # Exceptions
    "GCmdletsError",
    "ResourceNotFoundError",
    "PermissionDeniedError",
    "ResourceConflictError",
    "InvalidArgumentError",
    "ReadError",
    "PollTimeoutError",
    "JobFailedError",
    "translate_http_error",
    # Paging and polling
    "CancellationToken",
    "NullResponsePolicy",
    "ResourcePage",
    "iter_pages",
    "iter_items",
    "fetch",
    "get_or_raise",
    "poll_until_done",
    # Configuration
    "ResourceTypeCache",
    "resolve_project",
    "ConfirmationGate",
    # CLI
    "run",
]

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from googleapiclient.errors import HttpError

from gcmdlets.core import (
    FetchResult,
    FetchStatus,
    GCmdletsError,
    PermissionDeniedError,
    ReadError,
    ResourceNotFoundError,
    translate_http_error,
)

logger = logging.getLogger(__name__)

RequestFactory = Callable[[Optional[str]], Any]


class NullResponsePolicy(enum.Enum):
    """What a listing does when a page request returns no response at all."""

    WARN = "warn"
    ABORT = "abort"


class CancellationToken:
    """Cooperative cancellation flag checked between page requests."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ResourcePage:
    items: List[Any] = field(default_factory=list)
    next_page_token: Optional[str] = None


def listing_error(error: HttpError, scope: str) -> Exception:
    """Translate a failed page request into an error about the whole listing."""
    translated = translate_http_error(error, scope, action="list")
    if not isinstance(translated, GCmdletsError):
        return translated
    if isinstance(translated, PermissionDeniedError):
        message = f"You do not have permission to list {scope}."
    else:
        reason = getattr(error, "reason", None) or str(error)
        message = f"Could not list {scope}: {reason}"
    return type(translated)(message, scope=scope)


def iter_pages(
    make_request: RequestFactory,
    items_field: str,
    scope: str,
    cancel: Optional[CancellationToken] = None,
    on_null: NullResponsePolicy = NullResponsePolicy.WARN,
    token_field: str = "nextPageToken",
) -> Iterator[ResourcePage]:
    """Request pages from a listing endpoint until the server stops paging.

    Args:
        make_request: Builds the request for a page token (None for the
            first page). The result only needs an ``execute()`` method.
        items_field: Response field that holds the page's items.
        scope: Label for the listing, used in errors and log messages.
        cancel: Checked before every page after the first.
        on_null: Behaviour when a request returns None.
        token_field: Response field that holds the continuation token.
            BigQuery's tabledata and query results use ``pageToken``.

    Yields:
        One ResourcePage per successful request.
    """
    page_token: Optional[str] = None
    used_tokens = set()
    page_number = 0

    while True:
        if page_token is not None and cancel is not None and cancel.cancelled:
            logger.debug(f"Listing of {scope} cancelled after {page_number} page(s)")
            return

        try:
            response = make_request(page_token).execute()
        except HttpError as e:
            raise listing_error(e, scope) from e

        page_number += 1
        if response is None:
            if on_null is NullResponsePolicy.ABORT:
                raise ReadError(f"Listing {scope} returned no response.", scope=scope)
            logger.warning(f"Listing {scope} returned no response, skipping the rest")
            return

        items = response.get(items_field) or []
        next_token = response.get(token_field) or None
        logger.debug(
            f"GCP API: page {page_number} of {scope} returned {len(items)} item(s)"
        )
        yield ResourcePage(items=list(items), next_page_token=next_token)

        if next_token is None:
            return
        if next_token in used_tokens:
            logger.warning(
                f"Listing {scope} repeated page token {next_token!r}, stopping"
            )
            return
        used_tokens.add(next_token)
        page_token = next_token


def iter_items(
    make_request: RequestFactory,
    items_field: str,
    scope: str,
    cancel: Optional[CancellationToken] = None,
    on_null: NullResponsePolicy = NullResponsePolicy.WARN,
    token_field: str = "nextPageToken",
) -> Iterator[Any]:
    """Stream the items of every page, in server order."""
    for page in iter_pages(
        make_request,
        items_field,
        scope,
        cancel=cancel,
        on_null=on_null,
        token_field=token_field,
    ):
        yield from page.items


def fetch(request: Any, resource: str, scope: Optional[str] = None) -> FetchResult:
    """Execute a single-resource request and report the outcome.

    A 404 becomes ``NOT_FOUND`` carrying a ResourceNotFoundError; any other
    transport error becomes ``FAILED`` carrying the translated error.
    """
    try:
        value = request.execute()
    except HttpError as e:
        error = translate_http_error(e, resource, scope)
        if isinstance(error, ResourceNotFoundError):
            logger.debug(f"GCP API: {resource} not found in {scope}")
            return FetchResult(FetchStatus.NOT_FOUND, error=error)
        return FetchResult(FetchStatus.FAILED, error=error)
    return FetchResult(FetchStatus.FOUND, value=value)


def get_or_raise(
    request: Any, resource: str, scope: Optional[str] = None
) -> Dict[str, Any]:
    """Execute a single-resource request, raising the typed error on failure."""
    result = fetch(request, resource, scope)
    return result.unwrap()


def execute(
    request: Any,
    resource: str,
    scope: Optional[str] = None,
    action: str = "access",
    messages: Optional[Dict[type, str]] = None,
) -> Any:
    """Execute a mutating request, translating transport errors.

    Args:
        messages: Optional per-category message overrides, keyed by the
            gcmdlets error class (e.g. ``{ResourceConflictError: "..."}``).
    """
    try:
        return request.execute()
    except HttpError as e:
        error = translate_http_error(e, resource, scope, action=action)
        if messages:
            for error_class, message in messages.items():
                if isinstance(error, error_class):
                    error = error_class(message, resource, scope)
                    break
        raise error from e

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from google.api_core import exceptions
from googleapiclient.errors import HttpError

# We use a logger but don't configure it here.
# Configuration should happen at the application entry point.
logger = logging.getLogger(__name__)


class GCmdletsError(Exception):
    """Base exception for gcmdlets."""

    category = "error"

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        scope: Optional[str] = None,
    ):
        super().__init__(message)
        self.resource = resource
        self.scope = scope


class ResourceNotFoundError(GCmdletsError, LookupError):
    """Raised when a resource is not found."""

    category = "not-found"


class PermissionDeniedError(GCmdletsError):
    """Raised when the caller may not access or modify a resource."""

    category = "permission-denied"


class ResourceConflictError(GCmdletsError):
    """Raised when a resource already exists or was modified concurrently."""

    category = "conflict"


class InvalidArgumentError(GCmdletsError, ValueError):
    """Raised for bad input, either rejected locally or by the server."""

    category = "invalid-argument"


class ReadError(GCmdletsError):
    """Raised when a listing call returns no response at all."""

    category = "read-error"


class PollTimeoutError(GCmdletsError, TimeoutError):
    category = "timeout"


class JobFailedError(GCmdletsError):
    category = "job-failed"


def translate_http_error(
    error: HttpError,
    resource: str,
    scope: Optional[str] = None,
    action: str = "access",
    message: Optional[str] = None,
) -> Exception:
    """Map a transport error onto the gcmdlets error taxonomy.

    Args:
        error: The HttpError raised by a request's execute().
        resource: Name of the resource the request addressed.
        scope: Addressing context of the resource, usually the project.
        action: Verb used in the permission message ("modify", "delete", ...).
        message: Overrides the generated message for the matched category.

    Returns:
        A GCmdletsError subclass for the known statuses, otherwise the
        google.api_core exception matching the HTTP status.
    """
    status = error.resp.status
    reason = getattr(error, "reason", None) or str(error)
    api_error = exceptions.from_http_status(status, reason)
    where = f" in '{scope}'" if scope else ""

    if isinstance(api_error, exceptions.NotFound):
        return ResourceNotFoundError(
            message or f"'{resource}' not found{where}.", resource, scope
        )
    if isinstance(api_error, exceptions.Forbidden):
        return PermissionDeniedError(
            message or f"You do not have permission to {action} '{resource}'{where}.",
            resource,
            scope,
        )
    if isinstance(api_error, exceptions.Conflict):
        return ResourceConflictError(
            message or f"Conflict on '{resource}'{where}: {reason}", resource, scope
        )
    if isinstance(api_error, exceptions.BadRequest):
        return InvalidArgumentError(
            message or f"Invalid request for '{resource}'{where}: {reason}",
            resource,
            scope,
        )
    logger.debug(f"Unmapped HTTP status {status} for {resource}")
    return api_error


class FetchStatus(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not-found"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a single-resource lookup.

    Lookups report a missing resource as data rather than as an exception, so
    callers can branch on ``status`` (e.g. update vs. insert) and raise only
    when they need to.
    """

    status: FetchStatus
    value: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = None

    @property
    def found(self) -> bool:
        return self.status is FetchStatus.FOUND

    def unwrap(self) -> Dict[str, Any]:
        if self.status is FetchStatus.FOUND:
            return self.value  # type: ignore[return-value]
        raise self.error  # type: ignore[misc]


@dataclass(frozen=True)
class DatasetReference:
    project_id: str
    dataset_id: str

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "DatasetReference":
        """Extract the reference from a Dataset, DatasetList entry or table."""
        ref = resource.get("datasetReference") or resource.get("tableReference")
        if ref is None and "projectId" in resource and "datasetId" in resource:
            ref = resource
        if not ref:
            raise InvalidArgumentError("Object does not describe a BigQuery dataset.")
        return cls(project_id=ref["projectId"], dataset_id=ref["datasetId"])

    def to_api(self) -> Dict[str, str]:
        return {"projectId": self.project_id, "datasetId": self.dataset_id}

    def __str__(self) -> str:
        return f"{self.project_id}:{self.dataset_id}"


@dataclass(frozen=True)
class TableReference:
    project_id: str
    dataset_id: str
    table_id: str

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "TableReference":
        ref = resource.get("tableReference")
        if ref is None and "tableId" in resource:
            ref = resource
        if not ref:
            raise InvalidArgumentError("Object does not describe a BigQuery table.")
        return cls(
            project_id=ref["projectId"],
            dataset_id=ref["datasetId"],
            table_id=ref["tableId"],
        )

    @classmethod
    def parse(cls, value: str, default_project: str) -> "TableReference":
        """Parse ``[project:]dataset.table``."""
        project = default_project
        rest = value
        if ":" in value:
            project, rest = value.split(":", 1)
        if rest.count(".") != 1:
            raise InvalidArgumentError(
                f"Table '{value}' must be given as [project:]dataset.table", value
            )
        dataset_id, table_id = rest.split(".")
        if not project or not dataset_id or not table_id:
            raise InvalidArgumentError(
                f"Table '{value}' must be given as [project:]dataset.table", value
            )
        return cls(project_id=project, dataset_id=dataset_id, table_id=table_id)

    @property
    def dataset(self) -> DatasetReference:
        return DatasetReference(self.project_id, self.dataset_id)

    def to_api(self) -> Dict[str, str]:
        return {
            "projectId": self.project_id,
            "datasetId": self.dataset_id,
            "tableId": self.table_id,
        }

    def __str__(self) -> str:
        return f"{self.project_id}:{self.dataset_id}.{self.table_id}"


@dataclass(frozen=True)
class JobReference:
    project_id: str
    job_id: str
    location: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "JobReference":
        ref = resource.get("jobReference")
        if ref is None and "jobId" in resource:
            ref = resource
        if not ref:
            raise InvalidArgumentError("Object does not describe a BigQuery job.")
        return cls(
            project_id=ref["projectId"],
            job_id=ref["jobId"],
            location=ref.get("location"),
        )

    def __str__(self) -> str:
        return f"{self.project_id}:{self.job_id}"


def qualify_name(name: str, project: str, collection: str) -> str:
    """Prefix a short name with ``projects/{project}/{collection}/``.

    Names that are already fully qualified for the project are returned as-is.
    """
    if not name or not name.strip():
        return name
    prefix = f"projects/{project}/{collection}"
    if name.startswith(prefix):
        return name
    return f"{prefix}/{name}"

from typing import Any, Optional


class SyncError(Exception):
    """Base class for reconciliation failures."""


class ConfigurationError(SyncError):
    """Missing or invalid sync configuration. Aborts the run."""


class SourceFetchError(SyncError):
    """Feed unreachable or malformed. Aborts the run."""


class ValidationError(SyncError):
    """The platform rejected one item with application-level user errors."""

    def __init__(self, message: str, user_errors: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.user_errors = user_errors or []


class TransportError(SyncError):
    """Network or HTTP failure talking to a remote dependency."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteQueryError(TransportError):
    """The API answered but reported top-level query errors."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class BulkJobError(SyncError):
    """Staging, upload or submission of a bulk job failed. Aborts that batch only."""


class BulkJobTimeoutError(BulkJobError, TimeoutError):
    """Bulk job polling exceeded the attempt ceiling."""

"""
Error types for subnetsync.

Everything raised on purpose derives from :class:`SubnetSyncError` so callers
(reconcilers, the CLI) can catch the whole family in one place. Kubernetes
API errors are not wrapped and surface as ``kubernetes.client.rest.ApiException``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class SubnetSyncError(Exception):
    """Base class for all subnetsync errors."""


# ---------- Validation ----------

class ValidationError(SubnetSyncError):
    """The desired object cannot be built from the custom resource."""


class TagsExceededError(ValidationError):
    """Raised when a built object would carry more tags than NSX accepts."""

    def __init__(self, count: int, limit: int = 26) -> None:
        self.count = count
        self.limit = limit
        super().__init__(f"tags cannot exceed maximum size {limit}, tags length: {count}")


class UnsupportedResourceKindError(ValidationError):
    """Raised when the builder receives something other than a Subnet or SubnetSet."""


class HierarchyEncodeError(SubnetSyncError):
    """One level of a hierarchical request could not be encoded."""


# ---------- Identity ----------

class IdentityExhaustedError(SubnetSyncError):
    """No collision-free identifier was found within the attempt bound."""


# ---------- Remote (NSX) ----------

@dataclass(eq=False)
class NsxApiError(SubnetSyncError):
    """NSX API error with HTTP context."""
    status: int
    url: str
    body: str = ""
    message: str = ""
    error_code: Optional[int] = None

    def __str__(self) -> str:
        base = f"{type(self).__name__}(status={self.status}, url={self.url})"
        if self.error_code is not None:
            base += f" error_code={self.error_code}"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class NotFoundError(NsxApiError):
    """HTTP 404."""


class InvalidRequestError(NsxApiError):
    """HTTP 400, the request was rejected by NSX validation."""


class ConflictError(NsxApiError):
    """HTTP 409/412, concurrent modification or revision mismatch."""


class PageMaxError(NsxApiError):
    """The search page size exceeded what NSX is willing to return."""


class NsxConnectionError(NsxApiError):
    """Transport-level failure (connect, TLS, timeout); status is 0."""


# ---------- Realization ----------

class RealizationError(SubnetSyncError):
    """The remote object did not converge to the realized state."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{message} (path={path})")


class RealizationStateError(RealizationError):
    """NSX reported the ERROR state; retrying will not help."""

    def __init__(self, path: str, state: str, details: str = "") -> None:
        self.state = state
        self.details = details
        msg = f"realized state is {state}"
        if details:
            msg += f": {details}"
        super().__init__(path, msg)


class RealizationTimeoutError(RealizationError):
    """Retry budget exhausted while the object was still not realized."""

    def __init__(self, path: str, attempts: int, last_state: str = "") -> None:
        self.attempts = attempts
        self.last_state = last_state
        super().__init__(path, f"not realized after {attempts} attempts; last_state='{last_state}'")


class CompensationError(SubnetSyncError):
    """Realization failed and so did the compensating delete."""

    def __init__(self, original: BaseException, cleanup_error: BaseException) -> None:
        self.original = original
        self.cleanup_error = cleanup_error
        super().__init__(f"{original}; compensating delete failed: {cleanup_error}")


class SubnetStatusUnavailableError(SubnetSyncError):
    """NSX returned no status entries for a subnet."""


class SubnetLookupError(SubnetSyncError):
    """No single stored NSX subnet belongs to the given Subnet CR."""


# ---------- Store / cleanup ----------

class StoreInitError(SubnetSyncError):
    """Startup inventory load failed; the service must not be used."""


class CleanupCancelledError(SubnetSyncError):
    """Bulk cleanup stopped because the cancel signal was set."""

    def __init__(self, deleted: int, remaining: int) -> None:
        self.deleted = deleted
        self.remaining = remaining
        super().__init__(f"cleanup cancelled: deleted={deleted} remaining={remaining}")


# ---------- Configuration ----------

class ConfigError(SubnetSyncError, ValueError):
    """Raised when runtime configuration cannot be resolved."""

"""Error taxonomy for policy reconciliation.

Pre-flight errors (intent validation, inventory, invariants, guardrails)
abort a run before any mutating provider call. ProviderError is the only
per-operation error; the driver classifies it and records it against a
single resource without disturbing sibling operations.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from azure.core.exceptions import (
    HttpResponseError,
    ServiceRequestTimeoutError,
    ServiceResponseTimeoutError,
)


class ErrorKind(str, Enum):
    """Classified failure kinds reported per resource."""

    # Transient - retried with backoff
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"

    # Terminal - recorded, never retried
    PERMISSION_DENIED = "PermissionDenied"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    INTERNAL = "Internal"

    # Inventory boundary - abort the whole run
    UNAVAILABLE = "Unavailable"
    THROTTLED = "Throttled"

    @property
    def is_transient(self) -> bool:
        """Whether a retry can reasonably be expected to succeed."""
        return self in TRANSIENT_ERROR_KINDS


TRANSIENT_ERROR_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT})

# HTTP status codes as surfaced by azure-core HttpResponseError
STATUS_CODE_KINDS: dict[int, ErrorKind] = {
    401: ErrorKind.PERMISSION_DENIED,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    408: ErrorKind.TIMEOUT,
    409: ErrorKind.CONFLICT,
    412: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
    503: ErrorKind.RATE_LIMITED,
    504: ErrorKind.TIMEOUT,
}


class ReconcilerError(Exception):
    """Base class for all reconciler errors."""

    pass


class IntentValidationError(ReconcilerError):
    """Raised when the policy intent document is missing or invalid."""

    pass


class InternalInvariantViolation(ReconcilerError):
    """Raised when data violates an invariant the reconciler relies on."""

    pass


class InventoryUnavailableError(ReconcilerError):
    """Raised when a trustworthy inventory or enrollment snapshot cannot be read.

    Scope cannot be evaluated from a partial inventory, so this always
    aborts the run before any mutation.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNAVAILABLE) -> None:
        super().__init__(message)
        self.kind = kind


class ProviderError(ReconcilerError):
    """Raised by enrollment providers for a failed enroll/unenroll call."""

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class GuardrailViolation(ReconcilerError):
    """Raised when a guardrail check blocks mutating calls."""

    pass


class KillSwitchActive(GuardrailViolation):
    """Raised when the kill switch is enabled."""

    pass


class BlastRadiusExceeded(GuardrailViolation):
    """Raised when a run would change more resources than allowed."""

    pass


def classify_provider_error(error: BaseException) -> ErrorKind:
    """Map an exception raised at the provider boundary to an ErrorKind.

    Args:
        error: Exception raised by enroll/unenroll.

    Returns:
        The classified kind. Unknown failures are INTERNAL (terminal).
    """
    if isinstance(error, ProviderError):
        return error.kind

    if isinstance(error, ServiceRequestTimeoutError | ServiceResponseTimeoutError):
        return ErrorKind.TIMEOUT

    if isinstance(error, asyncio.TimeoutError | TimeoutError):
        return ErrorKind.TIMEOUT

    if isinstance(error, HttpResponseError):
        status = error.status_code
        if status is None:
            return ErrorKind.INTERNAL
        kind = STATUS_CODE_KINDS.get(status)
        if kind is not None:
            return kind
        if status >= 500:
            return ErrorKind.TIMEOUT
        return ErrorKind.INTERNAL

    return ErrorKind.INTERNAL

"""Reconciliation driver: applies operations against the enrollment provider.

Per-operation state machine:

    Pending -> attempt -> Applied
                       -> Retrying -> Pending      (transient error, attempts left)
                       -> FailedTerminal           (terminal error or attempts exhausted)

Operations not started before cancellation end as Skipped.

CONCURRENCY:
- Independent operations run as asyncio tasks, bounded by a semaphore
- A per-resource lock keeps at most one call in flight per resource id
- The report is written only while holding the report lock

PARTIAL FAILURE ISOLATION:
Every provider exception is classified and recorded against its own
resource id. A failure never cancels or blocks sibling operations.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .adapters import EnrollmentProvider
from .config import RETRY_JITTER_RATIO, DriverSettings
from .errors import ErrorKind, classify_provider_error
from .models import OperationKind, ReconcileOperation

logger = logging.getLogger(__name__)


class OperationState(str, Enum):
    """Lifecycle states of a single operation."""

    PENDING = "pending"
    RETRYING = "retrying"
    APPLIED = "applied"
    FAILED_TERMINAL = "failed_terminal"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class OperationOutcome:
    """Terminal result of one operation."""

    operation: ReconcileOperation
    state: OperationState
    attempts: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None


@dataclass
class ReconcileReport:
    """Accumulated results of applying an operation list.

    Attributes:
        applied: Resource ids whose operation succeeded, in completion order
        failed: Resource id -> error kind of the final failed attempt
        skipped: Resource ids not sent to the provider (NoOp, dry run, cancelled)
        attempts: Resource id -> number of provider calls made
        errors: Resource id -> last error message, for diagnostics
        enrolled: Applied Enroll operations
        unenrolled: Applied Unenroll operations
    """

    applied: list[str] = field(default_factory=list)
    failed: dict[str, ErrorKind] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    enrolled: list[str] = field(default_factory=list)
    unenrolled: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def record(self, outcome: OperationOutcome) -> None:
        """Fold one terminal outcome into the report (caller holds the lock)."""
        rid = outcome.operation.resource_id
        if outcome.attempts:
            self.attempts[rid] = outcome.attempts

        match outcome.state:
            case OperationState.APPLIED:
                self.applied.append(rid)
                if outcome.operation.kind == OperationKind.ENROLL:
                    self.enrolled.append(rid)
                elif outcome.operation.kind == OperationKind.UNENROLL:
                    self.unenrolled.append(rid)
            case OperationState.FAILED_TERMINAL:
                self.failed[rid] = outcome.error_kind or ErrorKind.INTERNAL
                if outcome.error_message:
                    self.errors[rid] = outcome.error_message
            case OperationState.SKIPPED:
                self.skipped.append(rid)
            case _:
                raise ValueError(f"Outcome is not terminal: {outcome.state}")


def compute_backoff(attempt: int, settings: DriverSettings) -> float:
    """Exponential backoff with jitter for the wait after `attempt` failed."""
    backoff = min(
        settings.backoff_base_seconds * (2 ** (attempt - 1)),
        settings.backoff_max_seconds,
    )
    jitter = random.uniform(0, backoff * RETRY_JITTER_RATIO)
    return backoff + jitter


class ReconciliationDriver:
    """Applies reconcile operations with retry, bounded concurrency and isolation."""

    def __init__(
        self,
        provider: EnrollmentProvider,
        settings: DriverSettings | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            provider: Enrollment provider boundary.
            settings: Retry/concurrency settings (defaults if omitted).
        """
        self._provider = provider
        self._settings = settings or DriverSettings()

    @property
    def settings(self) -> DriverSettings:
        return self._settings

    async def reconcile(
        self,
        operations: Sequence[ReconcileOperation],
        cancel_event: asyncio.Event | None = None,
    ) -> ReconcileReport:
        """Apply all operations and report their terminal states.

        Args:
            operations: Ordered operations, as produced by diff().
            cancel_event: When set, no new operation is started. Operations
                already started still reach a terminal state.

        Returns:
            ReconcileReport accounting for every operation.
        """
        cancel = cancel_event or asyncio.Event()
        report = ReconcileReport()
        report_lock = asyncio.Lock()
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        resource_locks: dict[str, asyncio.Lock] = {}
        for op in operations:
            resource_locks.setdefault(op.resource_id, asyncio.Lock())

        async def record(outcome: OperationOutcome) -> None:
            async with report_lock:
                report.record(outcome)

        async def run_one(op: ReconcileOperation) -> None:
            if not op.is_mutating:
                await record(OperationOutcome(operation=op, state=OperationState.SKIPPED))
                return

            # Resource lock first so a waiting task does not hold a concurrency slot
            async with resource_locks[op.resource_id], semaphore:
                if cancel.is_set():
                    logger.info(
                        "Cancellation requested, operation not started",
                        extra={"operation": str(op)},
                    )
                    await record(OperationOutcome(operation=op, state=OperationState.SKIPPED))
                    return
                outcome = await self._apply_with_retry(op, cancel)
            await record(outcome)

        logger.info(
            "Applying operations",
            extra={
                "operation_count": len(operations),
                "max_concurrency": self._settings.max_concurrency,
                "max_attempts": self._settings.max_attempts,
            },
        )

        tasks = [asyncio.create_task(run_one(op)) for op in operations]
        await asyncio.gather(*tasks)

        logger.info(
            "Operations complete",
            extra={
                "applied": len(report.applied),
                "failed": len(report.failed),
                "skipped": len(report.skipped),
            },
        )
        return report

    async def _apply_with_retry(
        self, op: ReconcileOperation, cancel: asyncio.Event
    ) -> OperationOutcome:
        """Apply one operation with exponential backoff on transient errors."""
        last_kind: ErrorKind | None = None
        last_message: str | None = None
        max_attempts = self._settings.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                await self._call(op)
            except Exception as e:
                kind = classify_provider_error(e)

                if self._already_converged(op, kind, last_kind):
                    # A timed-out earlier attempt actually went through
                    logger.info(
                        "Operation already converged after timeout",
                        extra={"operation": str(op), "attempt": attempt},
                    )
                    return OperationOutcome(
                        operation=op, state=OperationState.APPLIED, attempts=attempt
                    )

                last_kind = kind
                last_message = str(e) or kind.value

                if not kind.is_transient:
                    logger.error(
                        "Operation failed with terminal error",
                        extra={
                            "operation": str(op),
                            "attempt": attempt,
                            "error_kind": kind.value,
                            "error": last_message,
                        },
                    )
                    return OperationOutcome(
                        operation=op,
                        state=OperationState.FAILED_TERMINAL,
                        attempts=attempt,
                        error_kind=kind,
                        error_message=last_message,
                    )

                if attempt >= max_attempts:
                    break

                wait_time = compute_backoff(attempt, self._settings)
                logger.warning(
                    "Operation failed, retrying",
                    extra={
                        "operation": str(op),
                        "state": OperationState.RETRYING.value,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "wait_seconds": round(wait_time, 3),
                        "error_kind": kind.value,
                    },
                )
                if await self._wait_or_cancel(cancel, wait_time):
                    logger.warning(
                        "Cancellation requested during retry backoff",
                        extra={"operation": str(op), "attempt": attempt},
                    )
                    break
                continue

            logger.info(
                "Operation applied",
                extra={"operation": str(op), "attempt": attempt},
            )
            return OperationOutcome(operation=op, state=OperationState.APPLIED, attempts=attempt)

        logger.error(
            "Operation failed after retries",
            extra={
                "operation": str(op),
                "attempts": attempt,
                "error_kind": last_kind.value if last_kind else None,
            },
        )
        return OperationOutcome(
            operation=op,
            state=OperationState.FAILED_TERMINAL,
            attempts=attempt,
            error_kind=last_kind,
            error_message=last_message,
        )

    async def _call(self, op: ReconcileOperation) -> Any:
        match op.kind:
            case OperationKind.ENROLL:
                call = self._provider.enroll(op.resource_id)
            case OperationKind.UNENROLL:
                call = self._provider.unenroll(op.resource_id)
            case _:
                raise ValueError(f"Operation is not mutating: {op}")
        return await asyncio.wait_for(call, timeout=self._settings.operation_timeout_seconds)

    @staticmethod
    def _already_converged(
        op: ReconcileOperation, kind: ErrorKind, previous: ErrorKind | None
    ) -> bool:
        if previous != ErrorKind.TIMEOUT:
            return False
        if op.kind == OperationKind.ENROLL:
            return kind == ErrorKind.CONFLICT
        if op.kind == OperationKind.UNENROLL:
            return kind == ErrorKind.NOT_FOUND
        return False

    @staticmethod
    async def _wait_or_cancel(cancel: asyncio.Event, timeout: float) -> bool:
        """Sleep for `timeout` seconds; return True if cancelled meanwhile."""
        if cancel.is_set():
            return True
        try:
            await asyncio.wait_for(cancel.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

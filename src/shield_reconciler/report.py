"""Run report: machine-readable summary of one reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .diff import summarize
from .driver import ReconcileReport
from .errors import (
    ErrorKind,
    GuardrailViolation,
    IntentValidationError,
    InternalInvariantViolation,
    ReconcilerError,
)
from .models import PolicyIntent, ReconcileOperation, ScopeDecision

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_BLOCKED = 3


@dataclass
class RunReport:
    """Result of a single reconciliation run."""

    cluster_id: str
    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    evaluated: int = 0
    in_scope: int = 0
    planned_enroll: int = 0
    planned_unenroll: int = 0
    enrolled: list[str] = field(default_factory=list)
    unenrolled: list[str] = field(default_factory=list)
    failures: dict[str, ErrorKind] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    operations: list[ReconcileOperation] = field(default_factory=list)

    @classmethod
    def from_plan(
        cls,
        intent: PolicyIntent,
        decisions: list[ScopeDecision],
        operations: list[ReconcileOperation],
        dry_run: bool = False,
    ) -> RunReport:
        counts = summarize(operations)
        return cls(
            cluster_id=intent.cluster_id,
            dry_run=dry_run,
            evaluated=len(decisions),
            in_scope=sum(1 for d in decisions if d.in_scope),
            planned_enroll=counts["enroll"],
            planned_unenroll=counts["unenroll"],
            operations=list(operations),
        )

    def merge(self, result: ReconcileReport) -> None:
        """Fold the driver's report into this run report."""
        self.enrolled = list(result.enrolled)
        self.unenrolled = list(result.unenrolled)
        self.failures = dict(result.failed)
        self.skipped = list(result.skipped)
        self.attempts = dict(result.attempts)
        self.errors = dict(result.errors)

    def finish(self) -> None:
        self.end_time = datetime.now(UTC)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def exit_code(self) -> int:
        """0 iff no operation failed."""
        return EXIT_OK if self.success else EXIT_FAILED

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, suitable for JSON output."""
        return {
            "cluster_id": self.cluster_id,
            "dry_run": self.dry_run,
            "start_time": self.start_time.isoformat().replace("+00:00", "Z"),
            "duration_seconds": round(self.duration_seconds, 3),
            "counts": {
                "evaluated": self.evaluated,
                "in_scope": self.in_scope,
                "planned_enroll": self.planned_enroll,
                "planned_unenroll": self.planned_unenroll,
                "enrolled": len(self.enrolled),
                "unenrolled": len(self.unenrolled),
                "failed": self.failed,
                "skipped": len(self.skipped),
            },
            "operations": [
                {"kind": op.kind.value, "resource_id": op.resource_id} for op in self.operations
            ],
            "failed": {rid: kind.value for rid, kind in sorted(self.failures.items())},
            "errors": dict(sorted(self.errors.items())),
            "attempts": dict(sorted(self.attempts.items())),
            "exit_code": self.exit_code,
        }

    def summary_lines(self) -> list[str]:
        """Human-readable summary."""
        prefix = "[dry-run] " if self.dry_run else ""
        lines = [
            f"{prefix}cluster {self.cluster_id}: evaluated {self.evaluated}, "
            f"in scope {self.in_scope}",
            f"{prefix}planned: enroll {self.planned_enroll}, unenroll {self.planned_unenroll}",
            f"{prefix}applied: enrolled {len(self.enrolled)}, unenrolled {len(self.unenrolled)}, "
            f"skipped {len(self.skipped)}, failed {self.failed}",
        ]
        for rid, kind in sorted(self.failures.items()):
            attempts = self.attempts.get(rid, 0)
            lines.append(f"  FAILED {rid}: {kind.value} after {attempts} attempt(s)")
        return lines


def exit_code_for(error: ReconcilerError) -> int:
    """Exit code for a run aborted before or instead of applying changes."""
    if isinstance(error, GuardrailViolation):
        return EXIT_BLOCKED
    if isinstance(error, IntentValidationError | InternalInvariantViolation):
        return EXIT_INVALID
    return EXIT_FAILED

"""Desired-vs-live diff producing an ordered operation list.

ORDERING:
- All Enroll operations come before any Unenroll operation, so a
  converging run can over-protect for a moment but never under-protect.
- Within one kind, operations are sorted by resource id (lexical) so the
  same inputs always produce the same plan.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Set

from .errors import InternalInvariantViolation
from .models import EnrollmentState, OperationKind, ReconcileOperation

logger = logging.getLogger(__name__)

OPERATION_ORDER: dict[OperationKind, int] = {
    OperationKind.ENROLL: 0,
    OperationKind.UNENROLL: 1,
    OperationKind.NOOP: 2,
}


def enrolled_resource_ids(live: Iterable[EnrollmentState]) -> frozenset[str]:
    """Collapse live enrollment rows into the set of enrolled ids.

    Raises:
        InternalInvariantViolation: If two rows disagree about the same resource.
    """
    states: dict[str, bool] = {}
    for row in live:
        previous = states.get(row.resource_id)
        if previous is not None and previous != row.currently_enrolled:
            raise InternalInvariantViolation(
                f"Conflicting enrollment state reported for {row.resource_id}"
            )
        states[row.resource_id] = row.currently_enrolled
    return frozenset(rid for rid, enrolled in states.items() if enrolled)


def diff(
    desired: Set[str],
    live: Iterable[EnrollmentState],
    *,
    include_noops: bool = False,
) -> list[ReconcileOperation]:
    """Compute the operations that move live enrollment to the desired set.

    Args:
        desired: Resource ids that should be enrolled.
        live: Current enrollment as reported by the provider.
        include_noops: Also emit NoOp for resources already converged.

    Returns:
        Enroll ops (sorted), then Unenroll ops (sorted), then NoOps (sorted).
    """
    enrolled = enrolled_resource_ids(live)

    operations = [ReconcileOperation.enroll(rid) for rid in desired - enrolled]
    operations += [ReconcileOperation.unenroll(rid) for rid in enrolled - desired]
    if include_noops:
        operations += [ReconcileOperation.noop(rid) for rid in desired & enrolled]

    operations.sort(key=lambda op: (OPERATION_ORDER[op.kind], op.resource_id))

    logger.info("Diff computed", extra=summarize(operations))
    return operations


def summarize(operations: Iterable[ReconcileOperation]) -> dict[str, int]:
    """Count operations per kind."""
    counts = {"enroll": 0, "unenroll": 0, "noop": 0}
    for op in operations:
        match op.kind:
            case OperationKind.ENROLL:
                counts["enroll"] += 1
            case OperationKind.UNENROLL:
                counts["unenroll"] += 1
            case OperationKind.NOOP:
                counts["noop"] += 1
    return counts

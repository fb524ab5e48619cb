"""Scope evaluation: which inventory resources the policy should protect.

A resource is in scope iff ALL of:
1. Its type is one of the intent's protected resource types
2. Every required tag is present with exactly the required value
3. Its account satisfies the intent's account scope

Evaluation is a pure function of (intent, inventory snapshot). There is
no partial match: a resource missing any one required tag is out of scope.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .errors import InternalInvariantViolation
from .models import PolicyIntent, ResourceRecord, ScopeDecision, ScopeReason

logger = logging.getLogger(__name__)


def decide(intent: PolicyIntent, record: ResourceRecord) -> ScopeDecision:
    """Decide scope for a single resource.

    Criteria are checked in a fixed order (type, tags in declared order,
    account) and the first failing one is reported as the reason.
    """
    if record.resource_type not in intent.resource_types:
        return ScopeDecision(
            resource_id=record.resource_id,
            in_scope=False,
            reason=ScopeReason.TYPE_NOT_PROTECTED,
            detail=f"type {record.resource_type.value} is not protected",
        )

    for key, value in intent.required_tags:
        actual = record.tags.get(key)
        if actual is None:
            return ScopeDecision(
                resource_id=record.resource_id,
                in_scope=False,
                reason=ScopeReason.MISSING_TAG,
                detail=f"missing tag {key}",
            )
        if actual != value:
            return ScopeDecision(
                resource_id=record.resource_id,
                in_scope=False,
                reason=ScopeReason.TAG_MISMATCH,
                detail=f"tag {key}={actual!r}, expected {value!r}",
            )

    if not intent.account_scope.contains(record.account_id):
        return ScopeDecision(
            resource_id=record.resource_id,
            in_scope=False,
            reason=ScopeReason.ACCOUNT_OUT_OF_SCOPE,
            detail=f"account {record.account_id!r} outside {intent.account_scope.describe()}",
        )

    return ScopeDecision(
        resource_id=record.resource_id,
        in_scope=True,
        reason=ScopeReason.IN_SCOPE,
    )


def evaluate(intent: PolicyIntent, inventory: Sequence[ResourceRecord]) -> list[ScopeDecision]:
    """Evaluate every resource in an inventory snapshot.

    Args:
        intent: The policy intent for this run.
        inventory: Fresh inventory snapshot.

    Returns:
        One decision per record, in inventory order. Empty inventory
        yields an empty list.

    Raises:
        InternalInvariantViolation: If the snapshot lists a resource id twice.
    """
    seen: set[str] = set()
    decisions = []
    for record in inventory:
        if record.resource_id in seen:
            raise InternalInvariantViolation(
                f"Inventory snapshot lists resource {record.resource_id} more than once"
            )
        seen.add(record.resource_id)
        decisions.append(decide(intent, record))

    in_scope = sum(1 for d in decisions if d.in_scope)
    logger.info(
        "Scope evaluation complete",
        extra={
            "cluster_id": intent.cluster_id,
            "evaluated": len(decisions),
            "in_scope": in_scope,
        },
    )
    return decisions


def desired_resource_ids(decisions: Iterable[ScopeDecision]) -> frozenset[str]:
    """Extract the set of resource ids that should be enrolled."""
    return frozenset(d.resource_id for d in decisions if d.in_scope)


def count_by_reason(decisions: Iterable[ScopeDecision]) -> dict[ScopeReason, int]:
    """Tally decisions per reason, for reporting."""
    counts: dict[ScopeReason, int] = {}
    for decision in decisions:
        counts[decision.reason] = counts.get(decision.reason, 0) + 1
    return counts

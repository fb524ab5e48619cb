"""Tests for the desired-vs-live diff."""

import pytest

from shield_reconciler.diff import diff, enrolled_resource_ids, summarize
from shield_reconciler.errors import InternalInvariantViolation
from shield_reconciler.models import EnrollmentState, OperationKind, ReconcileOperation


def live(*resource_ids: str) -> list[EnrollmentState]:
    return [EnrollmentState(resource_id=rid) for rid in resource_ids]


class TestDiff:
    """Tests for diff()."""

    def test_enroll_and_unenroll(self) -> None:
        """Test desired {B} against live {A}: enroll B, then unenroll A."""
        ops = diff(frozenset({"B"}), live("A"))

        assert ops == [ReconcileOperation.enroll("B"), ReconcileOperation.unenroll("A")]

    def test_converged_produces_no_operations(self) -> None:
        assert diff(frozenset({"A", "B"}), live("A", "B")) == []

    def test_include_noops(self) -> None:
        ops = diff(frozenset({"A", "B"}), live("A"), include_noops=True)

        assert ops == [ReconcileOperation.enroll("B"), ReconcileOperation.noop("A")]

    def test_all_enrolls_before_unenrolls(self) -> None:
        """Test that a converging run never under-protects mid-way."""
        ops = diff(frozenset({"z1", "z2", "a9"}), live("a1", "a2", "m5"))

        kinds = [op.kind for op in ops]
        assert kinds == [OperationKind.ENROLL] * 3 + [OperationKind.UNENROLL] * 3

    def test_sorted_within_kind(self) -> None:
        ops = diff(frozenset({"c", "a", "b"}), live("f", "d", "e"))

        assert [op.resource_id for op in ops] == ["a", "b", "c", "d", "e", "f"]

    def test_not_enrolled_rows_are_ignored(self) -> None:
        rows = [EnrollmentState("A", currently_enrolled=False)]

        assert diff(frozenset(), rows) == []

    def test_one_operation_per_resource(self) -> None:
        ops = diff(frozenset({"A", "B", "C"}), live("C", "D", "D"))

        ids = [op.resource_id for op in ops]
        assert len(ids) == len(set(ids))

    def test_empty_inputs(self) -> None:
        assert diff(frozenset(), []) == []


class TestEnrolledResourceIds:
    """Tests for live enrollment collapsing."""

    def test_conflicting_rows(self) -> None:
        rows = [EnrollmentState("A", True), EnrollmentState("A", False)]

        with pytest.raises(InternalInvariantViolation):
            enrolled_resource_ids(rows)

    def test_duplicate_consistent_rows(self) -> None:
        assert enrolled_resource_ids(live("A", "A")) == frozenset({"A"})


class TestSummarize:
    def test_counts(self) -> None:
        ops = [
            ReconcileOperation.enroll("a"),
            ReconcileOperation.enroll("b"),
            ReconcileOperation.unenroll("c"),
            ReconcileOperation.noop("d"),
        ]

        assert summarize(ops) == {"enroll": 2, "unenroll": 1, "noop": 1}

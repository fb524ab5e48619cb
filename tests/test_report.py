"""Tests for the run report."""

from shield_mock import make_record

from shield_reconciler.driver import ReconcileReport
from shield_reconciler.errors import (
    BlastRadiusExceeded,
    ErrorKind,
    IntentValidationError,
    InternalInvariantViolation,
    InventoryUnavailableError,
    KillSwitchActive,
)
from shield_reconciler.intent_loader import parse_intent
from shield_reconciler.models import EnrollmentState
from shield_reconciler.reconciler import plan
from shield_reconciler.report import (
    EXIT_BLOCKED,
    EXIT_FAILED,
    EXIT_INVALID,
    EXIT_OK,
    RunReport,
    exit_code_for,
)

TAGS = {"USE_SHIELD_ADVANCED": "true", "IS_CLUSTER_abc": "true"}


def planned_report(dry_run: bool = False) -> RunReport:
    intent = parse_intent(
        {"clusterId": "abc", "mode": "DISABLED", "resourceTypes": ["CDN_DISTRIBUTION"]}
    )
    decisions, operations = plan(
        intent,
        [make_record("B", tags=TAGS), make_record("C", tags={})],
        [EnrollmentState("A")],
    )
    return RunReport.from_plan(intent, decisions, operations, dry_run=dry_run)


class TestRunReport:
    def test_from_plan_counts(self) -> None:
        report = planned_report()

        assert report.cluster_id == "abc"
        assert report.evaluated == 2
        assert report.in_scope == 1
        assert report.planned_enroll == 1
        assert report.planned_unenroll == 1

    def test_merge_and_exit_code(self) -> None:
        report = planned_report()
        result = ReconcileReport(
            applied=["A"],
            failed={"B": ErrorKind.TIMEOUT},
            attempts={"A": 1, "B": 3},
            unenrolled=["A"],
        )

        report.merge(result)
        report.finish()

        assert report.failed == 1
        assert report.exit_code == EXIT_FAILED
        assert report.duration_seconds >= 0

    def test_to_dict(self) -> None:
        report = planned_report()
        report.merge(ReconcileReport(failed={"B": ErrorKind.RATE_LIMITED}, attempts={"B": 3}))
        report.finish()

        data = report.to_dict()

        assert data["counts"]["failed"] == 1
        assert data["failed"] == {"B": "RateLimited"}
        assert data["operations"] == [
            {"kind": "Enroll", "resource_id": "B"},
            {"kind": "Unenroll", "resource_id": "A"},
        ]
        assert data["exit_code"] == EXIT_FAILED

    def test_summary_lines(self) -> None:
        report = planned_report(dry_run=True)

        lines = report.summary_lines()

        assert lines[0].startswith("[dry-run] cluster abc")
        assert report.exit_code == EXIT_OK

    def test_summary_lists_failures(self) -> None:
        report = planned_report()
        report.merge(ReconcileReport(failed={"B": ErrorKind.TIMEOUT}, attempts={"B": 3}))

        assert "  FAILED B: Timeout after 3 attempt(s)" in report.summary_lines()


class TestExitCodeFor:
    def test_guardrails_block(self) -> None:
        assert exit_code_for(KillSwitchActive("on")) == EXIT_BLOCKED
        assert exit_code_for(BlastRadiusExceeded("too many")) == EXIT_BLOCKED

    def test_invalid_input(self) -> None:
        assert exit_code_for(IntentValidationError("bad")) == EXIT_INVALID
        assert exit_code_for(InternalInvariantViolation("dup")) == EXIT_INVALID

    def test_inventory_unavailable(self) -> None:
        assert exit_code_for(InventoryUnavailableError("down")) == EXIT_FAILED

"""Reconciliation run orchestration.

One run:
1. Load and validate the policy intent (fail fast on bad input)
2. Fetch a fresh inventory snapshot and the live enrollment
3. Evaluate scope and diff desired vs live enrollment
4. Check guardrails (kill switch, blast radius)
5. Apply operations through the driver and report

Steps 1-4 never mutate anything. Any error before step 5 aborts the
run with no provider call issued, so a bad intent or an untrustworthy
inventory can never cause a partial run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .adapters import EnrollmentProvider, InventoryAdapter
from .config import Config
from .diff import diff
from .driver import ReconciliationDriver
from .errors import (
    ErrorKind,
    InventoryUnavailableError,
    ReconcilerError,
    classify_provider_error,
)
from .guardrails import GuardrailEnforcer, GuardrailsConfig
from .intent_loader import load_intent
from .models import (
    AccountScope,
    EnrollmentState,
    PolicyIntent,
    ReconcileOperation,
    ResourceRecord,
    ScopeDecision,
)
from .report import RunReport
from .scope import desired_resource_ids, evaluate

logger = logging.getLogger(__name__)


def plan(
    intent: PolicyIntent,
    inventory: Sequence[ResourceRecord],
    live: Sequence[EnrollmentState],
) -> tuple[list[ScopeDecision], list[ReconcileOperation]]:
    """Pure planning half of a run: scope decisions and ordered operations."""
    decisions = evaluate(intent, inventory)
    operations = diff(desired_resource_ids(decisions), live)
    return decisions, operations


class Reconciler:
    """Drives reconciliation runs for one policy intent.

    The inventory adapter and enrollment provider are supplied by the
    caller, which owns credentials and API clients.
    """

    def __init__(
        self,
        config: Config,
        inventory: InventoryAdapter,
        provider: EnrollmentProvider,
    ) -> None:
        """Initialize reconciler.

        Args:
            config: Validated reconciler configuration.
            inventory: Inventory adapter boundary.
            provider: Enrollment provider boundary.
        """
        self._config = config
        self._inventory = inventory
        self._provider = provider
        self._driver = ReconciliationDriver(provider, config.driver_settings())
        self._guardrails = GuardrailEnforcer(
            GuardrailsConfig(
                kill_switch_enabled=config.kill_switch_enabled,
                max_operations_per_run=config.max_operations_per_run,
            )
        )
        self._shutdown_event = asyncio.Event()
        self._last_report: RunReport | None = None

    @property
    def config(self) -> Config:
        return self._config

    @property
    def last_report(self) -> RunReport | None:
        """Report of the most recent completed run, if any."""
        return self._last_report

    async def run_once(self, cancel_event: asyncio.Event | None = None) -> RunReport:
        """Execute a single reconciliation run.

        Args:
            cancel_event: Stops new operations from being issued once set.
                Defaults to the reconciler's shutdown event.

        Returns:
            RunReport for this run.

        Raises:
            IntentValidationError: Intent document missing or invalid.
            InventoryUnavailableError: Inventory or enrollment could not be read.
            InternalInvariantViolation: Inconsistent intent or snapshot.
            GuardrailViolation: Kill switch active or blast radius exceeded.
        """
        cancel = cancel_event or self._shutdown_event

        intent = load_intent(self._config.intent_path)
        inventory = await self._list_resources(intent.account_scope)
        live = await self._list_enrolled(intent.account_scope)

        decisions, operations = plan(intent, inventory, live)
        report = RunReport.from_plan(intent, decisions, operations, dry_run=self._config.dry_run)

        if self._config.dry_run:
            logger.info(
                "DRY RUN: plan computed, no changes applied",
                extra={
                    "cluster_id": intent.cluster_id,
                    "operations": [str(op) for op in operations],
                },
            )
            report.skipped = [op.resource_id for op in operations]
        elif operations:
            self._guardrails.check_apply(operations)
            result = await self._driver.reconcile(operations, cancel)
            report.merge(result)
        else:
            logger.info("No drift detected", extra={"cluster_id": intent.cluster_id})

        report.finish()
        self._last_report = report
        self._log_result(report)
        return report

    async def run(self) -> None:
        """Run reconciliation on the configured interval until shutdown.

        A failed run is logged and retried on the next cycle; it does not
        stop the loop.
        """
        logger.info(
            "Starting reconciler",
            extra={
                "intent_path": str(self._config.intent_path),
                "interval_seconds": self._config.reconcile_interval_seconds,
                "dry_run": self._config.dry_run,
            },
        )

        while not self._shutdown_event.is_set():
            try:
                await self.run_once()
            except ReconcilerError as e:
                logger.error(
                    "Reconciliation run aborted",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._config.reconcile_interval_seconds,
                )
            except TimeoutError:
                # Normal timeout, continue to next cycle
                pass

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop after in-flight operations finish."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def _list_resources(self, account_scope: AccountScope) -> list[ResourceRecord]:
        try:
            records = await asyncio.wait_for(
                self._inventory.list_resources(account_scope),
                timeout=self._config.operation_timeout_seconds,
            )
        except InventoryUnavailableError:
            raise
        except Exception as e:
            raise self._unavailable("Inventory", e) from e
        return list(records)

    async def _list_enrolled(self, account_scope: AccountScope) -> list[EnrollmentState]:
        try:
            states = await asyncio.wait_for(
                self._provider.list_enrolled(account_scope),
                timeout=self._config.operation_timeout_seconds,
            )
        except InventoryUnavailableError:
            raise
        except Exception as e:
            raise self._unavailable("Enrollment listing", e) from e
        return list(states)

    @staticmethod
    def _unavailable(source: str, error: Exception) -> InventoryUnavailableError:
        kind = (
            ErrorKind.THROTTLED
            if classify_provider_error(error) == ErrorKind.RATE_LIMITED
            else ErrorKind.UNAVAILABLE
        )
        logger.error(
            f"{source} unavailable, aborting run",
            extra={"error": str(error), "error_kind": kind.value},
        )
        return InventoryUnavailableError(f"{source} unavailable: {error}", kind)

    def _log_result(self, report: RunReport) -> None:
        """Log run result for observability."""
        extra = {
            "cluster_id": report.cluster_id,
            "duration_seconds": round(report.duration_seconds, 3),
            "evaluated": report.evaluated,
            "in_scope": report.in_scope,
            "enrolled": len(report.enrolled),
            "unenrolled": len(report.unenrolled),
            "failed_count": report.failed,
            "skipped": len(report.skipped),
            "dry_run": report.dry_run,
        }
        if report.success:
            logger.info("Reconciliation complete", extra=extra)
        else:
            logger.error(
                "Reconciliation completed with failures",
                extra={
                    **extra,
                    "failures": {rid: kind.value for rid, kind in report.failures.items()},
                },
            )

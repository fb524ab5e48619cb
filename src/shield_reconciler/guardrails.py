"""Blast radius guardrails checked before any mutating provider call.

- Kill switch: central control to halt all enroll/unenroll calls
- Operation limit: a run that would change more resources than allowed
  is almost always a bad intent or a broken inventory, so it is refused

Both checks run after the plan is computed and before the driver starts.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass

from .config import DEFAULT_MAX_OPERATIONS_PER_RUN
from .errors import BlastRadiusExceeded, KillSwitchActive
from .models import OperationKind, ReconcileOperation

logger = logging.getLogger(__name__)

KILL_SWITCH_ENV_VAR = "KILL_SWITCH"


@dataclass(frozen=True)
class GuardrailsConfig:
    """Guardrail limits. Cannot be changed by the intent document."""

    kill_switch_enabled: bool = False
    max_operations_per_run: int = DEFAULT_MAX_OPERATIONS_PER_RUN


class GuardrailEnforcer:
    """Gatekeeper between planning and applying.

    Usage:
        enforcer = GuardrailEnforcer(config)
        enforcer.check_kill_switch()            # Raises if kill switch active
        enforcer.check_blast_radius(operations)  # Raises if too many changes
    """

    def __init__(self, config: GuardrailsConfig) -> None:
        self._config = config

    @property
    def config(self) -> GuardrailsConfig:
        return self._config

    def check_kill_switch(self) -> None:
        """Check if kill switch is active.

        The environment variable is re-read on every call so the switch
        can be flipped on a running reconciler loop.

        Raises:
            KillSwitchActive: If kill switch is enabled.
        """
        env_kill_switch = os.environ.get(KILL_SWITCH_ENV_VAR, "").lower() in ("true", "1", "yes")

        if self._config.kill_switch_enabled or env_kill_switch:
            logger.warning(
                "KILL_SWITCH: enrollment changes blocked",
                extra={
                    "config_enabled": self._config.kill_switch_enabled,
                    "env_enabled": env_kill_switch,
                },
            )
            raise KillSwitchActive(
                "Kill switch is active. All enrollment changes are blocked. "
                "Set KILL_SWITCH=false to resume."
            )

    def check_blast_radius(self, operations: Sequence[ReconcileOperation]) -> None:
        """Refuse plans that change more resources than allowed.

        Raises:
            BlastRadiusExceeded: If mutating operations exceed the limit.
        """
        enrolls = sum(1 for op in operations if op.kind == OperationKind.ENROLL)
        unenrolls = sum(1 for op in operations if op.kind == OperationKind.UNENROLL)
        total = enrolls + unenrolls
        limit = self._config.max_operations_per_run

        if total > limit:
            logger.error(
                "Max operations limit exceeded",
                extra={
                    "enroll_count": enrolls,
                    "unenroll_count": unenrolls,
                    "limit": limit,
                },
            )
            raise BlastRadiusExceeded(
                f"Run would change {total} resources ({enrolls} enroll, {unenrolls} unenroll), "
                f"exceeding limit of {limit}. This may indicate a misconfigured intent "
                f"or an incomplete inventory. Review the plan manually."
            )

    def check_apply(self, operations: Sequence[ReconcileOperation]) -> None:
        """Run all guardrail checks for a plan about to be applied."""
        if not any(op.is_mutating for op in operations):
            return
        self.check_kill_switch()
        self.check_blast_radius(operations)

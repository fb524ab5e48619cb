"""Tests for guardrails module.

Tests blast radius governance including:
- Kill switch functionality (config and environment)
- Max operations per run
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from shield_reconciler.errors import BlastRadiusExceeded, GuardrailViolation, KillSwitchActive
from shield_reconciler.guardrails import GuardrailEnforcer, GuardrailsConfig
from shield_reconciler.models import ReconcileOperation


def enrolls(count: int) -> list[ReconcileOperation]:
    return [ReconcileOperation.enroll(f"r{i}") for i in range(count)]


class TestKillSwitch:
    """Tests for kill switch functionality."""

    def test_kill_switch_disabled(self) -> None:
        """Test that disabled kill switch allows operations."""
        enforcer = GuardrailEnforcer(GuardrailsConfig(kill_switch_enabled=False))

        with patch.dict(os.environ, {}, clear=True):
            enforcer.check_kill_switch()

    def test_kill_switch_enabled_in_config(self) -> None:
        """Test that enabled kill switch blocks operations."""
        enforcer = GuardrailEnforcer(GuardrailsConfig(kill_switch_enabled=True))

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(KillSwitchActive) as exc_info:
                enforcer.check_kill_switch()

        assert "Kill switch is active" in str(exc_info.value)

    @pytest.mark.parametrize("value", ["true", "1", "yes", "TRUE"])
    def test_kill_switch_from_env(self, value: str) -> None:
        """Test that the environment variable is checked on every call."""
        enforcer = GuardrailEnforcer(GuardrailsConfig())

        with patch.dict(os.environ, {"KILL_SWITCH": value}, clear=True):
            with pytest.raises(KillSwitchActive):
                enforcer.check_kill_switch()

    def test_kill_switch_is_guardrail_violation(self) -> None:
        assert issubclass(KillSwitchActive, GuardrailViolation)


class TestBlastRadius:
    """Tests for the max operations per run limit."""

    def test_within_limit(self) -> None:
        enforcer = GuardrailEnforcer(GuardrailsConfig(max_operations_per_run=3))

        enforcer.check_blast_radius(enrolls(3))

    def test_exceeds_limit(self) -> None:
        enforcer = GuardrailEnforcer(GuardrailsConfig(max_operations_per_run=3))
        ops = enrolls(2) + [ReconcileOperation.unenroll("x"), ReconcileOperation.unenroll("y")]

        with pytest.raises(BlastRadiusExceeded) as exc_info:
            enforcer.check_blast_radius(ops)

        assert "2 enroll, 2 unenroll" in str(exc_info.value)

    def test_noops_do_not_count(self) -> None:
        enforcer = GuardrailEnforcer(GuardrailsConfig(max_operations_per_run=1))
        ops = enrolls(1) + [ReconcileOperation.noop(f"n{i}") for i in range(5)]

        enforcer.check_blast_radius(ops)


class TestCheckApply:
    """Tests for the combined pre-apply check."""

    def test_no_mutations_skips_checks(self) -> None:
        """Test that a plan with nothing to change is never blocked."""
        enforcer = GuardrailEnforcer(GuardrailsConfig(kill_switch_enabled=True))

        enforcer.check_apply([ReconcileOperation.noop("a")])

    def test_kill_switch_checked_first(self) -> None:
        enforcer = GuardrailEnforcer(
            GuardrailsConfig(kill_switch_enabled=True, max_operations_per_run=1)
        )

        with pytest.raises(KillSwitchActive):
            enforcer.check_apply(enrolls(5))

    def test_blast_radius_checked(self) -> None:
        enforcer = GuardrailEnforcer(GuardrailsConfig(max_operations_per_run=1))

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(BlastRadiusExceeded):
                enforcer.check_apply(enrolls(2))

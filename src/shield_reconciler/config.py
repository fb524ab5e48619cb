"""Configuration management with validation.

Safety limits are enforced at configuration load time so a reconciler
never starts with retry or concurrency settings that could hammer the
protection provider.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 60
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_MAX_ATTEMPTS = 3
MAX_ATTEMPTS_LIMIT = 10
DEFAULT_RETRY_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_RETRY_BACKOFF_MAX_SECONDS = 30.0
RETRY_JITTER_RATIO = 0.2

DEFAULT_MAX_CONCURRENCY = 4
MAX_CONCURRENCY_LIMIT = 64  # Provider rate limits make more pointless

DEFAULT_OPERATION_TIMEOUT_SECONDS = 60.0

# Blast radius: more changes than this in one run aborts before any mutation
DEFAULT_MAX_OPERATIONS_PER_RUN = 100

MAX_INTENT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max intent document
MAX_SNAPSHOT_FILE_SIZE_BYTES = 50 * 1024 * 1024  # 50MB max inventory snapshot


@dataclass(frozen=True)
class DriverSettings:
    """Retry and concurrency settings consumed by the reconciliation driver."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS


@dataclass(frozen=True)
class Config:
    """Reconciler configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    intent_path: Path

    # Retry behaviour
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS
    retry_backoff_max_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS

    # Concurrency
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS

    # Guardrails
    max_operations_per_run: int = DEFAULT_MAX_OPERATIONS_PER_RUN
    kill_switch_enabled: bool = False

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS

    # Behavior
    dry_run: bool = False
    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization (fail-fast)."""
        errors: list[str] = []

        if not str(self.intent_path) or str(self.intent_path) == ".":
            errors.append("SHIELD_INTENT_PATH is required")
        elif not self.intent_path.exists():
            errors.append(f"Intent document does not exist: {self.intent_path}")

        if not (1 <= self.max_attempts <= MAX_ATTEMPTS_LIMIT):
            errors.append(f"SHIELD_MAX_ATTEMPTS must be between 1 and {MAX_ATTEMPTS_LIMIT}")

        if self.retry_backoff_base_seconds < 0:
            errors.append("SHIELD_RETRY_BACKOFF_BASE cannot be negative")
        if self.retry_backoff_max_seconds < self.retry_backoff_base_seconds:
            errors.append("SHIELD_RETRY_BACKOFF_MAX must be >= SHIELD_RETRY_BACKOFF_BASE")

        if not (1 <= self.max_concurrency <= MAX_CONCURRENCY_LIMIT):
            errors.append(
                f"SHIELD_MAX_CONCURRENCY must be between 1 and {MAX_CONCURRENCY_LIMIT}"
            )

        if self.operation_timeout_seconds <= 0:
            errors.append("SHIELD_OPERATION_TIMEOUT must be positive")

        if self.max_operations_per_run < 1:
            errors.append("SHIELD_MAX_OPERATIONS_PER_RUN must be at least 1")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"SHIELD_RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def driver_settings(self) -> DriverSettings:
        """Build the driver's retry and concurrency settings."""
        return DriverSettings(
            max_attempts=self.max_attempts,
            backoff_base_seconds=self.retry_backoff_base_seconds,
            backoff_max_seconds=self.retry_backoff_max_seconds,
            max_concurrency=self.max_concurrency,
            operation_timeout_seconds=self.operation_timeout_seconds,
        )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            SHIELD_INTENT_PATH: Path to the policy intent document (required)
            SHIELD_MAX_ATTEMPTS: Attempts per operation (default: 3)
            SHIELD_RETRY_BACKOFF_BASE: First retry delay in seconds (default: 1.0)
            SHIELD_RETRY_BACKOFF_MAX: Upper bound for a retry delay (default: 30.0)
            SHIELD_MAX_CONCURRENCY: Parallel provider calls (default: 4)
            SHIELD_OPERATION_TIMEOUT: Timeout per provider call in seconds (default: 60)
            SHIELD_MAX_OPERATIONS_PER_RUN: Blast radius limit (default: 100)
            SHIELD_RECONCILE_INTERVAL: Seconds between loop cycles (default: 300)
            SHIELD_DRY_RUN: If "true", plan without applying (default: false)
            SHIELD_JSON_LOGS: Emit JSON logs to stdout (default: true)
            KILL_SWITCH: If "true", block every mutating call (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            intent_path=Path(os.environ.get("SHIELD_INTENT_PATH", "")),
            max_attempts=get_int("SHIELD_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            retry_backoff_base_seconds=get_float(
                "SHIELD_RETRY_BACKOFF_BASE", DEFAULT_RETRY_BACKOFF_BASE_SECONDS
            ),
            retry_backoff_max_seconds=get_float(
                "SHIELD_RETRY_BACKOFF_MAX", DEFAULT_RETRY_BACKOFF_MAX_SECONDS
            ),
            max_concurrency=get_int("SHIELD_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            operation_timeout_seconds=get_float(
                "SHIELD_OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            max_operations_per_run=get_int(
                "SHIELD_MAX_OPERATIONS_PER_RUN", DEFAULT_MAX_OPERATIONS_PER_RUN
            ),
            kill_switch_enabled=get_bool("KILL_SWITCH", False),
            reconcile_interval_seconds=get_int(
                "SHIELD_RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            dry_run=get_bool("SHIELD_DRY_RUN", False),
            enable_json_logging=get_bool("SHIELD_JSON_LOGS", True),
        )

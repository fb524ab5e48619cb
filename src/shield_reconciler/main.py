"""Main entry point for the shield policy reconciler.

The reconciler itself is adapter-agnostic. `serve()` runs it with any
inventory/provider pair; `run()` is the container entry point and wires
the file-backed snapshot adapters from environment variables.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path

from .adapters import (
    EnrollmentProvider,
    InventoryAdapter,
    SnapshotEnrollmentProvider,
    SnapshotInventory,
)
from .config import Config, ConfigurationError
from .errors import GuardrailViolation, ReconcilerError
from .reconciler import Reconciler
from .report import EXIT_BLOCKED, EXIT_FAILED, EXIT_INVALID, exit_code_for

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure logging: JSON to stdout for production, plain text otherwise."""
    handler = logging.StreamHandler(sys.stdout if json_output else sys.stderr)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Reduce noise from SDK transports used by real adapters
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def serve(
    config: Config,
    inventory: InventoryAdapter,
    provider: EnrollmentProvider,
    *,
    once: bool = True,
) -> int:
    """Run the reconciler and translate the outcome into an exit code.

    SIGTERM/SIGINT stop new operations from being issued; operations
    already in flight finish and are reported.

    Returns:
        0 on success, 1 on failed operations or an unavailable inventory,
        2 on invalid intent, 3 when guardrails block the run.
    """
    logger = logging.getLogger(__name__)
    reconciler = Reconciler(config, inventory, provider)

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        reconciler.shutdown()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not the main thread, or a platform without signal support
            pass

    try:
        if not once:
            await reconciler.run()
            report = reconciler.last_report
            return report.exit_code if report is not None else EXIT_FAILED

        report = await reconciler.run_once()
        return report.exit_code

    except GuardrailViolation as e:
        logger.warning(
            "Run blocked by guardrail",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_BLOCKED
    except ReconcilerError as e:
        logger.error(
            "Reconciliation run aborted, no changes applied",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return exit_code_for(e)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def main() -> int:
    """Run the reconciler loop against snapshot files.

    Environment Variables:
        SHIELD_INVENTORY_PATH: Inventory snapshot file (required)
        SHIELD_ENROLLMENT_PATH: Enrollment state file (required)
        SHIELD_RUN_ONCE: If "true", run a single cycle and exit (default: false)
        plus everything read by Config.from_env()
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return EXIT_INVALID

    setup_logging(json_output=config.enable_json_logging)
    logger = logging.getLogger(__name__)

    inventory_path = os.environ.get("SHIELD_INVENTORY_PATH")
    enrollment_path = os.environ.get("SHIELD_ENROLLMENT_PATH")
    if not inventory_path or not enrollment_path:
        logger.error("SHIELD_INVENTORY_PATH and SHIELD_ENROLLMENT_PATH are required")
        return EXIT_INVALID

    once = os.environ.get("SHIELD_RUN_ONCE", "").lower() in ("true", "1", "yes")

    logger.info(
        "Starting shield policy reconciler",
        extra={
            "intent_path": str(config.intent_path),
            "inventory_path": inventory_path,
            "enrollment_path": enrollment_path,
            "once": once,
        },
    )

    return await serve(
        config,
        SnapshotInventory(Path(inventory_path)),
        SnapshotEnrollmentProvider(Path(enrollment_path)),
        once=once,
    )


def run() -> None:
    """Entry point for the reconciler service."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()

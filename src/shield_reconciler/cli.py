"""Shield policy reconciler CLI (shieldctl).

Usage:
    shieldctl validate intent.yaml
    shieldctl evaluate intent.yaml --inventory inventory.yaml
    shieldctl plan intent.yaml --inventory inventory.yaml --enrollment enrollment.yaml
    shieldctl reconcile intent.yaml --inventory inventory.yaml --enrollment enrollment.yaml
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from .adapters import SnapshotEnrollmentProvider, SnapshotInventory
from .config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_OPERATIONS_PER_RUN,
    Config,
    ConfigurationError,
)
from .errors import ReconcilerError
from .intent_loader import load_intent
from .main import setup_logging
from .models import AccountScope, PolicyIntent, ResourceRecord
from .reconciler import Reconciler, plan
from .report import EXIT_INVALID, exit_code_for
from .scope import count_by_reason, evaluate

CLI_VERSION = "0.1.0"

EXISTING_FILE = click.Path(exists=True, dir_okay=False, path_type=Path)


def fail(error: ReconcilerError) -> NoReturn:
    """Print an error and exit with the matching code."""
    click.secho(f"✗ {error}", fg="red", err=True)
    sys.exit(exit_code_for(error))


def load_or_fail(intent_path: Path) -> PolicyIntent:
    try:
        return load_intent(intent_path)
    except ReconcilerError as e:
        fail(e)


def read_inventory(path: Path, intent: PolicyIntent) -> list[ResourceRecord]:
    try:
        return asyncio.run(SnapshotInventory(path).list_resources(intent.account_scope))
    except ReconcilerError as e:
        fail(e)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=CLI_VERSION, prog_name="shieldctl")
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
def cli(verbose: bool) -> None:
    """Shield policy reconciler CLI (shieldctl).

    Decides which resources a DDoS-protection policy covers and converges
    enrollment to match.

    \b
    Quick Start:
        shieldctl validate intent.yaml
        shieldctl plan intent.yaml -i inventory.yaml -e enrollment.yaml
    """
    setup_logging(json_output=False, level=logging.INFO if verbose else logging.WARNING)


@cli.command()
@click.argument("intent_path", type=EXISTING_FILE)
def validate(intent_path: Path) -> None:
    """Validate a policy intent document."""
    intent = load_or_fail(intent_path)
    click.secho(f"✓ {intent_path} is valid", fg="green")
    click.echo(json.dumps(intent.summary(), indent=2))


@cli.command("evaluate")
@click.argument("intent_path", type=EXISTING_FILE)
@click.option("--inventory", "-i", "inventory_path", type=EXISTING_FILE, required=True)
@click.option("--all", "show_all", is_flag=True, help="Also list out-of-scope resources")
def evaluate_cmd(intent_path: Path, inventory_path: Path, show_all: bool) -> None:
    """Show which inventory resources are in scope."""
    intent = load_or_fail(intent_path)
    inventory = read_inventory(inventory_path, intent)
    try:
        decisions = evaluate(intent, inventory)
    except ReconcilerError as e:
        fail(e)

    for decision in decisions:
        if decision.in_scope:
            click.secho(f"  + {decision.resource_id}", fg="green")
        elif show_all:
            click.echo(f"  - {decision.resource_id} ({decision.reason.value}: {decision.detail})")

    counts = count_by_reason(decisions)
    summary = ", ".join(f"{reason.value}={count}" for reason, count in sorted(counts.items()))
    click.echo(f"\n{len(decisions)} evaluated: {summary or 'none'}")


@cli.command("plan")
@click.argument("intent_path", type=EXISTING_FILE)
@click.option("--inventory", "-i", "inventory_path", type=EXISTING_FILE, required=True)
@click.option(
    "--enrollment",
    "-e",
    "enrollment_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
)
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
def plan_cmd(
    intent_path: Path, inventory_path: Path, enrollment_path: Path, as_json: bool
) -> None:
    """Show the ordered enroll/unenroll operations without applying them."""
    intent = load_or_fail(intent_path)
    inventory = read_inventory(inventory_path, intent)
    provider = SnapshotEnrollmentProvider(enrollment_path)
    try:
        live = asyncio.run(provider.list_enrolled(intent.account_scope))
        _, operations = plan(intent, inventory, live)
    except ReconcilerError as e:
        fail(e)

    if as_json:
        click.echo(
            json.dumps(
                [{"kind": op.kind.value, "resource_id": op.resource_id} for op in operations],
                indent=2,
            )
        )
        return

    if not operations:
        click.secho("✓ No changes, enrollment matches intent", fg="green")
        return
    for op in operations:
        click.echo(f"  {op}")


@cli.command()
@click.argument("intent_path", type=EXISTING_FILE)
@click.option("--inventory", "-i", "inventory_path", type=EXISTING_FILE, required=True)
@click.option(
    "--enrollment",
    "-e",
    "enrollment_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
)
@click.option("--dry-run", is_flag=True, help="Compute the plan without applying it")
@click.option("--max-attempts", default=DEFAULT_MAX_ATTEMPTS, show_default=True)
@click.option("--concurrency", default=DEFAULT_MAX_CONCURRENCY, show_default=True)
@click.option("--max-operations", default=DEFAULT_MAX_OPERATIONS_PER_RUN, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Print the run report as JSON")
def reconcile(
    intent_path: Path,
    inventory_path: Path,
    enrollment_path: Path,
    dry_run: bool,
    max_attempts: int,
    concurrency: int,
    max_operations: int,
    as_json: bool,
) -> None:
    """Converge the enrollment file to the policy intent."""
    try:
        config = Config(
            intent_path=intent_path,
            max_attempts=max_attempts,
            max_concurrency=concurrency,
            max_operations_per_run=max_operations,
            dry_run=dry_run,
            enable_json_logging=False,
        )
    except ConfigurationError as e:
        click.secho(f"✗ {e}", fg="red", err=True)
        sys.exit(EXIT_INVALID)

    inventory = SnapshotInventory(inventory_path)

    # Account ids for newly enrolled resources come from the inventory
    try:
        records = asyncio.run(inventory.list_resources(AccountScope()))
    except ReconcilerError as e:
        fail(e)
    provider = SnapshotEnrollmentProvider(
        enrollment_path, accounts={r.resource_id: r.account_id for r in records}
    )

    reconciler = Reconciler(config, inventory, provider)
    try:
        report = asyncio.run(reconciler.run_once())
    except ReconcilerError as e:
        fail(e)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        for line in report.summary_lines():
            click.echo(line)
        if report.success:
            click.secho("✓ Reconciliation complete", fg="green")
        else:
            click.secho("✗ Reconciliation completed with failures", fg="red")

    sys.exit(report.exit_code)


if __name__ == "__main__":
    cli()

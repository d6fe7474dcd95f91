"""
Maintenance commands.

    kitchen-ledger seed-accounts      create the default chart of accounts
    kitchen-ledger verify             run every consistency check
    kitchen-ledger repair NAME        run the repair for one check
    kitchen-ledger backfill-costs     cost usage recorded at zero cost

verify exits with status 1 when any check fails. Repairs commit
item by item; run them while nothing else writes to the books.
"""

import logging
from contextlib import contextmanager

import click

from kitchen_ledger.config import get_settings
from kitchen_ledger.models.base import SessionLocal
from kitchen_ledger.services.chart_of_accounts import seed_chart_of_accounts
from kitchen_ledger.services.inventory_service import InventoryService
from kitchen_ledger.services.ledger_service import LedgerService
from kitchen_ledger.services.repair_service import REPAIRABLE, RepairService
from kitchen_ledger.services.unit_of_work import UnitOfWork
from kitchen_ledger.services.verification_service import VerificationService


@contextmanager
def unit_of_work():
    session = SessionLocal()
    try:
        yield UnitOfWork(session)
    finally:
        session.close()


@click.group()
def cli():
    """Kitchen ledger maintenance commands."""
    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("seed-accounts")
def seed_accounts():
    """Create the default chart of accounts (safe to repeat)."""
    with unit_of_work() as uow:
        created = seed_chart_of_accounts(LedgerService(uow))
        for account in created:
            click.echo(f"Created {account.code} {account.name}")
        click.echo(f"{len(created)} account(s) created")


@cli.command()
def verify():
    """Run every consistency check and report the findings."""
    with unit_of_work() as uow:
        results = VerificationService(uow).run_all_checks()

    failed = 0
    for name, result in results.items():
        if result.is_ok:
            click.echo(f"PASS {name}")
            continue
        failed += 1
        click.echo(f"FAIL {name}")
        for issue in result.issues:
            click.echo(f"  - {issue}")
    click.echo(f"{len(results) - failed} passed, {failed} failed")
    if failed:
        raise SystemExit(1)


@cli.command()
@click.argument("name", type=click.Choice(REPAIRABLE))
def repair(name):
    """Run the repair for the check NAME."""
    with unit_of_work() as uow:
        result = RepairService(uow).run_repair(name)

    outcomes = result.unwrap()
    if not outcomes:
        click.echo(f"Nothing to repair for {name}")
        return
    for outcome in outcomes:
        status = "OK" if outcome.ok else "FAILED"
        click.echo(f"{status} {outcome.action}: {outcome.details}")
    if not all(outcome.ok for outcome in outcomes):
        raise SystemExit(1)


@cli.command("backfill-costs")
def backfill_costs():
    """Give a cost to usage and write-offs recorded at zero cost."""
    with unit_of_work() as uow:
        updated = InventoryService(uow).backfill_movement_costs().unwrap()
    click.echo(f"Backfilled costs for {updated} movement(s)")


if __name__ == "__main__":
    cli()

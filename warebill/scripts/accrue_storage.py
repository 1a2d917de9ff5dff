"""Accrue daily storage charges for a tenant.

Usage:
    python -m warebill.scripts.accrue_storage TENANT_ID
    python -m warebill.scripts.accrue_storage TENANT_ID 2026-01-15
    python -m warebill.scripts.accrue_storage TENANT_ID 2026-01-01 2026-01-31
"""
from __future__ import annotations

import sys
from datetime import date, datetime, timezone

from rich.console import Console
from rich.table import Table

from warebill.db import initialize_db
from warebill.logging import configure_logging, reconfigure, tenant_context
from warebill.models.storage import AccrualResult
from warebill.repositories.factory import (
    get_account_repository,
    get_billing_event_repository,
    get_item_repository,
    get_service_rate_repository,
    get_storage_rollup_repository,
)
from warebill.services.rate_service import RateResolver
from warebill.services.storage_service import StorageAccrualService

console = Console()

USAGE = "usage: python -m warebill.scripts.accrue_storage TENANT_ID [START_DATE [END_DATE]]"


def parse_args(argv: list[str], today: date) -> tuple[str, date, date]:
    if not 1 <= len(argv) <= 3:
        raise ValueError(USAGE)
    tenant_id = argv[0]
    start = date.fromisoformat(argv[1]) if len(argv) > 1 else today
    end = date.fromisoformat(argv[2]) if len(argv) > 2 else start
    if end < start:
        raise ValueError(f"End date {end} is before start date {start}")
    return tenant_id, start, end


def build_service() -> StorageAccrualService:
    return StorageAccrualService(
        get_item_repository(),
        get_account_repository(),
        get_storage_rollup_repository(),
        get_billing_event_repository(),
        RateResolver(get_service_rate_repository()),
    )


def render(results: list[AccrualResult]) -> Table:
    table = Table(title="Storage accrual")
    table.add_column("Date", style="bold")
    table.add_column("Eligible", justify="right")
    table.add_column("Rollups", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Grace", justify="right")
    table.add_column("Existing", justify="right")
    table.add_column("Failed", justify="right", style="red")
    for result in results:
        table.add_row(
            result.accrual_date.isoformat(),
            str(result.eligible_items),
            str(result.rollups_created),
            str(result.events_created),
            str(result.events_skipped_grace),
            str(result.events_skipped_existing),
            str(result.failed_items),
        )
    return table


def main() -> None:
    configure_logging()
    try:
        tenant_id, start, end = parse_args(sys.argv[1:], datetime.now(timezone.utc).date())
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(2)

    initialize_db()
    reconfigure()
    with tenant_context(tenant_id):
        results = build_service().accrue_storage_for_range(tenant_id, start, end)

    console.print(render(results))
    failed = sum(r.failed_items for r in results)
    if failed:
        console.print(f"\n[yellow]{failed} item-day(s) failed; re-run to retry them.[/yellow]")
        sys.exit(1)
    console.print(f"\n[green bold]{sum(r.events_created for r in results)} storage charge(s) created.[/green bold]")


if __name__ == "__main__":  # pragma: no cover
    main()

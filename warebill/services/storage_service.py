from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from warebill.constants import (
    ROLLUP_RATE_MISMATCH_ERROR,
    STORAGE_CHARGE_TYPE,
    STORAGE_DESCRIPTION,
    SUB_CENTS,
    to_rate,
)
from warebill.models.account import Account, Item
from warebill.models.billing_event import BillingEvent, BillingEventStatus, EventType, storage_dedup_key
from warebill.models.rate import RateResolution
from warebill.models.storage import AccrualResult, StorageDailyRollup
from warebill.repositories.base import (
    AccountRepository,
    BillingEventRepository,
    ItemRepository,
    StorageRollupRepository,
)
from warebill.services.rate_service import RateResolver
from warebill.settings import settings

logger = logging.getLogger(__name__)


def compute_daily_rate(monthly_rate: Decimal, adjust_pct: Decimal, days_per_month: int = 30) -> Decimal:
    """Monthly storage rate -> daily rate, adjusted by the account's percentage.

    ``round(monthly / days, 4) * (1 + adjust_pct / 100)``, kept at 4 decimals.
    The divisor is a flat month length, not the calendar month.
    """
    base = (Decimal(monthly_rate) / Decimal(days_per_month)).quantize(SUB_CENTS, rounding=ROUND_HALF_UP)
    factor = Decimal(1) + Decimal(adjust_pct) / Decimal(100)
    return to_rate(base * factor)


class StorageAccrualService:
    def __init__(
        self,
        item_repo: ItemRepository,
        account_repo: AccountRepository,
        rollup_repo: StorageRollupRepository,
        event_repo: BillingEventRepository,
        resolver: RateResolver,
        service_code: str | None = None,
        days_per_month: int | None = None,
    ) -> None:
        self.item_repo = item_repo
        self.account_repo = account_repo
        self.rollup_repo = rollup_repo
        self.event_repo = event_repo
        self.resolver = resolver
        self.service_code = service_code or settings.storage_service_code
        self.days_per_month = days_per_month or settings.storage_days_per_month

    def _resolve_storage_rate(self, tenant_id: str, item: Item) -> RateResolution:
        try:
            return self.resolver.resolve(tenant_id, self.service_code, item.class_code)
        except Exception as exc:
            logger.exception("Storage rate lookup failed for item %s", item.id)
            return RateResolution(
                service_name=self.service_code,
                has_error=True,
                error_message=f"Rate lookup failed: {exc}",
            )

    def _accrue_item(self, tenant_id: str, item: Item, account: Account, day: date, result: AccrualResult) -> None:
        if item.id is None:
            raise ValueError("Cannot accrue storage for item without an id")
        resolution = self._resolve_storage_rate(tenant_id, item)
        rollup = StorageDailyRollup(
            tenant_id=tenant_id,
            item_id=item.id,
            account_id=item.account_id,
            sidemark_id=item.sidemark_id,
            rollup_date=day,
            class_id=item.class_id,
            daily_rate=compute_daily_rate(resolution.rate, account.global_rate_adjust_pct, self.days_per_month),
        )
        if self.rollup_repo.insert_if_absent(rollup):
            result.rollups_created += 1
        # An earlier run's rollup is authoritative for the charged amount.
        stored = self.rollup_repo.get(tenant_id, item.id, day) or rollup

        if item.days_in_storage(day) <= account.free_storage_days:
            result.events_skipped_grace += 1
            return

        if self.event_repo.has_active_storage_event(tenant_id, item.id, day):
            result.events_skipped_existing += 1
            return

        has_error, error_message = resolution.has_error, resolution.error_message
        if stored.daily_rate != rollup.daily_rate:
            # Charged at the rollup rate; the difference needs review.
            mismatch = ROLLUP_RATE_MISMATCH_ERROR.format(stored=stored.daily_rate, current=rollup.daily_rate)
            has_error = True
            error_message = f"{error_message}; {mismatch}" if error_message else mismatch
            logger.warning("Storage rate mismatch for item %s on %s: %s", item.id, day, mismatch)

        event = BillingEvent(
            tenant_id=tenant_id,
            account_id=item.account_id,
            item_id=item.id,
            sidemark_id=item.sidemark_id,
            class_id=item.class_id,
            event_type=EventType.STORAGE,
            charge_type=STORAGE_CHARGE_TYPE,
            description=STORAGE_DESCRIPTION,
            quantity=Decimal(1),
            unit_rate=stored.daily_rate,
            total_amount=stored.daily_rate,
            status=BillingEventStatus.UNBILLED,
            has_rate_error=has_error,
            rate_error_message=error_message,
            occurred_at=datetime.combine(day, time.min, tzinfo=timezone.utc),
            metadata={"rollup_date": day.isoformat()},
            dedup_key=storage_dedup_key(tenant_id, item.id, day),
            created_by=None,
        )
        if self.event_repo.insert_if_absent(event) is None:
            result.events_skipped_existing += 1
        else:
            result.events_created += 1

    def accrue_storage_for_date(self, tenant_id: str, day: date) -> AccrualResult:
        """Accrue one day of storage for every item stored on ``day``.

        Safe to re-run for the same day and to run for past days. Items are
        processed independently: a failing item is logged and counted in
        ``failed_items`` and the batch carries on.
        """
        result = AccrualResult(tenant_id=tenant_id, accrual_date=day)
        accounts: dict[int, Account | None] = {}
        for item in self.item_repo.list_stored_on(tenant_id, day):
            if not item.is_stored_on(day):
                continue
            result.eligible_items += 1
            try:
                if item.account_id not in accounts:
                    accounts[item.account_id] = self.account_repo.get_by_id(tenant_id, item.account_id)
                account = accounts[item.account_id]
                if account is None:
                    raise ValueError(f"Account not found: {item.account_id}")
                self._accrue_item(tenant_id, item, account, day, result)
            except Exception:
                result.failed_items += 1
                logger.exception("Storage accrual failed for item %s on %s", item.id, day)
                self.rollup_repo.rollback()

        logger.info(
            "Storage accrued: tenant=%s date=%s eligible=%d rollups=%d events=%d grace=%d existing=%d failed=%d",
            tenant_id,
            day,
            result.eligible_items,
            result.rollups_created,
            result.events_created,
            result.events_skipped_grace,
            result.events_skipped_existing,
            result.failed_items,
        )
        return result

    def accrue_storage_for_range(self, tenant_id: str, start: date, end: date) -> list[AccrualResult]:
        """Backfill ``start`` through ``end`` inclusive, one day at a time."""
        if end < start:
            raise ValueError("Range end must not be before its start")
        results: list[AccrualResult] = []
        day = start
        while day <= end:
            results.append(self.accrue_storage_for_date(tenant_id, day))
            day += timedelta(days=1)

        total = AccrualResult(tenant_id=tenant_id, accrual_date=start)
        for day_result in results:
            total.merge(day_result)
        logger.info(
            "Storage backfill done: tenant=%s %s..%s days=%d events=%d failed=%d",
            tenant_id,
            start,
            end,
            len(results),
            total.events_created,
            total.failed_items,
        )
        return results

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel


class StorageDailyRollup(BaseModel):
    id: int | None = None
    tenant_id: str
    item_id: int
    account_id: int
    sidemark_id: int | None = None
    rollup_date: date
    class_id: int | None = None
    daily_rate: Decimal = Decimal("0.0000")
    created_at: datetime | None = None


class AccrualResult(BaseModel):
    tenant_id: str
    accrual_date: date
    eligible_items: int = 0
    rollups_created: int = 0
    events_created: int = 0
    events_skipped_grace: int = 0
    events_skipped_existing: int = 0
    failed_items: int = 0

    def merge(self, other: AccrualResult) -> None:
        self.eligible_items += other.eligible_items
        self.rollups_created += other.rollups_created
        self.events_created += other.events_created
        self.events_skipped_grace += other.events_skipped_grace
        self.events_skipped_existing += other.events_skipped_existing
        self.failed_items += other.failed_items

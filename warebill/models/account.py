from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class ItemStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    DISPOSED = "disposed"


class Account(BaseModel):
    id: int | None = None
    tenant_id: str
    name: str = ""
    free_storage_days: int = Field(default=0, ge=0)
    storage_billing_day: int = Field(default=1, ge=1, le=28)
    global_rate_adjust_pct: Decimal = Decimal("0")  # signed, e.g. -10 for a 10% discount


class ItemClass(BaseModel):
    id: int | None = None
    tenant_id: str
    code: str
    name: str = ""


class Item(BaseModel):
    id: int | None = None
    tenant_id: str
    account_id: int
    sidemark_id: int | None = None
    class_id: int | None = None
    class_code: str | None = None  # joined from the class directory
    item_code: str = ""
    status: str = ItemStatus.ACTIVE.value
    received_date: date | None = None
    released_date: date | None = None

    def is_stored_on(self, day: date) -> bool:
        if self.status != ItemStatus.ACTIVE.value or self.received_date is None:
            return False
        if self.received_date > day:
            return False
        return self.released_date is None or self.released_date > day

    def days_in_storage(self, day: date) -> int:
        """Inclusive count: the receiving day is day 1."""
        if self.received_date is None:
            return 0
        return (day - self.received_date).days + 1

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class BillingUnit(str, Enum):
    DAY = "Day"
    ITEM = "Item"
    TASK = "Task"


class ServiceRate(BaseModel):
    id: int | None = None
    tenant_id: str
    service_code: str
    class_code: str | None = None  # None = default for all classes
    service_name: str
    billing_unit: BillingUnit = BillingUnit.ITEM
    service_time_minutes: int | None = None
    rate: Decimal = Decimal("0.00")
    taxable: bool = True
    uses_class_pricing: bool = False
    is_active: bool = True
    notes: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RateResolution(BaseModel):
    """Outcome of a rate lookup.

    A usable rate is always present; ``has_error`` flags a soft pricing error
    that billing carries forward for operator review instead of failing.
    """

    rate: Decimal = Decimal("0.00")
    service_name: str
    billing_unit: BillingUnit = BillingUnit.ITEM
    service_time_minutes: int | None = None
    taxable: bool = True
    has_error: bool = False
    error_message: str | None = None

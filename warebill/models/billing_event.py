from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class BillingEventStatus(str, Enum):
    UNBILLED = "unbilled"
    INVOICED = "invoiced"
    VOID = "void"


class EventType:
    """String constants for billing event types."""

    STORAGE = "storage"
    SERVICE_SCAN = "service_scan"
    TASK_COMPLETION = "task_completion"
    RECEIVING = "receiving"
    RETURNS_PROCESSING = "returns_processing"
    SHIPPING = "shipping"
    ADDON = "addon"
    MANUAL = "manual"


class BillingEvent(BaseModel):
    id: int | None = None
    uuid: str = ""
    tenant_id: str
    account_id: int
    item_id: int | None = None  # None for account-level charges
    sidemark_id: int | None = None
    class_id: int | None = None
    task_id: int | None = None
    shipment_id: int | None = None
    event_type: str
    charge_type: str
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_rate: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    status: BillingEventStatus = BillingEventStatus.UNBILLED
    has_rate_error: bool = False
    rate_error_message: str | None = None
    invoice_id: int | None = None
    invoiced_at: datetime | None = None
    occurred_at: datetime | None = None
    metadata: dict = {}
    dedup_key: str | None = None
    created_by: int | None = None  # None for system-generated events
    created_at: datetime | None = None

    @property
    def is_billable(self) -> bool:
        return self.status == BillingEventStatus.UNBILLED

    @property
    def rollup_date(self) -> date | None:
        raw = self.metadata.get("rollup_date")
        if not raw:
            return None
        return date.fromisoformat(raw)


def storage_dedup_key(tenant_id: str, item_id: int, rollup_date: date) -> str:
    return f"{tenant_id}:{item_id}:{EventType.STORAGE}:{rollup_date.isoformat()}"

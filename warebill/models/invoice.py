from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class InvoiceType(str, Enum):
    WEEKLY_SERVICES = "weekly_services"
    MONTHLY_STORAGE = "monthly_storage"
    CLOSEOUT = "closeout"
    MANUAL = "manual"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VOID = "void"


class InvoiceLine(BaseModel):
    id: int | None = None
    tenant_id: str = ""
    invoice_id: int | None = None
    billing_event_id: int | None = None  # None for ad-hoc charges
    item_id: int | None = None
    service_code: str
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_rate: Decimal = Decimal("0")
    line_total: Decimal = Decimal("0.00")
    created_at: datetime | None = None


class Invoice(BaseModel):
    id: int | None = None
    uuid: str = ""
    tenant_id: str
    account_id: int
    sidemark: str | None = None
    invoice_number: str = ""
    invoice_type: InvoiceType = InvoiceType.MANUAL
    period_start: date
    period_end: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    subtotal: Decimal = Decimal("0.00")
    tax_total: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    notes: str | None = None
    lines: list[InvoiceLine] = []
    created_by: int | None = None
    created_at: datetime | None = None
    sent_at: datetime | None = None

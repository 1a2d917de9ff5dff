from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class ShipmentDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    RETURN = "return"


class TaskLine(BaseModel):
    """An item attached to a task, as read from the task directory."""

    item_id: int
    item_code: str | None = None
    class_code: str | None = None
    class_name: str | None = None
    quantity: Decimal | None = None


class ShipmentLine(BaseModel):
    """An item attached to a shipment, with its expected class as fallback."""

    item_id: int | None = None
    item_code: str | None = None
    class_code: str | None = None
    class_name: str | None = None
    expected_class_code: str | None = None
    expected_class_name: str | None = None
    expected_quantity: Decimal | None = None
    actual_quantity: Decimal | None = None


class PreviewLine(BaseModel):
    item_id: int | None = None
    item_code: str | None = None
    class_code: str | None = None
    class_name: str | None = None
    service_code: str
    service_name: str
    quantity: Decimal = Decimal("1")
    unit_rate: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    has_rate_error: bool = False
    error_message: str | None = None


class BillingPreview(BaseModel):
    line_items: list[PreviewLine] = []
    subtotal: Decimal = Decimal("0.00")
    has_errors: bool = False
    service_code: str
    service_name: str
    suppressed: bool = False  # the real billing event already exists

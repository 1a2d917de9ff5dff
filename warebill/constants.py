from decimal import ROUND_HALF_UP, Decimal

INVOICE_NUMBER_PREFIX = "INV-"
INVOICE_NUMBER_WIDTH = 6

STORAGE_CHARGE_TYPE = "STORAGE_DAILY"
STORAGE_DESCRIPTION = "Daily storage charge"

NO_CLASS_ERROR = "Item has no class assigned - using default rate"
SERVICE_NOT_FOUND_ERROR = "Service not found: {service_code}"
ROLLUP_RATE_MISMATCH_ERROR = "Rollup rate {stored} differs from current rate {current}"

CENTS = Decimal("0.01")
SUB_CENTS = Decimal("0.0001")
ZERO = Decimal("0")

# Task types billed once per task instead of once per item.
PER_TASK_BILLING_TYPES = frozenset({"Assembly", "Repair"})

DEFAULT_TASK_SERVICE_CODE = "INSP"

TASK_TYPE_TO_SERVICE_CODE = {
    "Inspection": "INSP",
    "Will Call": "Will_Call",
    "Disposal": "Disposal",
    "Assembly": "15MA",
    "Repair": "1HRO",
    "Receiving": "RCVG",
    "Returns": "Returns",
}

SHIPMENT_DIRECTION_TO_SERVICE_CODE = {
    "inbound": "RCVG",
    "outbound": "Will_Call",
    "return": "Returns",
}


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize to 2 decimal places (currency)."""
    if value is None:
        return ZERO.quantize(CENTS)
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_rate(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize to 4 decimal places (sub-cent daily rates)."""
    if value is None:
        return ZERO.quantize(SUB_CENTS)
    return Decimal(str(value)).quantize(SUB_CENTS, rounding=ROUND_HALF_UP)


def format_invoice_number(number: int) -> str:
    return f"{INVOICE_NUMBER_PREFIX}{number:0{INVOICE_NUMBER_WIDTH}d}"

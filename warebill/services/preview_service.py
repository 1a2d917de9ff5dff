from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal

from warebill.constants import (
    DEFAULT_TASK_SERVICE_CODE,
    PER_TASK_BILLING_TYPES,
    SHIPMENT_DIRECTION_TO_SERVICE_CODE,
    TASK_TYPE_TO_SERVICE_CODE,
    to_money,
)
from warebill.models.billing_event import BillingEvent, BillingEventStatus, EventType
from warebill.models.preview import BillingPreview, PreviewLine, ShipmentDirection
from warebill.repositories.base import BillingEventRepository, WorkOrderRepository
from warebill.services.rate_service import RateResolver

logger = logging.getLogger(__name__)

# The event a completed shipment leaves behind, per direction.
SHIPMENT_COMPLETION_EVENT_TYPES = {
    ShipmentDirection.INBOUND: EventType.RECEIVING,
    ShipmentDirection.RETURN: EventType.RETURNS_PROCESSING,
    ShipmentDirection.OUTBOUND: EventType.SHIPPING,
}


def _has_live_event(events: Iterable[BillingEvent], event_type: str) -> bool:
    return any(e.event_type == event_type and e.status != BillingEventStatus.VOID for e in events)


def combined_total(existing_events: Iterable[BillingEvent], preview: BillingPreview) -> Decimal:
    """Existing non-void charges plus whatever the preview says is still pending."""
    existing = sum((e.total_amount for e in existing_events if e.status != BillingEventStatus.VOID), Decimal(0))
    pending = Decimal(0) if preview.suppressed else preview.subtotal
    return to_money(existing + pending)


class PreviewService:
    """Read-only "what will be charged" calculator for tasks and shipments.

    Prices through the same ``RateResolver`` as the persisted paths and never
    writes to the ledger.
    """

    def __init__(
        self,
        resolver: RateResolver,
        work_order_repo: WorkOrderRepository,
        event_repo: BillingEventRepository,
    ) -> None:
        self.resolver = resolver
        self.work_order_repo = work_order_repo
        self.event_repo = event_repo

    def _suppressed(self, service_code: str, service_name: str) -> BillingPreview:
        return BillingPreview(service_code=service_code, service_name=service_name, suppressed=True)

    def preview_for_task(
        self,
        tenant_id: str,
        task_id: int,
        task_type: str,
        service_code: str | None = None,
        quantity: Decimal | None = None,
        rate: Decimal | None = None,
    ) -> BillingPreview:
        code = service_code or TASK_TYPE_TO_SERVICE_CODE.get(task_type) or DEFAULT_TASK_SERVICE_CODE

        if _has_live_event(self.event_repo.list_for_task(tenant_id, task_id), EventType.TASK_COMPLETION):
            logger.debug("Task %s already billed; preview suppressed", task_id)
            return self._suppressed(code, code)

        if task_type in PER_TASK_BILLING_TYPES and quantity is not None:
            line = self._per_task_line(tenant_id, code, Decimal(quantity), rate)
            return BillingPreview(
                line_items=[line],
                subtotal=line.total_amount,
                has_errors=line.has_rate_error,
                service_code=code,
                service_name=line.service_name,
            )

        lines: list[PreviewLine] = []
        service_name = code
        for task_line in self.work_order_repo.list_task_lines(tenant_id, task_id):
            resolution = self.resolver.resolve(tenant_id, code, task_line.class_code)
            service_name = resolution.service_name
            qty = task_line.quantity or Decimal(1)
            lines.append(
                PreviewLine(
                    item_id=task_line.item_id,
                    item_code=task_line.item_code,
                    class_code=task_line.class_code,
                    class_name=task_line.class_name,
                    service_code=code,
                    service_name=resolution.service_name,
                    quantity=qty,
                    unit_rate=resolution.rate,
                    total_amount=to_money(qty * resolution.rate),
                    has_rate_error=resolution.has_error,
                    error_message=resolution.error_message,
                )
            )
        logger.debug("Task %s preview: %d line(s)", task_id, len(lines))
        return self._preview(lines, code, service_name)

    def _per_task_line(self, tenant_id: str, code: str, quantity: Decimal, rate: Decimal | None) -> PreviewLine:
        if rate is not None:
            unit_rate, service_name, has_error, error_message = to_money(rate), code, False, None
        else:
            resolution = self.resolver.resolve(tenant_id, code, None)
            unit_rate = resolution.rate
            service_name = resolution.service_name
            has_error = resolution.has_error
            error_message = resolution.error_message
        return PreviewLine(
            service_code=code,
            service_name=service_name,
            quantity=quantity,
            unit_rate=unit_rate,
            total_amount=to_money(quantity * unit_rate),
            has_rate_error=has_error,
            error_message=error_message,
        )

    def preview_for_shipment(
        self, tenant_id: str, shipment_id: int, direction: ShipmentDirection | str
    ) -> BillingPreview:
        direction = ShipmentDirection(direction)
        code = SHIPMENT_DIRECTION_TO_SERVICE_CODE[direction.value]

        existing = self.event_repo.list_for_shipment(tenant_id, shipment_id)
        if _has_live_event(existing, SHIPMENT_COMPLETION_EVENT_TYPES[direction]):
            logger.debug("Shipment %s already billed; preview suppressed", shipment_id)
            return self._suppressed(code, code)

        lines: list[PreviewLine] = []
        service_name = code
        for shipment_line in self.work_order_repo.list_shipment_lines(tenant_id, shipment_id):
            class_code = shipment_line.class_code or shipment_line.expected_class_code
            class_name = shipment_line.class_name or shipment_line.expected_class_name
            qty = shipment_line.actual_quantity or shipment_line.expected_quantity or Decimal(1)
            resolution = self.resolver.resolve(tenant_id, code, class_code)
            service_name = resolution.service_name
            lines.append(
                PreviewLine(
                    item_id=shipment_line.item_id,
                    item_code=shipment_line.item_code,
                    class_code=class_code,
                    class_name=class_name,
                    service_code=code,
                    service_name=resolution.service_name,
                    quantity=qty,
                    unit_rate=resolution.rate,
                    total_amount=to_money(qty * resolution.rate),
                    has_rate_error=resolution.has_error,
                    error_message=resolution.error_message,
                )
            )
        logger.debug("Shipment %s preview: %d line(s)", shipment_id, len(lines))
        return self._preview(lines, code, service_name)

    @staticmethod
    def _preview(lines: list[PreviewLine], service_code: str, service_name: str) -> BillingPreview:
        return BillingPreview(
            line_items=lines,
            subtotal=to_money(sum((line.total_amount for line in lines), Decimal(0))),
            has_errors=any(line.has_rate_error for line in lines),
            service_code=service_code,
            service_name=service_name,
        )

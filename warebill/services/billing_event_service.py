from __future__ import annotations

import logging
from decimal import Decimal

from warebill.constants import to_rate
from warebill.models.billing_event import BillingEvent, BillingEventStatus, EventType
from warebill.repositories.base import BillingEventRepository, ItemRepository
from warebill.services.rate_service import RateResolver

logger = logging.getLogger(__name__)


class BillingEventService:
    """Entry points that append charges to the billing ledger.

    Events are created ``unbilled``. From there the only legal moves are to
    ``invoiced`` (by invoicing) or ``void`` (manual correction); both are terminal.
    """

    def __init__(self, repo: BillingEventRepository, item_repo: ItemRepository, resolver: RateResolver) -> None:
        self.repo = repo
        self.item_repo = item_repo
        self.resolver = resolver

    def create_service_billing_event(
        self,
        tenant_id: str,
        item_id: int,
        service_code: str,
        created_by: int | None,
    ) -> BillingEvent:
        item = self.item_repo.get_by_id(tenant_id, item_id)
        if item is None:
            logger.warning("Service charge failed: item %s not found", item_id)
            raise ValueError(f"Item not found: {item_id}")

        resolution = self.resolver.resolve(tenant_id, service_code, item.class_code)
        event = BillingEvent(
            tenant_id=tenant_id,
            account_id=item.account_id,
            item_id=item_id,
            sidemark_id=item.sidemark_id,
            class_id=item.class_id,
            event_type=EventType.SERVICE_SCAN,
            charge_type=service_code,
            description=f"{resolution.service_name} - {item.item_code}",
            quantity=Decimal(1),
            unit_rate=resolution.rate,
            total_amount=resolution.rate,
            status=BillingEventStatus.UNBILLED,
            has_rate_error=resolution.has_error,
            rate_error_message=resolution.error_message,
            created_by=created_by,
        )
        result = self.repo.create(event)
        logger.info(
            "Service charge created: id=%s item=%s service=%s rate=%s flagged=%s",
            result.id,
            item_id,
            service_code,
            result.unit_rate,
            result.has_rate_error,
        )
        return result

    def record_event(self, event: BillingEvent) -> BillingEvent:
        """Append a charge produced by another flow (task completion, receiving, manual)."""
        if event.status != BillingEventStatus.UNBILLED:
            raise ValueError("New billing events must be unbilled")
        if event.invoice_id is not None:
            raise ValueError("New billing events cannot reference an invoice")
        if event.total_amount == 0 and event.unit_rate != 0:
            event = event.model_copy(update={"total_amount": to_rate(event.quantity * event.unit_rate)})
        result = self.repo.create(event)
        logger.info(
            "Billing event recorded: id=%s type=%s charge=%s total=%s",
            result.id,
            result.event_type,
            result.charge_type,
            result.total_amount,
        )
        return result

    def void_event(self, tenant_id: str, event_id: int) -> None:
        event = self.repo.get_by_id(tenant_id, event_id)
        if event is None:
            raise ValueError(f"Billing event not found: {event_id}")
        if event.status != BillingEventStatus.UNBILLED:
            logger.warning("Void refused: billing event %s is %s", event_id, event.status.value)
            raise ValueError(f"Only unbilled events can be voided (event {event_id} is {event.status.value})")
        if not self.repo.void(tenant_id, event_id):
            raise ValueError(f"Billing event {event_id} changed status before it could be voided")
        logger.info("Billing event %s voided", event_id)

    def get_event(self, tenant_id: str, event_id: int) -> BillingEvent | None:
        result = self.repo.get_by_id(tenant_id, event_id)
        logger.debug("get_event id=%s found=%s", event_id, result is not None)
        return result

    def list_unbilled(self, tenant_id: str, account_id: int | None = None) -> list[BillingEvent]:
        return self.list_by_status(tenant_id, BillingEventStatus.UNBILLED, account_id)

    def list_by_status(
        self, tenant_id: str, status: BillingEventStatus, account_id: int | None = None
    ) -> list[BillingEvent]:
        result = self.repo.list_by_status(tenant_id, status, account_id)
        logger.debug("Listed %d %s events for tenant=%s account=%s", len(result), status.value, tenant_id, account_id)
        return result

    def list_flagged(self, tenant_id: str, account_id: int | None = None) -> list[BillingEvent]:
        """Unbilled charges whose rate needs operator review."""
        return [event for event in self.list_unbilled(tenant_id, account_id) if event.has_rate_error]

    def list_for_task(self, tenant_id: str, task_id: int) -> list[BillingEvent]:
        return self.repo.list_for_task(tenant_id, task_id)

    def list_for_shipment(self, tenant_id: str, shipment_id: int) -> list[BillingEvent]:
        return self.repo.list_for_shipment(tenant_id, shipment_id)

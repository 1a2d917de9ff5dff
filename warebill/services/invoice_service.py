from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal

from warebill.constants import format_invoice_number, to_money
from warebill.models.billing_event import BillingEvent, BillingEventStatus
from warebill.models.invoice import Invoice, InvoiceLine, InvoiceStatus, InvoiceType
from warebill.repositories.base import BillingEventRepository, InvoiceCounterRepository, InvoiceRepository

logger = logging.getLogger(__name__)

TaxCalculator = Callable[[list[InvoiceLine]], Decimal]


def no_tax(lines: list[InvoiceLine]) -> Decimal:
    return to_money(0)


def line_from_event(event: BillingEvent) -> InvoiceLine:
    service_code = event.charge_type or event.event_type
    return InvoiceLine(
        tenant_id=event.tenant_id,
        billing_event_id=event.id,
        item_id=event.item_id,
        service_code=service_code,
        description=event.description or service_code,
        quantity=event.quantity,
        unit_rate=event.unit_rate,
        line_total=to_money(event.quantity * event.unit_rate),
    )


def totals(lines: list[InvoiceLine], compute_tax: TaxCalculator = no_tax) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(subtotal, tax_total, total)`` for already-priced lines."""
    subtotal = to_money(sum((line.line_total for line in lines), Decimal(0)))
    tax_total = to_money(compute_tax(lines))
    return subtotal, tax_total, to_money(subtotal + tax_total)


class InvoiceService:
    def __init__(
        self,
        invoice_repo: InvoiceRepository,
        event_repo: BillingEventRepository,
        counter_repo: InvoiceCounterRepository,
        compute_tax: TaxCalculator | None = None,
    ) -> None:
        self.invoice_repo = invoice_repo
        self.event_repo = event_repo
        self.counter_repo = counter_repo
        self.compute_tax = compute_tax or no_tax

    def allocate_invoice_number(self, tenant_id: str) -> str:
        number = format_invoice_number(self.counter_repo.allocate(tenant_id))
        logger.info("Invoice number allocated: tenant=%s number=%s", tenant_id, number)
        return number

    def peek_next_invoice_number(self, tenant_id: str) -> str:
        return format_invoice_number(self.counter_repo.peek(tenant_id))

    def _build_lines(
        self, tenant_id: str, account_id: int, charges: Sequence[BillingEvent | InvoiceLine]
    ) -> tuple[list[InvoiceLine], list[int]]:
        lines: list[InvoiceLine] = []
        event_ids: list[int] = []
        for charge in charges:
            if isinstance(charge, BillingEvent):
                if charge.id is None:
                    raise ValueError("Cannot invoice a billing event without an id")
                if charge.tenant_id != tenant_id or charge.account_id != account_id:
                    raise ValueError(f"Billing event {charge.id} does not belong to account {account_id}")
                if charge.id in event_ids:
                    raise ValueError(f"Billing event {charge.id} is listed more than once")
                if charge.status != BillingEventStatus.UNBILLED:
                    raise ValueError(f"Billing event {charge.id} is {charge.status.value}, not unbilled")
                lines.append(line_from_event(charge))
                event_ids.append(charge.id)
            else:
                lines.append(
                    charge.model_copy(
                        update={
                            "tenant_id": tenant_id,
                            "line_total": to_money(charge.quantity * charge.unit_rate),
                        }
                    )
                )
        return lines, event_ids

    def create_invoice(
        self,
        tenant_id: str,
        account_id: int,
        period_start: date,
        period_end: date,
        lines: Sequence[BillingEvent | InvoiceLine],
        invoice_type: InvoiceType = InvoiceType.MANUAL,
        sidemark: str | None = None,
        created_by: int | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """Invoice one account's charges in a single atomic write.

        ``lines`` mixes unbilled ``BillingEvent``s and ad-hoc ``InvoiceLine``s.
        The number allocation, invoice and line inserts and the events'
        move to ``invoiced`` commit together; on any failure none of it
        persists and the error propagates for the caller to retry.
        """
        if period_end < period_start:
            raise ValueError("Invoice period end must not be before its start")
        if not lines:
            raise ValueError("Cannot create an invoice without lines")

        invoice_lines, event_ids = self._build_lines(tenant_id, account_id, lines)
        subtotal, tax_total, total = totals(invoice_lines, self.compute_tax)
        invoice = Invoice(
            tenant_id=tenant_id,
            account_id=account_id,
            sidemark=sidemark,
            invoice_type=invoice_type,
            period_start=period_start,
            period_end=period_end,
            status=InvoiceStatus.DRAFT,
            subtotal=subtotal,
            tax_total=tax_total,
            total=total,
            notes=notes,
            lines=invoice_lines,
            created_by=created_by,
        )
        result = self.invoice_repo.create(invoice, event_ids)
        logger.info(
            "Invoice created: id=%s number=%s account=%s lines=%d total=%s",
            result.id,
            result.invoice_number,
            account_id,
            len(result.lines),
            result.total,
        )
        return result

    def create_invoices_for_events(
        self,
        tenant_id: str,
        events: Sequence[BillingEvent],
        period_start: date,
        period_end: date,
        invoice_type: InvoiceType = InvoiceType.MANUAL,
        created_by: int | None = None,
    ) -> list[Invoice]:
        """One invoice per account represented in ``events``."""
        by_account: dict[int, list[BillingEvent]] = {}
        for event in events:
            by_account.setdefault(event.account_id, []).append(event)
        return [
            self.create_invoice(
                tenant_id,
                account_id,
                period_start,
                period_end,
                account_events,
                invoice_type=invoice_type,
                created_by=created_by,
            )
            for account_id, account_events in by_account.items()
        ]

    def create_invoice_draft(
        self,
        tenant_id: str,
        account_id: int,
        invoice_type: InvoiceType,
        period_start: date,
        period_end: date,
        sidemark_id: int | None = None,
        include_unbilled_before_period: bool = False,
        created_by: int | None = None,
    ) -> Invoice | None:
        """Invoice the account's unbilled charges for the period; None when there are none."""
        events = self.event_repo.list_billable(
            tenant_id,
            account_id,
            None if include_unbilled_before_period else period_start,
            period_end,
            sidemark_id=sidemark_id,
        )
        if not events:
            logger.info("No unbilled charges for account %s in %s..%s", account_id, period_start, period_end)
            return None
        return self.create_invoice(
            tenant_id,
            account_id,
            period_start,
            period_end,
            events,
            invoice_type=invoice_type,
            sidemark=str(sidemark_id) if sidemark_id is not None else None,
            created_by=created_by,
        )

    def _require_invoice(self, tenant_id: str, invoice_id: int) -> Invoice:
        invoice = self.invoice_repo.get_by_id(tenant_id, invoice_id)
        if invoice is None:
            raise ValueError(f"Invoice not found: {invoice_id}")
        return invoice

    def mark_invoice_sent(self, tenant_id: str, invoice_id: int) -> Invoice:
        invoice = self._require_invoice(tenant_id, invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise ValueError(f"Only draft invoices can be sent ({invoice.invoice_number} is {invoice.status.value})")
        sent_at = datetime.now(timezone.utc)
        if not self.invoice_repo.mark_sent(tenant_id, invoice_id, sent_at):
            raise ValueError(f"Invoice {invoice.invoice_number} changed status before it could be sent")
        invoice.status = InvoiceStatus.SENT
        invoice.sent_at = sent_at
        logger.info("Invoice %s marked sent", invoice.invoice_number)
        return invoice

    def void_invoice(self, tenant_id: str, invoice_id: int, voided_by: int | None = None) -> Invoice:
        """Void an invoice and record a negative reversal entry per billed event.

        The original events keep their ``invoiced`` status and invoice link.
        """
        invoice = self._require_invoice(tenant_id, invoice_id)
        if invoice.status == InvoiceStatus.VOID:
            raise ValueError(f"Invoice {invoice.invoice_number} is already void")

        now = datetime.now(timezone.utc)
        reversals = [
            BillingEvent(
                tenant_id=event.tenant_id,
                account_id=event.account_id,
                item_id=event.item_id,
                sidemark_id=event.sidemark_id,
                class_id=event.class_id,
                task_id=event.task_id,
                shipment_id=event.shipment_id,
                event_type=event.event_type,
                charge_type=event.charge_type,
                description=f"REVERSAL: {event.description or event.charge_type}",
                quantity=-event.quantity,
                unit_rate=event.unit_rate,
                total_amount=-event.total_amount,
                status=BillingEventStatus.VOID,
                occurred_at=now,
                metadata={
                    "reversal_of": event.id,
                    "voided_invoice_id": invoice_id,
                    "original_occurred_at": event.occurred_at.isoformat() if event.occurred_at else None,
                },
                created_by=voided_by,
            )
            for event in self.event_repo.list_by_invoice(tenant_id, invoice_id)
        ]
        if not self.invoice_repo.void(tenant_id, invoice_id, reversals):
            raise ValueError(f"Invoice {invoice.invoice_number} changed status before it could be voided")
        invoice.status = InvoiceStatus.VOID
        logger.info("Invoice %s voided with %d reversal(s)", invoice.invoice_number, len(reversals))
        return invoice

    def update_invoice_notes(self, tenant_id: str, invoice_id: int, notes: str) -> None:
        self._require_invoice(tenant_id, invoice_id)
        self.invoice_repo.update_notes(tenant_id, invoice_id, notes)
        logger.info("Invoice %s notes updated", invoice_id)

    def get_invoice(self, tenant_id: str, invoice_id: int) -> Invoice | None:
        result = self.invoice_repo.get_by_id(tenant_id, invoice_id)
        logger.debug("get_invoice id=%s found=%s", invoice_id, result is not None)
        return result

    def list_invoices(
        self,
        tenant_id: str,
        account_id: int | None = None,
        status: InvoiceStatus | None = None,
        limit: int = 50,
    ) -> list[Invoice]:
        result = self.invoice_repo.list_invoices(tenant_id, account_id=account_id, status=status, limit=limit)
        logger.debug("Listed %d invoices for tenant=%s", len(result), tenant_id)
        return result

    def list_invoice_lines(self, tenant_id: str, invoice_id: int) -> list[InvoiceLine]:
        return self.invoice_repo.list_lines(tenant_id, invoice_id)

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from warebill.models.billing_event import BillingEvent, BillingEventStatus, EventType
from warebill.models.invoice import Invoice, InvoiceLine, InvoiceStatus, InvoiceType
from warebill.repositories.sqlalchemy import (
    SQLAlchemyAccountRepository,
    SQLAlchemyBillingEventRepository,
    SQLAlchemyInvoiceCounterRepository,
    SQLAlchemyInvoiceRepository,
    SQLAlchemyItemRepository,
    SQLAlchemyServiceRateRepository,
    SQLAlchemyStorageRollupRepository,
)
from warebill.services.invoice_service import InvoiceService, line_from_event, totals
from warebill.services.rate_service import RateResolver
from warebill.services.storage_service import StorageAccrualService
from tests.conftest import TENANT

JAN_1 = date(2026, 1, 1)
JAN_31 = date(2026, 1, 31)


def _event(**overrides) -> BillingEvent:
    defaults = dict(
        id=1,
        tenant_id=TENANT,
        account_id=2,
        event_type=EventType.STORAGE,
        charge_type="STORAGE_DAILY",
        description="Daily storage charge",
        quantity=Decimal("1"),
        unit_rate=Decimal("1.5000"),
        total_amount=Decimal("1.5000"),
        occurred_at=datetime(2026, 1, 3, tzinfo=timezone.utc),
    )
    defaults.update(overrides)
    return BillingEvent(**defaults)


def _stored(invoice: Invoice, event_ids: list[int]) -> Invoice:
    return invoice.model_copy(update={"id": 10, "invoice_number": "INV-000001"})


class TestLineMath:
    def test_line_from_event(self):
        line = line_from_event(_event(quantity=Decimal("3"), unit_rate=Decimal("0.3333")))

        assert line.billing_event_id == 1
        assert line.service_code == "STORAGE_DAILY"
        assert line.line_total == Decimal("1.00")

    def test_service_code_falls_back_to_event_type(self):
        assert line_from_event(_event(charge_type="")).service_code == EventType.STORAGE

    def test_totals_sum_rounded_lines(self):
        lines = [InvoiceLine(service_code="X", line_total=Decimal("0.33")) for _ in range(3)]
        assert totals(lines) == (Decimal("0.99"), Decimal("0.00"), Decimal("0.99"))

    def test_totals_with_tax(self):
        lines = [InvoiceLine(service_code="X", line_total=Decimal("10.00"))]
        assert totals(lines, lambda ls: Decimal("0.825")) == (Decimal("10.00"), Decimal("0.83"), Decimal("10.83"))


class TestInvoiceService:
    def setup_method(self):
        self.mock_repo = MagicMock()
        self.mock_events = MagicMock()
        self.mock_counter = MagicMock()
        self.mock_repo.create.side_effect = _stored
        self.service = InvoiceService(self.mock_repo, self.mock_events, self.mock_counter)

    def test_allocate_invoice_number(self):
        self.mock_counter.allocate.return_value = 42
        assert self.service.allocate_invoice_number(TENANT) == "INV-000042"

    def test_peek_next_invoice_number(self):
        self.mock_counter.peek.return_value = 1
        assert self.service.peek_next_invoice_number(TENANT) == "INV-000001"

    def test_create_invoice_from_events(self):
        events = [_event(id=i) for i in (1, 2, 3)]
        result = self.service.create_invoice(TENANT, 2, JAN_1, JAN_31, events, InvoiceType.MONTHLY_STORAGE)

        invoice, event_ids = self.mock_repo.create.call_args.args
        assert event_ids == [1, 2, 3]
        assert invoice.subtotal == Decimal("4.50")
        assert invoice.total == Decimal("4.50")
        assert invoice.status == InvoiceStatus.DRAFT
        assert sum(line.line_total for line in invoice.lines) == invoice.subtotal
        assert result.invoice_number == "INV-000001"

    def test_create_invoice_mixes_ad_hoc_lines(self):
        ad_hoc = InvoiceLine(service_code="MANUAL", quantity=Decimal("2"), unit_rate=Decimal("7.255"))
        self.service.create_invoice(TENANT, 2, JAN_1, JAN_31, [_event(), ad_hoc])

        invoice, event_ids = self.mock_repo.create.call_args.args
        assert event_ids == [1]
        assert invoice.lines[1].line_total == Decimal("14.51")
        assert invoice.lines[1].tenant_id == TENANT
        assert invoice.subtotal == Decimal("16.01")

    def test_tax_hook(self):
        service = InvoiceService(self.mock_repo, self.mock_events, self.mock_counter, compute_tax=lambda lines: Decimal("1"))
        service.create_invoice(TENANT, 2, JAN_1, JAN_31, [_event()])

        invoice, _ = self.mock_repo.create.call_args.args
        assert invoice.tax_total == Decimal("1.00")
        assert invoice.total == Decimal("2.50")

    def test_rejects_other_account(self):
        with pytest.raises(ValueError, match="does not belong"):
            self.service.create_invoice(TENANT, 2, JAN_1, JAN_31, [_event(account_id=3)])
        self.mock_repo.create.assert_not_called()

    def test_rejects_billed_event(self):
        with pytest.raises(ValueError, match="not unbilled"):
            self.service.create_invoice(TENANT, 2, JAN_1, JAN_31, [_event(status=BillingEventStatus.INVOICED)])

    def test_rejects_same_event_twice(self):
        event = _event()
        with pytest.raises(ValueError, match="listed more than once"):
            self.service.create_invoice(TENANT, 2, JAN_1, JAN_31, [event, event])
        self.mock_repo.create.assert_not_called()

    def test_rejects_empty(self):
        with pytest.raises(ValueError, match="without lines"):
            self.service.create_invoice(TENANT, 2, JAN_1, JAN_31, [])

    def test_rejects_inverted_period(self):
        with pytest.raises(ValueError, match="period end"):
            self.service.create_invoice(TENANT, 2, JAN_31, JAN_1, [_event()])

    def test_create_invoices_for_events_groups_by_account(self):
        events = [_event(id=1, account_id=2), _event(id=2, account_id=5), _event(id=3, account_id=2)]
        result = self.service.create_invoices_for_events(TENANT, events, JAN_1, JAN_31)

        assert len(result) == 2
        calls = [(c.args[0].account_id, c.args[1]) for c in self.mock_repo.create.call_args_list]
        assert calls == [(2, [1, 3]), (5, [2])]

    def test_create_invoice_draft_none_when_nothing_billable(self):
        self.mock_events.list_billable.return_value = []
        assert self.service.create_invoice_draft(TENANT, 2, InvoiceType.WEEKLY_SERVICES, JAN_1, JAN_31) is None
        self.mock_repo.create.assert_not_called()

    def test_create_invoice_draft_window(self):
        self.mock_events.list_billable.return_value = [_event()]
        self.service.create_invoice_draft(
            TENANT, 2, InvoiceType.CLOSEOUT, JAN_1, JAN_31, sidemark_id=4, include_unbilled_before_period=True
        )

        self.mock_events.list_billable.assert_called_once_with(TENANT, 2, None, JAN_31, sidemark_id=4)
        invoice, _ = self.mock_repo.create.call_args.args
        assert invoice.invoice_type == InvoiceType.CLOSEOUT
        assert invoice.sidemark == "4"

    def test_mark_invoice_sent(self):
        self.mock_repo.get_by_id.return_value = Invoice(id=10, tenant_id=TENANT, account_id=2, period_start=JAN_1, period_end=JAN_31)
        self.mock_repo.mark_sent.return_value = True

        result = self.service.mark_invoice_sent(TENANT, 10)

        assert result.status == InvoiceStatus.SENT
        assert result.sent_at is not None

    def test_mark_sent_requires_draft(self):
        self.mock_repo.get_by_id.return_value = Invoice(
            id=10, tenant_id=TENANT, account_id=2, period_start=JAN_1, period_end=JAN_31, status=InvoiceStatus.VOID
        )
        with pytest.raises(ValueError, match="Only draft invoices"):
            self.service.mark_invoice_sent(TENANT, 10)

    def test_void_invoice_builds_reversals(self):
        self.mock_repo.get_by_id.return_value = Invoice(
            id=10, tenant_id=TENANT, account_id=2, period_start=JAN_1, period_end=JAN_31, status=InvoiceStatus.SENT
        )
        self.mock_events.list_by_invoice.return_value = [
            _event(id=1, status=BillingEventStatus.INVOICED, invoice_id=10),
        ]
        self.mock_repo.void.return_value = True

        result = self.service.void_invoice(TENANT, 10, voided_by=7)

        assert result.status == InvoiceStatus.VOID
        _, invoice_id, reversals = self.mock_repo.void.call_args.args
        assert invoice_id == 10
        [reversal] = reversals
        assert reversal.quantity == Decimal("-1")
        assert reversal.total_amount == Decimal("-1.5000")
        assert reversal.status == BillingEventStatus.VOID
        assert reversal.metadata["reversal_of"] == 1
        assert reversal.metadata["voided_invoice_id"] == 10
        assert reversal.description.startswith("REVERSAL: ")
        assert reversal.created_by == 7

    def test_void_already_void(self):
        self.mock_repo.get_by_id.return_value = Invoice(
            id=10, tenant_id=TENANT, account_id=2, period_start=JAN_1, period_end=JAN_31, status=InvoiceStatus.VOID
        )
        with pytest.raises(ValueError, match="already void"):
            self.service.void_invoice(TENANT, 10)

    def test_invoice_not_found(self):
        self.mock_repo.get_by_id.return_value = None
        with pytest.raises(ValueError, match="Invoice not found"):
            self.service.update_invoice_notes(TENANT, 10, "x")

    def test_list_invoices(self):
        self.mock_repo.list_invoices.return_value = []
        self.service.list_invoices(TENANT, account_id=2)
        self.mock_repo.list_invoices.assert_called_once_with(TENANT, account_id=2, status=None, limit=50)


@pytest.fixture()
def stack(db_connection):
    event_repo = SQLAlchemyBillingEventRepository(db_connection)
    rate_repo = SQLAlchemyServiceRateRepository(db_connection)
    accrual = StorageAccrualService(
        SQLAlchemyItemRepository(db_connection),
        SQLAlchemyAccountRepository(db_connection),
        SQLAlchemyStorageRollupRepository(db_connection),
        event_repo,
        RateResolver(rate_repo),
        service_code="STORAGE",
        days_per_month=30,
    )
    invoices = InvoiceService(
        SQLAlchemyInvoiceRepository(db_connection),
        event_repo,
        SQLAlchemyInvoiceCounterRepository(db_connection),
    )
    return accrual, invoices, event_repo, rate_repo


class TestStorageToInvoice:
    def test_accrued_storage_invoices_once(self, stack, seed, sample_rate):
        accrual, invoices, event_repo, rate_repo = stack
        account_id = seed.account()
        seed.item(account_id, JAN_1)
        rate_repo.create(sample_rate(rate=Decimal("45.00")))
        accrual.accrue_storage_for_range(TENANT, JAN_1, date(2026, 1, 3))

        invoice = invoices.create_invoice_draft(TENANT, account_id, InvoiceType.MONTHLY_STORAGE, JAN_1, JAN_31)

        assert invoice.invoice_number == "INV-000001"
        assert invoice.subtotal == Decimal("4.50")
        assert sum(line.line_total for line in invoice.lines) == invoice.subtotal
        assert event_repo.list_by_status(TENANT, BillingEventStatus.UNBILLED) == []
        assert len(event_repo.list_by_invoice(TENANT, invoice.id)) == 3
        assert invoices.create_invoice_draft(TENANT, account_id, InvoiceType.MONTHLY_STORAGE, JAN_1, JAN_31) is None

    def test_void_then_reaccrue_does_not_double_bill(self, stack, seed, sample_rate):
        accrual, invoices, event_repo, rate_repo = stack
        account_id = seed.account()
        seed.item(account_id, JAN_1)
        rate_repo.create(sample_rate(rate=Decimal("45.00")))
        accrual.accrue_storage_for_date(TENANT, JAN_1)
        invoice = invoices.create_invoice_draft(TENANT, account_id, InvoiceType.MONTHLY_STORAGE, JAN_1, JAN_31)

        invoices.void_invoice(TENANT, invoice.id)
        result = accrual.accrue_storage_for_date(TENANT, JAN_1)

        assert result.events_created == 0
        assert invoices.get_invoice(TENANT, invoice.id).status == InvoiceStatus.VOID
        [reversal] = event_repo.list_by_status(TENANT, BillingEventStatus.VOID)
        assert reversal.total_amount == Decimal("-1.5000")

    def test_numbers_increase_per_invoice(self, stack, seed):
        _, invoices, _, _ = stack
        account_id = seed.account()
        line = InvoiceLine(service_code="MANUAL", unit_rate=Decimal("5.00"))

        numbers = [invoices.create_invoice(TENANT, account_id, JAN_1, JAN_31, [line]).invoice_number for _ in range(3)]
        assert numbers == ["INV-000001", "INV-000002", "INV-000003"]

    def test_repeated_event_is_not_billed_twice(self, stack, seed, sample_event):
        _, invoices, event_repo, _ = stack
        account_id = seed.account()
        event = event_repo.create(
            sample_event(account_id=account_id, occurred_at=datetime(2026, 1, 3, tzinfo=timezone.utc))
        )

        with pytest.raises(ValueError, match="listed more than once"):
            invoices.create_invoice(TENANT, account_id, JAN_1, JAN_31, [event, event])

        assert invoices.list_invoices(TENANT) == []
        assert event_repo.get_by_id(TENANT, event.id).status == BillingEventStatus.UNBILLED
        assert invoices.peek_next_invoice_number(TENANT) == "INV-000001"

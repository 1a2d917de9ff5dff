from abc import ABC, abstractmethod
from datetime import date, datetime

from warebill.models.account import Account, Item
from warebill.models.billing_event import BillingEvent, BillingEventStatus
from warebill.models.invoice import Invoice, InvoiceLine, InvoiceStatus
from warebill.models.preview import ShipmentLine, TaskLine
from warebill.models.rate import ServiceRate
from warebill.models.storage import StorageDailyRollup


class ServiceRateRepository(ABC):
    @abstractmethod
    def create(self, rate: ServiceRate) -> ServiceRate: ...

    @abstractmethod
    def get_by_id(self, tenant_id: str, rate_id: int) -> ServiceRate | None: ...

    @abstractmethod
    def find_active(self, tenant_id: str, service_code: str, class_code: str | None) -> ServiceRate | None:
        """Exact-key lookup; ``class_code=None`` matches only the default row."""

    @abstractmethod
    def list_by_tenant(self, tenant_id: str, active_only: bool = True) -> list[ServiceRate]: ...

    @abstractmethod
    def update(self, rate: ServiceRate) -> ServiceRate: ...

    @abstractmethod
    def deactivate(self, tenant_id: str, rate_id: int) -> None: ...


class AccountRepository(ABC):
    @abstractmethod
    def get_by_id(self, tenant_id: str, account_id: int) -> Account | None: ...


class ItemRepository(ABC):
    @abstractmethod
    def get_by_id(self, tenant_id: str, item_id: int) -> Item | None: ...

    @abstractmethod
    def list_stored_on(self, tenant_id: str, day: date) -> list[Item]:
        """Active items received on or before ``day`` and not released by it."""


class WorkOrderRepository(ABC):
    @abstractmethod
    def list_task_lines(self, tenant_id: str, task_id: int) -> list[TaskLine]: ...

    @abstractmethod
    def list_shipment_lines(self, tenant_id: str, shipment_id: int) -> list[ShipmentLine]: ...


class StorageRollupRepository(ABC):
    @abstractmethod
    def insert_if_absent(self, rollup: StorageDailyRollup) -> bool:
        """Insert the rollup; return False when (tenant, item, date) already exists."""

    @abstractmethod
    def get(self, tenant_id: str, item_id: int, rollup_date: date) -> StorageDailyRollup | None: ...

    @abstractmethod
    def list_for_date(self, tenant_id: str, rollup_date: date) -> list[StorageDailyRollup]: ...

    @abstractmethod
    def rollback(self) -> None:
        """Discard anything left uncommitted after a failed item."""


class BillingEventRepository(ABC):
    @abstractmethod
    def create(self, event: BillingEvent) -> BillingEvent: ...

    @abstractmethod
    def insert_if_absent(self, event: BillingEvent) -> BillingEvent | None:
        """Insert an event carrying a ``dedup_key``; None when the key is taken."""

    @abstractmethod
    def has_active_storage_event(self, tenant_id: str, item_id: int, rollup_date: date) -> bool: ...

    @abstractmethod
    def get_by_id(self, tenant_id: str, event_id: int) -> BillingEvent | None: ...

    @abstractmethod
    def list_by_status(
        self, tenant_id: str, status: BillingEventStatus, account_id: int | None = None
    ) -> list[BillingEvent]: ...

    @abstractmethod
    def list_billable(
        self,
        tenant_id: str,
        account_id: int,
        period_start: date | None,
        period_end: date,
        sidemark_id: int | None = None,
    ) -> list[BillingEvent]:
        """Unbilled events for an account whose ``occurred_at`` falls in the window.

        ``period_start=None`` includes everything up to ``period_end``.
        """

    @abstractmethod
    def list_for_task(self, tenant_id: str, task_id: int) -> list[BillingEvent]: ...

    @abstractmethod
    def list_for_shipment(self, tenant_id: str, shipment_id: int) -> list[BillingEvent]: ...

    @abstractmethod
    def list_by_invoice(self, tenant_id: str, invoice_id: int) -> list[BillingEvent]: ...

    @abstractmethod
    def void(self, tenant_id: str, event_id: int) -> bool:
        """Move an unbilled event to void; False when it was not unbilled."""


class InvoiceCounterRepository(ABC):
    @abstractmethod
    def allocate(self, tenant_id: str) -> int:
        """Atomically consume and return the tenant's next invoice number."""

    @abstractmethod
    def peek(self, tenant_id: str) -> int:
        """Return the number the next allocation would hand out, without consuming it."""


class InvoiceRepository(ABC):
    @abstractmethod
    def create(self, invoice: Invoice, billing_event_ids: list[int]) -> Invoice:
        """Allocate the number, insert invoice and lines, mark events invoiced.

        All of it commits together or not at all.
        """

    @abstractmethod
    def get_by_id(self, tenant_id: str, invoice_id: int) -> Invoice | None: ...

    @abstractmethod
    def get_by_number(self, tenant_id: str, invoice_number: str) -> Invoice | None: ...

    @abstractmethod
    def list_invoices(
        self,
        tenant_id: str,
        account_id: int | None = None,
        status: InvoiceStatus | None = None,
        limit: int = 50,
    ) -> list[Invoice]: ...

    @abstractmethod
    def list_lines(self, tenant_id: str, invoice_id: int) -> list[InvoiceLine]: ...

    @abstractmethod
    def mark_sent(self, tenant_id: str, invoice_id: int, sent_at: datetime) -> bool: ...

    @abstractmethod
    def void(self, tenant_id: str, invoice_id: int, reversals: list[BillingEvent]) -> bool:
        """Void the invoice and record its reversal events; False if already void."""

    @abstractmethod
    def update_notes(self, tenant_id: str, invoice_id: int, notes: str) -> None: ...

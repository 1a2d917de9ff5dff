from __future__ import annotations

import json
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import Connection, text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import IntegrityError
from ulid import ULID

from warebill.constants import format_invoice_number, to_money, to_rate
from warebill.db import atomic
from warebill.models.account import Account, Item
from warebill.models.billing_event import BillingEvent, BillingEventStatus, storage_dedup_key
from warebill.models.invoice import Invoice, InvoiceLine, InvoiceStatus
from warebill.models.preview import ShipmentLine, TaskLine
from warebill.models.rate import BillingUnit, ServiceRate
from warebill.models.storage import StorageDailyRollup
from warebill.repositories.base import (
    AccountRepository,
    BillingEventRepository,
    InvoiceCounterRepository,
    InvoiceRepository,
    ItemRepository,
    ServiceRateRepository,
    StorageRollupRepository,
    WorkOrderRepository,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _in_clause(prefix: str, values: list) -> tuple[str, dict]:
    placeholders = ", ".join(f":{prefix}{i}" for i in range(len(values)))
    params = {f"{prefix}{i}": value for i, value in enumerate(values)}
    return placeholders, params


def _decimal(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def _increment_counter(conn: Connection, tenant_id: str) -> int:
    """Consume the tenant's next invoice number on ``conn`` without committing.

    The UPDATE takes the counter row's write lock, so the number read back
    inside the same transaction cannot be handed to a concurrent allocator.
    """
    params = {"tenant_id": tenant_id, "updated_at": _now()}
    update = text(
        "UPDATE invoice_counters SET next_number = next_number + 1, updated_at = :updated_at "
        "WHERE tenant_id = :tenant_id"
    )
    result = conn.execute(update, params)
    if result.rowcount == 0:
        try:
            with conn.begin_nested():
                conn.execute(
                    text(
                        "INSERT INTO invoice_counters (tenant_id, next_number, updated_at) "
                        "VALUES (:tenant_id, 1, :updated_at)"
                    ),
                    params,
                )
        except IntegrityError:
            pass  # created concurrently; the UPDATE below waits on its lock
        conn.execute(update, params)
    row = (
        conn.execute(
            text("SELECT next_number FROM invoice_counters WHERE tenant_id = :tenant_id"),
            {"tenant_id": tenant_id},
        )
        .mappings()
        .fetchone()
    )
    if row is None:  # pragma: no cover
        raise RuntimeError(f"Invoice counter missing for tenant {tenant_id}")
    return int(row["next_number"]) - 1


class SQLAlchemyServiceRateRepository(ServiceRateRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_rate(row: RowMapping) -> ServiceRate:
        return ServiceRate(
            id=row["id"],
            tenant_id=row["tenant_id"],
            service_code=row["service_code"],
            class_code=row["class_code"],
            service_name=row["service_name"],
            billing_unit=BillingUnit(row["billing_unit"]),
            service_time_minutes=row["service_time_minutes"],
            rate=to_money(row["rate"]),
            taxable=bool(row["taxable"]),
            uses_class_pricing=bool(row["uses_class_pricing"]),
            is_active=bool(row["is_active"]),
            notes=row["notes"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _ensure_unique_active(self, rate: ServiceRate) -> None:
        if not rate.is_active:
            return
        existing = self.find_active(rate.tenant_id, rate.service_code, rate.class_code)
        if existing is not None and existing.id != rate.id:
            raise ValueError(
                f"An active rate already exists for service {rate.service_code} "
                f"(class={rate.class_code or 'default'})"
            )

    def create(self, rate: ServiceRate) -> ServiceRate:
        self._ensure_unique_active(rate)
        now = _now()
        result = self.conn.execute(
            text(
                "INSERT INTO service_rates (tenant_id, service_code, class_code, service_name, "
                "billing_unit, service_time_minutes, rate, taxable, uses_class_pricing, is_active, "
                "notes, created_at, updated_at) "
                "VALUES (:tenant_id, :service_code, :class_code, :service_name, :billing_unit, "
                ":service_time_minutes, :rate, :taxable, :uses_class_pricing, :is_active, "
                ":notes, :created_at, :updated_at)"
            ),
            {
                "tenant_id": rate.tenant_id,
                "service_code": rate.service_code,
                "class_code": rate.class_code,
                "service_name": rate.service_name,
                "billing_unit": rate.billing_unit.value,
                "service_time_minutes": rate.service_time_minutes,
                "rate": str(to_money(rate.rate)),
                "taxable": int(rate.taxable),
                "uses_class_pricing": int(rate.uses_class_pricing),
                "is_active": int(rate.is_active),
                "notes": rate.notes,
                "created_at": now,
                "updated_at": now,
            },
        )
        rate_id = result.lastrowid
        self.conn.commit()
        created = self.get_by_id(rate.tenant_id, rate_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve service rate after create (id={rate_id})")
        return created

    def get_by_id(self, tenant_id: str, rate_id: int) -> ServiceRate | None:
        row = (
            self.conn.execute(
                text("SELECT * FROM service_rates WHERE tenant_id = :tenant_id AND id = :id"),
                {"tenant_id": tenant_id, "id": rate_id},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_rate(row)

    def find_active(self, tenant_id: str, service_code: str, class_code: str | None) -> ServiceRate | None:
        if class_code is None:
            query = text(
                "SELECT * FROM service_rates WHERE tenant_id = :tenant_id "
                "AND service_code = :service_code AND class_code IS NULL AND is_active = 1"
            )
        else:
            query = text(
                "SELECT * FROM service_rates WHERE tenant_id = :tenant_id "
                "AND service_code = :service_code AND class_code = :class_code AND is_active = 1"
            )
        row = (
            self.conn.execute(
                query,
                {"tenant_id": tenant_id, "service_code": service_code, "class_code": class_code},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_rate(row)

    def list_by_tenant(self, tenant_id: str, active_only: bool = True) -> list[ServiceRate]:
        sql = "SELECT * FROM service_rates WHERE tenant_id = :tenant_id"
        if active_only:
            sql += " AND is_active = 1"
        sql += " ORDER BY service_code, class_code"
        rows = self.conn.execute(text(sql), {"tenant_id": tenant_id}).mappings().fetchall()
        return [self._row_to_rate(row) for row in rows]

    def update(self, rate: ServiceRate) -> ServiceRate:
        if rate.id is None:
            raise ValueError("Cannot update service rate without an id")
        self._ensure_unique_active(rate)
        self.conn.execute(
            text(
                "UPDATE service_rates SET service_name = :service_name, billing_unit = :billing_unit, "
                "service_time_minutes = :service_time_minutes, rate = :rate, taxable = :taxable, "
                "uses_class_pricing = :uses_class_pricing, is_active = :is_active, notes = :notes, "
                "updated_at = :updated_at WHERE tenant_id = :tenant_id AND id = :id"
            ),
            {
                "service_name": rate.service_name,
                "billing_unit": rate.billing_unit.value,
                "service_time_minutes": rate.service_time_minutes,
                "rate": str(to_money(rate.rate)),
                "taxable": int(rate.taxable),
                "uses_class_pricing": int(rate.uses_class_pricing),
                "is_active": int(rate.is_active),
                "notes": rate.notes,
                "updated_at": _now(),
                "tenant_id": rate.tenant_id,
                "id": rate.id,
            },
        )
        self.conn.commit()
        result = self.get_by_id(rate.tenant_id, rate.id)
        if result is None:
            raise RuntimeError(f"Failed to retrieve service rate after update (id={rate.id})")
        return result

    def deactivate(self, tenant_id: str, rate_id: int) -> None:
        self.conn.execute(
            text(
                "UPDATE service_rates SET is_active = 0, updated_at = :updated_at "
                "WHERE tenant_id = :tenant_id AND id = :id"
            ),
            {"updated_at": _now(), "tenant_id": tenant_id, "id": rate_id},
        )
        self.conn.commit()


class SQLAlchemyAccountRepository(AccountRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def get_by_id(self, tenant_id: str, account_id: int) -> Account | None:
        row = (
            self.conn.execute(
                text("SELECT * FROM accounts WHERE tenant_id = :tenant_id AND id = :id"),
                {"tenant_id": tenant_id, "id": account_id},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return Account(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            free_storage_days=row["free_storage_days"],
            storage_billing_day=row["storage_billing_day"],
            global_rate_adjust_pct=_decimal(row["global_rate_adjust_pct"]),
        )


_ITEM_SELECT = (
    "SELECT i.*, c.code AS class_code FROM items i "
    "LEFT JOIN item_classes c ON c.id = i.class_id AND c.tenant_id = i.tenant_id "
)


class SQLAlchemyItemRepository(ItemRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_item(row: RowMapping) -> Item:
        return Item(
            id=row["id"],
            tenant_id=row["tenant_id"],
            account_id=row["account_id"],
            sidemark_id=row["sidemark_id"],
            class_id=row["class_id"],
            class_code=row["class_code"],
            item_code=row["item_code"],
            status=row["status"],
            received_date=row["received_date"],
            released_date=row["released_date"],
        )

    def get_by_id(self, tenant_id: str, item_id: int) -> Item | None:
        row = (
            self.conn.execute(
                text(_ITEM_SELECT + "WHERE i.tenant_id = :tenant_id AND i.id = :id"),
                {"tenant_id": tenant_id, "id": item_id},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_item(row)

    def list_stored_on(self, tenant_id: str, day: date) -> list[Item]:
        rows = (
            self.conn.execute(
                text(
                    _ITEM_SELECT + "WHERE i.tenant_id = :tenant_id AND i.status = 'active' "
                    "AND i.received_date IS NOT NULL AND i.received_date <= :day "
                    "AND (i.released_date IS NULL OR i.released_date > :day) ORDER BY i.id"
                ),
                {"tenant_id": tenant_id, "day": day.isoformat()},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_item(row) for row in rows]


class SQLAlchemyWorkOrderRepository(WorkOrderRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def list_task_lines(self, tenant_id: str, task_id: int) -> list[TaskLine]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT ti.item_id, ti.quantity, i.item_code, c.code AS class_code, "
                    "c.name AS class_name FROM task_items ti "
                    "LEFT JOIN items i ON i.id = ti.item_id AND i.tenant_id = ti.tenant_id "
                    "LEFT JOIN item_classes c ON c.id = i.class_id AND c.tenant_id = ti.tenant_id "
                    "WHERE ti.tenant_id = :tenant_id AND ti.task_id = :task_id ORDER BY ti.id"
                ),
                {"tenant_id": tenant_id, "task_id": task_id},
            )
            .mappings()
            .fetchall()
        )
        return [
            TaskLine(
                item_id=row["item_id"],
                item_code=row["item_code"],
                class_code=row["class_code"],
                class_name=row["class_name"],
                quantity=row["quantity"],
            )
            for row in rows
        ]

    def list_shipment_lines(self, tenant_id: str, shipment_id: int) -> list[ShipmentLine]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT si.item_id, si.expected_quantity, si.actual_quantity, i.item_code, "
                    "c.code AS class_code, c.name AS class_name, "
                    "ec.code AS expected_class_code, ec.name AS expected_class_name "
                    "FROM shipment_items si "
                    "LEFT JOIN items i ON i.id = si.item_id AND i.tenant_id = si.tenant_id "
                    "LEFT JOIN item_classes c ON c.id = i.class_id AND c.tenant_id = si.tenant_id "
                    "LEFT JOIN item_classes ec ON ec.id = si.expected_class_id AND ec.tenant_id = si.tenant_id "
                    "WHERE si.tenant_id = :tenant_id AND si.shipment_id = :shipment_id ORDER BY si.id"
                ),
                {"tenant_id": tenant_id, "shipment_id": shipment_id},
            )
            .mappings()
            .fetchall()
        )
        return [
            ShipmentLine(
                item_id=row["item_id"],
                item_code=row["item_code"],
                class_code=row["class_code"],
                class_name=row["class_name"],
                expected_class_code=row["expected_class_code"],
                expected_class_name=row["expected_class_name"],
                expected_quantity=row["expected_quantity"],
                actual_quantity=row["actual_quantity"],
            )
            for row in rows
        ]


class SQLAlchemyStorageRollupRepository(StorageRollupRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_rollup(row: RowMapping) -> StorageDailyRollup:
        return StorageDailyRollup(
            id=row["id"],
            tenant_id=row["tenant_id"],
            item_id=row["item_id"],
            account_id=row["account_id"],
            sidemark_id=row["sidemark_id"],
            rollup_date=row["rollup_date"],
            class_id=row["class_id"],
            daily_rate=to_rate(row["daily_rate"]),
            created_at=row["created_at"],
        )

    def insert_if_absent(self, rollup: StorageDailyRollup) -> bool:
        with atomic(self.conn):
            try:
                with self.conn.begin_nested():
                    self.conn.execute(
                        text(
                            "INSERT INTO storage_daily_rollups (tenant_id, item_id, account_id, sidemark_id, "
                            "rollup_date, class_id, daily_rate, created_at) "
                            "VALUES (:tenant_id, :item_id, :account_id, :sidemark_id, :rollup_date, "
                            ":class_id, :daily_rate, :created_at)"
                        ),
                        {
                            "tenant_id": rollup.tenant_id,
                            "item_id": rollup.item_id,
                            "account_id": rollup.account_id,
                            "sidemark_id": rollup.sidemark_id,
                            "rollup_date": rollup.rollup_date.isoformat(),
                            "class_id": rollup.class_id,
                            "daily_rate": str(to_rate(rollup.daily_rate)),
                            "created_at": _now(),
                        },
                    )
            except IntegrityError:
                if self.get(rollup.tenant_id, rollup.item_id, rollup.rollup_date) is None:
                    raise
                return False
        return True

    def rollback(self) -> None:
        self.conn.rollback()

    def get(self, tenant_id: str, item_id: int, rollup_date: date) -> StorageDailyRollup | None:
        row = (
            self.conn.execute(
                text(
                    "SELECT * FROM storage_daily_rollups WHERE tenant_id = :tenant_id "
                    "AND item_id = :item_id AND rollup_date = :rollup_date"
                ),
                {"tenant_id": tenant_id, "item_id": item_id, "rollup_date": rollup_date.isoformat()},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_rollup(row)

    def list_for_date(self, tenant_id: str, rollup_date: date) -> list[StorageDailyRollup]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM storage_daily_rollups WHERE tenant_id = :tenant_id "
                    "AND rollup_date = :rollup_date ORDER BY item_id"
                ),
                {"tenant_id": tenant_id, "rollup_date": rollup_date.isoformat()},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_rollup(row) for row in rows]


_EVENT_INSERT = text(
    "INSERT INTO billing_events (uuid, tenant_id, account_id, item_id, sidemark_id, class_id, "
    "task_id, shipment_id, event_type, charge_type, description, quantity, unit_rate, "
    "total_amount, status, has_rate_error, rate_error_message, invoice_id, invoiced_at, "
    "occurred_at, metadata, dedup_key, created_by, created_at) "
    "VALUES (:uuid, :tenant_id, :account_id, :item_id, :sidemark_id, :class_id, :task_id, "
    ":shipment_id, :event_type, :charge_type, :description, :quantity, :unit_rate, "
    ":total_amount, :status, :has_rate_error, :rate_error_message, :invoice_id, :invoiced_at, "
    ":occurred_at, :metadata, :dedup_key, :created_by, :created_at)"
)


def _event_params(event: BillingEvent, event_uuid: str) -> dict:
    now = _now()
    return {
        "uuid": event_uuid,
        "tenant_id": event.tenant_id,
        "account_id": event.account_id,
        "item_id": event.item_id,
        "sidemark_id": event.sidemark_id,
        "class_id": event.class_id,
        "task_id": event.task_id,
        "shipment_id": event.shipment_id,
        "event_type": event.event_type,
        "charge_type": event.charge_type,
        "description": event.description,
        "quantity": str(event.quantity),
        "unit_rate": str(to_rate(event.unit_rate)),
        "total_amount": str(to_rate(event.total_amount)),
        "status": event.status.value,
        "has_rate_error": int(event.has_rate_error),
        "rate_error_message": event.rate_error_message,
        "invoice_id": event.invoice_id,
        "invoiced_at": event.invoiced_at,
        "occurred_at": event.occurred_at or now,
        "metadata": json.dumps(event.metadata),
        "dedup_key": event.dedup_key,
        "created_by": event.created_by,
        "created_at": now,
    }


class SQLAlchemyBillingEventRepository(BillingEventRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_event(row: RowMapping) -> BillingEvent:
        metadata = row["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return BillingEvent(
            id=row["id"],
            uuid=row["uuid"],
            tenant_id=row["tenant_id"],
            account_id=row["account_id"],
            item_id=row["item_id"],
            sidemark_id=row["sidemark_id"],
            class_id=row["class_id"],
            task_id=row["task_id"],
            shipment_id=row["shipment_id"],
            event_type=row["event_type"],
            charge_type=row["charge_type"],
            description=row["description"] or "",
            quantity=_decimal(row["quantity"]),
            unit_rate=to_rate(row["unit_rate"]),
            total_amount=to_rate(row["total_amount"]),
            status=BillingEventStatus(row["status"]),
            has_rate_error=bool(row["has_rate_error"]),
            rate_error_message=row["rate_error_message"],
            invoice_id=row["invoice_id"],
            invoiced_at=row["invoiced_at"],
            occurred_at=row["occurred_at"],
            metadata=metadata or {},
            dedup_key=row["dedup_key"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )

    def _get_by_uuid(self, event_uuid: str) -> BillingEvent | None:
        row = (
            self.conn.execute(
                text("SELECT * FROM billing_events WHERE uuid = :uuid"),
                {"uuid": event_uuid},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_event(row)

    def _list(self, where: str, params: dict) -> list[BillingEvent]:
        rows = (
            self.conn.execute(
                text(f"SELECT * FROM billing_events WHERE {where} ORDER BY occurred_at, id"),
                params,
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_event(row) for row in rows]

    def create(self, event: BillingEvent) -> BillingEvent:
        event_uuid = str(ULID())
        self.conn.execute(_EVENT_INSERT, _event_params(event, event_uuid))
        self.conn.commit()
        result = self._get_by_uuid(event_uuid)
        if result is None:
            raise RuntimeError(f"Failed to retrieve billing event after create (uuid={event_uuid})")
        return result

    def insert_if_absent(self, event: BillingEvent) -> BillingEvent | None:
        if not event.dedup_key:
            raise ValueError("insert_if_absent requires a dedup_key")
        event_uuid = str(ULID())
        with atomic(self.conn):
            try:
                with self.conn.begin_nested():
                    self.conn.execute(_EVENT_INSERT, _event_params(event, event_uuid))
            except IntegrityError:
                taken = self.conn.execute(
                    text("SELECT 1 FROM billing_events WHERE dedup_key = :dedup_key"),
                    {"dedup_key": event.dedup_key},
                ).fetchone()
                if taken is None:
                    raise
                return None
        return self._get_by_uuid(event_uuid)

    def has_active_storage_event(self, tenant_id: str, item_id: int, rollup_date: date) -> bool:
        row = self.conn.execute(
            text(
                "SELECT 1 FROM billing_events WHERE tenant_id = :tenant_id AND item_id = :item_id "
                "AND event_type = 'storage' AND dedup_key = :dedup_key AND status <> 'void'"
            ),
            {
                "tenant_id": tenant_id,
                "item_id": item_id,
                "dedup_key": storage_dedup_key(tenant_id, item_id, rollup_date),
            },
        ).fetchone()
        return row is not None

    def get_by_id(self, tenant_id: str, event_id: int) -> BillingEvent | None:
        events = self._list("tenant_id = :tenant_id AND id = :id", {"tenant_id": tenant_id, "id": event_id})
        return events[0] if events else None

    def list_by_status(
        self, tenant_id: str, status: BillingEventStatus, account_id: int | None = None
    ) -> list[BillingEvent]:
        where = "tenant_id = :tenant_id AND status = :status"
        params: dict = {"tenant_id": tenant_id, "status": status.value}
        if account_id is not None:
            where += " AND account_id = :account_id"
            params["account_id"] = account_id
        return self._list(where, params)

    def list_billable(
        self,
        tenant_id: str,
        account_id: int,
        period_start: date | None,
        period_end: date,
        sidemark_id: int | None = None,
    ) -> list[BillingEvent]:
        where = (
            "tenant_id = :tenant_id AND account_id = :account_id AND status = 'unbilled' "
            "AND occurred_at < :period_end"
        )
        params: dict = {
            "tenant_id": tenant_id,
            "account_id": account_id,
            "period_end": _start_of(period_end + timedelta(days=1)),
        }
        if period_start is not None:
            where += " AND occurred_at >= :period_start"
            params["period_start"] = _start_of(period_start)
        if sidemark_id is not None:
            where += " AND sidemark_id = :sidemark_id"
            params["sidemark_id"] = sidemark_id
        return self._list(where, params)

    def list_for_task(self, tenant_id: str, task_id: int) -> list[BillingEvent]:
        return self._list("tenant_id = :tenant_id AND task_id = :task_id", {"tenant_id": tenant_id, "task_id": task_id})

    def list_for_shipment(self, tenant_id: str, shipment_id: int) -> list[BillingEvent]:
        return self._list(
            "tenant_id = :tenant_id AND shipment_id = :shipment_id",
            {"tenant_id": tenant_id, "shipment_id": shipment_id},
        )

    def list_by_invoice(self, tenant_id: str, invoice_id: int) -> list[BillingEvent]:
        return self._list(
            "tenant_id = :tenant_id AND invoice_id = :invoice_id",
            {"tenant_id": tenant_id, "invoice_id": invoice_id},
        )

    def void(self, tenant_id: str, event_id: int) -> bool:
        result = self.conn.execute(
            text(
                "UPDATE billing_events SET status = 'void', dedup_key = NULL "
                "WHERE tenant_id = :tenant_id AND id = :id AND status = 'unbilled'"
            ),
            {"tenant_id": tenant_id, "id": event_id},
        )
        self.conn.commit()
        return result.rowcount == 1


class SQLAlchemyInvoiceCounterRepository(InvoiceCounterRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def allocate(self, tenant_id: str) -> int:
        with atomic(self.conn):
            return _increment_counter(self.conn, tenant_id)

    def peek(self, tenant_id: str) -> int:
        row = (
            self.conn.execute(
                text("SELECT next_number FROM invoice_counters WHERE tenant_id = :tenant_id"),
                {"tenant_id": tenant_id},
            )
            .mappings()
            .fetchone()
        )
        return int(row["next_number"]) if row is not None else 1


class SQLAlchemyInvoiceRepository(InvoiceRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_line(row: RowMapping) -> InvoiceLine:
        return InvoiceLine(
            id=row["id"],
            tenant_id=row["tenant_id"],
            invoice_id=row["invoice_id"],
            billing_event_id=row["billing_event_id"],
            item_id=row["item_id"],
            service_code=row["service_code"],
            description=row["description"] or "",
            quantity=_decimal(row["quantity"]),
            unit_rate=to_rate(row["unit_rate"]),
            line_total=to_money(row["line_total"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _build_invoice(row: RowMapping, line_rows: list[RowMapping]) -> Invoice:
        return Invoice(
            id=row["id"],
            uuid=row["uuid"],
            tenant_id=row["tenant_id"],
            account_id=row["account_id"],
            sidemark=row["sidemark"],
            invoice_number=row["invoice_number"],
            invoice_type=row["invoice_type"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            status=InvoiceStatus(row["status"]),
            subtotal=to_money(row["subtotal"]),
            tax_total=to_money(row["tax_total"]),
            total=to_money(row["total"]),
            notes=row["notes"],
            lines=[SQLAlchemyInvoiceRepository._row_to_line(line_row) for line_row in line_rows],
            created_by=row["created_by"],
            created_at=row["created_at"],
            sent_at=row["sent_at"],
        )

    def _line_rows(self, invoice_id: int) -> list[RowMapping]:
        return list(
            self.conn.execute(
                text("SELECT * FROM invoice_lines WHERE invoice_id = :invoice_id ORDER BY id"),
                {"invoice_id": invoice_id},
            )
            .mappings()
            .fetchall()
        )

    def _fetch_one(self, where: str, params: dict) -> Invoice | None:
        row = self.conn.execute(text(f"SELECT * FROM invoices WHERE {where}"), params).mappings().fetchone()
        if row is None:
            return None
        return self._build_invoice(row, self._line_rows(row["id"]))

    def create(self, invoice: Invoice, billing_event_ids: list[int]) -> Invoice:
        invoice_uuid = str(ULID())
        now = _now()
        event_ids = sorted(set(billing_event_ids))
        if len(event_ids) != len(billing_event_ids):
            raise ValueError("Each billing event can be invoiced on only one line")
        with atomic(self.conn):
            invoice_number = format_invoice_number(_increment_counter(self.conn, invoice.tenant_id))
            self.conn.execute(
                text(
                    "INSERT INTO invoices (uuid, tenant_id, account_id, sidemark, invoice_number, "
                    "invoice_type, period_start, period_end, status, subtotal, tax_total, total, "
                    "notes, created_by, created_at) "
                    "VALUES (:uuid, :tenant_id, :account_id, :sidemark, :invoice_number, "
                    ":invoice_type, :period_start, :period_end, :status, :subtotal, :tax_total, "
                    ":total, :notes, :created_by, :created_at)"
                ),
                {
                    "uuid": invoice_uuid,
                    "tenant_id": invoice.tenant_id,
                    "account_id": invoice.account_id,
                    "sidemark": invoice.sidemark,
                    "invoice_number": invoice_number,
                    "invoice_type": invoice.invoice_type.value,
                    "period_start": invoice.period_start.isoformat(),
                    "period_end": invoice.period_end.isoformat(),
                    "status": invoice.status.value,
                    "subtotal": str(to_money(invoice.subtotal)),
                    "tax_total": str(to_money(invoice.tax_total)),
                    "total": str(to_money(invoice.total)),
                    "notes": invoice.notes,
                    "created_by": invoice.created_by,
                    "created_at": now,
                },
            )
            invoice_id = (
                self.conn.execute(text("SELECT id FROM invoices WHERE uuid = :uuid"), {"uuid": invoice_uuid})
                .mappings()
                .fetchone()["id"]
            )
            for line in invoice.lines:
                self.conn.execute(
                    text(
                        "INSERT INTO invoice_lines (tenant_id, invoice_id, billing_event_id, item_id, "
                        "service_code, description, quantity, unit_rate, line_total, created_at) "
                        "VALUES (:tenant_id, :invoice_id, :billing_event_id, :item_id, :service_code, "
                        ":description, :quantity, :unit_rate, :line_total, :created_at)"
                    ),
                    {
                        "tenant_id": invoice.tenant_id,
                        "invoice_id": invoice_id,
                        "billing_event_id": line.billing_event_id,
                        "item_id": line.item_id,
                        "service_code": line.service_code,
                        "description": line.description,
                        "quantity": str(line.quantity),
                        "unit_rate": str(to_rate(line.unit_rate)),
                        "line_total": str(to_money(line.line_total)),
                        "created_at": now,
                    },
                )
            if event_ids:
                placeholders, params = _in_clause("event", event_ids)
                result = self.conn.execute(
                    text(
                        "UPDATE billing_events SET status = 'invoiced', invoice_id = :invoice_id, "
                        "invoiced_at = :invoiced_at WHERE tenant_id = :tenant_id "
                        f"AND status = 'unbilled' AND id IN ({placeholders})"
                    ),
                    {**params, "invoice_id": invoice_id, "invoiced_at": now, "tenant_id": invoice.tenant_id},
                )
                if result.rowcount != len(event_ids):
                    raise RuntimeError(
                        f"Only {result.rowcount} of {len(event_ids)} billing events were still unbilled; "
                        f"invoice {invoice_number} aborted"
                    )
        created = self._fetch_one("uuid = :uuid", {"uuid": invoice_uuid})
        if created is None:
            raise RuntimeError(f"Failed to retrieve invoice after create (uuid={invoice_uuid})")
        return created

    def get_by_id(self, tenant_id: str, invoice_id: int) -> Invoice | None:
        return self._fetch_one("tenant_id = :tenant_id AND id = :id", {"tenant_id": tenant_id, "id": invoice_id})

    def get_by_number(self, tenant_id: str, invoice_number: str) -> Invoice | None:
        return self._fetch_one(
            "tenant_id = :tenant_id AND invoice_number = :invoice_number",
            {"tenant_id": tenant_id, "invoice_number": invoice_number},
        )

    def list_invoices(
        self,
        tenant_id: str,
        account_id: int | None = None,
        status: InvoiceStatus | None = None,
        limit: int = 50,
    ) -> list[Invoice]:
        sql = "SELECT * FROM invoices WHERE tenant_id = :tenant_id"
        params: dict = {"tenant_id": tenant_id, "limit": limit}
        if account_id is not None:
            sql += " AND account_id = :account_id"
            params["account_id"] = account_id
        if status is not None:
            sql += " AND status = :status"
            params["status"] = status.value
        sql += " ORDER BY created_at DESC, id DESC LIMIT :limit"
        rows = self.conn.execute(text(sql), params).mappings().fetchall()
        if not rows:
            return []
        placeholders, id_params = _in_clause("id", [row["id"] for row in rows])
        all_lines = (
            self.conn.execute(
                text(f"SELECT * FROM invoice_lines WHERE invoice_id IN ({placeholders}) ORDER BY id"),
                id_params,
            )
            .mappings()
            .fetchall()
        )
        lines_by_invoice: dict[int, list[RowMapping]] = {}
        for line_row in all_lines:
            lines_by_invoice.setdefault(line_row["invoice_id"], []).append(line_row)
        return [self._build_invoice(row, lines_by_invoice.get(row["id"], [])) for row in rows]

    def list_lines(self, tenant_id: str, invoice_id: int) -> list[InvoiceLine]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM invoice_lines WHERE tenant_id = :tenant_id AND invoice_id = :invoice_id ORDER BY id"),
                {"tenant_id": tenant_id, "invoice_id": invoice_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_line(row) for row in rows]

    def mark_sent(self, tenant_id: str, invoice_id: int, sent_at: datetime) -> bool:
        result = self.conn.execute(
            text(
                "UPDATE invoices SET status = 'sent', sent_at = :sent_at "
                "WHERE tenant_id = :tenant_id AND id = :id AND status = 'draft'"
            ),
            {"sent_at": sent_at, "tenant_id": tenant_id, "id": invoice_id},
        )
        self.conn.commit()
        return result.rowcount == 1

    def void(self, tenant_id: str, invoice_id: int, reversals: list[BillingEvent]) -> bool:
        with atomic(self.conn):
            result = self.conn.execute(
                text(
                    "UPDATE invoices SET status = 'void' "
                    "WHERE tenant_id = :tenant_id AND id = :id AND status <> 'void'"
                ),
                {"tenant_id": tenant_id, "id": invoice_id},
            )
            if result.rowcount != 1:
                return False
            for reversal in reversals:
                self.conn.execute(_EVENT_INSERT, _event_params(reversal, str(ULID())))
        return True

    def update_notes(self, tenant_id: str, invoice_id: int, notes: str) -> None:
        self.conn.execute(
            text("UPDATE invoices SET notes = :notes WHERE tenant_id = :tenant_id AND id = :id"),
            {"notes": notes, "tenant_id": tenant_id, "id": invoice_id},
        )
        self.conn.commit()

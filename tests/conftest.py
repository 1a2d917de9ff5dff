"""Root conftest: in-memory SQLite engine and fixtures for the full schema."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import Connection, create_engine, text
from sqlalchemy.engine import Engine

from warebill.db import configure_sqlite
from warebill.models.billing_event import BillingEvent, BillingEventStatus, EventType
from warebill.models.rate import BillingUnit, ServiceRate

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"

# Matches Alembic head: c5a7e9f3b8d4 (create invoices)
SCHEMA_DDL = """
CREATE TABLE accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    name VARCHAR(255) NOT NULL DEFAULT '',
    free_storage_days INTEGER NOT NULL DEFAULT 0,
    storage_billing_day INTEGER NOT NULL DEFAULT 1,
    global_rate_adjust_pct NUMERIC(7, 2) NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE item_classes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    code VARCHAR(20) NOT NULL,
    name VARCHAR(255) NOT NULL DEFAULT '',
    UNIQUE (tenant_id, code)
);

CREATE TABLE items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    sidemark_id INTEGER,
    class_id INTEGER REFERENCES item_classes(id),
    item_code VARCHAR(50) NOT NULL DEFAULT '',
    status VARCHAR(20) NOT NULL DEFAULT 'active',
    received_date DATE,
    released_date DATE
);

CREATE TABLE task_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    task_id INTEGER NOT NULL,
    item_id INTEGER NOT NULL REFERENCES items(id),
    quantity NUMERIC(12, 4)
);

CREATE TABLE shipment_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    shipment_id INTEGER NOT NULL,
    item_id INTEGER REFERENCES items(id),
    expected_class_id INTEGER REFERENCES item_classes(id),
    expected_quantity NUMERIC(12, 4),
    actual_quantity NUMERIC(12, 4)
);

CREATE TABLE service_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    service_code VARCHAR(50) NOT NULL,
    class_code VARCHAR(20),
    service_name VARCHAR(255) NOT NULL,
    billing_unit VARCHAR(10) NOT NULL DEFAULT 'Item',
    service_time_minutes INTEGER,
    rate NUMERIC(12, 2) NOT NULL DEFAULT 0,
    taxable INTEGER NOT NULL DEFAULT 1,
    uses_class_pricing INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    notes TEXT,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE storage_daily_rollups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    item_id INTEGER NOT NULL REFERENCES items(id),
    account_id INTEGER NOT NULL,
    sidemark_id INTEGER,
    rollup_date DATE NOT NULL,
    class_id INTEGER,
    daily_rate NUMERIC(12, 4) NOT NULL,
    created_at DATETIME NOT NULL,
    UNIQUE (tenant_id, item_id, rollup_date)
);

CREATE TABLE billing_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    tenant_id VARCHAR(36) NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    item_id INTEGER,
    sidemark_id INTEGER,
    class_id INTEGER,
    task_id INTEGER,
    shipment_id INTEGER,
    event_type VARCHAR(50) NOT NULL,
    charge_type VARCHAR(50) NOT NULL,
    description TEXT,
    quantity NUMERIC(12, 4) NOT NULL DEFAULT 1,
    unit_rate NUMERIC(12, 4) NOT NULL DEFAULT 0,
    total_amount NUMERIC(12, 4) NOT NULL DEFAULT 0,
    status VARCHAR(10) NOT NULL DEFAULT 'unbilled',
    has_rate_error INTEGER NOT NULL DEFAULT 0,
    rate_error_message TEXT,
    invoice_id INTEGER,
    invoiced_at DATETIME,
    occurred_at DATETIME NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    dedup_key VARCHAR(191) UNIQUE,
    created_by INTEGER,
    created_at DATETIME NOT NULL
);

CREATE TABLE invoice_counters (
    tenant_id VARCHAR(36) PRIMARY KEY,
    next_number INTEGER NOT NULL DEFAULT 1,
    updated_at DATETIME NOT NULL
);

CREATE TABLE invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    tenant_id VARCHAR(36) NOT NULL,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    sidemark VARCHAR(255),
    invoice_number VARCHAR(20) NOT NULL,
    invoice_type VARCHAR(20) NOT NULL,
    period_start DATE NOT NULL,
    period_end DATE NOT NULL,
    status VARCHAR(10) NOT NULL DEFAULT 'draft',
    subtotal NUMERIC(12, 2) NOT NULL DEFAULT 0,
    tax_total NUMERIC(12, 2) NOT NULL DEFAULT 0,
    total NUMERIC(12, 2) NOT NULL DEFAULT 0,
    notes TEXT,
    created_by INTEGER,
    created_at DATETIME NOT NULL,
    sent_at DATETIME,
    UNIQUE (tenant_id, invoice_number)
);

CREATE TABLE invoice_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id VARCHAR(36) NOT NULL,
    invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
    billing_event_id INTEGER REFERENCES billing_events(id),
    item_id INTEGER,
    service_code VARCHAR(50) NOT NULL,
    description TEXT,
    quantity NUMERIC(12, 4) NOT NULL,
    unit_rate NUMERIC(12, 4) NOT NULL,
    line_total NUMERIC(12, 2) NOT NULL,
    created_at DATETIME NOT NULL
)
"""


def create_schema(conn: Connection) -> None:
    for statement in SCHEMA_DDL.strip().split(";"):
        stmt = statement.strip()
        if stmt:
            conn.execute(text(stmt))
    conn.commit()


@pytest.fixture()
def db_engine() -> Engine:
    engine = create_engine("sqlite:///:memory:")
    configure_sqlite(engine)
    return engine


@pytest.fixture()
def db_connection(db_engine: Engine) -> Connection:
    conn = db_engine.connect()
    create_schema(conn)
    yield conn
    conn.close()


def _insert(conn: Connection, table: str, values: dict) -> int:
    columns = ", ".join(values)
    placeholders = ", ".join(f":{key}" for key in values)
    result = conn.execute(text(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"), values)
    conn.commit()
    return result.lastrowid


class Seeder:
    """Writes the directory rows (accounts, classes, items, work orders) that billing reads."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def account(self, tenant_id: str = TENANT, free_storage_days: int = 0, adjust_pct: str = "0", **extra) -> int:
        values = dict(
            tenant_id=tenant_id,
            name="Acme Furniture",
            free_storage_days=free_storage_days,
            storage_billing_day=1,
            global_rate_adjust_pct=adjust_pct,
        )
        values.update(extra)
        return _insert(self.conn, "accounts", values)

    def item_class(self, code: str, name: str = "", tenant_id: str = TENANT) -> int:
        return _insert(self.conn, "item_classes", dict(tenant_id=tenant_id, code=code, name=name or code))

    def item(
        self,
        account_id: int,
        received: date | None,
        class_id: int | None = None,
        released: date | None = None,
        tenant_id: str = TENANT,
        item_code: str = "ITM-1",
        status: str = "active",
        sidemark_id: int | None = None,
    ) -> int:
        return _insert(
            self.conn,
            "items",
            dict(
                tenant_id=tenant_id,
                account_id=account_id,
                sidemark_id=sidemark_id,
                class_id=class_id,
                item_code=item_code,
                status=status,
                received_date=received.isoformat() if received else None,
                released_date=released.isoformat() if released else None,
            ),
        )

    def task_item(self, task_id: int, item_id: int, quantity: str | None = None, tenant_id: str = TENANT) -> int:
        return _insert(
            self.conn,
            "task_items",
            dict(tenant_id=tenant_id, task_id=task_id, item_id=item_id, quantity=quantity),
        )

    def shipment_item(
        self,
        shipment_id: int,
        item_id: int | None = None,
        expected_class_id: int | None = None,
        expected_quantity: str | None = None,
        actual_quantity: str | None = None,
        tenant_id: str = TENANT,
    ) -> int:
        return _insert(
            self.conn,
            "shipment_items",
            dict(
                tenant_id=tenant_id,
                shipment_id=shipment_id,
                item_id=item_id,
                expected_class_id=expected_class_id,
                expected_quantity=expected_quantity,
                actual_quantity=actual_quantity,
            ),
        )


@pytest.fixture()
def seed(db_connection: Connection) -> Seeder:
    return Seeder(db_connection)


def _sample_rate(**overrides) -> ServiceRate:
    defaults = dict(
        tenant_id=TENANT,
        service_code="STORAGE",
        class_code=None,
        service_name="Storage",
        billing_unit=BillingUnit.DAY,
        rate=Decimal("45.00"),
    )
    defaults.update(overrides)
    return ServiceRate(**defaults)


def _sample_event(account_id: int = 1, **overrides) -> BillingEvent:
    defaults = dict(
        tenant_id=TENANT,
        account_id=account_id,
        event_type=EventType.SERVICE_SCAN,
        charge_type="INSP",
        description="Inspection - ITM-1",
        quantity=Decimal("1"),
        unit_rate=Decimal("35.00"),
        total_amount=Decimal("35.00"),
        status=BillingEventStatus.UNBILLED,
    )
    defaults.update(overrides)
    return BillingEvent(**defaults)


@pytest.fixture()
def sample_rate():
    return _sample_rate


@pytest.fixture()
def sample_event():
    return _sample_event

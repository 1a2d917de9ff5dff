import pytest
from sqlalchemy import Connection

from warebill.repositories.sqlalchemy import (
    SQLAlchemyAccountRepository,
    SQLAlchemyBillingEventRepository,
    SQLAlchemyInvoiceCounterRepository,
    SQLAlchemyInvoiceRepository,
    SQLAlchemyItemRepository,
    SQLAlchemyServiceRateRepository,
    SQLAlchemyStorageRollupRepository,
    SQLAlchemyWorkOrderRepository,
)


@pytest.fixture()
def rate_repo(db_connection: Connection) -> SQLAlchemyServiceRateRepository:
    return SQLAlchemyServiceRateRepository(db_connection)


@pytest.fixture()
def account_repo(db_connection: Connection) -> SQLAlchemyAccountRepository:
    return SQLAlchemyAccountRepository(db_connection)


@pytest.fixture()
def item_repo(db_connection: Connection) -> SQLAlchemyItemRepository:
    return SQLAlchemyItemRepository(db_connection)


@pytest.fixture()
def work_order_repo(db_connection: Connection) -> SQLAlchemyWorkOrderRepository:
    return SQLAlchemyWorkOrderRepository(db_connection)


@pytest.fixture()
def rollup_repo(db_connection: Connection) -> SQLAlchemyStorageRollupRepository:
    return SQLAlchemyStorageRollupRepository(db_connection)


@pytest.fixture()
def event_repo(db_connection: Connection) -> SQLAlchemyBillingEventRepository:
    return SQLAlchemyBillingEventRepository(db_connection)


@pytest.fixture()
def counter_repo(db_connection: Connection) -> SQLAlchemyInvoiceCounterRepository:
    return SQLAlchemyInvoiceCounterRepository(db_connection)


@pytest.fixture()
def invoice_repo(db_connection: Connection) -> SQLAlchemyInvoiceRepository:
    return SQLAlchemyInvoiceRepository(db_connection)

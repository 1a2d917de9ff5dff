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


def get_service_rate_repository() -> ServiceRateRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyServiceRateRepository

    return SQLAlchemyServiceRateRepository(get_connection())


def get_account_repository() -> AccountRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyAccountRepository

    return SQLAlchemyAccountRepository(get_connection())


def get_item_repository() -> ItemRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyItemRepository

    return SQLAlchemyItemRepository(get_connection())


def get_work_order_repository() -> WorkOrderRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyWorkOrderRepository

    return SQLAlchemyWorkOrderRepository(get_connection())


def get_storage_rollup_repository() -> StorageRollupRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyStorageRollupRepository

    return SQLAlchemyStorageRollupRepository(get_connection())


def get_billing_event_repository() -> BillingEventRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyBillingEventRepository

    return SQLAlchemyBillingEventRepository(get_connection())


def get_invoice_counter_repository() -> InvoiceCounterRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyInvoiceCounterRepository

    return SQLAlchemyInvoiceCounterRepository(get_connection())


def get_invoice_repository() -> InvoiceRepository:
    from warebill.db import get_connection
    from warebill.repositories.sqlalchemy import SQLAlchemyInvoiceRepository

    return SQLAlchemyInvoiceRepository(get_connection())

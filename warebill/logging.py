import contextvars
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

from warebill.settings import settings

TEXT_FORMAT = "%(levelname)s %(name)s [%(tenant_id)s]: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(tenant_id)s %(message)s"

_tenant: contextvars.ContextVar[str] = contextvars.ContextVar("tenant_id", default="-")


class TenantFilter(logging.Filter):
    """Stamp every record with the tenant currently being processed."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = _tenant.get()
        return True


@contextmanager
def tenant_context(tenant_id: str) -> Iterator[None]:
    token = _tenant.set(tenant_id)
    try:
        yield
    finally:
        _tenant.reset(token)


def configure_logging() -> None:
    """Install a single stderr handler on the root logger.

    Call ``reconfigure()`` again after Alembic has run, since its
    ``fileConfig`` replaces the root handlers.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(TenantFilter())
    if settings.log_json:
        from pythonjsonlogger.json import JsonFormatter

        handler.setFormatter(
            JsonFormatter(
                fmt=JSON_FORMAT,
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Per-statement engine logging drowns out the accrual batch output.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


reconfigure = configure_logging

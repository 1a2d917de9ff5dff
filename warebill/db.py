import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from alembic.config import Config
from sqlalchemy import Connection, create_engine, event
from sqlalchemy.engine import Engine

from alembic import command
from warebill.settings import settings

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_connection: Connection | None = None


def configure_sqlite(engine: Engine, begin: str = "BEGIN") -> None:
    """Enforce foreign keys and let SQLAlchemy issue BEGIN/SAVEPOINT itself.

    pysqlite's implicit transactions break ``begin_nested()``, which the
    insert-if-absent paths rely on. Use ``begin="BEGIN IMMEDIATE"`` when more
    than one connection allocates invoice numbers.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        if settings.db_url.startswith("sqlite"):
            _engine = create_engine(settings.db_url, connect_args={"timeout": 30})
            configure_sqlite(_engine, begin="BEGIN IMMEDIATE")
        else:
            _engine = create_engine(settings.db_url, pool_pre_ping=True, pool_recycle=1800)
        logger.info("Database engine created (%s)", _engine.dialect.name)
    return _engine


def get_connection() -> Connection:
    """Shared connection for the batch entry points.

    Anything serving concurrent callers should open its own connection from
    ``get_engine()`` and build repositories around it instead.
    """
    global _connection
    if _connection is None:
        _connection = get_engine().connect()
        logger.debug("Shared DB connection opened")
    return _connection


@contextmanager
def atomic(conn: Connection) -> Iterator[Connection]:
    """Run a block as one unit of work on ``conn``.

    Commits when the block exits cleanly. On any exception everything written
    on the connection since the last commit is rolled back and the exception
    is re-raised.
    """
    try:
        yield conn
    except Exception:
        conn.rollback()
        logger.warning("Transaction rolled back")
        raise
    conn.commit()


def _get_alembic_config() -> Config:
    """alembic.ini from the project root, else from the working directory."""
    ini_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini")
    if not os.path.exists(ini_path):
        ini_path = os.path.join(os.getcwd(), "alembic.ini")
    return Config(ini_path)


def initialize_db() -> None:
    """Upgrade the schema to the latest Alembic revision."""
    cfg = _get_alembic_config()
    logger.info("Upgrading schema to head")
    command.upgrade(cfg, "head")
    logger.info("Schema up to date")

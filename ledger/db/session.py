"""Database session management.

``LedgerStore`` is the single shared mutable resource of the system. It is
constructed once per process and handed to every service; nothing keeps a
module-level engine.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import (
    DBAPIError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger.config import Config
from ledger.db.models import Base
from ledger.errors import StoreUnavailable
from ledger.log import get_logger

logger = get_logger(__name__)


def _enable_sqlite_write_serialization(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first DML statement, so two transactions
    can both read a row before either writes it. ``BEGIN IMMEDIATE`` gives
    SQLite the same read-modify-write serialization that ``SELECT ... FOR
    UPDATE`` gives PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def is_store_unavailable(error: BaseException) -> bool:
    """True for connection-level failures, false for constraint and data errors."""
    if isinstance(error, (OperationalError, InterfaceError, PoolTimeoutError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def create_ledger_engine(config: Config) -> Engine:
    """Create the SQLAlchemy engine for the configured database URL.

    Args:
        config: Configuration object with db_url

    Returns:
        SQLAlchemy Engine instance
    """
    url = make_url(config.db_url)

    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        _enable_sqlite_write_serialization(engine)
        return engine

    return create_engine(
        url,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_pre_ping=True,  # Verify connections before using
        echo=False,
    )


class LedgerStore:
    """Database connection manager."""

    def __init__(self, config: Config):
        """Initialize database connection pool.

        Args:
            config: Configuration object with db_url
        """
        self.config = config
        self.engine = create_ledger_engine(config)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(f"Ledger store initialized ({self.engine.url.get_backend_name()})")

    def create_tables(self) -> None:
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Ledger tables created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("Ledger tables dropped")

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for ledger operations.

        Commits on success. Any exception rolls the whole transaction back
        before it propagates; connection-level failures surface as
        ``StoreUnavailable``.

        Yields:
            SQLAlchemy Session

        Example:
            with store.session() as session:
                # Use session
                pass
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            if is_store_unavailable(e):
                logger.warning(f"Transaction rolled back, store unavailable: {e}")
                raise StoreUnavailable(f"Ledger store unavailable: {e}") from e
            raise
        finally:
            session.close()

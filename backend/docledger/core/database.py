"""
Database Configuration
"""
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import Callable, Generator, TypeVar
import logging
import time

from docledger.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Get the properly formatted database URL
db_url = settings.database_url

# Create engine
engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    echo=settings.DEBUG
)

if engine.dialect.name == "sqlite":
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; let SQLAlchemy emit it
    @event.listens_for(engine, "connect")
    def _sqlite_on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_on_begin(conn):
        conn.exec_driver_sql("BEGIN")

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Rolls back on error and ensures the session is closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def is_lock_conflict(error: OperationalError) -> bool:
    return "database is locked" in str(error.orig)


def commit_unit_of_work(db: Session, work: Callable[[], T]) -> T:
    """
    Run ``work`` and commit it.

    On SQLite a transaction that has already read cannot wait for the write
    lock held by another transaction; it fails with "database is locked"
    until it gives up its read lock. The whole unit of work is then rolled
    back and run again, so ``work`` must start from a clean session.
    """
    attempts = settings.DB_LOCK_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except OperationalError as e:
            db.rollback()
            if not is_lock_conflict(e) or attempt == attempts:
                raise
            logger.warning(f"Write lock conflict (attempt {attempt}/{attempts}), retrying unit of work")
            time.sleep(settings.DB_LOCK_RETRY_SECONDS * attempt)


def init_db():
    """Initialize database tables"""
    # Import all models to register them with Base
    from docledger.models import (  # noqa: F401
        Document, ProcessingQueueItem, ChartOfAccount, JournalEntry,
        JournalEntryLine, DayBookEntry, EntryNumberSequence, BankAccount,
        BankTransaction, Customer, Invoice, InvoiceItem, Quotation,
        QuotationItem
    )
    Base.metadata.create_all(bind=engine)

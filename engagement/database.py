"""
Database Configuration and Session Management

Defines the relational schema of the engagement ledger (providers, quote
requests, unlocks, transactions, messages) and the session scope every
service operation runs in.

On SQLite every transaction is opened with BEGIN IMMEDIATE so writers are
serialised; on PostgreSQL the ledger relies on row locks taken with
SELECT ... FOR UPDATE.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .config import Config
from .errors import EngagementError
from .models import RequestStatus, TransactionType, UserRole

logger = logging.getLogger(__name__)


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    role: Mapped[UserRole] = mapped_column(SAEnum(UserRole, native_enum=False, length=20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class ProviderRecord(Base):
    __tablename__ = "providers"
    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_provider_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), unique=True, index=True)
    business_name: Mapped[str] = mapped_column(String(200))
    # Cached projection of the transaction log, only written by the ledger store
    token_balance: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class QuoteRequestRecord(Base):
    __tablename__ = "quote_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organizer_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    provider_id: Mapped[str] = mapped_column(ForeignKey("providers.id"), index=True)
    status: Mapped[RequestStatus] = mapped_column(
        SAEnum(RequestStatus, native_enum=False, length=20), default=RequestStatus.PENDING
    )
    contact_name: Mapped[str] = mapped_column(String(100))
    contact_email: Mapped[str] = mapped_column(String(320))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    event_type: Mapped[str] = mapped_column(String(100))
    event_date: Mapped[Optional[date]] = mapped_column(Date)
    guest_count: Mapped[Optional[int]] = mapped_column(Integer)
    budget_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    budget_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    message: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)


class UnlockRecord(Base):
    __tablename__ = "unlocks"
    __table_args__ = (
        UniqueConstraint("provider_id", "request_id", name="uq_unlock_provider_request"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider_id: Mapped[str] = mapped_column(ForeignKey("providers.id"), index=True)
    request_id: Mapped[str] = mapped_column(ForeignKey("quote_requests.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class TransactionRecord(Base):
    __tablename__ = "token_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider_id: Mapped[str] = mapped_column(ForeignKey("providers.id"), index=True)
    type: Mapped[TransactionType] = mapped_column(SAEnum(TransactionType, native_enum=False, length=20))
    amount: Mapped[int] = mapped_column(Integer)
    balance_after: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(500))
    request_id: Mapped[Optional[str]] = mapped_column(ForeignKey("quote_requests.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, index=True)


class MessageRecord(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    request_id: Mapped[str] = mapped_column(ForeignKey("quote_requests.id"), index=True)
    author_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


def _install_sqlite_locking(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself instead of pysqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    url = url or Config.DATABASE_URL
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": Config.SQLITE_BUSY_TIMEOUT},
        )
        _install_sqlite_locking(engine)
        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True, pool_recycle=3600)


class Database:
    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.engine = create_db_engine(url, echo=echo)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def managed_session(self) -> Iterator[Session]:
        """One unit of work: commit on success, roll back everything on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except EngagementError:
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Database session rolled back: {e}", exc_info=True)
            raise
        finally:
            session.close()


_default_database: Optional[Database] = None


def get_database() -> Database:
    global _default_database
    if _default_database is None:
        _default_database = Database()
        _default_database.create_all()
        logger.info("Database initialised")
    return _default_database

"""SQLAlchemy models for banksync database."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from banksync.utils.date_parser import utcnow

Base = declarative_base()


class Transaction(Base):
    """Transaction model.

    external_id is nullable and unique; most databases (SQLite and PostgreSQL
    included) allow any number of NULLs under a unique constraint.
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=True)
    owner_id = Column(String, nullable=False, index=True)
    account_id = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default="SETTLED")
    raw_payload = Column(JSON, nullable=True)
    sync_status = Column(String, nullable=False, default="pending", index=True)
    source = Column(String, nullable=False, default="manual")
    processed = Column(Boolean, nullable=False, default=False)
    synced_category = Column(String, nullable=True)
    synced_tags = Column(JSON, nullable=False, default=list)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class WebhookEvent(Base):
    """Inbound notification audit record. Never deleted."""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String, nullable=False)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    external_transaction_id = Column(String, nullable=True, index=True)
    delivery_id = Column(String, unique=True, nullable=True)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    received_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)


class AutotagRule(Base):
    """Auto-tag rule model."""

    __tablename__ = "autotag_rules"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    search_criteria = Column(JSON, nullable=False)
    apply_criteria = Column(JSON, nullable=False)
    matches = Column(Integer, nullable=False, default=0)
    last_run = Column(DateTime, nullable=True)
    last_matched = Column(DateTime, nullable=True)
    performance = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class SyncQueueItem(Base):
    """Outbound sync work item."""

    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False)
    field = Column(String, nullable=False)
    new_value = Column(Text, nullable=False)
    old_value = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="pending")
    error = Column(Text, nullable=True)
    scheduled_for = Column(DateTime, default=utcnow, nullable=False)
    lease_owner = Column(String, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sync_queue_status_scheduled", "status", "scheduled_for"),
        Index("ix_sync_queue_transaction", "transaction_id", "status"),
    )


class ApiLog(Base):
    """Append-only record of outbound API calls."""

    __tablename__ = "api_logs"

    id = Column(Integer, primary_key=True)
    endpoint = Column(String, nullable=False)
    method = Column(String, nullable=False)
    status_code = Column(Integer, nullable=True)
    latency_ms = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    rate_limited = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ApiUsage(Base):
    """Hourly API call counter."""

    __tablename__ = "api_usage"

    hour_window = Column(DateTime, primary_key=True)
    calls_used = Column(Integer, nullable=False, default=0)
    calls_limit = Column(Integer, nullable=False, default=1000)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Setting(Base):
    """Opaque per-owner key/value settings (API tokens and preferences)."""

    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String, nullable=False)
    key = Column(String, nullable=False)
    value_text = Column(Text, nullable=True)
    value_encrypted = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("owner_id", "key", name="uq_settings_owner_key"),)


class SyncProgress(Base):
    """Backfill progress per owner."""

    __tablename__ = "sync_progress"

    owner_id = Column(String, primary_key=True)
    cursor = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="idle")
    total_synced = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create a SQLAlchemy session factory and make sure tables exist."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Pooled connections are handed to worker threads
        connect_args["check_same_thread"] = False
    engine: Engine = create_engine(database_url, echo=False, connect_args=connect_args)
    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)

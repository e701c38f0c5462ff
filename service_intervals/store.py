"""
Relational store for the interval engine.

Tables are SQLAlchemy Core definitions so the same code runs on SQLite
(default, tests) and PostgreSQL. All state lives here; nothing is cached
in process.
"""

import hashlib
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

metadata = MetaData()

maintenance_kinds = Table(
    "maintenance_kinds",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("code", String(64), nullable=False, unique=True),
    Column("name", String(128), nullable=False),
    Column("can_schedule", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True),
)

# Kind-level defaults; mileage is always in km.
interval_defaults = Table(
    "interval_defaults",
    metadata,
    Column("kind_id", Integer, primary_key=True, autoincrement=False),
    Column("interval_type", Integer, nullable=False),
    Column("mileage_interval", Float, nullable=False, default=0),
    Column("days_interval", Integer, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
)

# Per-vehicle overrides; mileage kept as entered and normalized to km.
interval_overrides = Table(
    "interval_overrides",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vehicle_id", String(64), nullable=False),
    Column("kind_id", Integer, nullable=False),
    Column("interval_type", Integer, nullable=False),
    Column("mileage_interval", Float, nullable=False, default=0),
    Column("mileage_interval_km", Float, nullable=False, default=0),
    Column("distance_entered_in", String(8), nullable=False, default="km"),
    Column("days_interval", Integer, nullable=False, default=0),
    Column("removed_at", DateTime, nullable=True),
    UniqueConstraint("vehicle_id", "kind_id", name="uq_interval_overrides_vehicle_kind"),
)

vehicles = Table(
    "vehicles",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("account_id", String(64), nullable=False, index=True),
    Column("is_active", Boolean, nullable=False, default=True),
)

account_preferences = Table(
    "account_preferences",
    metadata,
    Column("account_id", String(64), primary_key=True),
    Column("distance_unit", String(8), nullable=False, default="km"),
    Column("notify_in_days", Integer, nullable=True),
    Column("notify_in_mileage", Float, nullable=True),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("vehicle_id", String(64), nullable=False),
    Column("kind_id", Integer, nullable=False),
    Column("service_date", Date, nullable=False),
    Column("odometer_km", Float, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("removed_at", DateTime, nullable=True),
    Index("ix_expenses_vehicle_kind", "vehicle_id", "kind_id"),
)

# Derived state: one row per tracked (vehicle, kind) pair with history.
service_intervals = Table(
    "service_intervals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("vehicle_id", String(64), nullable=False, index=True),
    Column("kind_id", Integer, nullable=False),
    Column("interval_type", Integer, nullable=False),
    Column("mileage_interval_km", Float, nullable=False, default=0),
    Column("days_interval", Integer, nullable=False, default=0),
    Column("max_service_date", Date, nullable=False),
    Column("max_odometer_km", Float, nullable=True),
    Column("next_due_date", Date, nullable=True),
    Column("next_due_odometer_km", Float, nullable=True),
    UniqueConstraint("vehicle_id", "kind_id", name="uq_service_intervals_vehicle_kind"),
)

_GLOBAL_LOCK_KEY = 0x5E41CE


def qualifying_expense_filter():
    """WHERE clause for expenses that count towards a next-due calculation."""
    return (expenses.c.is_active.is_(True)) & (expenses.c.removed_at.is_(None))


def upsert_insert(conn: Connection):
    """Dialect insert construct that supports ON CONFLICT DO UPDATE."""
    if conn.dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


def _advisory_key(vehicle_id: str, kind_id: int) -> int:
    digest = hashlib.blake2b(f"{vehicle_id}/{kind_id}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _serialize_sqlite_writers(engine) -> None:
    """Make every SQLite transaction take the write lock up front."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy instead of pysqlite.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Store:
    """Engine wrapper handing out one transaction per operation."""

    def __init__(self, database_url: str, echo: bool = False):
        options = {"echo": echo}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        self.engine = create_engine(database_url, **options)
        if self.dialect == "sqlite":
            _serialize_sqlite_writers(self.engine)
        logger.debug("Store opened on %s", self.engine.url.render_as_string())

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def drop_schema(self) -> None:
        metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """All-or-nothing unit of work; rolls back on any exception."""
        with self.engine.begin() as conn:
            yield conn

    def lock_shared(self, conn: Connection) -> None:
        """
        Keep a full rebuild out until commit, without blocking other writers.

        SQLite needs nothing here or below: BEGIN IMMEDIATE already admits a
        single writer.
        """
        if self.dialect != "postgresql":
            return
        conn.execute(
            text("SELECT pg_advisory_xact_lock_shared(:key)"), {"key": _GLOBAL_LOCK_KEY}
        )

    def lock_pair(self, conn: Connection, vehicle_id: str, kind_id: int) -> None:
        """Serialize writers of one (vehicle, kind) pair until commit."""
        if self.dialect != "postgresql":
            return
        self.lock_shared(conn)
        conn.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": _advisory_key(vehicle_id, kind_id)},
        )

    def lock_all(self, conn: Connection) -> None:
        """Exclusive lock for a system-wide rebuild."""
        if self.dialect != "postgresql":
            return
        conn.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _GLOBAL_LOCK_KEY})

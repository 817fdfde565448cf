"""
Module: signflow_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, portable UUID and UTC datetime column types,
    and the TrackedBase mixin for audit timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - UTC timestamps: UTCDateTime rejects naive datetimes on write and always
      returns timezone-aware UTC values on read, on PostgreSQL and SQLite alike
      (SQLite has no native timezone support).
    - Clock-owned timestamps: TrackedBase has no server defaults and no
      onupdate hooks.  Services set created_at/updated_at from the injected
      Clock so that expiry and retention decisions are reproducible.

Audit relevance:
    TrackedBase.created_at, updated_at, created_by and updated_by form the
    basic audit metadata for every tracked entity.  updated_at/updated_by are
    allowed to change even on records whose status is absorbing.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(str(value))
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime that always round-trips as UTC.

    Contract:
        Bound values must be timezone-aware; they are normalised to UTC.
        Loaded values are returned with ``tzinfo=timezone.utc`` even where
        the backend (SQLite) drops the offset.

    Raises:
        ValueError: If a naive datetime is bound.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime {value!r} cannot be stored; pass a timezone-aware value")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to UTCDateTime -- always timezone-aware.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Contract:
        Callers set created_at and updated_at from the injected Clock on
        INSERT, and updated_at/updated_by on every state-changing UPDATE.

    Guarantees:
        - created_by is required (NOT NULL) -- every record has a creator.
        - updated_by is nullable (not set on initial creation).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def touch(self, now: datetime, actor: str) -> None:
        """Record a modification at ``now`` by ``actor``."""
        self.updated_at = now
        self.updated_by = actor


# Re-export UUID for convenience
UUID = PyUUID

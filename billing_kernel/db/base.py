"""
Module: billing_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the opaque string primary key convention, the type annotation
    map for consistent column types, and the TrackedBase mixin for audit
    timestamps.
Architecture position: Kernel > DB. Lowest-level import target within the
    persistence layer. MUST NOT import from services or engines.

Invariants enforced:
    - Opaque ids: every document table is keyed by the store-assigned string
      id, never by an autoincrement integer.
    - Money columns are integer cents (BigInteger); no floats or Numeric
      rounding anywhere in storage.
    - Audit timestamps: TrackedBase provides recorded_at and updated_at.
"""

from datetime import datetime
from typing import ClassVar

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Opaque document identifiers
ID_LENGTH = 64


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is a String(64) primary key supplied by the caller.
        - int maps to BigInteger -- cents and versions never overflow.
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        int: BigInteger,
        datetime: DateTime(timezone=True),
    }

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)


class TrackedBase(Base):
    """
    Abstract base with storage audit timestamps.

    These are storage metadata, distinct from a document's own business
    ``created_at``:
        - recorded_at is set to server NOW() on INSERT and never changes.
        - updated_at auto-updates on every UPDATE.
    """

    __abstract__ = True

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

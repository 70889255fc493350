"""SQLAlchemy ORM models — the observed table.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Alembic migrations create the table plus the NOTIFY trigger that feeds
PgNotifyChangeSource (see migrations/versions).

The core never queries through this model — SnapshotReader selects by
table name so the observed table stays configurable. The model exists for
migrations and for seeding data in tests and scripts.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Stock(Base):
    """A stock quote. ``code`` is surfaced to clients as ``Symbol``."""

    __tablename__ = "stocks"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

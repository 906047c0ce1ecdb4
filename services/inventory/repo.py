"""SQLAlchemy repository for the stock ledger.

One ``stock`` row per product id. Reservations are a single conditional
``UPDATE ... WHERE quantity >= :qty`` so concurrent requests can never
oversell; releases are an atomic increment. The connection string comes
from ``DATABASE_URL`` or, when unset, from the ``DB_*`` variables.
"""

import os
from contextlib import contextmanager
from enum import Enum

from sqlalchemy import Integer, String, create_engine, update
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL", f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)
engine = create_engine(DATABASE_URL, pool_pre_ping=True)


class Base(DeclarativeBase):
    pass


class Stock(Base):
    """Available units of one product (keyed by the storefront's product UUID)."""

    __tablename__ = "stock"
    product_id = mapped_column(String(36), primary_key=True)
    quantity = mapped_column(Integer, nullable=False, default=0)


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    with Session(engine) as s:
        yield s


class ReserveOutcome(str, Enum):
    RESERVED = "reserved"
    INSUFFICIENT = "insufficient"
    NOT_FOUND = "not_found"


class InventoryRepo:
    def get(self, product_id: str) -> int | None:
        """Current quantity, or None for an unknown product."""
        with get_session() as s:
            obj = s.get(Stock, product_id)
            return obj.quantity if obj else None

    def set(self, product_id: str, quantity: int) -> None:
        """Set the stock level, creating the row when missing."""
        with get_session() as s:
            s.merge(Stock(product_id=product_id, quantity=quantity))
            s.commit()

    def reserve(self, product_id: str, quantity: int) -> ReserveOutcome:
        """Decrement ``quantity`` units when at least that many are available."""
        with get_session() as s:
            result = s.execute(
                update(Stock)
                .where(Stock.product_id == product_id, Stock.quantity >= quantity)
                .values(quantity=Stock.quantity - quantity)
            )
            if result.rowcount == 1:
                s.commit()
                return ReserveOutcome.RESERVED
            s.rollback()
            if s.get(Stock, product_id) is None:
                return ReserveOutcome.NOT_FOUND
            return ReserveOutcome.INSUFFICIENT

    def release(self, product_id: str, quantity: int) -> bool:
        """Increment stock; False for an unknown product."""
        with get_session() as s:
            result = s.execute(
                update(Stock).where(Stock.product_id == product_id).values(quantity=Stock.quantity + quantity)
            )
            s.commit()
            return result.rowcount == 1

"""Inventory transaction ledger - immutable audit trail for stock changes.

Once created, ledger rows cannot be modified or deleted. Corrections must
be made via new offsetting rows. The unique key over
(restaurant_id, reference_id, transaction_type, line_no) doubles as the
idempotency index for POS sale deductions.
"""

from __future__ import annotations

import enum
import hashlib
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import (
    DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, Uuid, event, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockcore.db.base import Base


# Matches the Numeric(14, 6) columns
LEDGER_QUANTUM = Decimal("0.000001")


def ledger_amount(value) -> Decimal:
    """Round to the scale ledger amounts are stored at."""
    return Decimal(str(value)).quantize(LEDGER_QUANTUM, rounding=ROUND_HALF_UP)


class TransactionType(str, enum.Enum):
    """Kinds of ledger rows written by deductions."""

    USAGE = "usage"  # POS sale, counts toward COGS
    TRANSFER = "transfer"  # Consumed by a prep/production run
    ADJUSTMENT = "adjustment"
    WASTE = "waste"


class ImmutableLedgerError(Exception):
    """Raised when code tries to update or delete a ledger row."""


class InventoryTransaction(Base):
    """One append-only stock change for one product."""

    __tablename__ = "inventory_transactions"
    __table_args__ = (
        UniqueConstraint(
            "restaurant_id", "reference_id", "transaction_type", "line_no",
            name="uq_inventory_txn_reference_line",
        ),
        Index("idx_inventory_txn_restaurant_date", "restaurant_id", "created_at"),
        Index("idx_inventory_txn_order", "restaurant_id", "external_order_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    recipe_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    external_order_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reference_id: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False, default=TransactionType.USAGE.value)
    # Signed amounts, negative for usage
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 6), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=0)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 6), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # purchase unit at the time

    # Recipe-side amount the row was converted from
    recipe_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 6), nullable=True)
    recipe_unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    conversion_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Sale time (UTC); recorded_at is when the row was written
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product")
    recipe: Mapped[Optional["Recipe"]] = relationship("Recipe")

    def __init__(self, **kwargs):
        if kwargs.get("created_at") is None:
            kwargs["created_at"] = datetime.now(timezone.utc)
        kwargs.setdefault("line_no", 0)
        kwargs.setdefault("unit_cost", Decimal("0"))
        for key in ("quantity", "total_cost", "recipe_quantity"):
            if kwargs.get(key) is not None:
                kwargs[key] = ledger_amount(kwargs[key])
        txn_type = kwargs.get("transaction_type") or TransactionType.USAGE
        kwargs["transaction_type"] = TransactionType(txn_type).value
        super().__init__(**kwargs)
        self.entry_hash = self._compute_hash()

    def _compute_hash(self) -> str:
        """SHA-256 over the identifying fields, stable across a DB round trip."""
        created = self.created_at
        if created.tzinfo is not None:
            created = created.astimezone(timezone.utc).replace(tzinfo=None)
        data = (
            f"{self.restaurant_id}|{self.product_id}|{self.reference_id}|"
            f"{self.transaction_type}|{self.line_no}|"
            f"{Decimal(str(self.quantity)):.6f}|{Decimal(str(self.total_cost)):.6f}|"
            f"{created.isoformat()}"
        )
        return hashlib.sha256(data.encode()).hexdigest()

    def verify_integrity(self) -> bool:
        """Verify the row has not been tampered with."""
        return self.entry_hash == self._compute_hash()


@event.listens_for(InventoryTransaction, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableLedgerError(f"Inventory transaction {target.id} is immutable")


@event.listens_for(InventoryTransaction, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableLedgerError(f"Inventory transaction {target.id} cannot be deleted")


# Forward references
from stockcore.models.product import Product
from stockcore.models.recipe import Recipe

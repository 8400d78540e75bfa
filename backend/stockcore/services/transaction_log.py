"""
Transaction Log

Append-only writer for inventory transactions. The log doubles as the
idempotency ledger: a sale line is "already processed" exactly when rows
carrying its reference id exist, and a unique index on
(restaurant_id, reference_id, transaction_type, line_no) fences concurrent
duplicates at commit time.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from stockcore.models.inventory_transaction import InventoryTransaction, TransactionType
from stockcore.models.product import Product
from stockcore.schemas.deduction import DeductionResult, IngredientDeduction

logger = logging.getLogger(__name__)


def build_reference_id(
    recipe_id: uuid.UUID,
    pos_item_name: str,
    sale_date: date,
    external_order_id: Optional[str] = None,
) -> str:
    """Idempotency key for one sale line against one recipe."""
    if external_order_id:
        return f"{external_order_id}_{recipe_id}"
    return f"{pos_item_name}_{sale_date.isoformat()}_{recipe_id}"


class TransactionLog:
    """Reads and appends inventory transactions for one session."""

    def __init__(self, db: Session):
        self.db = db

    def find_entries(
        self,
        restaurant_id: uuid.UUID,
        reference_id: str,
        transaction_type: str = TransactionType.USAGE.value,
    ) -> List[InventoryTransaction]:
        return (
            self.db.query(InventoryTransaction)
            .options(joinedload(InventoryTransaction.product))
            .filter(
                InventoryTransaction.restaurant_id == restaurant_id,
                InventoryTransaction.reference_id == reference_id,
                InventoryTransaction.transaction_type == transaction_type,
            )
            .order_by(InventoryTransaction.line_no)
            .all()
        )

    def is_processed(
        self,
        restaurant_id: uuid.UUID,
        reference_id: str,
        transaction_type: str = TransactionType.USAGE.value,
    ) -> bool:
        """Check whether any row for this reference id was already written."""
        return self.db.query(
            self.db.query(InventoryTransaction.id)
            .filter(
                InventoryTransaction.restaurant_id == restaurant_id,
                InventoryTransaction.reference_id == reference_id,
                InventoryTransaction.transaction_type == transaction_type,
            )
            .exists()
        ).scalar()

    def append(
        self,
        *,
        restaurant_id: uuid.UUID,
        product: Product,
        reference_id: str,
        line_no: int,
        quantity: Decimal,
        unit_cost: Decimal,
        total_cost: Decimal,
        created_at: datetime,
        transaction_type: str = TransactionType.USAGE.value,
        recipe_id: Optional[uuid.UUID] = None,
        external_order_id: Optional[str] = None,
        recipe_quantity: Optional[Decimal] = None,
        recipe_unit: Optional[str] = None,
        conversion_method: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> InventoryTransaction:
        """Stage a new ledger row. Quantities are signed (negative for usage)."""
        entry = InventoryTransaction(
            restaurant_id=restaurant_id,
            product_id=product.id,
            recipe_id=recipe_id,
            external_order_id=external_order_id,
            reference_id=reference_id,
            line_no=line_no,
            transaction_type=transaction_type,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=total_cost,
            unit=product.purchase_unit,
            recipe_quantity=recipe_quantity,
            recipe_unit=recipe_unit,
            conversion_method=conversion_method,
            reason=reason[:500] if reason else reason,
            created_at=created_at,
        )
        self.db.add(entry)
        return entry

    def cached_summary(
        self,
        restaurant_id: uuid.UUID,
        reference_id: str,
        recipe_name: str,
        transaction_type: str = TransactionType.USAGE.value,
    ) -> DeductionResult:
        """Rebuild the result of an earlier deduction from its ledger rows.

        Remaining stock reflects the product as it is now, not at the time
        of the original deduction.
        """
        lines = []
        for entry in self.find_entries(restaurant_id, reference_id, transaction_type):
            product = entry.product
            lines.append(
                IngredientDeduction(
                    product_id=entry.product_id,
                    product_name=product.name,
                    quantity_deducted=-entry.quantity,
                    unit=entry.unit or product.purchase_unit,
                    cost=-entry.total_cost,
                    recipe_quantity=entry.recipe_quantity if entry.recipe_quantity is not None else Decimal("0"),
                    recipe_unit=entry.recipe_unit or "",
                    conversion_method=entry.conversion_method or "",
                    remaining_stock=product.current_stock,
                )
            )
        return DeductionResult(
            recipe_name=recipe_name,
            already_processed=True,
            ingredients_deducted=lines,
        )

"""Stock Deduction Service - Deducts inventory when POS sale lines arrive.

A POS sync worker reports each sold line (item name, quantity, date, order id).
This service maps the line to a recipe and consumes the recipe's ingredients
from stock, one atomic unit of work per sale line.

Flow:
1. Look up the active recipe for the POS item (no recipe -> empty result)
2. Lock the ingredient products in id order
3. Idempotency check on the reference id (already logged -> cached summary)
4. For each ingredient in recipe order:
   a. needed = ingredient quantity x quantity sold
   b. Convert recipe units to purchase units (unconvertible -> skipped, reported)
   c. current_stock = max(0, current_stock - delta) in one UPDATE ... RETURNING
   d. Append an immutable InventoryTransaction (quantity and cost negative)
5. Commit once; a unique-key collision from a concurrent duplicate rolls back
   and returns the cached summary instead
"""

import dataclasses
import logging
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from stockcore.core.config import settings
from stockcore.models.inventory_transaction import TransactionType, ledger_amount
from stockcore.models.product import Product
from stockcore.models.restaurant import Restaurant
from stockcore.schemas.deduction import (
    BatchDeductionResult,
    BatchFailure,
    ConversionIssue,
    DeductionResult,
    IngredientDeduction,
    SaleLine,
)
from stockcore.services.recipe_lookup import find_active_recipe
from stockcore.services.transaction_log import TransactionLog, build_reference_id
from stockcore.services.unit_conversion import (
    ConversionMethod,
    ConversionResult,
    UnitConversionError,
    convert,
)

logger = logging.getLogger(__name__)

# Short tags written into the ledger reason text
CONVERSION_TAGS = {
    ConversionMethod.DIRECT: "✓ 1:1",
    ConversionMethod.DENSITY: "✓ DENSITY",
    ConversionMethod.VOLUME_TO_CONTAINER: "✓ VOL",
    ConversionMethod.VOLUME_TO_VOLUME: "✓ VOL",
    ConversionMethod.WEIGHT_TO_CONTAINER: "✓ WEIGHT",
    ConversionMethod.WEIGHT_TO_WEIGHT: "✓ WEIGHT",
    ConversionMethod.COUNT_TO_CONTAINER: "✓ CNT-CNTR",
    ConversionMethod.COUNT_TO_COUNT: "✓ CNT",
}


def _fmt(value: Decimal) -> str:
    """Compact decimal for human-readable text (6 places max)."""
    return f"{value.quantize(Decimal('0.000001')).normalize():f}"


def sale_timestamp(sale_date: date, sale_time: Optional[time], tz_name: str) -> datetime:
    """Sale date/time in the restaurant's zone, as an aware UTC datetime."""
    local = datetime.combine(sale_date, sale_time or time.min).replace(tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)


class StockDeductionService:
    """Service for deducting stock when POS sale lines are processed."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = TransactionLog(db)

    # ===== SINGLE SALE LINE =====

    def deduct(
        self,
        restaurant_id: uuid.UUID,
        pos_item_name: str,
        quantity_sold,
        sale_date: date,
        external_order_id: Optional[str] = None,
        sale_time: Optional[time] = None,
        transaction_type: Optional[str] = None,
        reason_prefix: Optional[str] = None,
    ) -> DeductionResult:
        """
        Deduct the recipe of one POS sale line from stock.

        Args:
            restaurant_id: Restaurant the sale belongs to
            pos_item_name: Item name as reported by the POS
            quantity_sold: Number of servings sold (>= 0)
            sale_date: Business date of the sale
            external_order_id: POS order id, part of the idempotency key
            sale_time: Local time of the sale (midnight when omitted)
            transaction_type: usage (default), transfer, adjustment or waste
            reason_prefix: Leading text of the ledger reason

        Returns:
            DeductionResult; ``already_processed`` is True when the same
            sale line was deducted before and nothing was written now.
        """
        quantity_sold = Decimal(str(quantity_sold))
        if quantity_sold < 0:
            raise ValueError(f"quantity_sold cannot be negative, got {quantity_sold}")
        txn_type = TransactionType(transaction_type or settings.default_transaction_type).value
        prefix = reason_prefix or settings.default_reason_prefix

        recipe = find_active_recipe(self.db, restaurant_id, pos_item_name)
        if recipe is None:
            return DeductionResult()

        recipe_id = recipe.id
        recipe_name = recipe.name
        ingredients = list(recipe.ingredients)
        if not ingredients:
            logger.info(f"Recipe '{recipe_name}' has no ingredients, nothing to deduct")
            return DeductionResult(recipe_name=recipe_name)

        reference_id = build_reference_id(recipe_id, pos_item_name, sale_date, external_order_id)

        try:
            products = self._lock_products(ingredients)

            if self.ledger.is_processed(restaurant_id, reference_id, txn_type):
                logger.info(f"Sale line {reference_id} already processed, skipping")
                result = self.ledger.cached_summary(restaurant_id, reference_id, recipe_name, txn_type)
                self.db.rollback()
                return result

            created_at = sale_timestamp(sale_date, sale_time, self._restaurant_timezone(restaurant_id))
            result = DeductionResult(recipe_name=recipe_name)

            for line_no, ingredient in enumerate(ingredients):
                product = products[ingredient.product_id]
                needed = ingredient.quantity * quantity_sold

                try:
                    conversion = convert(needed, ingredient.unit, product)
                except UnitConversionError as e:
                    logger.warning(
                        f"Skipping '{product.name}' in recipe '{recipe_name}': {e}"
                    )
                    result.conversion_errors.append(
                        ConversionIssue(
                            product_id=product.id,
                            product_name=product.name,
                            recipe_quantity=needed,
                            recipe_unit=ingredient.unit,
                            purchase_unit=product.purchase_unit,
                            size_unit=product.size_unit,
                            message=str(e),
                        )
                    )
                    continue

                result.ingredients_deducted.append(
                    self._deduct_ingredient(
                        restaurant_id=restaurant_id,
                        product=product,
                        conversion=conversion,
                        needed=needed,
                        line_no=line_no,
                        reference_id=reference_id,
                        recipe_id=recipe_id,
                        recipe_name=recipe_name,
                        pos_item_name=pos_item_name,
                        external_order_id=external_order_id,
                        transaction_type=txn_type,
                        reason_prefix=prefix,
                        created_at=created_at,
                    )
                )

            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if not self.ledger.is_processed(restaurant_id, reference_id, txn_type):
                raise
            logger.info(f"Sale line {reference_id} was processed concurrently, returning cached result")
            result = self.ledger.cached_summary(restaurant_id, reference_id, recipe_name, txn_type)
            self.db.rollback()
            return result
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Deducted recipe '{recipe_name}' x{quantity_sold} for '{pos_item_name}': "
            f"{len(result.ingredients_deducted)} ingredients, cost {result.total_cost}"
        )
        return result

    def _lock_products(self, ingredients) -> Dict[uuid.UUID, Product]:
        """SELECT ... FOR UPDATE the ingredient products, always in id order."""
        product_ids = {ingredient.product_id for ingredient in ingredients}
        products = (
            self.db.query(Product)
            .filter(Product.id.in_(list(product_ids)))
            .order_by(Product.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        return {product.id: product for product in products}

    def _restaurant_timezone(self, restaurant_id: uuid.UUID) -> str:
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None or not restaurant.timezone:
            return settings.default_timezone
        return restaurant.timezone

    def _apply_delta(self, product: Product, delta: Decimal) -> Decimal:
        """Decrement stock in the database, clamped at zero. Returns the new stock."""
        remaining = Product.current_stock - delta
        stmt = (
            update(Product)
            .where(Product.id == product.id)
            .values(current_stock=case((remaining < 0, 0), else_=remaining))
            .returning(Product.current_stock)
            .execution_options(synchronize_session=False)
        )
        new_stock = self.db.execute(stmt).scalar_one()
        set_committed_value(product, "current_stock", new_stock)
        return new_stock

    def _deduct_ingredient(
        self,
        restaurant_id: uuid.UUID,
        product: Product,
        conversion: ConversionResult,
        needed: Decimal,
        line_no: int,
        reference_id: str,
        recipe_id: uuid.UUID,
        recipe_name: str,
        pos_item_name: str,
        external_order_id: Optional[str],
        transaction_type: str,
        reason_prefix: str,
        created_at: datetime,
    ) -> IngredientDeduction:
        """Apply one converted ingredient to stock and log it.

        Quantity and cost are rounded to the ledger scale once, here, so the
        stock change, the ledger row and the returned line carry the same
        amounts.
        """
        conversion = dataclasses.replace(conversion, quantity=ledger_amount(conversion.quantity))
        delta = conversion.quantity
        needed = ledger_amount(needed)
        unit_cost = product.cost_per_unit or Decimal("0")
        line_cost = ledger_amount(conversion.cost(unit_cost))
        stock_before = product.current_stock

        new_stock = self._apply_delta(product, delta)
        if delta > stock_before:
            logger.warning(
                f"Stock for '{product.name}' clamped at 0: needed {delta} "
                f"{product.purchase_unit}, had {stock_before}"
            )

        tag = CONVERSION_TAGS.get(conversion.method, conversion.method.value)
        reason = (
            f"{reason_prefix}: {pos_item_name} (Recipe: {recipe_name}) "
            f"[{tag}: {_fmt(needed)} {conversion.from_unit} → {_fmt(delta)} {product.purchase_unit}]"
        )

        self.ledger.append(
            restaurant_id=restaurant_id,
            product=product,
            reference_id=reference_id,
            line_no=line_no,
            quantity=-delta,
            unit_cost=unit_cost,
            total_cost=-line_cost,
            created_at=created_at,
            transaction_type=transaction_type,
            recipe_id=recipe_id,
            external_order_id=external_order_id,
            recipe_quantity=needed,
            recipe_unit=conversion.from_unit,
            conversion_method=conversion.method.value,
            reason=reason,
        )

        return IngredientDeduction(
            product_id=product.id,
            product_name=product.name,
            quantity_deducted=delta,
            unit=product.purchase_unit,
            cost=line_cost,
            recipe_quantity=needed,
            recipe_unit=conversion.from_unit,
            conversion_method=conversion.method.value,
            remaining_stock=new_stock,
        )

    # ===== BATCH =====

    def deduct_batch(
        self,
        restaurant_id: uuid.UUID,
        sales: Iterable[SaleLine],
    ) -> BatchDeductionResult:
        """
        Deduct a batch of sale lines, one unit of work per line.

        A line that raises is rolled back, logged and recorded as a failure;
        the remaining lines are still processed.
        """
        batch = BatchDeductionResult()
        for index, sale in enumerate(sales):
            try:
                batch.results.append(
                    self.deduct(
                        restaurant_id=restaurant_id,
                        pos_item_name=sale.pos_item_name,
                        quantity_sold=sale.quantity_sold,
                        sale_date=sale.sale_date,
                        external_order_id=sale.external_order_id,
                        sale_time=sale.sale_time,
                        transaction_type=sale.transaction_type,
                        reason_prefix=sale.reason_prefix,
                    )
                )
            except Exception as e:
                self.db.rollback()
                logger.error(
                    f"Deduction failed for sale line {index} ('{sale.pos_item_name}', "
                    f"order {sale.external_order_id}): {e}",
                    exc_info=True,
                )
                batch.failures.append(
                    BatchFailure(
                        index=index,
                        pos_item_name=sale.pos_item_name,
                        external_order_id=sale.external_order_id,
                        error=str(e),
                    )
                )
        return batch


def get_stock_deduction_service(db: Session) -> StockDeductionService:
    """Factory function to get stock deduction service."""
    return StockDeductionService(db)

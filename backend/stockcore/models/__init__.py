"""SQLAlchemy models."""

from stockcore.models.restaurant import Restaurant
from stockcore.models.product import Product
from stockcore.models.recipe import Recipe, RecipeIngredient
from stockcore.models.inventory_transaction import (
    ImmutableLedgerError,
    InventoryTransaction,
    TransactionType,
)

__all__ = [
    "Restaurant",
    "Product",
    "Recipe",
    "RecipeIngredient",
    "InventoryTransaction",
    "TransactionType",
    "ImmutableLedgerError",
]

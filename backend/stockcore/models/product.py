"""Product model."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stockcore.db.base import Base, TimestampMixin
from stockcore.models.validators import non_negative, positive, unit_name


class Product(Base, TimestampMixin):
    """A raw material stocked and costed in its purchase unit."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    purchase_unit: Mapped[str] = mapped_column(String(20), default="unit", nullable=False)  # bottle, bag, kg, ml...
    current_stock: Mapped[Decimal] = mapped_column(Numeric(14, 6), default=0, nullable=False)
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    # Content of one purchase unit, e.g. 750 ml per bottle
    size_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    size_unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Relationships
    restaurant: Mapped["Restaurant"] = relationship("Restaurant", back_populates="products")
    recipe_ingredients: Mapped[list["RecipeIngredient"]] = relationship(
        "RecipeIngredient", back_populates="product"
    )

    @validates("current_stock", "cost_per_unit")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @validates("size_value")
    def _validate_size(self, key, value):
        return positive(key, value)

    @validates("purchase_unit", "size_unit")
    def _validate_unit(self, key, value):
        return unit_name(key, value)


# Forward references
from stockcore.models.restaurant import Restaurant
from stockcore.models.recipe import RecipeIngredient

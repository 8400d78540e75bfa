"""Restaurant model - the consistency domain for stock and ledger rows."""

from __future__ import annotations

import uuid

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockcore.core.config import settings
from stockcore.db.base import Base, TimestampMixin


class Restaurant(Base, TimestampMixin):
    """A restaurant owning products, recipes and inventory transactions."""

    __tablename__ = "restaurants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # IANA zone used to interpret POS sale dates/times
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default=lambda: settings.default_timezone
    )

    # Relationships
    products: Mapped[list["Product"]] = relationship("Product", back_populates="restaurant")
    recipes: Mapped[list["Recipe"]] = relationship("Recipe", back_populates="restaurant")


# Forward references
from stockcore.models.product import Product
from stockcore.models.recipe import Recipe

"""Recipe lookup for POS sale lines."""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from stockcore.models.recipe import Recipe

logger = logging.getLogger(__name__)


def find_active_recipe(
    db: Session,
    restaurant_id: uuid.UUID,
    pos_item_name: str,
) -> Optional[Recipe]:
    """Find the active recipe a POS item maps to.

    Exact match on ``pos_item_name`` first, then on the recipe ``name``.
    Ties resolve to the oldest recipe so repeated lookups are stable.
    """
    if not pos_item_name:
        return None

    base = db.query(Recipe).filter(
        Recipe.restaurant_id == restaurant_id,
        Recipe.is_active.is_(True),
    )
    ordering = (Recipe.created_at.asc(), Recipe.id.asc())

    recipe = base.filter(Recipe.pos_item_name == pos_item_name).order_by(*ordering).first()
    if recipe:
        return recipe

    recipe = base.filter(Recipe.name == pos_item_name).order_by(*ordering).first()
    if recipe is None:
        logger.info(f"No recipe found for POS item '{pos_item_name}', skipping deduction")
    return recipe

"""Deduction schemas."""

from __future__ import annotations

import uuid
from datetime import date, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, computed_field


class IngredientDeduction(BaseModel):
    """One ingredient line of a completed deduction, in purchase units."""

    product_id: uuid.UUID
    product_name: str
    quantity_deducted: Decimal
    unit: str
    cost: Decimal
    recipe_quantity: Decimal
    recipe_unit: str
    conversion_method: str
    remaining_stock: Decimal

    model_config = {"from_attributes": True}


class ConversionIssue(BaseModel):
    """An ingredient that was skipped because its units could not be resolved."""

    product_id: uuid.UUID
    product_name: str
    recipe_quantity: Decimal
    recipe_unit: str
    purchase_unit: str
    size_unit: Optional[str] = None
    message: str


class DeductionResult(BaseModel):
    """Summary of one POS sale line against its recipe."""

    recipe_name: str = ""
    already_processed: bool = False
    ingredients_deducted: list[IngredientDeduction] = Field(default_factory=list)
    conversion_errors: list[ConversionIssue] = Field(default_factory=list)

    @computed_field
    @property
    def total_cost(self) -> Decimal:
        return sum((line.cost for line in self.ingredients_deducted), Decimal("0"))


class SaleLine(BaseModel):
    """A POS sale line submitted for deduction."""

    pos_item_name: str
    quantity_sold: Decimal
    sale_date: date
    external_order_id: Optional[str] = None
    sale_time: Optional[time] = None
    transaction_type: Optional[str] = None
    reason_prefix: Optional[str] = None


class BatchFailure(BaseModel):
    """A sale line whose deduction raised and was rolled back."""

    index: int
    pos_item_name: str
    external_order_id: Optional[str] = None
    error: str


class BatchDeductionResult(BaseModel):
    results: list[DeductionResult] = Field(default_factory=list)
    failures: list[BatchFailure] = Field(default_factory=list)

    @computed_field
    @property
    def total_cost(self) -> Decimal:
        return sum((r.total_cost for r in self.results), Decimal("0"))

"""Unit Conversion Resolver - recipe units to purchase units.

A recipe says "1.5 oz" or "2 cup"; the product is stocked as bottles of
750 ml or 10 kg bags. ``convert()`` runs an ordered chain of pure tiers and
returns the quantity expressed in the product's purchase unit:

1. direct match          recipe unit == purchase unit
2. density override      cups of rice/flour/sugar/butter become grams
3. container class       bottle/jar/can/bag/box... with a declared content size
4. count to container    "each" items packed N per container
5. standard class        raw purchase units of the same domain (lb, L, gal...)

Each tier returns a ConversionResult or None ("not applicable") so the chain
falls through deterministically. When no tier applies a UnitConversionError
is raised; a successful conversion of zero is a normal result.
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)


class UnitClass(str, Enum):
    VOLUME = "volume"
    WEIGHT = "weight"
    COUNT = "count"
    CONTAINER = "container"


class ConversionMethod(str, Enum):
    """How a quantity was resolved; stored on every ledger row."""

    DIRECT = "1:1"
    DENSITY = "density_to_weight"
    VOLUME_TO_CONTAINER = "volume_to_container"
    WEIGHT_TO_CONTAINER = "weight_to_container"
    COUNT_TO_CONTAINER = "count_to_container"
    VOLUME_TO_VOLUME = "volume_to_volume"
    WEIGHT_TO_WEIGHT = "weight_to_weight"
    COUNT_TO_COUNT = "count_to_count"


# Conversion factors TO the base unit of each class (ml, g, each)
TO_BASE = {
    # Volume: base unit = ml
    "ml": Decimal("1"),
    "l": Decimal("1000"),
    "cup": Decimal("236.588"),
    "tbsp": Decimal("14.7868"),
    "tsp": Decimal("4.92892"),
    "fl oz": Decimal("29.5735"),
    "gal": Decimal("3785.41"),
    "qt": Decimal("946.353"),

    # Weight: base unit = g
    "g": Decimal("1"),
    "kg": Decimal("1000"),
    "lb": Decimal("453.592"),
    "oz": Decimal("28.3495"),

    # Count: base unit = each
    "each": Decimal("1"),
    "piece": Decimal("1"),
    "unit": Decimal("1"),
    "dozen": Decimal("12"),
}

VOLUME_UNITS = frozenset({"ml", "l", "cup", "tbsp", "tsp", "fl oz", "gal", "qt"})
WEIGHT_UNITS = frozenset({"g", "kg", "lb", "oz"})
COUNT_UNITS = frozenset({"each", "piece", "unit", "dozen"})
CONTAINER_UNITS = frozenset({"bottle", "jar", "can", "bag", "box", "container", "case", "package"})

UNIT_ALIASES = {
    "liter": "l", "litre": "l", "liters": "l", "litres": "l",
    "milliliter": "ml", "millilitre": "ml", "milliliters": "ml", "mls": "ml",
    "fl-oz": "fl oz", "fl_oz": "fl oz", "floz": "fl oz", "fl. oz": "fl oz", "fluid ounce": "fl oz",
    "cups": "cup",
    "tablespoon": "tbsp", "tablespoons": "tbsp", "tbs": "tbsp",
    "teaspoon": "tsp", "teaspoons": "tsp",
    "gallon": "gal", "gallons": "gal",
    "quart": "qt", "quarts": "qt",
    "gram": "g", "grams": "g", "gr": "g",
    "kilogram": "kg", "kilograms": "kg", "kgs": "kg",
    "lbs": "lb", "pound": "lb", "pounds": "lb",
    "ounce": "oz", "ounces": "oz",
    "pcs": "each", "pc": "each", "ea": "each", "pieces": "piece", "units": "unit",
    "bottles": "bottle", "jars": "jar", "cans": "can", "bags": "bag", "boxes": "box",
    "containers": "container", "cases": "case", "packages": "package", "pkg": "package",
}

# Grams per US cup for dry goods bought by weight but measured by volume.
# Checked in order; the first name match wins.
DENSITY_G_PER_CUP: Tuple[Tuple[str, Decimal], ...] = (
    ("rice", Decimal("185")),
    ("flour", Decimal("120")),
    ("sugar", Decimal("200")),
    ("butter", Decimal("227")),
)


class UnitConversionError(Exception):
    """Raised when no conversion tier applies to a unit pairing."""

    def __init__(self, from_unit: str, to_unit: str, product_name: str = "", size_unit: str = ""):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.product_name = product_name
        self.size_unit = size_unit
        package = f" (package unit: {size_unit})" if size_unit else ""
        super().__init__(
            f"Cannot convert '{from_unit}' to '{to_unit}'{package} for product '{product_name}'"
        )


@dataclass(frozen=True)
class ConversionResult:
    """A quantity resolved into purchase units, with the method used."""

    quantity: Decimal
    from_unit: str
    to_unit: str
    method: ConversionMethod

    def cost(self, cost_per_unit) -> Decimal:
        return self.quantity * _to_decimal(cost_per_unit or 0)


@dataclass(frozen=True)
class ConversionRequest:
    quantity: Decimal
    unit: str
    purchase_unit: str
    size_value: Optional[Decimal] = None
    size_unit: str = ""
    product_name: str = ""


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def normalize_unit(unit: Optional[str]) -> str:
    """Lower-case, collapse whitespace and map common spellings."""
    u = " ".join((unit or "").strip().lower().split())
    return UNIT_ALIASES.get(u, u)


def classify_unit(unit: Optional[str]) -> Optional[UnitClass]:
    u = normalize_unit(unit)
    if u in VOLUME_UNITS:
        return UnitClass.VOLUME
    if u in WEIGHT_UNITS:
        return UnitClass.WEIGHT
    if u in COUNT_UNITS:
        return UnitClass.COUNT
    if u in CONTAINER_UNITS:
        return UnitClass.CONTAINER
    return None


def density_for(product_name: Optional[str]) -> Optional[Decimal]:
    """Grams per cup for a known dry good, matched on whole words of the name."""
    # Whole words only, so "Buttermilk" is not butter
    name = (product_name or "").lower()
    for keyword, grams in DENSITY_G_PER_CUP:
        if re.search(rf"\b{keyword}\b", name):
            return grams
    return None


def _align(unit: str, other: str) -> str:
    # "oz" next to a volume unit is a fluid ounce
    if unit == "oz" and other in VOLUME_UNITS:
        return "fl oz"
    return unit


def _measure_pair(unit: str, other: str) -> Optional[Tuple[str, str, UnitClass]]:
    """Both units in the same measurement domain, or None."""
    a, b = _align(unit, other), _align(other, unit)
    cls = classify_unit(a)
    if cls is None or cls is UnitClass.CONTAINER or classify_unit(b) is not cls:
        return None
    return a, b, cls


def _has_size(req: ConversionRequest) -> bool:
    return (
        req.purchase_unit in CONTAINER_UNITS
        and req.size_value is not None
        and req.size_value > 0
        and bool(req.size_unit)
    )


# ===== TIERS =====

def _direct_match(req: ConversionRequest) -> Optional[ConversionResult]:
    if req.unit != req.purchase_unit:
        return None
    return ConversionResult(req.quantity, req.unit, req.purchase_unit, ConversionMethod.DIRECT)


def _container_class(req: ConversionRequest) -> Optional[ConversionResult]:
    if not _has_size(req):
        return None
    pair = _measure_pair(req.unit, req.size_unit)
    if pair is None or pair[2] is UnitClass.COUNT:
        return None
    unit, size_unit, cls = pair
    base_qty = req.quantity * TO_BASE[unit]
    base_size = req.size_value * TO_BASE[size_unit]
    method = (
        ConversionMethod.VOLUME_TO_CONTAINER if cls is UnitClass.VOLUME
        else ConversionMethod.WEIGHT_TO_CONTAINER
    )
    return ConversionResult(base_qty / base_size, req.unit, req.purchase_unit, method)


def _count_to_container(req: ConversionRequest) -> Optional[ConversionResult]:
    if not _has_size(req):
        return None
    if req.unit not in COUNT_UNITS or req.size_unit not in COUNT_UNITS:
        return None
    items = req.quantity * TO_BASE[req.unit]
    per_container = req.size_value * TO_BASE[req.size_unit]
    return ConversionResult(
        items / per_container, req.unit, req.purchase_unit, ConversionMethod.COUNT_TO_CONTAINER
    )


def _standard_class(req: ConversionRequest) -> Optional[ConversionResult]:
    pair = _measure_pair(req.unit, req.purchase_unit)
    if pair is None:
        return None
    unit, purchase_unit, cls = pair
    method = {
        UnitClass.VOLUME: ConversionMethod.VOLUME_TO_VOLUME,
        UnitClass.WEIGHT: ConversionMethod.WEIGHT_TO_WEIGHT,
        UnitClass.COUNT: ConversionMethod.COUNT_TO_COUNT,
    }[cls]
    qty = req.quantity * TO_BASE[unit] / TO_BASE[purchase_unit]
    return ConversionResult(qty, req.unit, req.purchase_unit, method)


def _density_override(req: ConversionRequest) -> Optional[ConversionResult]:
    if req.unit != "cup":
        return None
    grams_per_cup = density_for(req.product_name)
    if grams_per_cup is None:
        return None
    as_grams = dataclasses.replace(req, quantity=req.quantity * grams_per_cup, unit="g")
    for tier in (_container_class, _standard_class):
        result = tier(as_grams)
        if result is not None:
            return dataclasses.replace(result, from_unit=req.unit, method=ConversionMethod.DENSITY)
    return None


TIERS: Tuple[Callable[[ConversionRequest], Optional[ConversionResult]], ...] = (
    _direct_match,
    _density_override,
    _container_class,
    _count_to_container,
    _standard_class,
)


def resolve(req: ConversionRequest) -> ConversionResult:
    """Run the tier chain on an already-normalised request."""
    for tier in TIERS:
        result = tier(req)
        if result is not None:
            return result
    raise UnitConversionError(req.unit, req.purchase_unit, req.product_name, req.size_unit)


def convert(quantity, unit: str, product) -> ConversionResult:
    """Convert a recipe-side quantity into the product's purchase unit.

    ``product`` is anything with ``name``, ``purchase_unit``, ``size_value``
    and ``size_unit`` attributes (normally a Product row).
    """
    size_value = getattr(product, "size_value", None)
    req = ConversionRequest(
        quantity=_to_decimal(quantity),
        unit=normalize_unit(unit),
        purchase_unit=normalize_unit(product.purchase_unit),
        size_value=_to_decimal(size_value) if size_value is not None else None,
        size_unit=normalize_unit(getattr(product, "size_unit", None)),
        product_name=getattr(product, "name", "") or "",
    )
    return resolve(req)


def convert_units(quantity, from_unit: str, to_unit: str) -> Decimal:
    """Plain unit-to-unit conversion without product context."""
    req = ConversionRequest(
        quantity=_to_decimal(quantity),
        unit=normalize_unit(from_unit),
        purchase_unit=normalize_unit(to_unit),
    )
    return resolve(req).quantity

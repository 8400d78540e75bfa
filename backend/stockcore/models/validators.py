"""ORM-level guards for stock quantities and unit names.

Hooked in through ``@validates`` so a bad quantity is rejected when it is
assigned, whichever service is writing.
"""

from decimal import Decimal, InvalidOperation


def _as_decimal(key: str, value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key} must be numeric, got {value!r}")


def non_negative(key: str, value):
    """Reject values below zero."""
    if value is not None and _as_decimal(key, value) < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Reject zero and negative values (None passes)."""
    if value is not None and _as_decimal(key, value) <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def unit_name(key: str, value):
    """Trim a unit name; blank units are rejected, None passes."""
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError(f"{key} cannot be blank")
    return value

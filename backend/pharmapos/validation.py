# Overview: Coercion of request payload values into domain types.

"""
Strict input coercion shared by routes and services.

All helpers raise pharmapos.errors.ValidationError (400) with the offending
field name in the message.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from pharmapos.errors import ValidationError
from pharmapos.time_utils import parse_iso_date


# Maximum money amount: 9,999,999,999.99 (fits Numeric(12, 2))
MAX_MONEY = Decimal("9999999999.99")

CENTS = Decimal("0.01")
COST_PLACES = Decimal("0.0001")


def require_int(value: Any, field: str) -> int:
    """Integer from JSON: ints or plain digit strings; floats and bools rejected."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be an integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return require_int(value, field)


def require_positive_int(value: Any, field: str) -> int:
    n = require_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return n


def require_non_negative_int(value: Any, field: str) -> int:
    n = require_int(value, field)
    if n < 0:
        raise ValidationError(f"{field} must not be negative")
    return n


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        # str() first so floats like 10.1 do not carry binary noise
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not d.is_finite():
        raise ValidationError(f"{field} must be a number")
    return d


def require_money(value: Any, field: str, *, allow_zero: bool = True) -> Decimal:
    """Non-negative amount rounded to cents."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    d = _to_decimal(value, field).quantize(CENTS, rounding=ROUND_HALF_UP)
    if d < 0 or (d == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'non-negative' if allow_zero else 'positive'}")
    if d > MAX_MONEY:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return d


def optional_money(value: Any, field: str) -> Decimal | None:
    if value is None or value == "":
        return None
    return require_money(value, field)


def require_unit_cost(value: Any, field: str = "costUnit") -> Decimal:
    """Non-negative unit cost with 4 decimal places."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    d = _to_decimal(value, field).quantize(COST_PLACES, rounding=ROUND_HALF_UP)
    if d < 0:
        raise ValidationError(f"{field} must be non-negative")
    return d


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    s = str(value).strip()
    if len(s) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return s


def optional_text(value: Any, field: str, *, max_length: int = 2000) -> str | None:
    if value is None or not str(value).strip():
        return None
    return require_text(value, field, max_length=max_length)


def optional_date(value: Any, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def require_choice(value: Any, field: str, choices) -> str:
    s = str(value).strip().upper() if value is not None else ""
    if s not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return s


def parse_item_list(raw: Any, field: str = "items") -> list[tuple[int, int]]:
    """
    Parse [{productId, quantity}, ...] into (product_id, quantity) pairs.

    Lines with a non-positive quantity are rejected; an empty list is rejected.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list")
    lines: list[tuple[int, int]] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"{field}[{idx}] must be an object")
        product_id = require_int(entry.get("productId"), f"{field}[{idx}].productId")
        quantity = require_positive_int(entry.get("quantity"), f"{field}[{idx}].quantity")
        lines.append((product_id, quantity))
    return lines


def parse_partial_items(raw: Any, field: str = "items") -> list[tuple[int, int]]:
    """Like parse_item_list but a line may ship 0 units (left out of a partial send)."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list")
    lines: list[tuple[int, int]] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"{field}[{idx}] must be an object")
        product_id = require_int(entry.get("productId"), f"{field}[{idx}].productId")
        quantity = require_non_negative_int(entry.get("quantity"), f"{field}[{idx}].quantity")
        lines.append((product_id, quantity))
    return lines

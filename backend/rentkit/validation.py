from __future__ import annotations
from datetime import date
import re
from rentkit.time_utils import parse_calendar_date, day_count

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Date, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

UNIT_PATTERN = re.compile(r"^[A-Za-z\s]+$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate item name)."""


class NotFoundError(LookupError):
    """404-level: a referenced item, customer or reservation does not exist."""


class InvalidRangeError(ValidationError):
    """Date range is inverted, too long, or not a plain calendar date."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_date(key: str, value: Any) -> date:
    try:
        d = parse_calendar_date(value)
    except ValueError as exc:
        raise InvalidRangeError(f"{key} must be a YYYY-MM-DD date ({exc})") from None
    if d is None:
        raise InvalidRangeError(f"{key} must be a YYYY-MM-DD date")
    return d


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Calendar dates (no time-of-day, no timezone conversion)
    if isinstance(coltype, Date):
        return coerce_date(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Keys in the payload that are writable but not model columns (e.g.
    "lines" on a reservation) are passed through untouched for the caller
    to validate.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols.get(k)
        if col is None:
            patch[k] = raw
            continue

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _enforce_money(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        value = patch[key]
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_item(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "total_quantity" in patch:
        if patch["total_quantity"] is None or patch["total_quantity"] < 0:
            raise ValidationError("total_quantity must be >= 0")

    if "unit" in patch and patch["unit"] is not None:
        if not UNIT_PATTERN.match(patch["unit"]):
            raise ValidationError("unit must contain only letters")

    _enforce_money(patch, "price_cents")


def enforce_rules_customer(patch: dict) -> None:
    email = patch.get("email")
    if email and "@" not in email:
        raise ValidationError("email must be a valid address")


def parse_date_range(start_raw: Any, end_raw: Any, *, max_days: int | None = None) -> tuple[date, date]:
    """
    Normalize and check an inclusive [start, end] calendar range.

    Inverted or over-long ranges are rejected here, before any
    availability computation.
    """
    start = coerce_date("start_date", start_raw)
    end = coerce_date("end_date", end_raw)
    check_date_range(start, end, max_days=max_days)
    return start, end


def check_date_range(start: date, end: date, *, max_days: int | None = None) -> None:
    if end < start:
        raise InvalidRangeError(
            f"end_date {end.isoformat()} is before start_date {start.isoformat()}"
        )
    if max_days is not None and day_count(start, end) > max_days:
        raise InvalidRangeError(f"date range cannot exceed {max_days} days")


def parse_reservation_lines(raw: Any) -> list[tuple[int, int]]:
    """
    Validate the "lines" payload of a reservation.

    Accepts a list of {"item_id": int, "quantity": int} objects and returns
    (item_id, quantity) pairs in request order. At least one line is
    required and every quantity must be a positive integer.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("lines must be a non-empty list")

    lines: list[tuple[int, int]] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"lines[{idx}] must be an object")
        unknown = set(entry) - {"item_id", "quantity"}
        if unknown:
            raise ValidationError(f"lines[{idx}] field not allowed: {', '.join(sorted(unknown))}")
        if "item_id" not in entry or "quantity" not in entry:
            raise ValidationError(f"lines[{idx}] requires item_id and quantity")

        item_id = coerce_int(f"lines[{idx}].item_id", entry["item_id"])
        quantity = coerce_int(f"lines[{idx}].quantity", entry["quantity"])
        if quantity < 1:
            raise ValidationError(f"lines[{idx}].quantity must be at least 1")
        lines.append((item_id, quantity))

    return lines


def enforce_rules_reservation(patch: dict) -> None:
    _enforce_money(patch, "total_price_cents")
    _enforce_money(patch, "advance_payment_cents")

    total = patch.get("total_price_cents")
    advance = patch.get("advance_payment_cents")
    if total is not None and advance is not None and advance > total:
        raise ValidationError("advance_payment_cents cannot exceed total_price_cents")


def enforce_rules_payment(patch: dict) -> None:
    amount = patch.get("amount_cents")
    if amount is None or amount <= 0:
        raise ValidationError("amount_cents must be > 0")
    _enforce_money(patch, "amount_cents")

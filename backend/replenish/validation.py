# Overview: Request payload checks for the JSON API; column-driven coercion, allowlists and money parsing.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text

from .money import to_cents


# Largest quantity a single request may order
MAX_REQUEST_QUANTITY = 1_000_000

# Largest single ledger amount: 99,999,999.99
MAX_AMOUNT_CENTS = 9_999_999_999


class ValidationError(ValueError):
    """Malformed client input (HTTP 400); raised before any service is called."""

    code = "ValidationError"
    http_status = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns of a model a client may send.

    writable_fields is the allowlist; anything else in the payload is
    rejected. required_on_create must all be present when partial=False.
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


def coerce_int(name: str, value: Any) -> int:
    """Strict integer: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be an integer")

    text = value.strip()
    if "e" in text.lower():
        raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
    if "." in text:
        raise ValidationError(f"{name} must be an integer (no decimals)")
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _clean_column_value(column, raw: Any):
    """Coerce one JSON value to the column's Python type and enforce NOT NULL / length."""
    name = column.key
    if raw is None:
        if not column.nullable:
            raise ValidationError(f"{name} cannot be null")
        return None

    kind = column.type
    if isinstance(kind, Integer):
        return coerce_int(name, raw)
    if isinstance(kind, Boolean):
        return raw if isinstance(raw, bool) else bool(raw)
    if not isinstance(kind, (String, Text)):
        return raw

    text = str(raw).strip()
    if not text and not column.nullable:
        raise ValidationError(f"{name} cannot be blank")
    max_length = getattr(kind, "length", None)
    if max_length and len(text) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return text


def validate_payload(*, model, payload: Any, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Clean a JSON body against the model's mapped columns.

    Returns only the allowlisted keys, each coerced to its column type.
    Unknown or non-writable keys are errors rather than being dropped, so a
    typo such as "quantity" never silently falls back to a default.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create.difference(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        if key not in columns:
            raise ValidationError(f"Unknown field: {key}")

    return {key: _clean_column_value(columns[key], raw) for key, raw in payload.items()}


def enforce_rules_request(patch: dict) -> None:
    qty = patch.get("requested_quantity")
    if qty is None or qty <= 0:
        raise ValidationError("requested_quantity must be > 0")
    if qty > MAX_REQUEST_QUANTITY:
        raise ValidationError(f"requested_quantity cannot exceed {MAX_REQUEST_QUANTITY}")
    if "warehouse_id" in patch and (patch["warehouse_id"] is None or patch["warehouse_id"] <= 0):
        raise ValidationError("warehouse_id must be > 0")


def enforce_rules_counter(levels: dict) -> None:
    """levels holds the counter's effective values after the patch; maximum_level 0 means no ceiling."""
    minimum = levels.get("minimum_level") or 0
    maximum = levels.get("maximum_level") or 0
    if minimum < 0 or maximum < 0:
        raise ValidationError("minimum_level and maximum_level must be >= 0")
    if maximum and maximum < minimum:
        raise ValidationError("maximum_level must be 0 (no ceiling) or >= minimum_level")
    if "warehouse_id" in levels and (levels["warehouse_id"] is None or levels["warehouse_id"] <= 0):
        raise ValidationError("warehouse_id must be > 0")


def require_text(payload: dict, key: str, *, max_length: int | None = None) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"{key} is required")
    value = str(value).strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value


def optional_text(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_amount_cents(payload: dict, *, cents_key: str = "amount_cents", decimal_key: str = "amount",
                       required: bool = True, signed: bool = False) -> int | None:
    """
    Money from a payload, as integer cents.

    Accepts either `<cents_key>` (integer cents) or `<decimal_key>` (decimal
    string such as "12.50"). Sign checks are left to the ledger unless
    signed=False, in which case negatives are rejected here.
    """
    if payload.get(cents_key) is not None:
        cents = coerce_int(cents_key, payload[cents_key])
    elif payload.get(decimal_key) is not None:
        raw = payload[decimal_key]
        if isinstance(raw, bool):
            raise ValidationError(f"{decimal_key} must be a decimal amount")
        try:
            cents = to_cents(raw)
        except ValueError:
            raise ValidationError(f"{decimal_key} must be a decimal amount")
    else:
        if required:
            raise ValidationError(f"{cents_key} or {decimal_key} is required")
        return None

    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"amount cannot exceed {MAX_AMOUNT_CENTS} cents")
    if not signed and cents < 0:
        raise ValidationError("amount cannot be negative")
    return cents


def parse_int_arg(value: str | None, name: str, *, default: int | None = None,
                  minimum: int | None = None, maximum: int | None = None) -> int | None:
    """Query-string integer; clamps to [minimum, maximum]."""
    if value is None or str(value).strip() == "":
        return default
    n = coerce_int(name, value)
    if minimum is not None and n < minimum:
        n = minimum
    if maximum is not None and n > maximum:
        n = maximum
    return n

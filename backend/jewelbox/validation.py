from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models import ITEM_STATUSES, KARATS


# Maximum cost: 999,999,999 whole units
MAX_COST = 999_999_999
MAX_WEIGHT_G = Decimal("100000")

__all__ = [
    "ModelValidationPolicy",
    "ValidationError",
    "enforce_rules_item",
    "validate_payload",
]


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


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (weights): accept numbers or numeric strings, keep column scale
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")
        if not number.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        if coltype.scale is not None:
            try:
                number = number.quantize(Decimal(1).scaleb(-coltype.scale))
            except InvalidOperation:
                raise ValidationError(f"{col.key} is out of range")
        # Numeric(precision, scale) leaves precision - scale integer digits
        if coltype.precision is not None and number.adjusted() >= coltype.precision - (coltype.scale or 0):
            raise ValidationError(f"{col.key} is out of range")
        return number

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_item(patch: dict) -> None:
    """
    Business rules for item descriptive fields that SQLAlchemy metadata
    does not capture.
    """
    if "karat" in patch:
        karat = (patch["karat"] or "").upper()
        if karat not in KARATS:
            raise ValidationError(f"karat must be one of {', '.join(KARATS)}")
        patch["karat"] = karat

    if "status" in patch:
        status = (patch["status"] or "").upper()
        if status not in ITEM_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(ITEM_STATUSES)}")
        patch["status"] = status

    if "weight_g" in patch:
        weight = patch["weight_g"]
        if weight is None or weight <= 0:
            raise ValidationError("weight_g must be > 0")
        if weight > MAX_WEIGHT_G:
            raise ValidationError(f"weight_g cannot exceed {MAX_WEIGHT_G}")

    if "cost" in patch and patch["cost"] is not None:
        cost = patch["cost"]
        if cost < 0:
            raise ValidationError("cost must be >= 0")
        if cost > MAX_COST:
            raise ValidationError(f"cost cannot exceed {MAX_COST}")

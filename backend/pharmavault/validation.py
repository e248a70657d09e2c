from __future__ import annotations

from decimal import Decimal

from .errors import ValidationError
from .money import ZERO, to_amount


# Longest text accepted for String(64) identifiers (cashier, actor, insurer)
MAX_IDENTIFIER_LENGTH = 64
MAX_DESCRIPTION_LENGTH = 255


def require_text(value, field: str, *, max_length: int = MAX_IDENTIFIER_LENGTH) -> str:
    """Trimmed non-blank string or ValidationError."""
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value, field: str, *, max_length: int = MAX_IDENTIFIER_LENGTH) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_positive_amount(value, field: str = "amount") -> Decimal:
    amount = to_amount(value, field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be > 0")
    return amount


def require_non_negative_amount(value, field: str = "amount") -> Decimal:
    amount = to_amount(value, field)
    if amount < ZERO:
        raise ValidationError(f"{field} must be >= 0")
    return amount


def parse_id(value, field: str = "id") -> int:
    """Strict integer id: rejects bools, floats and decimals in strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        if value <= 0:
            raise ValidationError(f"{field} must be a positive integer")
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit() and int(stripped) > 0:
            return int(stripped)
    raise ValidationError(f"{field} must be a positive integer")


def parse_id_list(values, field: str = "ids") -> list[int]:
    if not isinstance(values, (list, tuple, set)):
        raise ValidationError(f"{field} must be a list of ids")
    ids = []
    for value in values:
        parsed = parse_id(value, field)
        if parsed not in ids:
            ids.append(parsed)
    return ids

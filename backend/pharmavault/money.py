"""
Money helpers: parsing, rounding, percentage splits and display.

Amounts are Decimal throughout; floats are accepted on input only and
converted through their string form so 0.1 stays 0.1.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")

# |difference| below this is treated as no difference at all
BALANCE_TOLERANCE = CENT

# Largest amount the amount columns can hold (Numeric(14, 2))
MAX_AMOUNT = Decimal("999999999999.99")


def to_amount(value, field: str = "amount") -> Decimal:
    """
    Parse user or store input into a Decimal quantized to 0.01.

    Accepts Decimal, int, float and numeric strings ("100000", "1 500,50").
    Rejects booleans, blanks, NaN and infinities.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip().replace(" ", "").replace("\xa0", "").replace("\u202f", "")
        if not cleaned:
            raise ValidationError(f"{field} must be a number")
        # French decimal comma
        if "," in cleaned and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds the maximum of {MAX_AMOUNT}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def round_currency(value: Decimal, places: int = 0) -> Decimal:
    """Round half-up to `places` decimals, returned at 0.01 scale."""
    exponent = Decimal(1).scaleb(-places)
    return Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP).quantize(CENT)


def split_by_percentage(amount: Decimal, percent, places: int = 0) -> tuple[Decimal, Decimal]:
    """
    Split amount into (covered, remainder) where covered is
    round(amount * percent / 100) and remainder = amount - covered.

    The remainder is never negative.
    """
    pct = to_amount(percent, "coverage_percent")
    if pct < ZERO or pct > Decimal("100"):
        raise ValidationError("coverage_percent must be between 0 and 100")
    covered = round_currency(Decimal(amount) * pct / Decimal("100"), places)
    remainder = max(ZERO, Decimal(amount) - covered)
    return covered, remainder.quantize(CENT)


def is_balanced(difference: Decimal) -> bool:
    return abs(Decimal(difference)) < BALANCE_TOLERANCE


def format_currency(amount, currency: str = "GNF", places: int = 0) -> str:
    """
    French-style display: thousands grouped by spaces, decimal comma.

    >>> format_currency(Decimal("100000"))
    '100 000 GNF'
    >>> format_currency(Decimal("-1234.5"), "EUR", 2)
    '-1 234,50 EUR'
    """
    value = round_currency(Decimal(amount), places)
    sign = "-" if value < ZERO else ""
    text = f"{abs(value):,.{places}f}".replace(",", " ").replace(".", ",")
    return f"{sign}{text} {currency}".strip()

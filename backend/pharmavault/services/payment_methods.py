# Overview: Maps legacy and localized payment-method labels to the canonical tender set.

"""
Payment Method Normalizer

WHY: The store holds labels from several generations of the till
("Espèces", "orange_money", "Orange Money (Code Marchand)", "Crédit / Dette",
"CASH", ...). Everything past this module sees exactly one of
CASH, MOBILE_MONEY or CREDIT_DEBT.

FALLBACK: anything unrecognized resolves to CASH. This keeps old rows
readable but can silently file a malformed label as cash; callers that care
use resolve_payment_method() and check ``is_fallback``.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import NamedTuple

logger = logging.getLogger(__name__)


# =============================================================================
# TENDER TYPES (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_MOBILE_MONEY = "MOBILE_MONEY"
METHOD_CREDIT_DEBT = "CREDIT_DEBT"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_MOBILE_MONEY,
    METHOD_CREDIT_DEBT,
]

PAYMENT_METHOD_FALLBACK = METHOD_CASH


# Keys are slugs produced by slugify_label()
_METHOD_ALIASES = {
    # Cash
    "cash": METHOD_CASH,
    "especes": METHOD_CASH,
    "espece": METHOD_CASH,
    "liquide": METHOD_CASH,
    # Insurance rows carried the patient's share in cash
    "assurance": METHOD_CASH,
    # Mobile money
    "mobile_money": METHOD_MOBILE_MONEY,
    "mobilemoney": METHOD_MOBILE_MONEY,
    "momo": METHOD_MOBILE_MONEY,
    "orange_money": METHOD_MOBILE_MONEY,
    "orange_money_code_marchand": METHOD_MOBILE_MONEY,
    "om": METHOD_MOBILE_MONEY,
    # Customer debt
    "credit_debt": METHOD_CREDIT_DEBT,
    "credit_dette": METHOD_CREDIT_DEBT,
    "credit": METHOD_CREDIT_DEBT,
    "dette": METHOD_CREDIT_DEBT,
}


class MethodResolution(NamedTuple):
    method: str
    is_fallback: bool


def slugify_label(raw) -> str:
    """Lowercase, strip accents, collapse everything else to single underscores."""
    if raw is None:
        return ""
    text = unicodedata.normalize("NFKD", str(raw))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")


def resolve_payment_method(raw) -> MethodResolution:
    """Total function: every input maps to a canonical method."""
    slug = slugify_label(raw)
    method = _METHOD_ALIASES.get(slug)
    if method is not None:
        return MethodResolution(method, False)

    if slug:
        logger.debug("Unrecognized payment method %r; falling back to %s", raw, PAYMENT_METHOD_FALLBACK)
    return MethodResolution(PAYMENT_METHOD_FALLBACK, True)


def normalize_payment_method(raw) -> str:
    return resolve_payment_method(raw).method


def is_known_payment_method(raw) -> bool:
    return not resolve_payment_method(raw).is_fallback

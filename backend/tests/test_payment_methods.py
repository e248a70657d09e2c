import pytest

from pharmavault.services.payment_methods import (
    METHOD_CASH,
    METHOD_CREDIT_DEBT,
    METHOD_MOBILE_MONEY,
    PAYMENT_METHOD_FALLBACK,
    is_known_payment_method,
    normalize_payment_method,
    resolve_payment_method,
    slugify_label,
)


@pytest.mark.parametrize("raw, expected", [
    ("CASH", METHOD_CASH),
    ("Espèces", METHOD_CASH),
    ("especes", METHOD_CASH),
    ("  ESPECES ", METHOD_CASH),
    ("assurance", METHOD_CASH),
    ("MOBILE_MONEY", METHOD_MOBILE_MONEY),
    ("orange_money", METHOD_MOBILE_MONEY),
    ("Orange Money (Code Marchand)", METHOD_MOBILE_MONEY),
    ("CREDIT_DEBT", METHOD_CREDIT_DEBT),
    ("Crédit / Dette", METHOD_CREDIT_DEBT),
    ("crédit_dette", METHOD_CREDIT_DEBT),
])
def test_known_labels_map_to_canonical_methods(raw, expected):
    resolution = resolve_payment_method(raw)
    assert resolution.method == expected
    assert resolution.is_fallback is False


@pytest.mark.parametrize("raw", [None, "", "virement_cheque", "carte_bancaire", "bitcoin", 42])
def test_unknown_labels_fall_back_to_cash(raw):
    resolution = resolve_payment_method(raw)
    assert resolution.method == PAYMENT_METHOD_FALLBACK == METHOD_CASH
    assert resolution.is_fallback is True
    assert normalize_payment_method(raw) == METHOD_CASH
    assert not is_known_payment_method(raw)


def test_normalizing_a_canonical_value_is_stable():
    for method in (METHOD_CASH, METHOD_MOBILE_MONEY, METHOD_CREDIT_DEBT):
        assert normalize_payment_method(normalize_payment_method(method)) == method


def test_slugify_strips_accents_and_punctuation():
    assert slugify_label("Crédit / Dette") == "credit_dette"
    assert slugify_label("Orange Money (Code Marchand)") == "orange_money_code_marchand"
    assert slugify_label(None) == ""

# Overview: Flask API routes for ledger entries, credit debts and insurance claims; parses input and returns JSON responses.

# backend/pharmavault/routes/transactions.py
"""
Ledger API Routes

DESIGN:
- Sales (plain, insured, credit), expenses and returns are recorded on a shift
- Expenses wait for an administrator's approval or rejection
- Credit debts are settled per customer; insurance claims per insurer
- Every write is refused with 503 while the register is offline
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CashRegisterError, ValidationError
from ..extensions import db
from ..money import ZERO
from ..services import ledger_service
from ..services.transaction_normalizer import PAYMENT_UNPAID
from ..time_utils import parse_iso_datetime


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _error(e: CashRegisterError):
    return jsonify(e.to_dict()), e.http_status


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/sales")
def record_sale_route():
    """
    Record a sale.

    Request body:
    {
        "shift_id": 1,
        "amount": "100000",
        "payment_method": "CASH",
        "split": {"type": "insurance", "coverage_percent": 80,
                  "insurer_id": "CNSS", "card_id": "A-123"},   (optional)
        "created_by": "awa"                                    (optional)
    }

    A {"type": "credit", "customer_name": ..., "customer_phone": ...} split
    records a credit sale instead.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("shift_id") is None:
            raise ValidationError("shift_id is required")

        tx = ledger_service.record_sale(
            data.get("shift_id"),
            data.get("amount"),
            data.get("payment_method"),
            data.get("split"),
            created_by=data.get("created_by"),
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to record sale")


@transactions_bp.post("/expenses")
def record_expense_route():
    """
    Record an expense (PENDING until approved).

    Request body:
    {
        "shift_id": 1,
        "amount": "50000",
        "description": "Transport",
        "payment_method": "CASH"   (optional, default CASH)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("shift_id") is None:
            raise ValidationError("shift_id is required")

        tx = ledger_service.record_expense(
            data.get("shift_id"),
            data.get("amount"),
            data.get("description"),
            data.get("payment_method") or "CASH",
            created_by=data.get("created_by"),
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to record expense")


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        tx = ledger_service.get_transaction(transaction_id)
    except CashRegisterError as e:
        return _error(e)
    return jsonify({"transaction": tx.to_dict()}), 200


@transactions_bp.post("/<int:transaction_id>/return")
def record_return_route(transaction_id: int):
    """
    Return a sale. Booked on the open shift unless shift_id is given.

    Request body (all optional):
    {
        "created_by": "awa",
        "shift_id": 2,
        "reason": "Wrong dosage"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = ledger_service.record_return(
            transaction_id,
            created_by=data.get("created_by"),
            shift_id=data.get("shift_id"),
            reason=data.get("reason"),
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to record return")


@transactions_bp.post("/<int:transaction_id>/approve")
def approve_expense_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tx = ledger_service.approve_expense(transaction_id, data.get("admin_id"))
        return jsonify({"transaction": tx.to_dict()}), 200

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to approve expense")


@transactions_bp.post("/<int:transaction_id>/reject")
def reject_expense_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        tx = ledger_service.reject_expense(transaction_id, data.get("admin_id"))
        return jsonify({"transaction": tx.to_dict()}), 200

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to reject expense")


# =============================================================================
# CREDIT DEBTS
# =============================================================================

@transactions_bp.get("/credit-debts")
def list_credit_debts_route():
    debts = ledger_service.list_credit_debts()
    return jsonify({"debts": [d.to_dict() for d in debts]}), 200


@transactions_bp.post("/credit-debts/settle")
def settle_credit_route():
    """
    Request body:
    {
        "customer_key": "awa diallo::620000000",
        "admin_id": "manager"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        ids = ledger_service.settle_credit(data.get("customer_key"), data.get("admin_id"))
        return jsonify({"settled_transaction_ids": ids}), 200

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to settle credit")


# =============================================================================
# INSURANCE CLAIMS
# =============================================================================

@transactions_bp.get("/insurance-claims")
def list_insurance_claims_route():
    """
    Query params: insurer_id, start, end (ISO-8601)
    """
    try:
        claims = ledger_service.list_insurance_claims(
            insurer_id=request.args.get("insurer_id"),
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
        )
    except ValueError as e:
        return jsonify({"error": str(e), "code": ValidationError.code}), 400

    total = sum((tx.insurance_covered_amount for tx in claims), ZERO)
    unpaid = sum(
        (tx.insurance_covered_amount for tx in claims if tx.split.insurer_payment_status == PAYMENT_UNPAID),
        ZERO,
    )
    return jsonify({
        "claims": [tx.to_dict() for tx in claims],
        "total_covered": total,
        "total_unpaid": unpaid,
    }), 200


@transactions_bp.post("/insurance-claims/settle")
def settle_insurance_claims_route():
    """
    Request body:
    {
        "insurer_id": "CNSS",
        "admin_id": "manager",
        "start": "2026-01-01T00:00:00Z",   (optional)
        "end": "2026-01-31T23:59:59Z"      (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        ids = ledger_service.settle_insurance_claims(
            data.get("insurer_id"),
            data.get("admin_id"),
            start=parse_iso_datetime(data.get("start")),
            end=parse_iso_datetime(data.get("end")),
        )
        return jsonify({"settled_transaction_ids": ids}), 200

    except CashRegisterError as e:
        return _error(e)
    except ValueError as e:
        return jsonify({"error": str(e), "code": ValidationError.code}), 400
    except Exception:
        return _internal_error("Failed to settle insurance claims")

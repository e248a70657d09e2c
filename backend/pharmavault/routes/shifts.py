# Overview: Flask API routes for shift lifecycle and reconciliation; parses input and returns JSON responses.

# backend/pharmavault/routes/shifts.py
"""
Shift API Routes

DESIGN:
- Start a shift (one open shift system-wide)
- Close with a counted drawer, or force-close as an administrator
- Reconciliation preview before closing
- Shift duration is computed on every read

Authentication and roles live in front of this API; actor ids
(cashier_id, closed_by, admin_id) are taken from the request body.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CashRegisterError, ValidationError
from ..extensions import db
from ..services import ledger_service, reconciliation_service, shift_service
from ..time_utils import parse_iso_datetime


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


def _shift_payload(shift) -> dict:
    data = shift.to_dict()
    data["duration"] = shift_service.format_duration(shift_service.shift_duration(shift))
    return data


def _error(e: CashRegisterError):
    return jsonify(e.to_dict()), e.http_status


@shifts_bp.post("/")
@shifts_bp.post("")
def start_shift_route():
    """
    Start a new shift.

    Request body:
    {
        "cashier_id": "awa"
    }

    Returns 409 with the current holder if a shift is already open.
    """
    try:
        data = request.get_json(silent=True) or {}
        shift = shift_service.start_shift(data.get("cashier_id"))
        return jsonify({"shift": _shift_payload(shift)}), 201

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/active")
def get_active_shift_route():
    shift = shift_service.get_active_shift()
    return jsonify({"shift": _shift_payload(shift) if shift else None}), 200


@shifts_bp.get("/")
@shifts_bp.get("")
def list_shifts_route():
    """
    List shifts, most recent first.

    Query params: cashier_id, start, end (ISO-8601), limit (default 50)
    """
    try:
        shifts = shift_service.list_shifts(
            cashier_id=request.args.get("cashier_id"),
            start=parse_iso_datetime(request.args.get("start")),
            end=parse_iso_datetime(request.args.get("end")),
            limit=request.args.get("limit", default=50, type=int),
        )
    except ValueError as e:
        return jsonify({"error": str(e), "code": ValidationError.code}), 400

    return jsonify({"shifts": [_shift_payload(s) for s in shifts]}), 200


@shifts_bp.get("/<int:shift_id>")
def get_shift_route(shift_id: int):
    try:
        shift = shift_service.get_shift(shift_id)
    except CashRegisterError as e:
        return _error(e)
    return jsonify({"shift": _shift_payload(shift)}), 200


@shifts_bp.get("/<int:shift_id>/transactions")
def list_shift_transactions_route(shift_id: int):
    try:
        shift_service.get_shift(shift_id)
    except CashRegisterError as e:
        return _error(e)

    transactions = ledger_service.get_shift_transactions(shift_id)
    return jsonify({"transactions": [tx.to_dict() for tx in transactions]}), 200


@shifts_bp.get("/<int:shift_id>/reconciliation")
def reconciliation_preview_route(shift_id: int):
    """
    Preview the closing figures.

    Query params: counted_cash (optional) to also get the difference and outcome.
    """
    try:
        summary = reconciliation_service.compute_reconciliation_preview(
            shift_id,
            counted_cash=request.args.get("counted_cash"),
        )
        return jsonify({"reconciliation": summary.to_dict()}), 200

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to compute reconciliation preview")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    """
    Close a shift against the counted drawer.

    Request body:
    {
        "counted_cash": "100000",
        "closed_by": "awa"
    }

    Always succeeds on an open shift; the outcome (BALANCED, SHORTAGE,
    SURPLUS) is informational.
    """
    try:
        data = request.get_json(silent=True) or {}
        summary = reconciliation_service.close_shift(
            shift_id,
            data.get("counted_cash"),
            data.get("closed_by"),
        )
        return jsonify({"reconciliation": summary.to_dict()}), 200

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/force-close")
def force_close_shift_route(shift_id: int):
    """
    Administrative close without a cash count.

    Request body:
    {
        "admin_id": "manager"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        shift = reconciliation_service.force_close_shift(shift_id, data.get("admin_id"))
        return jsonify({"shift": _shift_payload(shift)}), 200

    except CashRegisterError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to force-close shift")
        return jsonify({"error": "Internal server error"}), 500

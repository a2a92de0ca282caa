# Overview: Flask API routes for installment settlement and overdue maintenance.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, engine_error_response, validation_error_response
from ..services import receivables_service
from ..services.errors import OrderEngineError
from ..time_utils import parse_iso_date
from ..validation import ValidationError


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api/receivables")


def _settlement(payment) -> dict:
    installment = payment.installment
    return {
        "payment": payment.to_dict(),
        "installment": installment.to_dict(),
        "receivable": installment.receivable.to_dict(),
    }


@receivables_bp.post("/installments/<int:installment_id>/payments")
@require_actor
def record_payment_route(installment_id: int):
    """Body: {"amount_cents": int}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount_cents") is None:
            return jsonify({"error": "amount_cents required"}), 400

        payment = receivables_service.record_payment(installment_id, data["amount_cents"], g.actor)
        return jsonify(_settlement(payment)), 201

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment on installment %s", installment_id)
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.get("/installments/<int:installment_id>/payments")
def list_payments_route(installment_id: int):
    payments = receivables_service.list_payments(installment_id)
    return jsonify({"payments": [p.to_dict() for p in payments]}), 200


@receivables_bp.post("/payments/<int:payment_id>/reverse")
@require_actor
def reverse_payment_route(payment_id: int):
    """Body (optional): {"amount_cents": int}; omitted reverses the whole remaining payment."""
    try:
        data = request.get_json(silent=True) or {}
        payment = receivables_service.reverse_payment(
            payment_id, g.actor, amount_cents=data.get("amount_cents")
        )
        return jsonify(_settlement(payment)), 200

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@receivables_bp.post("/refresh-overdue")
@require_actor
def refresh_overdue_route():
    """Body (optional): {"as_of": "YYYY-MM-DD"}"""
    data = request.get_json(silent=True) or {}
    try:
        as_of = parse_iso_date(data.get("as_of"))
    except (TypeError, ValueError):
        return jsonify({"error": "as_of must be YYYY-MM-DD"}), 400

    try:
        count = receivables_service.refresh_overdue(as_of)
        return jsonify({"updated": count}), 200
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refresh overdue installments")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for product stock counters, movements and adjustments.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, engine_error_response, validation_error_response
from ..services import stock_ledger
from ..services.errors import OrderEngineError
from ..validation import ValidationError, coerce_int


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/<int:product_id>/stock")
def product_stock(product_id: int):
    try:
        return jsonify({"stock": stock_ledger.stock_summary(product_id)}), 200
    except OrderEngineError as e:
        return engine_error_response(e)


@products_bp.get("/<int:product_id>/movements")
def product_movements(product_id: int):
    try:
        stock_ledger.stock_summary(product_id)
        limit = coerce_int(request.args.get("limit", 200), "limit", minimum=1, maximum=1000)
        order_id = request.args.get("order_id")
        movements = stock_ledger.list_movements(
            product_id=product_id,
            order_id=coerce_int(order_id, "order_id", minimum=1) if order_id else None,
            limit=limit,
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)


@products_bp.post("/<int:product_id>/adjust")
@require_actor
def adjust_stock(product_id: int):
    """
    Correct on_hand outside the order flow.

    Body: {"delta": int (non-zero), "note": str?}
    Refused (400) when on_hand would drop below the reserved quantity.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("delta") is None:
            return jsonify({"error": "delta required"}), 400

        delta = coerce_int(data["delta"], "delta")
        note = data.get("note")
        movement = stock_ledger.adjust_on_hand(product_id, delta, actor=g.actor, note=note)
        return jsonify({
            "movement": movement.to_dict(),
            "stock": stock_ledger.stock_summary(product_id),
        }), 201

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock for product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500

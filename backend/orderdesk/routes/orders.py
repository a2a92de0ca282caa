# Overview: Flask API routes for orders; lifecycle transitions, items, payment terms and receivables.

# backend/orderdesk/routes/orders.py
"""Order API routes. Mutating routes require the X-Actor header."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, engine_error_response, validation_error_response
from ..services import order_service, order_state_machine, receivables_service, transition_log
from ..services.errors import OrderEngineError
from ..validation import ValidationError, coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _snapshot(order) -> dict:
    data = order_service.order_snapshot(order)
    data["allowed_actions"] = order_state_machine.allowed_actions(order)
    return data


def _optional_int(data: dict, field: str):
    value = data.get(field)
    if value is None:
        return None
    return coerce_int(value, field, minimum=1)


@orders_bp.post("/")
@require_actor
def create_order_route():
    """
    Create a new quote (QUOTE_OPEN).

    Body (all optional): customer_ref, notes, items[], shipping_cents,
    discount_cents, other_expenses_cents, payment_type_id, payment_notes
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(
            g.actor,
            customer_ref=data.get("customer_ref"),
            notes=data.get("notes"),
            items=data.get("items"),
            shipping_cents=data.get("shipping_cents"),
            discount_cents=data.get("discount_cents"),
            other_expenses_cents=data.get("other_expenses_cents"),
            payment_type_id=_optional_int(data, "payment_type_id"),
            payment_notes=data.get("payment_notes"),
        )
        return jsonify({"order": _snapshot(order)}), 201

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
def list_orders_route():
    try:
        status = request.args.get("status") or None
        limit = coerce_int(request.args.get("limit", 200), "limit", minimum=1, maximum=1000)
        orders = order_service.list_orders(status, limit=limit)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except ValidationError as e:
        return validation_error_response(e)


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": _snapshot(order)}), 200
    except OrderEngineError as e:
        return engine_error_response(e)


@orders_bp.put("/<int:order_id>/items")
@require_actor
def replace_items_route(order_id: int):
    """
    Replace the whole item set of an order.

    Body: {"items": [{"product_id", "quantity", "price_cents"?}],
           "shipping_cents"?, "discount_cents"?, "other_expenses_cents"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.replace_items(
            order_id,
            data.get("items"),
            g.actor,
            shipping_cents=data.get("shipping_cents"),
            discount_cents=data.get("discount_cents"),
            other_expenses_cents=data.get("other_expenses_cents"),
        )
        return jsonify({"order": _snapshot(order)}), 200

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to replace order items")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/payment")
@require_actor
def update_payment_route(order_id: int):
    """Body: {"payment_type_id": int | null, "payment_notes": "30 60 90" | null}"""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_payment(
            order_id,
            g.actor,
            payment_type_id=_optional_int(data, "payment_type_id"),
            payment_notes=data.get("payment_notes"),
        )
        return jsonify({"order": _snapshot(order)}), 200

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order payment")
        return jsonify({"error": "Internal server error"}), 500


def _run_action(order_id: int, action, label: str):
    try:
        order = action(order_id, g.actor)
        return jsonify({"order": _snapshot(order)}), 200
    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s order %s", label, order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/send")
@require_actor
def send_quote_route(order_id: int):
    return _run_action(order_id, order_state_machine.send_quote, "send")


@orders_bp.post("/<int:order_id>/reserve")
@require_actor
def reserve_route(order_id: int):
    """
    Reserve stock for every item (quote -> ORDER_GENERATED).

    409 INSUFFICIENT_STOCK lists each short product in details.items.
    """
    return _run_action(order_id, order_state_machine.reserve_order, "reserve")


@orders_bp.post("/<int:order_id>/unreserve")
@require_actor
def unreserve_route(order_id: int):
    return _run_action(order_id, order_state_machine.unreserve_order, "unreserve")


@orders_bp.post("/<int:order_id>/invoice")
@require_actor
def invoice_route(order_id: int):
    return _run_action(order_id, order_state_machine.invoice_order, "invoice")


@orders_bp.post("/<int:order_id>/uninvoice")
@require_actor
def uninvoice_route(order_id: int):
    return _run_action(order_id, order_state_machine.uninvoice_order, "uninvoice")


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_route(order_id: int):
    return _run_action(order_id, order_state_machine.cancel_order, "cancel")


@orders_bp.post("/<int:order_id>/print")
@require_actor
def print_route(order_id: int):
    return _run_action(order_id, order_service.mark_printed, "print")


@orders_bp.patch("/<int:order_id>")
@require_actor
def patch_status_route(order_id: int):
    """Body: {"status": "<target status>"}; runs the one transition leading there."""
    data = request.get_json(silent=True) or {}
    target = data.get("status")
    if not target or not isinstance(target, str):
        return jsonify({"error": "status required"}), 400

    def _to_target(oid, actor):
        return order_state_machine.transition_to(oid, target.strip().upper(), actor)

    return _run_action(order_id, _to_target, "transition")


@orders_bp.post("/<int:order_id>/post-accounts")
@require_actor
def post_accounts_route(order_id: int):
    try:
        receivable = receivables_service.post_accounts(order_id, g.actor)
        order = order_service.get_order(order_id)
        return jsonify({
            "order": _snapshot(order),
            "receivable": receivable.to_dict(),
            "installments": [i.to_dict() for i in receivable.installments],
        }), 201

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post accounts for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reverse-accounts")
@require_actor
def reverse_accounts_route(order_id: int):
    try:
        receivable = receivables_service.reverse_accounts(order_id, g.actor)
        order = order_service.get_order(order_id)
        return jsonify({
            "order": _snapshot(order),
            "receivable": receivable.to_dict() if receivable else None,
        }), 200

    except ValidationError as e:
        return validation_error_response(e)
    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse accounts for order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/transitions")
def transitions_route(order_id: int):
    try:
        order_service.get_order(order_id)
        action = request.args.get("action") or None
        entries = transition_log.history(order_id, action=action)
        return jsonify({"transitions": [t.to_dict() for t in entries]}), 200
    except OrderEngineError as e:
        return engine_error_response(e)


@orders_bp.get("/<int:order_id>/installments")
def installments_route(order_id: int):
    try:
        order_service.get_order(order_id)
        include_cancelled = request.args.get("include_cancelled", "").lower() in ("1", "true", "yes")
        receivable = receivables_service.active_receivable(order_id)
        installments = receivables_service.list_installments(order_id, include_cancelled=include_cancelled)
        return jsonify({
            "receivable": receivable.to_dict() if receivable else None,
            "installments": [i.to_dict() for i in installments],
        }), 200
    except OrderEngineError as e:
        return engine_error_response(e)


@orders_bp.post("/bulk-cancel")
@require_actor
def bulk_cancel_route():
    """
    Cancel several orders; each one succeeds or fails on its own.

    Body: {"ids": [1, 2, 3]}
    Returns: {"processed": [...], "ignored": [{"id", "reason", "code"}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        ids = data.get("ids")
        if not isinstance(ids, list) or not ids:
            return jsonify({"error": "ids must be a non-empty list"}), 400

        order_ids = [coerce_int(v, f"ids[{i}]", minimum=1) for i, v in enumerate(ids)]
        result = order_state_machine.cancel_many(order_ids, g.actor)
        return jsonify(result), 200

    except ValidationError as e:
        return validation_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk-cancel orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_actor
def delete_order_route(order_id: int):
    """Hard delete; only for orders that never touched stock."""
    try:
        order_service.delete_quote(order_id, g.actor)
        return jsonify({"deleted": order_id}), 200

    except OrderEngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500

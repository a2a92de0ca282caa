# backend/orderdesk/routes/system.py
"""
System health endpoint.

Reports database connectivity plus a quick consistency check on the stock
counters, for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Order, Product
from ..models.orders import STATUS_ORDER_GENERATED
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Check database connectivity with a couple of counting queries."""
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "orders": order_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_stock_health() -> dict:
    """
    Degraded when any product shows negative availability.

    The ledger never produces that on its own; a hit means counters were
    edited outside services/stock_ledger.py.
    """
    start_time = time.time()
    try:
        oversold = (
            db.session.query(Product.id)
            .filter(Product.reserved > Product.on_hand)
            .order_by(Product.id)
            .all()
        )
        reserved_orders = db.session.query(Order).filter_by(status=STATUS_ORDER_GENERATED).count()
        elapsed_ms = (time.time() - start_time) * 1000

        details = {"reserved_orders": reserved_orders}
        if oversold:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Products with reserved > on_hand",
                "details": {**details, "product_ids": [row.id for row in oversold]},
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Stock health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Stock check error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: a check is unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    stock_health = check_stock_health()

    all_checks = [database_health, stock_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "stock": stock_health,
        }
    }
    return response, http_status

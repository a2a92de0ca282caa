# Overview: Request decorators and shared error responses for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services.errors import OrderEngineError
from .validation import ValidationError


ACTOR_HEADER = "X-Actor"
MAX_ACTOR_LENGTH = 120


def require_actor(f):
    """
    Require the acting user's name on every mutating request.

    Authentication lives in front of this service; the caller forwards who is
    acting in the X-Actor header. Sets g.actor for the route.

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor:
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401
        if len(actor) > MAX_ACTOR_LENGTH:
            return jsonify({"error": f"{ACTOR_HEADER} must be at most {MAX_ACTOR_LENGTH} characters"}), 400

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def engine_error_response(e: OrderEngineError):
    return jsonify(e.to_dict()), e.http_status


def validation_error_response(e: ValidationError):
    return jsonify({"error": str(e), "code": "VALIDATION_ERROR", "details": {"field": e.field}}), 400

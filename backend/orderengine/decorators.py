# Overview: Request decorators and error translation for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .errors import EngineError, StorageError
from .validation import MAX_INTEGER


def _header_id(name: str) -> int | None:
    raw = request.headers.get(name, "").strip()
    if not raw.isdecimal():
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if 0 < value <= MAX_INTEGER else None


def require_business_context(f):
    """
    Require the caller identity established by the authentication gateway.

    The gateway authenticates the user and checks business membership, then
    forwards the ids in trusted headers. Sets:
    - g.user_id: the acting user
    - g.business_id: the business (tenant) every query is scoped to

    Returns 401 if either header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = _header_id(current_app.config["USER_ID_HEADER"])
        business_id = _header_id(current_app.config["BUSINESS_ID_HEADER"])

        if user_id is None or business_id is None:
            return jsonify({"error": "Authentication required"}), 401

        g.user_id = user_id
        g.business_id = business_id

        return f(*args, **kwargs)

    return decorated_function


def engine_error_response(exc: EngineError):
    """JSON body and status code for a domain error."""
    if isinstance(exc, StorageError):
        current_app.logger.exception("Storage failure on %s %s: %s", request.method, request.path, exc.message)
    elif exc.retryable:
        current_app.logger.warning("%s on %s %s: %s", exc.code, request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.http_status

# Overview: Request guard decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request

from .extensions import db
from .models import User


def client_ip() -> str | None:
    """First hop of X-Forwarded-For, else the socket address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def rate_limited(f):
    """
    Reject clients over RATE_LIMIT_MAX_REQUESTS per window with 429.

    The limiter lives on app.extensions["rate_limiter"].
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        limiter = current_app.extensions["rate_limiter"]
        if not limiter.allow(f"{request.endpoint}:{client_ip()}"):
            return jsonify({"error": "Too many requests. Please try again later."}), 429
        return f(*args, **kwargs)

    return decorated_function


def authorize_user(user_id, roles):
    """
    Look up user_id and check its role.

    Returns None and sets g.current_user when allowed, else a 403 response.
    Missing or unknown users are refused the same way as wrong roles.
    """
    if not user_id:
        return jsonify({"error": "User not found"}), 403

    user = db.session.get(User, str(user_id))
    if not user or not user.is_active:
        return jsonify({"error": "User not found"}), 403
    if user.role not in roles:
        return jsonify({"error": "Insufficient permissions"}), 403

    g.current_user = user
    return None


def require_role(*roles: str):
    """Require the userId in the JSON body (or query string) to hold one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            payload = request.get_json(silent=True) or {}
            denied = authorize_user(payload.get("userId") or request.args.get("userId"), roles)
            if denied:
                return denied
            return f(*args, **kwargs)

        return decorated_function

    return decorator

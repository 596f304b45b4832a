# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request


def require_user(f):
    """
    Establish the acting user for a request.

    Authentication happens upstream; the gateway forwards the authenticated
    user id in the X-User-Id header. Sets g.user_id.

    Returns 401 if the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-User-Id", "").strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "Authentication required"}), 401

        g.user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function

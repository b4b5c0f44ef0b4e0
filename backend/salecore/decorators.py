# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


USER_HEADER = "X-User-Id"


def require_user(f):
    """
    Require an authenticated user id.

    Authentication happens upstream; the gateway forwards the user id in
    the X-User-Id header. Sets g.user_id for the view.

    Returns 401 if the header is missing or not a positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(USER_HEADER) or "").strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": "Authentication required", "code": "UNAUTHENTICATED"}), 401

        g.user_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function

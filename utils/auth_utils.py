import logging
from functools import wraps
from flask import jsonify, request, session

logger = logging.getLogger(__name__)


def login_required(f):
    """Decorator to ensure a valid session exists before accessing an API route.

    Sessions are issued by the portal's auth service; this only checks that
    one is present and answers 401 JSON otherwise.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session:
            logger.warning(f"Unauthorized request: {request.method} {request.path}")
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated_function

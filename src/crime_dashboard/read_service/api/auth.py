# src/crime_dashboard/read_service/api/auth.py

from functools import wraps
from flask import current_app, request

from crime_dashboard.exceptions import AuthorizationError

KEY_HEADER = "X-API-Key"


def require_key(admin: bool = False):
    """
    Decorator for endpoints that need an access key in the X-API-Key header.

    Args:
        admin: only the admin key is accepted. Otherwise the public key
            (read-only clients) and the admin key both are.

    No key, or an unknown one, is a 401; the public key on an admin
    endpoint is a 403.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            settings = current_app.config["SETTINGS"]
            key = request.headers.get(KEY_HEADER)
            if not key:
                raise AuthorizationError(f"Missing {KEY_HEADER} header")
            if key == settings.admin_key:
                return fn(*args, **kwargs)
            if key == settings.public_key:
                if admin:
                    raise AuthorizationError("Admin key required", status_code=403)
                return fn(*args, **kwargs)
            raise AuthorizationError("Invalid access key")
        return wrapper
    return decorator

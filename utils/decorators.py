"""Authorization decorators for role-based access control."""
from functools import wraps

from flask import current_app, request
from flask_login import current_user

from utils.errors import AuthenticationRequired, Forbidden


def token_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            raise AuthenticationRequired("Authentication required")
        return view_func(*args, **kwargs)

    return wrapped


def roles_required(*roles):
    allowed = {r.lower() for r in roles}

    def decorator(view_func):
        @wraps(view_func)
        @token_required
        def wrapped(*args, **kwargs):
            role_name = (current_user.role or "").lower()
            if role_name in allowed:
                return view_func(*args, **kwargs)

            current_app.logger.warning(
                "Unauthorized role access attempt",
                extra={"user_id": current_user.id, "role": current_user.role, "path": request.path},
            )
            raise Forbidden("Insufficient permissions")

        return wrapped

    return decorator

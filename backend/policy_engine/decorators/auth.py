from functools import wraps
from flask import abort
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from policy_engine.errors import UnknownUser
from policy_engine.services.policy import get_policy_service


def has_permissions(user_id: str, *codes: str) -> bool:
    service = get_policy_service()
    return all(service.is_allowed(user_id, c) for c in codes)


def require_permissions(*codes: str):
    """Resolve the caller's permissions live, so policy edits apply without re-login."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            try:
                allowed = has_permissions(get_jwt_identity(), *codes)
            except UnknownUser:
                abort(401, description='Unknown token subject')
            if not allowed:
                abort(403, description='Missing permission')
            return fn(*args, **kwargs)
        return wrapper
    return outer

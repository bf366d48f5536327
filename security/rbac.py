from functools import wraps
from flask import g, jsonify

from models.user import ADMIN_ROLES, SUPER_ADMIN


def require_roles(*role_names: str):
    """
    @require_roles("ADMIN") on back-office endpoints. SUPER_ADMIN passes
    every check; a missing session is 401, a missing role 403.
    """
    allowed = frozenset(role_names) | {SUPER_ADMIN}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401
            if user.role_names.isdisjoint(allowed):
                return jsonify(error="Forbidden", required=sorted(allowed)), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator


# shorthand for the booking/slot back office
require_admin = require_roles(*ADMIN_ROLES)

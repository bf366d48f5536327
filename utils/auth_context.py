from functools import wraps
from flask import g, jsonify

from models import db
from models.user import User
from security.session import get_session_from_request
from services.errors import Forbidden


def load_current_user():
    g.user = None
    g.session = get_session_from_request()
    if g.session is not None:
        g.user = db.session.get(User, g.session.user_id)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper


def ensure_owner_or_admin(owner_id: int) -> None:
    """Customers act on their own records only; admins on any."""
    user = g.user
    if user.id != owner_id and not user.is_admin():
        raise Forbidden()

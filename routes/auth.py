from flask import Blueprint, request, jsonify, current_app, g

from models import atomic
from models.user import User, Role, CUSTOMER, SUPPORTED_LANGUAGES
from security.password import hash_password, verify_password, MIN_PASSWORD_LENGTH
from security.session import create_session, revoke_session, revoke_all_sessions
from security.csrf import issue_csrf_token
from utils.audit import log_event
from utils.auth_context import login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _cookie_name() -> str:
    return current_app.config.get("AUTH_COOKIE_NAME", "visitslot_session")


def _credentials(data: dict):
    return (data.get("email") or "").strip().lower(), data.get("password") or ""


def _optional(data: dict, key: str):
    return (data.get(key) or "").strip() or None


CHANNEL_FLAGS = ("email_notifications", "sms_notifications")


def _channel_flags(data: dict):
    """Boolean notification preferences present in a payload; None if one is not a boolean."""
    flags = {k: data[k] for k in CHANNEL_FLAGS if k in data}
    if any(not isinstance(v, bool) for v in flags.values()):
        return None
    return flags


def _registration_error(email: str, password: str, language: str):
    if not isinstance(email, str) or "@" not in email or len(email) > 255:
        return "Invalid email"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if language not in SUPPORTED_LANGUAGES:
        return f"preferred_language must be one of {', '.join(SUPPORTED_LANGUAGES)}"
    return None


def _profile(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "roles": sorted(user.role_names),
        "full_name": user.full_name,
        "phone_number": user.phone_number,
        "preferred_language": user.preferred_language,
        "email_notifications": user.email_notifications,
        "sms_notifications": user.sms_notifications,
    }


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email, password = _credentials(data)
    language = (data.get("preferred_language") or "fr").strip().lower()

    problem = _registration_error(email, password, language)
    if problem:
        return jsonify(error=problem), 400
    channels = _channel_flags(data)
    if channels is None:
        return jsonify(error="Notification preferences must be booleans"), 400

    with atomic() as session:
        if User.query.filter_by(email=email).first() is not None:
            log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
            duplicate = True
        else:
            duplicate = False
            user = User(
                email=email,
                password_hash=hash_password(password),
                full_name=_optional(data, "full_name"),
                phone_number=_optional(data, "phone_number"),
                preferred_language=language,
                **channels,
            )
            role = Role.query.filter_by(name=CUSTOMER).first()
            if role is not None:
                user.roles.append(role)
            session.add(user)
            session.flush()
            log_event("REGISTER_SUCCESS", user_id=user.id)

    if duplicate:
        return jsonify(error="Email already registered"), 409
    return jsonify(message="Account created", id=user.id), 201


@auth_bp.post("/login")
def login():
    email, password = _credentials(request.get_json(silent=True) or {})
    user = User.query.filter_by(email=email).first()

    if user is None or not verify_password(password, user.password_hash):
        with atomic():
            log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    # one live session per user
    with atomic():
        revoked = revoke_all_sessions(user.id)
        token = create_session(user.id)
        log_event("LOGIN_SUCCESS", user_id=user.id, metadata={"revoked_sessions": revoked})

    cfg = current_app.config
    resp = jsonify(message="Signed in", user=_profile(user))
    resp.set_cookie(
        _cookie_name(),
        token,
        max_age=cfg.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        secure=cfg.get("SESSION_COOKIE_SECURE", False),
        httponly=True,
        samesite=cfg.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return issue_csrf_token(resp), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(_profile(g.user)), 200


@auth_bp.post("/logout")
@login_required
def logout():
    with atomic():
        revoke_session(request.cookies.get(_cookie_name()))
        log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Signed out")
    resp.delete_cookie(_cookie_name(), path="/")
    return resp, 200


@auth_bp.patch("/me/preferences")
@login_required
def update_preferences():
    data = request.get_json(silent=True) or {}
    channels = _channel_flags(data)
    if channels is None:
        return jsonify(error="Notification preferences must be booleans"), 400

    language = data.get("preferred_language")
    if language is not None and language not in SUPPORTED_LANGUAGES:
        return jsonify(error=f"preferred_language must be one of {', '.join(SUPPORTED_LANGUAGES)}"), 400

    with atomic():
        for key, value in channels.items():
            setattr(g.user, key, value)
        if language is not None:
            g.user.preferred_language = language
        log_event("PREFERENCES_UPDATE", user_id=g.user.id,
                  metadata={**channels, "preferred_language": language} if language else channels)

    return jsonify(_profile(g.user)), 200

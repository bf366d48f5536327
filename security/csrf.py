"""
Double-submit CSRF check for cookie-authenticated API calls.

The token is set as a readable cookie at login and must be echoed in the
X-CSRF-Token header on every state-changing request of a logged-in user.
The gateway callback carries no session; its hash authenticates it.
"""
import hmac
import secrets
from flask import g, request, jsonify, current_app

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

EXEMPT_PATHS = frozenset({
    "/auth/login",
    "/auth/register",
    "/health",
    "/payments/cmi/callback",
})


def issue_csrf_token(resp):
    resp.set_cookie(
        CSRF_COOKIE,
        secrets.token_urlsafe(32),
        httponly=False,  # read by the frontend and echoed in the header
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp


def csrf_protect():
    """before_request hook; returns a 403 response or None."""
    if request.method not in UNSAFE_METHODS or request.path in EXEMPT_PATHS:
        return None
    if getattr(g, "user", None) is None:
        # anonymous calls have no cookie session to ride on
        return None

    cookie_token = request.cookies.get(CSRF_COOKIE) or ""
    header_token = request.headers.get(CSRF_HEADER) or ""
    if not cookie_token or not hmac.compare_digest(cookie_token, header_token):
        return jsonify(error="CSRF validation failed"), 403
    return None

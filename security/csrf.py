import secrets
from flask import request, current_app
from services.errors import AuthorizationError

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

# auth bootstrap endpoints, called before a csrf cookie exists
CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/register",
    "/health",
}

STATE_CHANGING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def issue_csrf_token(resp):
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    return resp


def require_csrf(user):
    """
    Double-submit check for cookie-authenticated writes: the X-CSRF-Token
    header must echo the csrf_token cookie issued at login.
    """
    if request.method not in STATE_CHANGING_METHODS or request.path in CSRF_EXEMPT_PATHS:
        return
    if user is None:
        return

    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not secrets.compare_digest(cookie_token, header_token):
        raise AuthorizationError("CSRF validation failed")

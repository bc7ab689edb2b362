from flask import Blueprint, request, jsonify, current_app, g

from models import db
from models.user import User
from security.password import hash_password, verify_password, validate_password
from security.csrf import CSRF_COOKIE, issue_csrf_token
from security.rbac import ROLE_STUDENT, ROLE_FACULTY, ROLE_ADMIN, primary_role
from security.session import create_session, revoke_session
from utils.audit import log_event
from utils.auth_context import login_required
from utils.seed import get_role


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

SIGNUP_ROLES = {"student": ROLE_STUDENT, "faculty": ROLE_FACULTY, "admin": ROLE_ADMIN}


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip() or None
    department = (data.get("department") or "").strip() or None
    role_key = (data.get("role") or "student").strip().lower()

    if not _is_valid_email(email):
        return jsonify(error="Invalid email"), 400
    errors = validate_password(password)
    if errors:
        return jsonify(error="Password does not meet policy", details=errors), 400
    if role_key not in SIGNUP_ROLES:
        return jsonify(error="role must be student, faculty or admin"), 400

    if role_key == "admin":
        expected = current_app.config.get("ADMIN_SIGNUP_CODE")
        if not expected or data.get("admin_code") != expected:
            log_event("REGISTER_FAIL_ADMIN_CODE", metadata={"email": email})
            return jsonify(error="Invalid admin signup code"), 403

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        return jsonify(error="Email already registered"), 409

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        department=department,
    )
    user.roles.append(get_role(SIGNUP_ROLES[role_key]))
    db.session.add(user)
    db.session.commit()

    log_event("REGISTER_SUCCESS", user_id=user.id, metadata={"role": SIGNUP_ROLES[role_key]})
    return jsonify(id=user.id, message="Registered successfully"), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    raw_token = create_session(user.id)
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "facultyslot_session")

    resp = jsonify(message="Login OK", role=primary_role(user))
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )

    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        department=g.user.department,
        role=primary_role(g.user),
        roles=[r.name for r in g.user.roles],
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "facultyslot_session")
    revoke_session(request.cookies.get(cookie_name))
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    resp.delete_cookie(CSRF_COOKIE, path="/")
    return resp, 200

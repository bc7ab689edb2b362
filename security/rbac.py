from collections import namedtuple
from functools import wraps
from flask import g, jsonify

ROLE_STUDENT = "STUDENT"
ROLE_FACULTY = "FACULTY"
ROLE_ADMIN = "ADMIN"

ALL_ROLES = [ROLE_STUDENT, ROLE_FACULTY, ROLE_ADMIN]

# highest wins when a user holds several roles
_ROLE_PRECEDENCE = [ROLE_ADMIN, ROLE_FACULTY, ROLE_STUDENT]

# Identity handed to the booking core on every call. The core trusts it as given.
Actor = namedtuple("Actor", ["id", "role"])


def primary_role(user) -> str | None:
    names = {r.name for r in user.roles}
    for name in _ROLE_PRECEDENCE:
        if name in names:
            return name
    return None


def actor_for(user) -> Actor:
    return Actor(id=user.id, role=primary_role(user))


def require_roles(*role_names: str):
    """
    Usage: @require_roles("FACULTY")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            user_roles = {r.name for r in user.roles}
            if not user_roles.intersection(role_names):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator

import bcrypt
from flask import current_app

MIN_PASSWORD_LENGTH = 8


def validate_password(plain_password) -> list:
    errors = []
    if not isinstance(plain_password, str) or not plain_password:
        return ["Password is required"]
    if len(plain_password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    # bcrypt only looks at the first 72 bytes
    if len(plain_password.encode("utf-8")) > 72:
        errors.append("Password must be at most 72 bytes")
    return errors


def hash_password(plain_password: str) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False

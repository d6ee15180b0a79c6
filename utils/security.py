"""Security helpers for headers, password hashing, bearer tokens and OTP codes."""
import html
import secrets
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from flask import current_app, request
from jose import JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

MIN_PASSWORD_LENGTH = 6


def sanitize_input(data: Mapping) -> dict:
    """Return an HTML-escaped copy of string values; other JSON types pass through."""
    sanitized = {}
    for key, value in data.items():
        sanitized[html.escape(str(key))] = html.escape(value) if isinstance(value, str) else value
    return sanitized


def apply_security_headers(response, force_https: bool = False):
    """Headers for a JSON-only API; responses are never framed or cached."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cache-Control", "no-store")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def hash_password(password: str) -> str:
    return generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return check_password_hash(password_hash, password)


def password_meets_policy(password: Optional[str]) -> tuple[bool, str | None]:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return True, None


def generate_otp(length: int = 6) -> str:
    digits = "0123456789"
    code = "".join(secrets.choice(digits) for _ in range(length))
    # Codes never start with 0 so they always read as six digits.
    return secrets.choice("123456789") + code[1:]


def create_access_token(user, expires_delta: Optional[timedelta] = None) -> str:
    ttl = expires_delta or timedelta(days=int(current_app.config.get("TOKEN_TTL_DAYS", 7)))
    claims = {
        "sub": user.id,
        "username": user.username,
        "role": user.role,
        "exp": datetime.now(timezone.utc) + ttl,
    }
    return jwt.encode(claims, current_app.config["SECRET_KEY"], algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"))


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(
            token,
            current_app.config["SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except JWTError:
        return None


def bearer_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

"""
Crypto utilities — bcrypt password hashing and one-time tokens.

Password hashing:
  Supports both bcrypt ($2b$) and legacy werkzeug (scrypt/pbkdf2) hashes
  so accounts imported from older deployments can still sign in.

One-time tokens (password reset):
  The raw token is mailed to the user; only its SHA-256 digest is stored.
"""

import hashlib
import secrets

import bcrypt
from werkzeug.security import check_password_hash


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and legacy werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash or plain_password is None:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_reset_token() -> tuple[str, str]:
    """Return ``(raw_token, token_hash)`` for a password-reset link."""
    raw = secrets.token_hex(20)
    return raw, hash_reset_token(raw)


def hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

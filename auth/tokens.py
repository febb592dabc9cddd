"""
auth/tokens.py -- JWT and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       id, name, role, and expiry. Verification returns None on any failure --
       the route layer turns that into a 401.

  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_rounds. _DUMMY_HASH enables timing equalization on
       login so response time does not reveal whether a name exists [C1].

  Session ids: secrets.token_hex(32) gives 256 bits of entropy.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("accountguard.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _prehash(plain: str) -> bytes:
    """Reduce a password to a 44-byte base64 SHA-256 digest.

    bcrypt only considers the first 72 bytes of its input, and the policy
    allows 128 characters (up to 512 UTF-8 bytes). Every byte of the password
    must reach bcrypt, so it gets the digest instead of the raw bytes. base64
    keeps NUL bytes out of the bcrypt input.
    """
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("accountguard_timing_dummy")


def burn_dummy_verify(plain: str) -> None:
    """Run a bcrypt check against the dummy hash to equalize timing."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, name: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with the {id, name, role} claim set.

    Args:
        user_id:        Numeric user ID.
        name:           Account name.
        role:           "user" or "admin".
        expire_seconds: Token lifetime. 0 uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "id": user_id,
        "name": name,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "id" not in payload or "role" not in payload:
        return None
    return payload


def token_lifetime() -> int:
    return _settings.token_expire_seconds


# ---------------------------------------------------------------------------
# Session ids
# ---------------------------------------------------------------------------


def generate_session_id() -> str:
    """Return a 256-bit random session id as 64 hex characters."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )

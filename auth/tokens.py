"""
auth/tokens.py -- JWT issuance and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with the service's
       JWT_SECRET and carry id, email, name and the issuing system. The
       "system" claim keeps a token minted by one service from being accepted
       by another that happens to share a secret. Verification returns None
       on any failure -- the route layer turns that into a 401.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email is registered.

  Settings: every function that needs the secret or expiry takes the
       ServiceSettings instance explicitly. Nothing here reads the
       environment.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import parse_expiry

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore
    from core.config import ServiceSettings

logger = logging.getLogger("campus.auth")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only accepts 72 bytes. RegisterRequest rejects longer UTF-8
    encodings before they reach this function.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database, or an over-long password on bcrypt >= 5.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("campus_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user: User, settings: ServiceSettings) -> str:
    """Encode a signed JWT for the user, expiring after settings.jwt_expires_in."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=parse_expiry(settings.jwt_expires_in))
    payload = {
        "sub": user.email,
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "system": settings.service,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=_ALGORITHM)


def decode_access_token(token: str, settings: ServiceSettings) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    A token issued for another system is rejected even when the signature
    verifies.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "id" not in payload or payload.get("system") != settings.service:
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    bcrypt always runs, against _DUMMY_HASH when the email is unknown, so an
    attacker cannot enumerate registered emails by measuring response time.

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        logger.info("Login failed: unknown email")
        return None
    if not verify_password(password, user.hashed_password):
        logger.info("Login failed: bad password for user %s", user.id)
        return None
    return user

"""
auth/tokens.py -- Password hashing and JWT issue/verify.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Work factor comes from
       Settings.bcrypt_rounds (12 in production). A dummy hash of the same cost
       is checked when the account does not exist, so login response time does
       not reveal which emails are registered [C1].

  JWT: python-jose with HS256. Three token kinds share one encoder:
         access  -- {id, email, role}, JWT_SECRET, 1 hour
         refresh -- {id},              REFRESH_TOKEN_SECRET, 7 days
         reset   -- {email, otp_id},   JWT_SECRET, 15 minutes
       Every token carries a "type" claim. Access and reset tokens share a
       secret, so verification checks the type to stop a reset token from
       being accepted as a session.

  Revocation: none. A token is valid until it expires. Logout is a client-side
       discard.

Layer rule: no imports from api/. Settings arrive through the TokenIssuer
constructor, never from a module-level get_settings() call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("sjcauth.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
RESET = "reset"


class TokenError(Exception):
    """Base class for every token verification failure."""


class InvalidToken(TokenError):
    """Bad signature, malformed token, missing claims or wrong token type."""


class ExpiredToken(TokenError):
    """Signature is valid but the exp claim is in the past."""


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    72 characters so nothing a user types is silently ignored.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises: a malformed or empty hash is simply a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    # Same cost as real hashes so a miss takes as long as a wrong password [C1].
    return hash_password("sjcauth_timing_dummy", rounds=rounds)


def authenticate_user(store: UserStore, email: str, role: str, password: str, rounds: int = 12) -> User | None:
    """Check an email/role/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email or role mismatch: bcrypt runs against a dummy hash
    - OAuth-only account (no password yet): same
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email_and_role(email, role)
    if user is None or user.password_hash is None:
        verify_password(password, _dummy_hash(rounds))
        return None
    if not verify_password(password, user.password_hash):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Creates and validates the signed, time-limited tokens of the auth flow.

    Usage:
        issuer = TokenIssuer(get_settings())
        token = issuer.issue_access(user)
        claims = issuer.verify_access(token)   # raises TokenError subclasses
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def issue_access(self, user: User) -> str:
        claims = {"id": user.id, "email": user.email, "role": user.role}
        return self._encode(claims, self._settings.jwt_secret, self._settings.access_token_expire_seconds, ACCESS)

    def issue_refresh(self, user: User) -> str:
        return self._encode(
            {"id": user.id},
            self._settings.refresh_token_secret,
            self._settings.refresh_token_expire_seconds,
            REFRESH,
        )

    def issue_reset_token(self, email: str, otp_id: int) -> str:
        claims = {"email": email, "otp_id": otp_id}
        return self._encode(claims, self._settings.jwt_secret, self._settings.reset_token_expire_seconds, RESET)

    def verify(self, token: str, secret: str, expected_type: str | None = None) -> dict:
        """Decode a token and return its claims.

        Raises ExpiredToken if the signature is valid but exp has passed, and
        InvalidToken for everything else (signature mismatch, garbage input,
        or a token of a different type than expected_type).
        """
        try:
            claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredToken("token has expired") from exc
        except JWTError as exc:
            raise InvalidToken("token could not be verified") from exc
        if expected_type is not None and claims.get("type") != expected_type:
            raise InvalidToken(f"expected a {expected_type} token")
        return claims

    def verify_access(self, token: str) -> dict:
        claims = self.verify(token, self._settings.jwt_secret, ACCESS)
        if "id" not in claims or "role" not in claims:
            raise InvalidToken("access token is missing identity claims")
        return claims

    def verify_refresh(self, token: str) -> dict:
        return self.verify(token, self._settings.refresh_token_secret, REFRESH)

    def verify_reset(self, token: str) -> dict:
        claims = self.verify(token, self._settings.jwt_secret, RESET)
        if "email" not in claims or "otp_id" not in claims:
            raise InvalidToken("reset token is missing claims")
        return claims

    def _encode(self, claims: dict, secret: str, lifetime_seconds: int, token_type: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=lifetime_seconds),
        }
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

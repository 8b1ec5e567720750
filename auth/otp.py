"""
auth/otp.py -- One-time codes for password reset.

Lifecycle of one code:
  request_otp()     insert OtpToken(is_used=False, expires_at=now+10min), mail it
  verify_otp()      newest matching unused, unexpired row -> reset token (not consumed)
  reset_password()  reset token -> consume the OTP and set the new password, atomically

A code authorizes at most one password change: verify_otp() may be called
again for the same code, but only the first reset_password() for that OTP
succeeds.

Security notes:
  Codes come from secrets.randbelow (CSPRNG), uniform over 000000-999999.
  verify_otp() raises the same InvalidOtp for a wrong code, an expired code
  and a used code, so the response is not an oracle for which one it was.
  The OTP request response only carries a masked email.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.models import PASSWORD_RESET, OtpToken
from auth.store import UserStore, to_iso
from auth.tokens import InvalidToken, TokenError, TokenIssuer, hash_password

if TYPE_CHECKING:
    from auth.mailer import Mailer
    from core.config import Settings

logger = logging.getLogger("sjcauth.auth.otp")

OTP_LENGTH = 6


class UserNotFound(LookupError):
    """No account exists for the requested email."""


class InvalidOtp(ValueError):
    """Wrong, expired or already used code; callers cannot tell which."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp() -> str:
    """Return a uniformly random 6-digit decimal code, left-padded with zeros."""
    return f"{secrets.randbelow(10**OTP_LENGTH):0{OTP_LENGTH}d}"


def mask_email(email: str) -> str:
    """Hide most of the local part: "12345@x.ac.in" -> "123***@x.ac.in"."""
    name, _, domain = email.partition("@")
    return f"{name[:3]}***@{domain}"


class OtpManager:
    """Issues, verifies and consumes password reset codes.

    clock is injectable so tests can move time past the expiry window.
    """

    def __init__(
        self,
        store: UserStore,
        issuer: TokenIssuer,
        mailer: Mailer,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._mailer = mailer
        self._settings = settings
        self._clock = clock

    def resolve_email(self, roll_no: str | None = None, email: str | None = None) -> str:
        """Map a roll number or a raw email to the account email.

        A roll number wins when both are given. Raises ValueError if neither is.
        """
        if roll_no and roll_no.strip():
            return f"{roll_no.strip()}{self._settings.email_suffix}".lower()
        if email and email.strip():
            return email.strip().lower()
        raise ValueError("Roll number or email required")

    async def request_otp(self, email: str) -> str:
        """Create and mail a new code for email. Returns the masked email.

        Raises UserNotFound if no account uses that email. Mail failures
        propagate after the OTP row has been written.
        """
        if self._store.get_by_email(email) is None:
            raise UserNotFound(email)

        code = generate_otp()
        now = self._clock()
        expires_at = now + timedelta(minutes=self._settings.otp_expire_minutes)
        otp_id = self._store.create_otp(
            OtpToken(
                email=email,
                otp_code=code,
                expires_at=to_iso(expires_at),
                purpose=PASSWORD_RESET,
                created_at=to_iso(now),
            )
        )
        logger.info("Password reset OTP issued (otp_id=%d)", otp_id)
        await self._mailer.send_otp(email, code)
        return mask_email(email)

    def verify_otp(self, email: str, code: str) -> str:
        """Return a reset token bound to the newest matching code.

        Raises InvalidOtp if no unused, unexpired code matches. The OTP is not
        consumed here.
        """
        otp = self._store.find_active_otp(email.strip().lower(), code, PASSWORD_RESET, to_iso(self._clock()))
        if otp is None:
            raise InvalidOtp("Invalid or expired OTP")
        return self._issuer.issue_reset_token(otp.email, otp.id)

    def reset_password(self, reset_token: str, new_password: str) -> None:
        """Consume the OTP behind reset_token and store new_password.

        Raises InvalidToken if the token is malformed, expired, of the wrong
        type, or its OTP was already used.
        """
        try:
            claims = self._issuer.verify_reset(reset_token)
        except TokenError as exc:
            raise InvalidToken("Invalid or expired reset token") from exc

        password_hash = hash_password(new_password, rounds=self._settings.bcrypt_rounds)
        if not self._store.consume_otp_and_set_password(claims["otp_id"], claims["email"], password_hash):
            raise InvalidToken("Invalid or expired reset token")
        logger.info("Password reset completed (otp_id=%s)", claims["otp_id"])

    def purge_expired(self, grace: timedelta = timedelta(days=1)) -> int:
        """Delete codes that expired more than `grace` ago. Returns rows removed."""
        removed = self._store.purge_expired_otps(to_iso(self._clock() - grace))
        if removed:
            logger.info("Purged %d expired OTP rows", removed)
        return removed

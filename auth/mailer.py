"""
auth/mailer.py -- Outbound mail for password reset codes.

Delivery goes through the SendGrid SMTP relay with aiosmtplib (STARTTLS on
port 587, username "apikey", password SENDGRID_API_KEY). Nothing here retries:
a failed send raises and the route layer turns it into a 500.

Without an API key:
  DEBUG=true  -- log a warning and drop the message (local development)
  otherwise   -- raise MailNotConfigured
"""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import TYPE_CHECKING

import aiosmtplib

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sjcauth.auth.mailer")

OTP_SUBJECT = "Password Reset OTP - St. Joseph's College"

_OTP_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Password Reset Request</h2>
  <p>Your OTP for password reset is:</p>
  <h1 style="color: #2563eb; font-size: 32px; letter-spacing: 5px;">{code}</h1>
  <p>This OTP will expire in {minutes} minutes.</p>
  <p>If you didn't request this, please ignore this email.</p>
  <hr>
  <p style="color: #666; font-size: 12px;">
    St. Joseph's College (Autonomous)<br>
    Student Information System
  </p>
</div>
"""

_OTP_TEXT = (
    "Your OTP for password reset is: {code}\n\n"
    "This OTP will expire in {minutes} minutes.\n"
    "If you didn't request this, please ignore this email.\n"
)


class MailNotConfigured(RuntimeError):
    """SENDGRID_API_KEY is missing outside debug mode."""


def build_otp_message(sender: str, recipient: str, code: str, minutes: int) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = recipient
    message["Subject"] = OTP_SUBJECT
    message.set_content(_OTP_TEXT.format(code=code, minutes=minutes))
    message.add_alternative(_OTP_HTML.format(code=code, minutes=minutes), subtype="html")
    return message


class Mailer:
    """Sends OTP mails through the configured SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def send_otp(self, email: str, code: str) -> None:
        settings = self._settings
        if not settings.sendgrid_api_key:
            if settings.debug:
                logger.warning("SENDGRID_API_KEY not set; OTP mail not delivered (debug mode)")
                return
            raise MailNotConfigured("SENDGRID_API_KEY is required to send OTP mail")

        message = build_otp_message(settings.from_email, email, code, settings.otp_expire_minutes)
        await aiosmtplib.send(
            message,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            start_tls=True,
            username="apikey",
            password=settings.sendgrid_api_key,
            timeout=30,
        )
        logger.info("OTP mail dispatched")

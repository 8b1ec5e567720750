"""
tests/test_mailer.py -- OTP mail composition and the unconfigured-relay paths.

No test here opens an SMTP connection.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import DOMAIN, make_settings

from auth.mailer import OTP_SUBJECT, MailNotConfigured, Mailer, build_otp_message


def test_message_headers_and_bodies():
    message = build_otp_message("no-reply@example.edu", f"12345@{DOMAIN}", "042917", 10)
    assert message["From"] == "no-reply@example.edu"
    assert message["To"] == f"12345@{DOMAIN}"
    assert message["Subject"] == OTP_SUBJECT

    text_part = message.get_body(preferencelist=("plain",))
    html_part = message.get_body(preferencelist=("html",))
    assert "042917" in text_part.get_content()
    assert "10 minutes" in text_part.get_content()
    assert "042917" in html_part.get_content()


def test_debug_without_key_skips_delivery():
    mailer = Mailer(make_settings(sendgrid_api_key=""))
    asyncio.run(mailer.send_otp(f"12345@{DOMAIN}", "123456"))


def test_production_without_key_raises():
    settings = make_settings(
        debug=False,
        sendgrid_api_key="",
        jwt_secret="j" * 32,
        refresh_token_secret="r" * 32,
        session_secret="s" * 32,
    )
    with pytest.raises(MailNotConfigured):
        asyncio.run(Mailer(settings).send_otp(f"12345@{DOMAIN}", "123456"))

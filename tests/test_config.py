"""
tests/test_config.py -- Unit tests for core/config.py secret policy.

Settings are built with explicit keyword arguments; those take precedence
over the DEBUG=true default that conftest.py puts in the environment.
"""

from __future__ import annotations

import pytest

from core.config import Settings

_JWT = "j" * 32
_REFRESH = "r" * 32
_SESSION = "s" * 32


def test_production_requires_secrets():
    with pytest.raises(ValueError, match="JWT_SECRET is required"):
        Settings(debug=False)


def test_production_with_all_secrets():
    settings = Settings(debug=False, jwt_secret=_JWT, refresh_token_secret=_REFRESH, session_secret=_SESSION)
    assert settings.jwt_secret == _JWT
    assert settings.google_enabled is False


@pytest.mark.parametrize("field", ["jwt_secret", "refresh_token_secret", "session_secret"])
def test_short_secret_rejected(field):
    secrets = {"jwt_secret": _JWT, "refresh_token_secret": _REFRESH, "session_secret": _SESSION}
    secrets[field] = "too-short"
    with pytest.raises(ValueError, match="at least 32 characters"):
        Settings(debug=False, **secrets)


def test_access_and_refresh_secrets_must_differ():
    with pytest.raises(ValueError, match="must be different"):
        Settings(debug=False, jwt_secret=_JWT, refresh_token_secret=_JWT, session_secret=_SESSION)


def test_debug_generates_missing_secrets():
    settings = Settings(debug=True)
    assert len(settings.jwt_secret) >= 32
    assert len(settings.refresh_token_secret) >= 32
    assert len(settings.session_secret) >= 32
    assert settings.jwt_secret != settings.refresh_token_secret


def test_email_suffix_follows_domain():
    settings = Settings(debug=True, college_domain="example.edu")
    assert settings.email_suffix == "@example.edu"


def test_google_enabled_needs_id_and_secret():
    assert Settings(debug=True, google_client_id="id").google_enabled is False
    assert Settings(debug=True, google_client_id="id", google_client_secret="secret").google_enabled is True

"""
auth/oauth.py -- Authlib Google OAuth configuration and identity extraction.

build_oauth() returns an authlib registry with Google registered only when both
client ID and secret are configured. The registry is created in the app
lifespan and stored on app.state.oauth, so tests can swap in a fake.

Security notes:
  [H1] Email verification is mandatory. get_oauth_identity() raises ValueError
       if Google does not confirm the email is verified.

  The hosted-domain hint (hd=<college domain>) only narrows the Google account
  chooser. It is not a security boundary; the provisioner re-checks the domain
  of the asserted email.

  OAuth state (CSRF protection) is handled by authlib through Starlette
  SessionMiddleware.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from authlib.integrations.starlette_client import OAuth

from auth.provisioning import OAuthIdentity, local_part

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sjcauth.auth.oauth")

GOOGLE = "google"
_GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(settings: Settings) -> OAuth:
    """Return an OAuth registry with Google registered if it is configured."""
    oauth = OAuth()
    if settings.google_enabled:
        oauth.register(
            name=GOOGLE,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=_GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")
    else:
        logger.info("Google OAuth not configured; /api/auth/google will redirect to the failure page")
    return oauth


def get_oauth_identity(token: dict, provider: str = GOOGLE) -> OAuthIdentity:
    """Extract the asserted identity from a Google token response.

    Google returns an id_token whose claims authlib parses into
    token["userinfo"]: email, email_verified, sub and name.

    Raises:
        ValueError: no userinfo, unverified email [H1], or missing email/sub.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider} OAuth: email is not verified")

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    display_name = userinfo.get("name") or local_part(email)
    return OAuthIdentity(email=email, display_name=display_name, subject=str(subject), provider=provider)

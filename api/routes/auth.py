"""
api/routes/auth.py -- Authentication REST endpoints, mounted under /api/auth.

Routes:
  POST /api/auth/login                  -- password login; access + refresh tokens
  GET  /api/auth/google                 -- redirect to Google (hosted-domain hint)
  GET  /api/auth/google/callback        -- provision/link account, redirect to frontend with tokens
  POST /api/auth/password/request-otp   -- mail a 6-digit reset code
  POST /api/auth/password/verify-otp    -- exchange a code for a reset token
  POST /api/auth/password/reset         -- set a new password with a reset token
  POST /api/auth/logout                 -- stateless no-op
  GET  /api/auth/verify-token           -- decoded claims of a Bearer access token
  GET  /api/auth/me                     -- current account and profile

Security:
  [H2] POST /login and POST /password/request-otp are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a token.
  Login returns the same bad_credentials error for unknown user and wrong password.
  Token failures are reported without saying whether the token expired or was forged.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from aiosmtplib import SMTPException
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PasswordResetRequest,
    RoleEnum,
    UserSummary,
    VerifyTokenResponse,
)
from auth.dependencies import get_current_user, get_token_claims
from auth.mailer import MailNotConfigured
from auth.models import STUDENT, User
from auth.oauth import GOOGLE, get_oauth_identity
from auth.otp import InvalidOtp, OtpManager, UserNotFound
from auth.provisioning import DomainNotAllowed, OAuthProvisioner
from auth.store import UserStore
from auth.tokens import InvalidToken, TokenIssuer, authenticate_user
from core.config import Settings, get_settings

logger = logging.getLogger("sjcauth.api.auth")

# Auth policy:
# - every route except /verify-token and /me is public
# - GET /verify-token: Bearer access token (get_token_claims)
# - GET /me:           Bearer access token of an active account (get_current_user)
router = APIRouter()

# Rate limit strings are read once at import; tests raise them through env vars.
_limits = get_settings()


# ---------------------------------------------------------------------------
# Password login
# ---------------------------------------------------------------------------


@limiter.limit(_limits.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate a student (roll number) or faculty member (email).

    Students: email is built as <rollNo>@<college domain>.
    Faculty:  email is taken as given.
    The stored role must match the requested role.
    """
    settings: Settings = request.app.state.settings
    user_store: UserStore = request.app.state.user_store

    if body.role == RoleEnum.student:
        roll_no = (body.roll_no or "").strip()
        if not roll_no:
            raise HTTPException(
                status_code=400,
                detail={"code": "roll_required", "message": "Roll number is required for students."},
            )
        email = f"{roll_no}{settings.email_suffix}".lower()
    else:
        email = (body.email or "").strip().lower()
        if not email:
            raise HTTPException(
                status_code=400,
                detail={"code": "email_required", "message": "Email is required for faculty."},
            )

    user = authenticate_user(user_store, email, body.role.value, body.password, rounds=settings.bcrypt_rounds)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid credentials."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    issuer: TokenIssuer = request.app.state.token_issuer
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user=UserSummary(id=user.id, email=user.email, role=user.role),
            access_token=issuer.issue_access(user),
            refresh_token=issuer.issue_refresh(user),
        ).model_dump(by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------


def _failure_redirect(settings: Settings, error: str = "oauth_failed") -> RedirectResponse:
    return RedirectResponse(f"{settings.frontend_url}/login?{urlencode({'error': error})}", status_code=302)


@router.get("/google")
async def google_login(request: Request) -> RedirectResponse:
    """Redirect the browser to Google's consent page.

    hd narrows the account chooser to the college domain. The callback still
    checks the domain of the returned email.
    """
    settings: Settings = request.app.state.settings
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        return _failure_redirect(settings)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri, hd=settings.college_domain)


@router.get("/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Handle Google's redirect, provision the account and hand tokens to the frontend.

    Flow:
      1. Exchange the authorization code (authlib checks state via the session).
      2. Extract the verified identity [H1].
      3. Provision: domain gate, role derivation, create-or-link.
      4. Reject disabled accounts.
      5. Redirect to <frontend>/auth/callback?token=<access>&refresh=<refresh>.
    Persistence errors are not caught here; they surface as 500.
    """
    settings: Settings = request.app.state.settings
    client = request.app.state.oauth.create_client(GOOGLE)
    if client is None:
        return _failure_redirect(settings)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Google token exchange failed")
        return _failure_redirect(settings)

    try:
        identity = get_oauth_identity(token, GOOGLE)
    except ValueError:
        logger.warning("Google login rejected: unverified or missing email")
        return _failure_redirect(settings)

    provisioner: OAuthProvisioner = request.app.state.provisioner
    try:
        user = provisioner.provision(identity)
    except DomainNotAllowed:
        return _failure_redirect(settings, "domain_not_allowed")

    if not user.is_active:
        return _failure_redirect(settings, "account_disabled")

    issuer: TokenIssuer = request.app.state.token_issuer
    query = urlencode({"token": issuer.issue_access(user), "refresh": issuer.issue_refresh(user)})
    resp = RedirectResponse(f"{settings.frontend_url}/auth/callback?{query}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# OTP password reset
# ---------------------------------------------------------------------------


@limiter.limit(_limits.otp_rate_limit)  # [H2] each request sends a mail
@router.post("/password/request-otp", response_model=OtpRequestResponse)
async def request_otp(request: Request, body: OtpRequest) -> OtpRequestResponse:
    """Mail a reset code to the account behind a roll number or email.

    The response reveals only a masked form of the address.
    """
    otp_manager: OtpManager = request.app.state.otp_manager
    try:
        email = otp_manager.resolve_email(body.roll_no, body.email)
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "identifier_required", "message": "Roll number or email required."},
        ) from exc

    try:
        masked = await otp_manager.request_otp(email)
    except UserNotFound as exc:
        raise HTTPException(
            status_code=404,
            detail={"code": "user_not_found", "message": "User not found."},
        ) from exc
    except (SMTPException, MailNotConfigured, OSError) as exc:
        logger.exception("OTP mail delivery failed")
        raise HTTPException(
            status_code=500,
            detail={"code": "otp_send_failed", "message": "Failed to send OTP."},
        ) from exc

    return OtpRequestResponse(email=masked)


@router.post("/password/verify-otp", response_model=OtpVerifyResponse)
def verify_otp(request: Request, body: OtpVerifyRequest) -> JSONResponse:
    """Exchange a valid code for a short-lived reset token.

    Wrong, expired and used codes all get the same 400.
    """
    otp_manager: OtpManager = request.app.state.otp_manager
    try:
        reset_token = otp_manager.verify_otp(body.email, body.otp)
    except InvalidOtp as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_otp", "message": "Invalid or expired OTP."},
        ) from exc

    resp = JSONResponse(content=OtpVerifyResponse(reset_token=reset_token).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/password/reset", response_model=MessageResponse)
def reset_password(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Set a new password. The OTP behind the reset token is consumed."""
    otp_manager: OtpManager = request.app.state.otp_manager
    try:
        otp_manager.reset_password(body.reset_token, body.new_password)
    except InvalidToken as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_reset_token", "message": "Invalid or expired reset token."},
        ) from exc
    return MessageResponse(message="Password reset successfully")


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Stateless logout. Tokens stay valid until they expire; the client discards them."""
    return MessageResponse(message="Logged out successfully")


@router.get("/verify-token", response_model=VerifyTokenResponse)
async def verify_token(claims: dict = Depends(get_token_claims)) -> VerifyTokenResponse:
    """Return the decoded claims of the Bearer access token."""
    return VerifyTokenResponse(user=claims)


@router.get("/me", response_model=MeResponse)
def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the current account with its student or faculty profile."""
    user_store: UserStore = request.app.state.user_store
    if current_user.role == STUDENT:
        student = user_store.get_student_profile(current_user.id)
        return MeResponse(
            id=current_user.id,
            email=current_user.email,
            role=current_user.role,
            oauth_provider=current_user.oauth_provider,
            name=student.student_name if student else None,
            roll_no=student.roll_no if student else None,
            status=student.status if student else None,
        )
    faculty = user_store.get_faculty_profile(current_user.id)
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        role=current_user.role,
        oauth_provider=current_user.oauth_provider,
        name=faculty.faculty_name if faculty else None,
    )

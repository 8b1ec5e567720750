"""
auth/dependencies.py -- FastAPI Depends() helpers for Bearer authentication.

Other services of the information system call these before their own
handlers (student, faculty and document routes all sit behind them):

  get_token_claims()  -- decoded access-token claims; 401 if no token,
                         403 if it is invalid or expired (cause not revealed).
  get_current_user()  -- the User row behind the claims; 401 if the account
                         is gone or disabled.
  require_role(role)  -- dependency factory that also checks the role; 403.

Layer rule: may import fastapi (part of the DI system) but not api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import TokenError, TokenIssuer


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_token_claims(request: Request) -> dict:
    """Require a valid access token. Returns its claims.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: dict = Depends(get_token_claims)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "token_required", "message": "Access token required."},
        )
    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        return issuer.verify_access(token)
    except TokenError as exc:
        raise HTTPException(
            status_code=403,
            detail={"code": "invalid_token", "message": "Invalid or expired token."},
        ) from exc


def get_current_user(request: Request) -> User:
    """Require a valid access token whose account still exists and is active."""
    claims = get_token_claims(request)
    user = request.app.state.user_store.get_by_id(claims["id"])
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Account not found or disabled."},
        )
    return user


def require_role(role: str) -> Callable[[Request], User]:
    """Build a dependency that admits only users with the given role.

    Usage:
        @router.get("/faculty-only")
        async def route(user: User = Depends(require_role("faculty"))): ...
    """

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role != role:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{role.capitalize()} access required."},
            )
        return user

    return dependency

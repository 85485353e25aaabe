"""
api/routes/auth.py -- Primary-surface authentication endpoints.

Routes:
  POST  /api/auth/verify           -- confirm an e-mail with its 6-digit code
  POST  /api/auth/resend-code      -- issue a fresh code for a registered e-mail
  POST  /api/auth/login            -- password login; refresh token set as cookie
  POST  /api/auth/refresh          -- new access token from the refresh cookie
  POST  /api/auth/logout           -- revoke the refresh cookie; idempotent
  GET   /api/auth/me               -- current identity (requires auth)
  PATCH /api/auth/profile          -- update own name / e-mail (requires auth)
  POST  /api/auth/change-password  -- new password, revokes every refresh token

Security:
  [H2] /login and /verify are rate-limited per client address.
  [C1] AuthService.login() runs bcrypt for unknown e-mails too (timing equalization).
  [M5] Cache-Control: no-store on every response that carries a token.
  The refresh token never appears in a JSON body on this surface: it lives in
  an httpOnly, SameSite=Strict cookie scoped to the whole site.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    ProfileUpdate,
    ResendCodeRequest,
    SessionResponse,
    UserEnvelope,
    UserOut,
    VerifyRequest,
)
from auth.dependencies import get_caller, get_current_principal, get_current_user
from auth.models import Principal, User
from auth.service import AuthService, Caller
from core.config import get_settings

REFRESH_COOKIE = "refreshToken"

# Auth policy:
# - POST  /auth/verify, /auth/resend-code, /auth/login:  public
# - POST  /auth/refresh, /auth/logout:                   public -- the cookie is the credential
# - GET   /auth/me, PATCH /auth/profile:                 requires auth (get_current_principal)
# - POST  /auth/change-password:                         requires auth (get_current_principal)
router = APIRouter()


def _set_refresh_cookie(request: Request, response: Response, token: str) -> None:
    settings = request.app.state.settings
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().verify_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/verify", response_model=MessageResponse)
def verify(request: Request, body: VerifyRequest, caller: Caller = Depends(get_caller)) -> MessageResponse:
    """Consume a verification code.

    Any mismatch (wrong code, used, expired) is the same 400. Activation only
    happens when the code was issued with auto-approve; otherwise the account
    waits for an admin. A blocked account is refused with 403.
    """
    service: AuthService = request.app.state.auth_service
    result = service.verify_email(body.email, body.code, caller)
    return MessageResponse(message=result.message)


@limiter.limit(get_settings().verify_rate_limit)
@router.post("/auth/resend-code", response_model=MessageResponse)
def resend_code(request: Request, body: ResendCodeRequest) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    return MessageResponse(message=service.resend_code(body.email))


@limiter.limit(get_settings().login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=SessionResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    caller: Caller = Depends(get_caller),
) -> SessionResponse:
    """Authenticate with e-mail and password.

    401 for an unknown e-mail or wrong password (same message for both);
    403 with a distinct message for pending and blocked accounts.
    """
    service: AuthService = request.app.state.auth_service
    session = service.login(body.email, body.password, caller)
    _set_refresh_cookie(request, response, session.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return SessionResponse(access_token=session.access_token, user=UserOut.from_user(session.user))


@router.post("/auth/refresh", response_model=SessionResponse)
def refresh(request: Request, response: Response) -> SessionResponse:
    """Mint a new access token. The refresh cookie itself is left unchanged."""
    service: AuthService = request.app.state.auth_service
    session = service.refresh(request.cookies.get(REFRESH_COOKIE))
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return SessionResponse(access_token=session.access_token, user=UserOut.from_user(session.user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, response: Response) -> MessageResponse:
    """Revoke the refresh cookie's token and clear the cookie. Safe to repeat."""
    service: AuthService = request.app.state.auth_service
    service.logout(request.cookies.get(REFRESH_COOKIE))
    response.delete_cookie(REFRESH_COOKIE, httponly=True, samesite="strict")
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the resolved identity and how the caller authenticated."""
    return MeResponse(user=UserOut.from_user(principal.user), auth_method=principal.auth_method)


@router.patch("/auth/profile", response_model=UserEnvelope)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
) -> UserEnvelope:
    service: AuthService = request.app.state.auth_service
    updated = service.update_profile(current_user, name=body.name, email=body.email, caller=caller)
    return UserEnvelope(user=UserOut.from_user(updated))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
) -> MessageResponse:
    """Change the caller's password. Every session must log in again afterwards."""
    service: AuthService = request.app.state.auth_service
    service.change_password(current_user, body.current_password, body.new_password, caller)
    return MessageResponse(message="Password changed successfully")

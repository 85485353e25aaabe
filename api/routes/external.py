"""
api/routes/external.py -- Integration-facing endpoints.

Routes:
  POST /api/external/register  -- X-API-Key (account API key); 201 {message, appName}
  POST /api/external/verify    -- X-API-Key; verify = login once the account is active
  POST /api/external/login     -- X-API-Key; tokens returned in the body
  POST /api/public/signup      -- X-API-Key (external signup key); 201 {message}

Every call on this surface is scoped to a key: require_api_key() stamps the
key's last_used_at and demands an active owner; require_signup_key() demands
an active signup key. The key gate runs before body validation is acted on.

Refresh tokens are returned in JSON here (integrations are not browsers), so
these responses carry Cache-Control: no-store [M5].
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    ExternalRegisterResponse,
    ExternalSessionResponse,
    ExternalVerifyResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserOut,
    VerifyRequest,
)
from auth.dependencies import get_caller, require_api_key, require_signup_key
from auth.models import ApiKey, SignupKey
from auth.service import AuthService, Caller
from core.config import get_settings

router = APIRouter()


@router.post("/external/register", response_model=ExternalRegisterResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    api_key: ApiKey = Depends(require_api_key),
    caller: Caller = Depends(get_caller),
) -> ExternalRegisterResponse:
    """Create a pending account and e-mail a code branded with the integration's name.

    The account row persists even if the e-mail cannot be sent (502); the
    registrant can then use /api/auth/resend-code.
    """
    service: AuthService = request.app.state.auth_service
    app_name = service.register_external(api_key, body.email, body.password, body.name, caller)
    return ExternalRegisterResponse(message="Verification code sent to your email", app_name=app_name)


@limiter.limit(get_settings().verify_rate_limit)
@router.post("/external/verify", response_model=ExternalVerifyResponse)
def verify(
    request: Request,
    response: Response,
    body: VerifyRequest,
    api_key: ApiKey = Depends(require_api_key),
    caller: Caller = Depends(get_caller),
) -> ExternalVerifyResponse:
    """Consume a code; when that leaves the account active, return a token pair."""
    service: AuthService = request.app.state.auth_service
    result = service.verify_external(api_key, body.email, body.code, caller)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return ExternalVerifyResponse(
        message=result.message,
        access_token=result.session.access_token if result.session else None,
        refresh_token=result.session.refresh_token if result.session else None,
        user=UserOut.from_user(result.user),
    )


@limiter.limit(get_settings().login_rate_limit)
@router.post("/external/login", response_model=ExternalSessionResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    api_key: ApiKey = Depends(require_api_key),
    caller: Caller = Depends(get_caller),
) -> ExternalSessionResponse:
    service: AuthService = request.app.state.auth_service
    session = service.login_external(api_key, body.email, body.password, caller)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return ExternalSessionResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        user=UserOut.from_user(session.user),
    )


@router.post("/public/signup", response_model=MessageResponse, status_code=201)
def public_signup(
    request: Request,
    body: RegisterRequest,
    signup_key: SignupKey = Depends(require_signup_key),
    caller: Caller = Depends(get_caller),
) -> MessageResponse:
    """Tenant signup. The key's auto-approve policy applies at verification time."""
    service: AuthService = request.app.state.auth_service
    service.signup_public(signup_key, body.email, body.password, body.name, caller)
    return MessageResponse(message="Verification code sent to email")

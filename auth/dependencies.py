"""
auth/dependencies.py -- FastAPI Depends() helpers for authorization.

Two surfaces, two gates:
  1. Primary surface: Authorization: Bearer <credential>. The credential is an
     API key when it carries the API-key prefix, otherwise a signed access
     token. Both converge on a Principal.
  2. External surface: X-API-Key: <api key>, required unconditionally. The
     key's owner must be active; the key is stamped on every call.

Public signup uses a third, narrower gate: X-API-Key carrying an external
signup key (tenant capability, no owning account).

parse_bearer() turns the raw header into a Credential exactly once;
resolve_principal() turns a Credential into a Principal. Neither caches
anything across requests.

get_current_principal() raises Unauthorized/Forbidden (auth.errors) and
api/main.py renders them. require_admin() runs after identity resolution and
raises Forbidden unless the account is an admin.

Layer rule: no imports from api/ or mail/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from auth.errors import Forbidden, Unauthorized
from auth.models import ApiKey, ApiKeyCredential, AuthMethod, BearerToken, Credential, Principal, SignupKey, User
from auth.service import Caller
from auth.store import AccountStore
from auth.tokens import InvalidToken, TokenIssuer

logger = logging.getLogger("nanoadmin.auth")

_BEARER = "Bearer "


def client_ip(request: Request) -> str:
    """Caller address for activity and audit rows: first X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_caller(request: Request) -> Caller:
    """Request metadata for activity and audit rows."""
    return Caller(ip_address=client_ip(request), user_agent=request.headers.get("User-Agent"))


def parse_bearer(header: str | None, issuer: TokenIssuer) -> Credential | None:
    """Classify an Authorization header value. None if absent or not a Bearer header."""
    if not header or not header.startswith(_BEARER):
        return None
    raw = header[len(_BEARER) :].strip()
    if not raw:
        return None
    if issuer.is_api_key(raw):
        return ApiKeyCredential(key=raw)
    return BearerToken(token=raw)


def resolve_api_key(raw_key: str, store: AccountStore, issuer: TokenIssuer) -> tuple[ApiKey, User]:
    """Resolve a raw API key to (key, owner).

    Fails Unauthorized if the key is unknown or disabled, or if its owner is
    missing or not active. Stamps last_used_at on success.
    """
    api_key = store.get_api_key_by_hash(issuer.hash_key(raw_key))
    if api_key is None or not api_key.is_active:
        raise Unauthorized("Invalid or disabled API key")
    owner = store.get_by_id(api_key.user_id)
    if owner is None or not owner.is_active:
        raise Unauthorized("API key owner not found or inactive")
    store.touch_api_key(api_key.id)
    return api_key, owner


def resolve_principal(credential: Credential, store: AccountStore, issuer: TokenIssuer) -> Principal:
    """Resolve a parsed credential into the Principal for this request."""
    if isinstance(credential, ApiKeyCredential):
        api_key, owner = resolve_api_key(credential.key, store, issuer)
        return Principal(user=owner, auth_method=AuthMethod.api_key, api_key=api_key)

    try:
        claims = issuer.decode_access_token(credential.token)
    except InvalidToken:
        raise Unauthorized("Invalid or expired token") from None
    user = store.get_by_id(claims["sub"])
    if user is None:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Forbidden("Account not active")
    return Principal(user=user, auth_method=AuthMethod.bearer_token, claims=claims)


# ---------------------------------------------------------------------------
# Primary surface
# ---------------------------------------------------------------------------


def get_current_principal(request: Request) -> Principal:
    """Require a Bearer credential. Raises Unauthorized / Forbidden.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    issuer: TokenIssuer = request.app.state.issuer
    credential = parse_bearer(request.headers.get("Authorization"), issuer)
    if credential is None:
        raise Unauthorized("Authorization required")
    return resolve_principal(credential, request.app.state.store, issuer)


def get_current_user(principal: Principal = Depends(get_current_principal)) -> User:
    return principal.user


def require_admin(principal: Principal = Depends(get_current_principal)) -> User:
    """Require admin role. Unauthorized if unauthenticated, Forbidden if not admin."""
    if not principal.user.is_admin:
        raise Forbidden("Admin access required")
    return principal.user


# ---------------------------------------------------------------------------
# External surfaces
# ---------------------------------------------------------------------------


def require_api_key(request: Request) -> ApiKey:
    """Require X-API-Key holding an account API key with an active owner."""
    raw_key = request.headers.get("X-API-Key", "")
    if not raw_key:
        raise Unauthorized("API key required. Provide X-API-Key header.")
    api_key, _owner = resolve_api_key(raw_key, request.app.state.store, request.app.state.issuer)
    return api_key


def require_signup_key(request: Request) -> SignupKey:
    """Require X-API-Key holding an active external signup key."""
    raw_key = request.headers.get("X-API-Key", "")
    if not raw_key:
        raise Unauthorized("API key required")
    store: AccountStore = request.app.state.store
    issuer: TokenIssuer = request.app.state.issuer
    signup_key = store.get_signup_key_by_hash(issuer.hash_key(raw_key))
    if signup_key is None or not signup_key.is_active:
        logger.warning("Rejected signup key %s... from %s", raw_key[:8], client_ip(request))
        raise Unauthorized("Invalid API key")
    return signup_key

"""
api/routes/api_keys.py -- API key management for the current account.

Routes:
  GET    /api/api-keys        -- list own keys (metadata only)
  POST   /api/api-keys        -- create a key; the raw key is returned ONCE
  PATCH  /api/api-keys/{id}   -- enable / disable a key
  DELETE /api/api-keys/{id}   -- delete a key

Security:
  [H3] At most 10 keys per account.
  IDOR guard: every lookup passes the caller's id; the store's WHERE clause
  requires both to match, so another account's key is simply "not found".
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyResponse, ApiKeyUpdate, MessageResponse
from auth.dependencies import get_caller, get_current_user
from auth.models import User
from auth.service import AuthService, Caller
from auth.store import AccountStore

router = APIRouter()


@router.get("/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(request: Request, current_user: User = Depends(get_current_user)) -> list[ApiKeyResponse]:
    store: AccountStore = request.app.state.store
    return [ApiKeyResponse.from_key(k) for k in store.get_api_keys(current_user.id)]


@router.post("/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    current_user: User = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is shown once and never stored."""
    service: AuthService = request.app.state.auth_service
    api_key, raw_key = service.create_api_key(current_user, body.name, caller)
    return ApiKeyCreatedResponse.from_key(api_key, key=raw_key)


@router.patch("/api-keys/{key_id}", response_model=ApiKeyResponse)
def update_api_key(
    request: Request,
    key_id: str,
    body: ApiKeyUpdate,
    current_user: User = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
) -> ApiKeyResponse:
    service: AuthService = request.app.state.auth_service
    return ApiKeyResponse.from_key(service.set_api_key_active(current_user, key_id, body.is_active, caller))


@router.delete("/api-keys/{key_id}", response_model=MessageResponse)
def delete_api_key(
    request: Request,
    key_id: str,
    current_user: User = Depends(get_current_user),
    caller: Caller = Depends(get_caller),
) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.delete_api_key(current_user, key_id, caller)
    return MessageResponse(message="API key deleted successfully")

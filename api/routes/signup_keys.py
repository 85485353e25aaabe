"""
api/routes/signup_keys.py -- External signup key administration (admin only).

Routes:
  GET   /api/signup-keys        -- list keys, optionally for one project
  POST  /api/signup-keys        -- create a key; the raw key is returned ONCE
  PATCH /api/signup-keys/{id}   -- toggle isActive / autoApproveSignup

projectId is an opaque tenant label. Every change is written to the audit log.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import SignupKeyCreate, SignupKeyCreatedResponse, SignupKeyResponse, SignupKeyUpdate
from auth.dependencies import get_caller, require_admin
from auth.models import User
from auth.service import AuthService, Caller
from auth.store import AccountStore

router = APIRouter()


@router.get("/signup-keys", response_model=list[SignupKeyResponse])
def list_signup_keys(
    request: Request,
    project_id: Optional[str] = Query(None, alias="projectId"),
    current_user: User = Depends(require_admin),
) -> list[SignupKeyResponse]:
    store: AccountStore = request.app.state.store
    return [SignupKeyResponse.from_key(k) for k in store.list_signup_keys(project_id)]


@router.post("/signup-keys", response_model=SignupKeyCreatedResponse, status_code=201)
def create_signup_key(
    request: Request,
    body: SignupKeyCreate,
    current_user: User = Depends(require_admin),
    caller: Caller = Depends(get_caller),
) -> SignupKeyCreatedResponse:
    service: AuthService = request.app.state.auth_service
    signup_key, raw_key = service.create_signup_key(
        body.name,
        body.project_id,
        rate_limit=body.rate_limit,
        auto_approve_signup=body.auto_approve_signup,
        actor=current_user,
        caller=caller,
    )
    return SignupKeyCreatedResponse.from_key(signup_key, key=raw_key)


@router.patch("/signup-keys/{key_id}", response_model=SignupKeyResponse)
def update_signup_key(
    request: Request,
    key_id: str,
    body: SignupKeyUpdate,
    current_user: User = Depends(require_admin),
    caller: Caller = Depends(get_caller),
) -> SignupKeyResponse:
    service: AuthService = request.app.state.auth_service
    signup_key = service.update_signup_key(
        key_id,
        is_active=body.is_active,
        auto_approve_signup=body.auto_approve_signup,
        actor=current_user,
        caller=caller,
    )
    return SignupKeyResponse.from_key(signup_key)

"""
api/routes/users.py -- Account listing and admin account management.

Routes:
  GET    /api/users        -- paginated account list (requires auth)
  POST   /api/users        -- create an active account (admin only)
  PATCH  /api/users/{id}   -- change name / role / status (admin only)
  DELETE /api/users/{id}   -- soft-delete (admin only)

Security:
  [M4] An admin cannot delete, demote or block its own account (400).
  Entering "active" from any other status sends the approval e-mail; a
  delivery failure there does not fail the request.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import MessageResponse, UserCreate, UserEnvelope, UserListResponse, UserOut, UserUpdate
from auth.dependencies import get_caller, get_current_user, require_admin
from auth.models import Status, User
from auth.service import AuthService, Caller
from auth.store import AccountStore

router = APIRouter()


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    status: Optional[Status] = None,
    current_user: User = Depends(get_current_user),
) -> UserListResponse:
    """List live accounts, newest first. search matches name or e-mail."""
    store: AccountStore = request.app.state.store
    users, total = store.list_users(page=page, limit=limit, search=search, status=status)
    return UserListResponse(users=[UserOut.from_user(u) for u in users], total=total, page=page, limit=limit)


@router.post("/users", response_model=UserEnvelope, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
    caller: Caller = Depends(get_caller),
) -> UserEnvelope:
    """Create an account that is active immediately. Admin only. 409 if the e-mail is taken."""
    service: AuthService = request.app.state.auth_service
    user = service.create_user(current_user, body.email, body.password, body.name, role=body.role, caller=caller)
    return UserEnvelope(user=UserOut.from_user(user))


@router.patch("/users/{user_id}", response_model=UserEnvelope)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    current_user: User = Depends(require_admin),
    caller: Caller = Depends(get_caller),
) -> UserEnvelope:
    service: AuthService = request.app.state.auth_service
    updated = service.update_user(
        current_user, user_id, name=body.name, role=body.role, status=body.status, caller=caller
    )
    return UserEnvelope(user=UserOut.from_user(updated))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
    caller: Caller = Depends(get_caller),
) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.delete_user(current_user, user_id, caller)
    return MessageResponse(message="User deleted successfully")

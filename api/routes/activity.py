"""
api/routes/activity.py -- Read-only activity feed, audit trail and dashboard counters.

Routes:
  GET /api/activities          -- paginated activity feed (requires auth)
  GET /api/activities/recent   -- latest N activities (requires auth)
  GET /api/audit-logs          -- audit trail (admin only)
  GET /api/dashboard/stats     -- account counters (requires auth)

Activity and audit rows are append-only; there are no mutations here.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import ActivityListResponse, ActivityResponse, AuditLogResponse, DashboardStats
from auth.dependencies import get_current_user, require_admin
from auth.models import Status
from auth.store import AccountStore

# Auth policy:
# - every route requires auth (router-level dependency)
# - GET /audit-logs additionally requires admin
router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/activities", response_model=ActivityListResponse)
def list_activities(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    action: Optional[str] = Query(None, max_length=100),
) -> ActivityListResponse:
    store: AccountStore = request.app.state.store
    pairs, total = store.list_activities(page=page, limit=limit, search=search, action=action)
    return ActivityListResponse(
        activities=[ActivityResponse.from_pair(a, u) for a, u in pairs],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/activities/recent", response_model=list[ActivityResponse])
def recent_activities(request: Request, limit: int = Query(10, ge=1, le=100)) -> list[ActivityResponse]:
    store: AccountStore = request.app.state.store
    return [ActivityResponse.from_pair(a, u) for a, u in store.recent_activities(limit)]


@router.get("/audit-logs", response_model=list[AuditLogResponse], dependencies=[Depends(require_admin)])
def list_audit_logs(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    project_id: Optional[str] = Query(None, alias="projectId"),
) -> list[AuditLogResponse]:
    store: AccountStore = request.app.state.store
    return [AuditLogResponse.from_entry(e) for e in store.list_audit_logs(limit, offset, project_id)]


@router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(request: Request) -> DashboardStats:
    """Return the four dashboard counters.

    Response:
      totalUsers        -- live accounts
      activeUsers       -- live accounts with status active
      newUsersToday     -- accounts created since 00:00 UTC
      pendingApprovals  -- live accounts with status pending
    """
    store: AccountStore = request.app.state.store
    midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return DashboardStats(
        total_users=store.count_users(),
        active_users=store.count_users(status=Status.active),
        new_users_today=store.count_users(since=midnight),
        pending_approvals=store.count_users(status=Status.pending),
    )

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these dataclasses; the flow controller and routes do the work.

Role and Status are closed enumerations. Anything outside them is rejected at
the data-model boundary (store mappers and API request models), never carried
around as a free-form string.

Credential is a sum type over the two bearer schemes. The authorization
dependencies parse a raw header exactly once into a Credential, then resolve
it into a Principal that downstream handlers receive.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    admin = "admin"
    user = "user"


class Status(str, Enum):
    pending = "pending"
    active = "active"
    blocked = "blocked"


class AuthMethod(str, Enum):
    bearer_token = "bearer_token"
    api_key = "api_key"


@dataclass
class User:
    """An account in the control center.

    email is unique among non-deleted accounts only: a soft-deleted account
    frees its address for a new registration. hashed_password is a bcrypt
    digest and never leaves the server.
    """

    email: str
    name: str
    hashed_password: str
    role: Role = Role.user
    status: Status = Status.pending
    id: str | None = None
    is_deleted: bool = False
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is Status.active and not self.is_deleted

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin


@dataclass
class VerificationCode:
    """Single-use proof of e-mail ownership, looked up by (email, code).

    api_key_id / api_key_name record the integration that triggered the
    registration so the e-mail can carry that app's name. auto_approve decides
    whether a successful verification activates the account.
    """

    email: str
    code: str
    expires_at: datetime
    id: str | None = None
    used: bool = False
    created_at: datetime | None = None
    api_key_id: str | None = None
    api_key_name: str | None = None
    auto_approve: bool = False


@dataclass
class RefreshToken:
    user_id: str
    token: str  # 128 hex chars from 64 random bytes
    expires_at: datetime
    id: str | None = None
    created_at: datetime | None = None


@dataclass
class ApiKey:
    """A long-lived credential for programmatic clients.

    Security design:
    - key_hash is HMAC-SHA256(SECRET_KEY, raw_key). Deterministic, so the
      store does an O(1) lookup by digest. The raw key is never persisted.
    - key_prefix (first 12 chars of the raw key) is kept for display only.
    """

    user_id: str
    name: str
    key_hash: str
    key_prefix: str
    id: str | None = None
    is_active: bool = True
    last_used_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class SignupKey:
    """Tenant-scoped capability that lets a third-party app provision accounts.

    project_id is an opaque tenant label. rate_limit is requests per minute,
    recorded for the tenant; auto_approve_signup is copied onto the
    verification codes issued through this key.
    """

    project_id: str
    name: str
    key_hash: str
    key_prefix: str
    id: str | None = None
    rate_limit: int = 100
    is_active: bool = True
    auto_approve_signup: bool = False
    last_used_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Activity:
    action: str
    user_id: str | None = None
    details: str | None = None
    ip_address: str | None = None
    id: str | None = None
    created_at: datetime | None = None


@dataclass
class AuditLog:
    action: str  # "create", "update", "delete", ...
    resource: str  # "user", "signup_key", ...
    user_id: str | None = None
    project_id: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    source: str = "website"  # "website" | "api" | "cli"
    id: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Credentials and principals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BearerToken:
    """A signed access token taken from Authorization: Bearer."""

    token: str


@dataclass(frozen=True)
class ApiKeyCredential:
    """A raw API key, from Authorization: Bearer or X-API-Key."""

    key: str


Credential = Union[BearerToken, ApiKeyCredential]


@dataclass
class Principal:
    """The resolved identity attached to an authorized request."""

    user: User
    auth_method: AuthMethod
    claims: dict[str, Any] | None = None
    api_key: ApiKey | None = None

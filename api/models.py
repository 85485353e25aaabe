"""
API request and response models for Nano Admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (accessToken, isActive, ...). Every model derives its
aliases with to_camel and also accepts the snake_case names, so handlers build
responses with Python field names and FastAPI serialises by alias.

Request validators raise ValueError with one human-readable sentence. The
RequestValidationError handler in api/main.py returns the first such message
as a 400.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Activity, ApiKey, AuditLog, AuthMethod, Role, SignupKey, Status, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CODE_PATTERN = re.compile(r"^\d{6}$")

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128

# Identifiers and display text are trimmed. Passwords are taken byte for byte.
Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _check_email(value: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    return value


def _check_password(value: str, label: str = "Password") -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"{label} must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"{label} must be at most {MAX_PASSWORD_LENGTH} characters")
    return value


def _check_name(value: str) -> str:
    if len(value) < 2:
        raise ValueError("Name must be at least 2 characters")
    return value


# ---------------------------------------------------------------------------
# Request models -- registration, verification, login
# ---------------------------------------------------------------------------


class RegisterRequest(_Request):
    """Body for POST /api/external/register, /api/public/signup and POST /api/users."""

    email: Trimmed
    password: str
    name: Trimmed

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def valid_password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: str) -> str:
        return _check_name(v)


class UserCreate(RegisterRequest):
    role: Role = Role.user


class LoginRequest(_Request):
    email: Trimmed
    password: str

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def password_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


class VerifyRequest(_Request):
    email: Trimmed
    code: Trimmed

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("code")
    @classmethod
    def six_digits(cls, v: str) -> str:
        if not CODE_PATTERN.match(v):
            raise ValueError("Code must be 6 digits")
        return v


class ResendCodeRequest(_Request):
    email: Trimmed

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        return _check_email(v)


# ---------------------------------------------------------------------------
# Request models -- account management
# ---------------------------------------------------------------------------


class ProfileUpdate(_Request):
    name: Optional[Trimmed] = None
    email: Optional[Trimmed] = None

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v) if v else v

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: Optional[str]) -> Optional[str]:
        return _check_name(v) if v else v


class ChangePasswordRequest(_Request):
    current_password: str
    new_password: str

    @field_validator("current_password")
    @classmethod
    def current_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Current password is required")
        return v

    @field_validator("new_password")
    @classmethod
    def valid_new_password(cls, v: str) -> str:
        return _check_password(v, label="New password")


class UserUpdate(_Request):
    """Body for PATCH /api/users/{id}. Only the supplied fields change."""

    name: Optional[Trimmed] = None
    role: Optional[Role] = None
    status: Optional[Status] = None

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: Optional[str]) -> Optional[str]:
        return _check_name(v) if v else v


class ApiKeyCreate(_Request):
    name: Trimmed = Field(max_length=100)

    @field_validator("name")
    @classmethod
    def name_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Name is required")
        return v


class ApiKeyUpdate(_Request):
    is_active: bool


class SignupKeyCreate(_Request):
    name: Trimmed = Field(max_length=100)
    project_id: Trimmed = Field(max_length=64)
    rate_limit: int = Field(default=100, ge=1, le=100_000)
    auto_approve_signup: bool = False

    @field_validator("name")
    @classmethod
    def name_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("project_id")
    @classmethod
    def project_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Project id is required")
        return v


class SignupKeyUpdate(_Request):
    is_active: Optional[bool] = None
    auto_approve_signup: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models -- accounts and sessions
# ---------------------------------------------------------------------------


class UserOut(_Response):
    """Public view of an account. The password hash never leaves the server."""

    id: str
    email: str
    name: str
    role: Role
    status: Status
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            status=user.status,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class UserEnvelope(_Response):
    user: UserOut


class MessageResponse(_Response):
    message: str


class SessionResponse(_Response):
    """Primary-surface login/refresh. The refresh token travels in a cookie."""

    access_token: str
    user: UserOut


class ExternalSessionResponse(_Response):
    """External login. The refresh token is returned in the body."""

    access_token: str
    refresh_token: str
    user: UserOut


class ExternalRegisterResponse(_Response):
    message: str
    app_name: str


class ExternalVerifyResponse(_Response):
    """Tokens are null when the account is still waiting for approval."""

    message: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: UserOut


class MeResponse(_Response):
    user: UserOut
    auth_method: AuthMethod


class UserListResponse(_Response):
    users: list[UserOut]
    total: int
    page: int
    limit: int


# ---------------------------------------------------------------------------
# Response models -- keys
# ---------------------------------------------------------------------------


class ApiKeyResponse(_Response):
    """API key metadata. The raw key is never included after creation."""

    id: str
    name: str
    key_prefix: str
    is_active: bool
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_key(cls, key: ApiKey, /, **extra: Any) -> "ApiKeyResponse":
        return cls(
            id=key.id,
            name=key.name,
            key_prefix=key.key_prefix,
            is_active=key.is_active,
            last_used_at=key.last_used_at,
            created_at=key.created_at,
            **extra,
        )


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Returned only on creation. key is shown ONCE."""

    key: str


class SignupKeyResponse(_Response):
    id: str
    project_id: str
    name: str
    key_prefix: str
    rate_limit: int
    is_active: bool
    auto_approve_signup: bool
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_key(cls, key: SignupKey, /, **extra: Any) -> "SignupKeyResponse":
        return cls(
            id=key.id,
            project_id=key.project_id,
            name=key.name,
            key_prefix=key.key_prefix,
            rate_limit=key.rate_limit,
            is_active=key.is_active,
            auto_approve_signup=key.auto_approve_signup,
            last_used_at=key.last_used_at,
            created_at=key.created_at,
            **extra,
        )


class SignupKeyCreatedResponse(SignupKeyResponse):
    key: str


# ---------------------------------------------------------------------------
# Response models -- feeds and dashboard
# ---------------------------------------------------------------------------


class ActivityActor(_Response):
    id: str
    email: str
    name: str


class ActivityResponse(_Response):
    id: str
    user_id: Optional[str] = None
    action: str
    details: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
    user: Optional[ActivityActor] = None

    @classmethod
    def from_pair(cls, activity: Activity, actor: Optional[User]) -> "ActivityResponse":
        return cls(
            id=activity.id,
            user_id=activity.user_id,
            action=activity.action,
            details=activity.details,
            ip_address=activity.ip_address,
            created_at=activity.created_at,
            user=ActivityActor(id=actor.id, email=actor.email, name=actor.name) if actor else None,
        )


class ActivityListResponse(_Response):
    activities: list[ActivityResponse]
    total: int
    page: int
    limit: int


class AuditLogResponse(_Response):
    id: str
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: dict[str, Any] = {}
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    source: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: AuditLog) -> "AuditLogResponse":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            project_id=entry.project_id,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            source=entry.source,
            created_at=entry.created_at,
        )


class DashboardStats(_Response):
    total_users: int
    active_users: int
    new_users_today: int
    pending_approvals: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

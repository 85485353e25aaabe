"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AccountStore is the repository; the _row_to_*
functions are the mappers. Route, dependency and service code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Invariants owned here rather than in callers:
  - One live account per e-mail: a partial UNIQUE index over rows with
    is_deleted = 0. Soft-deleted rows keep their address but no longer
    block re-registration. A lost race surfaces as Conflict.
  - Single use of a verification code: consume_verification_code() selects
    and marks the row inside one transaction, guarded by "WHERE used = 0";
    the affected row count decides the winner.
  - Soft-deleted accounts are invisible to every user lookup.

Timestamps are timezone-aware UTC, written as fixed-width ISO-8601 strings so
that SQL string comparison is chronological comparison.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict
from auth.models import Activity, ApiKey, AuditLog, RefreshToken, Role, SignupKey, Status, User, VerificationCode

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'nanoadmin.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("password", Text, nullable=False),  # bcrypt digest
    Column("name", String(255), nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.user.value),
    Column("status", String(16), nullable=False, server_default=Status.pending.value),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

# Uniqueness only among live accounts; see module docstring.
Index(
    "uq_users_email_live",
    _users.c.email,
    unique=True,
    sqlite_where=_users.c.is_deleted == 0,
    postgresql_where=_users.c.is_deleted == 0,
)

_verification_codes = Table(
    "verification_codes",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, index=True),
    Column("code", String(6), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("api_key_id", String(36)),
    Column("api_key_name", Text),
    Column("auto_approve", Integer, nullable=False, server_default="0"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("key_prefix", String(12), nullable=False),  # display only
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_signup_keys = Table(
    "external_signup_keys",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("project_id", String(64), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("key_prefix", String(12), nullable=False),
    Column("rate_limit", Integer, nullable=False, server_default="100"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("auto_approve_signup", Integer, nullable=False, server_default="0"),
    Column("last_used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_activities = Table(
    "activities",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), index=True),
    Column("action", Text, nullable=False),
    Column("details", Text),
    Column("ip_address", String(64)),
    Column("created_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36)),
    Column("project_id", String(64), index=True),
    Column("action", String(32), nullable=False),
    Column("resource", String(32), nullable=False),
    Column("resource_id", String(36)),
    Column("details", Text),  # JSON object
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("source", String(16), nullable=False, server_default="website"),
    Column("created_at", String(32), nullable=False),
)

_USER_FIELDS = {"email", "name", "hashed_password", "role", "status", "last_login_at"}
_API_KEY_FIELDS = {"name", "is_active", "last_used_at"}
_SIGNUP_KEY_FIELDS = {"name", "rate_limit", "is_active", "auto_approve_signup", "last_used_at"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert domain values (enums, bools, datetimes) to column values."""
    values: dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, (Role, Status)):
            value = value.value
        elif isinstance(value, bool):
            value = 1 if value else 0
        elif isinstance(value, datetime):
            value = _iso(value)
        values["password" if key == "hashed_password" else key] = value
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for accounts and every credential that hangs off them.

    Usage:
        store = AccountStore()
        user = store.create_user(User(email="a@x.com", name="A", hashed_password=hash_password("pw")))
        store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one live account exists."""
        return self.count_users() > 0

    def count_users(self, status: Status | None = None, since: datetime | None = None) -> int:
        query = select(func.count()).select_from(_users).where(_users.c.is_deleted == 0)
        if status is not None:
            query = query.where(_users.c.status == status.value)
        if since is not None:
            query = query.where(_users.c.created_at >= _iso(since))
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def create_user(self, user: User) -> User:
        """Insert a new account and return it with id and created_at filled in.

        Raises Conflict if a live account already holds the e-mail (the
        partial unique index catches concurrent registrations).
        """
        user.id = user.id or _new_id()
        user.created_at = _now()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        email=user.email,
                        password=user.hashed_password,
                        name=user.name,
                        role=user.role.value,
                        status=user.status.value,
                        is_deleted=0,
                        created_at=_iso(user.created_at),
                    )
                )
        except IntegrityError as exc:
            raise Conflict("Email already registered") from exc
        return user

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.is_deleted == 0))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a live account by exact e-mail (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == email) & (_users.c.is_deleted == 0))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: Status | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of live accounts (newest first) and the total match count."""
        where = [_users.c.is_deleted == 0]
        if search:
            pattern = f"%{search}%"
            where.append(or_(_users.c.name.like(pattern), _users.c.email.like(pattern)))
        if status is not None:
            where.append(_users.c.status == status.value)
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(*where)
                .order_by(_users.c.created_at.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            ).fetchall()
            total = conn.execute(select(func.count()).select_from(_users).where(*where)).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields on a live account and return the fresh record.

        Accepted fields: email, name, hashed_password, role, status,
        last_login_at. Returns None if no live account has this id.
        """
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if fields:
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        _users.update()
                        .where((_users.c.id == user_id) & (_users.c.is_deleted == 0))
                        .values(**_to_columns(fields))
                    )
            except IntegrityError as exc:
                raise Conflict("Email already in use") from exc
        return self.get_by_id(user_id)

    def soft_delete_user(self, user_id: str) -> bool:
        """Flag an account as deleted. Returns False if it was not live."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.is_deleted == 0))
                .values(is_deleted=1)
            )
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_iso(_now())))

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def create_verification_code(self, code: VerificationCode) -> VerificationCode:
        code.id = _new_id()
        code.created_at = _now()
        with self.engine.begin() as conn:
            conn.execute(
                _verification_codes.insert().values(
                    id=code.id,
                    email=code.email,
                    code=code.code,
                    expires_at=_iso(code.expires_at),
                    used=1 if code.used else 0,
                    created_at=_iso(code.created_at),
                    api_key_id=code.api_key_id,
                    api_key_name=code.api_key_name,
                    auto_approve=1 if code.auto_approve else 0,
                )
            )
        return code

    def get_verification_code(self, email: str, code: str, now: datetime | None = None) -> VerificationCode | None:
        """Return the newest unused, unexpired code matching (email, code), if any."""
        with self.engine.connect() as conn:
            row = conn.execute(self._valid_code_query(email, code, now or _now())).fetchone()
        return _row_to_code(row) if row is not None else None

    def consume_verification_code(
        self, email: str, code: str, now: datetime | None = None
    ) -> VerificationCode | None:
        """Atomically find a valid code and mark it used.

        Returns the consumed code, or None if no unused, unexpired code matches
        -- including when a concurrent request consumed it first. The claim is
        a single conditional UPDATE, so of several concurrent callers exactly
        one sees rowcount 1.
        """
        with self.engine.connect() as conn:
            row = conn.execute(self._valid_code_query(email, code, now or _now())).fetchone()
        if row is None:
            return None
        with self.engine.begin() as conn:
            result = conn.execute(
                _verification_codes.update()
                .where((_verification_codes.c.id == row.id) & (_verification_codes.c.used == 0))
                .values(used=1)
            )
            if result.rowcount != 1:
                return None
        consumed = _row_to_code(row)
        consumed.used = True
        return consumed

    def latest_verification_code(self, email: str) -> VerificationCode | None:
        """Return the most recently issued code for an e-mail, used or not."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _verification_codes.select()
                .where(_verification_codes.c.email == email)
                .order_by(_verification_codes.c.created_at.desc())
                .limit(1)
            ).fetchone()
        return _row_to_code(row) if row is not None else None

    @staticmethod
    def _valid_code_query(email: str, code: str, now: datetime):
        return (
            _verification_codes.select()
            .where(
                (_verification_codes.c.email == email)
                & (_verification_codes.c.code == code)
                & (_verification_codes.c.used == 0)
                & (_verification_codes.c.expires_at > _iso(now))
            )
            .order_by(_verification_codes.c.created_at.desc())
            .limit(1)
        )

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        token.id = _new_id()
        token.created_at = _now()
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=token.id,
                    user_id=token.user_id,
                    token=token.token,
                    expires_at=_iso(token.expires_at),
                    created_at=_iso(token.created_at),
                )
            )
        return token

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def delete_refresh_token(self, token: str) -> bool:
        """Delete one refresh token. Returns False if it did not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        return result.rowcount > 0

    def delete_user_refresh_tokens(self, user_id: str) -> int:
        """Revoke every refresh token for an account. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> ApiKey:
        api_key.id = _new_id()
        api_key.created_at = _now()
        with self.engine.begin() as conn:
            conn.execute(
                _api_keys.insert().values(
                    id=api_key.id,
                    user_id=api_key.user_id,
                    name=api_key.name,
                    key_hash=api_key.key_hash,
                    key_prefix=api_key.key_prefix,
                    is_active=1 if api_key.is_active else 0,
                    created_at=_iso(api_key.created_at),
                )
            )
        return api_key

    def get_api_keys(self, user_id: str) -> list[ApiKey]:
        """Return every API key owned by an account (newest first), active or not."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.user_id == user_id).order_by(_api_keys.c.created_at.desc())
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def get_api_key(self, key_id: str, user_id: str) -> ApiKey | None:
        """Look up a key by id, scoped to its owner [IDOR guard]."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """Look up a key (active or not) by its HMAC digest. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.key_hash == key_hash)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def update_api_key(self, key_id: str, user_id: str, **fields) -> ApiKey | None:
        """Update name/is_active on a key the caller owns. None if not found or not owned."""
        unknown = set(fields) - _API_KEY_FIELDS
        if unknown:
            raise ValueError(f"Unknown api key fields: {unknown!r}")
        with self.engine.begin() as conn:
            conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
                .values(**_to_columns(fields))
            )
        return self.get_api_key(key_id, user_id)

    def touch_api_key(self, key_id: str) -> None:
        """Stamp last_used_at after each successful API-key authentication."""
        with self.engine.begin() as conn:
            conn.execute(_api_keys.update().where(_api_keys.c.id == key_id).values(last_used_at=_iso(_now())))

    def delete_api_key(self, key_id: str, user_id: str) -> bool:
        """Delete a key. Both id and owner must match [IDOR guard]."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _api_keys.delete().where((_api_keys.c.id == key_id) & (_api_keys.c.user_id == user_id))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # External signup keys
    # ------------------------------------------------------------------

    def create_signup_key(self, key: SignupKey) -> SignupKey:
        key.id = _new_id()
        key.created_at = _now()
        with self.engine.begin() as conn:
            conn.execute(
                _signup_keys.insert().values(
                    id=key.id,
                    project_id=key.project_id,
                    name=key.name,
                    key_hash=key.key_hash,
                    key_prefix=key.key_prefix,
                    rate_limit=key.rate_limit,
                    is_active=1 if key.is_active else 0,
                    auto_approve_signup=1 if key.auto_approve_signup else 0,
                    created_at=_iso(key.created_at),
                )
            )
        return key

    def list_signup_keys(self, project_id: str | None = None) -> list[SignupKey]:
        query = _signup_keys.select().order_by(_signup_keys.c.created_at.desc())
        if project_id is not None:
            query = query.where(_signup_keys.c.project_id == project_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_signup_key(r) for r in rows]

    def get_signup_key(self, key_id: str) -> SignupKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_signup_keys.select().where(_signup_keys.c.id == key_id)).fetchone()
        return _row_to_signup_key(row) if row is not None else None

    def get_signup_key_by_hash(self, key_hash: str) -> SignupKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_signup_keys.select().where(_signup_keys.c.key_hash == key_hash)).fetchone()
        return _row_to_signup_key(row) if row is not None else None

    def update_signup_key(self, key_id: str, **fields) -> SignupKey | None:
        unknown = set(fields) - _SIGNUP_KEY_FIELDS
        if unknown:
            raise ValueError(f"Unknown signup key fields: {unknown!r}")
        if fields:
            with self.engine.begin() as conn:
                conn.execute(_signup_keys.update().where(_signup_keys.c.id == key_id).values(**_to_columns(fields)))
        return self.get_signup_key(key_id)

    def touch_signup_key(self, key_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _signup_keys.update().where(_signup_keys.c.id == key_id).values(last_used_at=_iso(_now()))
            )

    # ------------------------------------------------------------------
    # Activity and audit trail (append-only)
    # ------------------------------------------------------------------

    def record_activity(self, activity: Activity) -> Activity:
        activity.id = _new_id()
        activity.created_at = _now()
        with self.engine.begin() as conn:
            conn.execute(
                _activities.insert().values(
                    id=activity.id,
                    user_id=activity.user_id,
                    action=activity.action,
                    details=activity.details,
                    ip_address=activity.ip_address,
                    created_at=_iso(activity.created_at),
                )
            )
        return activity

    def list_activities(
        self,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        action: str | None = None,
    ) -> tuple[list[tuple[Activity, User | None]], int]:
        """Return one page of activities (newest first) with their actors, plus the total."""
        where = []
        if search:
            pattern = f"%{search}%"
            where.append(or_(_activities.c.action.like(pattern), _activities.c.details.like(pattern)))
        if action:
            where.append(_activities.c.action.like(f"%{action}%"))
        with self.engine.connect() as conn:
            rows = conn.execute(
                self._activity_join().where(*where).limit(limit).offset((page - 1) * limit)
            ).fetchall()
            total = conn.execute(select(func.count()).select_from(_activities).where(*where)).scalar() or 0
        return [_row_to_activity_pair(r) for r in rows], total

    def recent_activities(self, limit: int = 10) -> list[tuple[Activity, User | None]]:
        with self.engine.connect() as conn:
            rows = conn.execute(self._activity_join().limit(limit)).fetchall()
        return [_row_to_activity_pair(r) for r in rows]

    @staticmethod
    def _activity_join():
        actor = _users.alias("actor")
        return (
            select(
                _activities,
                actor.c.email.label("actor_email"),
                actor.c.name.label("actor_name"),
                actor.c.role.label("actor_role"),
                actor.c.status.label("actor_status"),
                actor.c.password.label("actor_password"),
                actor.c.created_at.label("actor_created_at"),
            )
            .select_from(_activities.outerjoin(actor, _activities.c.user_id == actor.c.id))
            .order_by(_activities.c.created_at.desc())
        )

    def record_audit(self, entry: AuditLog) -> AuditLog:
        entry.id = _new_id()
        entry.created_at = _now()
        with self.engine.begin() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    id=entry.id,
                    user_id=entry.user_id,
                    project_id=entry.project_id,
                    action=entry.action,
                    resource=entry.resource,
                    resource_id=entry.resource_id,
                    details=json.dumps(entry.details),
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    source=entry.source,
                    created_at=_iso(entry.created_at),
                )
            )
        return entry

    def list_audit_logs(self, limit: int = 50, offset: int = 0, project_id: str | None = None) -> list[AuditLog]:
        query = _audit_logs.select().order_by(_audit_logs.c.created_at.desc()).limit(limit).offset(offset)
        if project_id is not None:
            query = query.where(_audit_logs.c.project_id == project_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.password,
        role=Role(row.role),
        status=Status(row.status),
        is_deleted=bool(row.is_deleted),
        created_at=_parse(row.created_at),
        last_login_at=_parse(row.last_login_at),
    )


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        id=row.id,
        email=row.email,
        code=row.code,
        expires_at=_parse(row.expires_at),
        used=bool(row.used),
        created_at=_parse(row.created_at),
        api_key_id=row.api_key_id,
        api_key_name=row.api_key_name,
        auto_approve=bool(row.auto_approve),
    )


def _row_to_refresh(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_parse(row.expires_at),
        created_at=_parse(row.created_at),
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        is_active=bool(row.is_active),
        last_used_at=_parse(row.last_used_at),
        created_at=_parse(row.created_at),
    )


def _row_to_signup_key(row) -> SignupKey:
    return SignupKey(
        id=row.id,
        project_id=row.project_id,
        name=row.name,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        rate_limit=row.rate_limit,
        is_active=bool(row.is_active),
        auto_approve_signup=bool(row.auto_approve_signup),
        last_used_at=_parse(row.last_used_at),
        created_at=_parse(row.created_at),
    )


def _row_to_activity_pair(row) -> tuple[Activity, User | None]:
    activity = Activity(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        details=row.details,
        ip_address=row.ip_address,
        created_at=_parse(row.created_at),
    )
    actor = None
    if row.actor_email is not None:
        actor = User(
            id=row.user_id,
            email=row.actor_email,
            name=row.actor_name,
            hashed_password=row.actor_password,
            role=Role(row.actor_role),
            status=Status(row.actor_status),
            created_at=_parse(row.actor_created_at),
        )
    return activity, actor


def _row_to_audit(row) -> AuditLog:
    return AuditLog(
        id=row.id,
        user_id=row.user_id,
        project_id=row.project_id,
        action=row.action,
        resource=row.resource,
        resource_id=row.resource_id,
        details=json.loads(row.details) if row.details else {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        source=row.source,
        created_at=_parse(row.created_at),
    )

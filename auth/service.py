"""
auth/service.py -- Auth flow controller.

Orchestrates every account-changing flow: admin creation, external and public
self-registration, e-mail verification, password and API-key login, token
refresh, logout, profile and password changes, admin updates and deletion,
and API-key / signup-key management.

Account states:
    pending -> active      e-mail verification with an auto-approve code, or admin
    active  -> blocked     admin only
    blocked -> active      admin only
Verification never re-activates a blocked account; it is refused with Forbidden.

Notification contract (one place, not scattered across call sites):
    verification code   required -- a send failure raises DeliveryFailed
                        after the account and code rows are already written
    approval notice     best effort -- a send failure is logged and dropped

The service is framework-agnostic: it raises auth.errors exceptions and
returns dataclasses. Route handlers translate those to HTTP.

Layer rule: may import from mail/ (the notification sink). No imports from api/.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from auth.errors import Conflict, DeliveryFailed, Forbidden, NotFound, Unauthorized, ValidationError
from auth.models import (
    Activity,
    ApiKey,
    AuditLog,
    RefreshToken,
    Role,
    SignupKey,
    Status,
    User,
    VerificationCode,
)
from auth.store import AccountStore
from auth.tokens import TokenIssuer, authenticate, hash_password, verify_password
from mail.sender import NotificationError, Notifier

logger = logging.getLogger("nanoadmin.auth")

MAX_API_KEYS_PER_USER = 10

_PENDING_APPROVAL = "Account pending approval"
_PENDING_VERIFICATION = "Please verify your email first"
_VERIFIED_PENDING = "Email verified. Waiting for admin approval."
_VERIFIED_APPROVED = "Email verified and account approved"


@dataclass
class Session:
    """Credentials handed out by a successful login or refresh."""

    user: User
    access_token: str
    refresh_token: str | None = None


@dataclass
class VerificationResult:
    message: str
    user: User
    session: Session | None = None


@dataclass
class Caller:
    """Request metadata recorded on activity and audit rows."""

    ip_address: str | None = None
    user_agent: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Auth flow controller.

    Usage:
        service = AuthService(store, TokenIssuer(settings), build_notifier(settings))
        session = service.login("a@x.com", "secret1", Caller(ip_address="10.0.0.1"))
    """

    def __init__(self, store: AccountStore, issuer: TokenIssuer, notifier: Notifier) -> None:
        self.store = store
        self.issuer = issuer
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Account creation
    # ------------------------------------------------------------------

    def create_user(
        self,
        actor: User | None,
        email: str,
        password: str,
        name: str,
        role: Role = Role.user,
        caller: Caller | None = None,
    ) -> User:
        """Admin-created account: active immediately, no verification step.

        actor is None only for the operator CLI bootstrap.
        """
        caller = caller or Caller()
        self._ensure_email_free(email)
        if not self.store.has_users():
            role = Role.admin
        user = self.store.create_user(
            User(email=email, name=name, hashed_password=hash_password(password), role=role, status=Status.active)
        )
        self.store.record_audit(
            AuditLog(
                action="create",
                resource="user",
                user_id=actor.id if actor else None,
                resource_id=user.id,
                details={"email": email, "name": name},
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
                source="website" if actor else "cli",
            )
        )
        logger.info("Account %s created (role=%s)", user.id, user.role.value)
        return user

    def register_external(
        self, api_key: ApiKey, email: str, password: str, name: str, caller: Caller | None = None
    ) -> str:
        """Self-registration through an integration's API key.

        Returns the integration name shown to the registrant. The issued code
        always carries auto-approve: verifying it activates the account.
        """
        caller = caller or Caller()
        user = self._create_self_registered(email, password, name)
        code = self._issue_code(email, api_key_id=api_key.id, api_key_name=api_key.name, auto_approve=True)
        self._record(user.id, "User registered via API", f"App: {api_key.name}", caller)
        self._send_code(code)
        return api_key.name

    def signup_public(
        self, signup_key: SignupKey, email: str, password: str, name: str, caller: Caller | None = None
    ) -> User:
        """Tenant signup through an external signup key.

        The account starts pending whatever the key's policy; the policy is
        copied onto the verification code and applied when the code is used.
        """
        caller = caller or Caller()
        user = self._create_self_registered(email, password, name)
        code = self._issue_code(
            email,
            api_key_id=signup_key.id,
            api_key_name=signup_key.name,
            auto_approve=signup_key.auto_approve_signup,
        )
        self.store.touch_signup_key(signup_key.id)
        self.store.record_audit(
            AuditLog(
                action="create",
                resource="user",
                user_id=user.id,
                project_id=signup_key.project_id,
                resource_id=user.id,
                details={"source": signup_key.name},
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
                source="api",
            )
        )
        self._send_code(code)
        return user

    def _create_self_registered(self, email: str, password: str, name: str) -> User:
        self._ensure_email_free(email)
        user = User(email=email, name=name, hashed_password=hash_password(password))
        if not self.store.has_users():
            # First account ever bootstraps the installation.
            user.role, user.status = Role.admin, Status.active
        return self.store.create_user(user)

    def _ensure_email_free(self, email: str) -> None:
        if self.store.get_by_email(email) is not None:
            raise Conflict("Email already registered")

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def _issue_code(
        self,
        email: str,
        api_key_id: str | None = None,
        api_key_name: str | None = None,
        auto_approve: bool = False,
    ) -> VerificationCode:
        return self.store.create_verification_code(
            VerificationCode(
                email=email,
                code=self.issuer.generate_verification_code(),
                expires_at=self.issuer.verification_code_expiry(),
                api_key_id=api_key_id,
                api_key_name=api_key_name,
                auto_approve=auto_approve,
            )
        )

    def _send_code(self, code: VerificationCode) -> None:
        self._deliver(
            lambda: self.notifier.send_verification_code(code.email, code.code, code.api_key_name),
            required=True,
            what="verification code",
        )

    def resend_code(self, email: str) -> str:
        """Issue a fresh code for a registered e-mail. Earlier codes stay valid until they expire."""
        if self.store.get_by_email(email) is None:
            raise ValidationError("User not found")
        previous = self.store.latest_verification_code(email)
        if previous is not None:
            code = self._issue_code(email, previous.api_key_id, previous.api_key_name, previous.auto_approve)
        else:
            code = self._issue_code(email)
        self._send_code(code)
        return "Verification code sent"

    def verify_email(self, email: str, code: str, caller: Caller | None = None) -> VerificationResult:
        """General verification. Activates the account only when the code carries auto-approve."""
        caller = caller or Caller()
        user, consumed = self._consume(email, code)
        self._reject_blocked(user, caller)
        approved = self._apply_auto_approve(user, consumed)
        if approved:
            details = f"App: {consumed.api_key_name}" if consumed.api_key_name else None
            self._record(user.id, "Email verified and auto-approved", details, caller)
            return VerificationResult(message=_VERIFIED_APPROVED, user=user)
        self._record(user.id, "Email verified", "Pending admin approval", caller)
        return VerificationResult(message=_VERIFIED_PENDING, user=user)

    def verify_external(
        self, api_key: ApiKey, email: str, code: str, caller: Caller | None = None
    ) -> VerificationResult:
        """Verification through an integration: verify = login once the account is active."""
        caller = caller or Caller()
        user, consumed = self._consume(email, code)
        self._reject_blocked(user, caller)
        self._apply_auto_approve(user, consumed)
        if not user.is_active:
            self._record(user.id, "Email verified", "Pending admin approval", caller)
            return VerificationResult(message=_VERIFIED_PENDING, user=user)
        session = self._open_session(user)
        self._record(user.id, "Email verified and auto-approved", f"App: {api_key.name}", caller)
        return VerificationResult(message=_VERIFIED_APPROVED, user=session.user, session=session)

    def _reject_blocked(self, user: User, caller: Caller) -> None:
        """The code stays consumed; a blocked account learns nothing else."""
        if user.status is Status.blocked:
            self._record(user.id, "Email verified", "Account blocked", caller)
            raise Forbidden("Account has been blocked")

    def _consume(self, email: str, code: str) -> tuple[User, VerificationCode]:
        user = self.store.get_by_email(email)
        if user is None:
            raise ValidationError("Invalid or expired verification code")
        consumed = self.store.consume_verification_code(email, code)
        if consumed is None:
            raise ValidationError("Invalid or expired verification code")
        return user, consumed

    def _apply_auto_approve(self, user: User, code: VerificationCode) -> bool:
        """Activate a pending account when the code allows it. Returns True if it did."""
        if not code.auto_approve or user.status is not Status.pending:
            return False
        self.store.update_user(user.id, status=Status.active)
        user.status = Status.active
        logger.info("Account %s auto-approved by verification", user.id)
        return True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, caller: Caller | None = None) -> Session:
        """Password login on the primary surface."""
        user = self._check_credentials(email, password, pending_message=_PENDING_APPROVAL)
        session = self._open_session(user)
        self._record(user.id, "User logged in", None, caller or Caller())
        return session

    def login_external(self, api_key: ApiKey, email: str, password: str, caller: Caller | None = None) -> Session:
        """Password login on behalf of an integration; the refresh token is returned in the body."""
        user = self._check_credentials(email, password, pending_message=_PENDING_VERIFICATION)
        session = self._open_session(user)
        self._record(user.id, "User logged in via API", f"App: {api_key.name}", caller or Caller())
        return session

    def _check_credentials(self, email: str, password: str, pending_message: str) -> User:
        user = authenticate(self.store, email, password)
        if user is None:
            raise Unauthorized("Invalid email or password")
        if user.status is Status.pending:
            raise Forbidden(pending_message)
        if user.status is Status.blocked:
            raise Forbidden("Account has been blocked")
        return user

    def _open_session(self, user: User) -> Session:
        refresh = self.store.create_refresh_token(
            RefreshToken(
                user_id=user.id,
                token=self.issuer.generate_refresh_token(),
                expires_at=self.issuer.refresh_token_expiry(),
            )
        )
        self.store.update_last_login(user.id)
        fresh = self.store.get_by_id(user.id) or user
        return Session(user=fresh, access_token=self.issuer.create_access_token(fresh), refresh_token=refresh.token)

    def refresh(self, token: str | None) -> Session:
        """Exchange a refresh token for a new access token. The refresh token is not rotated."""
        if not token:
            raise Unauthorized("Refresh token required")
        stored = self.store.get_refresh_token(token)
        if stored is None:
            raise Unauthorized("Invalid refresh token")
        if _utcnow() > stored.expires_at:
            self.store.delete_refresh_token(token)
            raise Unauthorized("Refresh token expired")
        user = self.store.get_by_id(stored.user_id)
        if user is None or not user.is_active:
            raise Unauthorized("User not found or inactive")
        return Session(user=user, access_token=self.issuer.create_access_token(user))

    def logout(self, token: str | None) -> None:
        """Revoke one refresh token. Unknown or missing tokens are not an error."""
        if token:
            self.store.delete_refresh_token(token)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def update_profile(
        self, user: User, name: str | None = None, email: str | None = None, caller: Caller | None = None
    ) -> User:
        changes: dict[str, Any] = {}
        if name:
            changes["name"] = name
        if email and email != user.email:
            if self.store.get_by_email(email) is not None:
                raise Conflict("Email already in use")
            changes["email"] = email
        updated = self.store.update_user(user.id, **changes)
        if updated is None:
            raise NotFound("User not found")
        self._record(user.id, "Profile updated", None, caller or Caller())
        return updated

    def change_password(self, user: User, current_password: str, new_password: str, caller: Caller | None = None) -> None:
        """Re-hash the password and revoke every refresh token for the account."""
        if not verify_password(current_password, user.hashed_password):
            raise ValidationError("Current password is incorrect")
        self.store.update_user(user.id, hashed_password=hash_password(new_password))
        revoked = self.store.delete_user_refresh_tokens(user.id)
        logger.info("Password changed for %s; %d refresh token(s) revoked", user.id, revoked)
        self._record(user.id, "Password changed", None, caller or Caller())

    # ------------------------------------------------------------------
    # Admin user management
    # ------------------------------------------------------------------

    def update_user(
        self,
        actor: User,
        user_id: str,
        name: str | None = None,
        role: Role | None = None,
        status: Status | None = None,
        caller: Caller | None = None,
    ) -> User:
        """Admin edit of name/role/status. Entering active sends the approval notice."""
        target = self.store.get_by_id(user_id)
        if target is None:
            raise NotFound("User not found")
        if target.id == actor.id and (
            (role is not None and role is not Role.admin) or (status is not None and status is not Status.active)
        ):
            raise ValidationError("Cannot demote or block your own account")

        changes: dict[str, Any] = {}
        if name:
            changes["name"] = name
        if role is not None:
            changes["role"] = role
        if status is not None:
            changes["status"] = status
        updated = self.store.update_user(user_id, **changes)
        if updated is None:
            raise NotFound("User not found")

        if target.status is not Status.active and updated.status is Status.active:
            self._deliver(
                lambda: self.notifier.send_approval(target.email, target.name),
                required=False,
                what="approval notice",
            )

        summary = json.dumps({k: getattr(v, "value", v) for k, v in changes.items()})
        self._record(actor.id, f"User {target.email} updated", f"Changes: {summary}", caller or Caller())
        return updated

    def delete_user(self, actor: User, user_id: str, caller: Caller | None = None) -> None:
        """Soft-delete an account and revoke its refresh tokens."""
        if user_id == actor.id:
            raise ValidationError("Cannot delete your own account")
        target = self.store.get_by_id(user_id)
        if target is None:
            raise NotFound("User not found")
        self.store.soft_delete_user(user_id)
        self.store.delete_user_refresh_tokens(user_id)
        self._record(actor.id, f"User {target.email} deleted", None, caller or Caller())

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(self, user: User, name: str, caller: Caller | None = None) -> tuple[ApiKey, str]:
        """Create a key and return (record, raw_key). The raw key is never stored."""
        if len(self.store.get_api_keys(user.id)) >= MAX_API_KEYS_PER_USER:
            raise ValidationError(
                f"Maximum of {MAX_API_KEYS_PER_USER} API keys per user. Revoke an existing key first."
            )
        raw_key = self.issuer.generate_api_key()
        api_key = self.store.create_api_key(
            ApiKey(
                user_id=user.id,
                name=name,
                key_hash=self.issuer.hash_key(raw_key),
                key_prefix=self.issuer.display_prefix(raw_key),
            )
        )
        self._record(user.id, "API key created", f"Key name: {name}", caller or Caller())
        return api_key, raw_key

    def set_api_key_active(self, user: User, key_id: str, is_active: bool, caller: Caller | None = None) -> ApiKey:
        api_key = self.store.update_api_key(key_id, user.id, is_active=is_active)
        if api_key is None:
            raise NotFound("API key not found")
        action = "API key enabled" if is_active else "API key disabled"
        self._record(user.id, action, f"Key: {api_key.name}", caller or Caller())
        return api_key

    def delete_api_key(self, user: User, key_id: str, caller: Caller | None = None) -> None:
        if not self.store.delete_api_key(key_id, user.id):
            raise NotFound("API key not found")
        self._record(user.id, "API key deleted", None, caller or Caller())

    # ------------------------------------------------------------------
    # External signup keys
    # ------------------------------------------------------------------

    def create_signup_key(
        self,
        name: str,
        project_id: str,
        rate_limit: int = 100,
        auto_approve_signup: bool = False,
        actor: User | None = None,
        caller: Caller | None = None,
    ) -> tuple[SignupKey, str]:
        """Create a tenant signup key and return (record, raw_key)."""
        caller = caller or Caller()
        raw_key = self.issuer.generate_signup_key()
        signup_key = self.store.create_signup_key(
            SignupKey(
                project_id=project_id,
                name=name,
                key_hash=self.issuer.hash_key(raw_key),
                key_prefix=self.issuer.display_prefix(raw_key),
                rate_limit=rate_limit,
                auto_approve_signup=auto_approve_signup,
            )
        )
        self.store.record_audit(
            AuditLog(
                action="create",
                resource="signup_key",
                user_id=actor.id if actor else None,
                project_id=project_id,
                resource_id=signup_key.id,
                details={"name": name, "autoApproveSignup": auto_approve_signup},
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
                source="website" if actor else "cli",
            )
        )
        return signup_key, raw_key

    def update_signup_key(
        self,
        key_id: str,
        is_active: bool | None = None,
        auto_approve_signup: bool | None = None,
        actor: User | None = None,
        caller: Caller | None = None,
    ) -> SignupKey:
        caller = caller or Caller()
        changes = {
            k: v for k, v in (("is_active", is_active), ("auto_approve_signup", auto_approve_signup)) if v is not None
        }
        signup_key = self.store.update_signup_key(key_id, **changes)
        if signup_key is None:
            raise NotFound("Signup key not found")
        self.store.record_audit(
            AuditLog(
                action="update",
                resource="signup_key",
                user_id=actor.id if actor else None,
                project_id=signup_key.project_id,
                resource_id=key_id,
                details=changes,
                ip_address=caller.ip_address,
                user_agent=caller.user_agent,
            )
        )
        return signup_key

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record(self, user_id: str | None, action: str, details: str | None, caller: Caller) -> None:
        self.store.record_activity(
            Activity(action=action, user_id=user_id, details=details, ip_address=caller.ip_address)
        )

    def _deliver(self, send: Callable[[], None], required: bool, what: str) -> None:
        """Run one notification send under its delivery contract.

        required=True: a failure raises DeliveryFailed (rows already written stay).
        required=False: a failure is logged and the flow continues.
        """
        try:
            send()
        except NotificationError as exc:
            if required:
                logger.error("Could not deliver %s: %s", what, exc)
                raise DeliveryFailed("The verification email could not be sent. Request a new code.") from exc
            logger.warning("Could not deliver %s (ignored): %s", what, exc)

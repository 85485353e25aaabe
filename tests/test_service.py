"""Unit tests for auth/service.py -- AuthService flows without HTTP.

Covers:
- first-account bootstrap (self-registration becomes an active admin)
- external registration: pending account, auto-approve code, app name in the mail
- public signup: key policy copied to the code, pending until verified
- verification: single use, blocked never reactivated, pending without auto-approve
- delivery contract: required verification mail raises DeliveryFailed after the
  rows are written; a failed approval notice is ignored
- login / refresh / logout, including lazy deletion of expired refresh tokens
- change_password revokes every refresh token
- admin update/delete self-protection and approval notice on entering active
- API key limit and ownership
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import Conflict, DeliveryFailed, Forbidden, NotFound, Unauthorized, ValidationError
from auth.models import ApiKey, RefreshToken, Role, Status
from auth.service import MAX_API_KEYS_PER_USER, AuthService


@pytest.fixture
def admin(make_user):
    return make_user(role=Role.admin, name="Admin")


@pytest.fixture
def integration_key(service: AuthService, admin) -> ApiKey:
    api_key, _raw = service.create_api_key(admin, "Acme App")
    return api_key


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestBootstrap:
    def test_first_self_registration_becomes_active_admin(self, service: AuthService) -> None:
        signup_key, _ = service.create_signup_key("Acme Web", "acme")
        user = service.signup_public(signup_key, "first@x.com", "secret1", "First")
        assert user.role is Role.admin
        assert user.status is Status.active

    def test_first_admin_created_account_is_admin(self, service: AuthService) -> None:
        user = service.create_user(None, "root@x.com", "secret1", "Root", role=Role.user)
        assert user.role is Role.admin

    def test_later_registrations_start_pending(self, service: AuthService, admin, integration_key) -> None:
        service.register_external(integration_key, "second@x.com", "secret1", "Second")
        user = service.store.get_by_email("second@x.com")
        assert user.role is Role.user
        assert user.status is Status.pending


class TestExternalRegistration:
    def test_code_is_sent_with_app_name(self, service: AuthService, notifier, integration_key) -> None:
        app_name = service.register_external(integration_key, "reg@x.com", "secret1", "Reg")
        assert app_name == "Acme App"
        email, code, sent_app = notifier.codes[-1]
        assert (email, sent_app) == ("reg@x.com", "Acme App")
        assert len(code) == 6

    def test_code_carries_auto_approve(self, service: AuthService, integration_key) -> None:
        service.register_external(integration_key, "reg@x.com", "secret1", "Reg")
        code = service.store.latest_verification_code("reg@x.com")
        assert code.auto_approve is True
        assert code.api_key_id == integration_key.id

    def test_duplicate_email_conflicts(self, service: AuthService, admin, integration_key) -> None:
        with pytest.raises(Conflict):
            service.register_external(integration_key, admin.email, "secret1", "Dup")

    def test_activity_recorded(self, service: AuthService, integration_key) -> None:
        service.register_external(integration_key, "reg@x.com", "secret1", "Reg")
        actions = [a.action for a, _ in service.store.recent_activities()]
        assert "User registered via API" in actions


class TestPublicSignup:
    def test_policy_copied_to_code(self, service: AuthService, admin) -> None:
        signup_key, _ = service.create_signup_key("Acme Web", "acme", auto_approve_signup=True)
        user = service.signup_public(signup_key, "t@x.com", "secret1", "Tenant User")
        assert user.status is Status.pending
        code = service.store.latest_verification_code("t@x.com")
        assert code.auto_approve is True
        assert code.api_key_name == "Acme Web"

    def test_audit_entry_tagged_with_project(self, service: AuthService, admin) -> None:
        signup_key, _ = service.create_signup_key("Acme Web", "acme")
        user = service.signup_public(signup_key, "t@x.com", "secret1", "Tenant User")
        entries = [e for e in service.store.list_audit_logs(project_id="acme") if e.resource == "user"]
        assert entries[0].resource_id == user.id
        assert entries[0].source == "api"

    def test_signup_key_stamped(self, service: AuthService, admin) -> None:
        signup_key, _ = service.create_signup_key("Acme Web", "acme")
        service.signup_public(signup_key, "t@x.com", "secret1", "Tenant User")
        assert service.store.get_signup_key(signup_key.id).last_used_at is not None


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestVerification:
    def test_auto_approve_activates(self, service: AuthService, notifier, integration_key) -> None:
        service.register_external(integration_key, "v@x.com", "secret1", "V")
        result = service.verify_email("v@x.com", notifier.last_code("v@x.com"))
        assert result.message == "Email verified and account approved"
        assert service.store.get_by_email("v@x.com").status is Status.active

    def test_without_auto_approve_stays_pending(self, service: AuthService, notifier, admin) -> None:
        signup_key, _ = service.create_signup_key("Acme Web", "acme", auto_approve_signup=False)
        service.signup_public(signup_key, "p@x.com", "secret1", "Pending")
        result = service.verify_email("p@x.com", notifier.last_code("p@x.com"))
        assert result.message == "Email verified. Waiting for admin approval."
        assert service.store.get_by_email("p@x.com").status is Status.pending

    def test_code_is_single_use(self, service: AuthService, notifier, integration_key) -> None:
        service.register_external(integration_key, "v@x.com", "secret1", "V")
        code = notifier.last_code("v@x.com")
        service.verify_email("v@x.com", code)
        with pytest.raises(ValidationError, match="Invalid or expired verification code"):
            service.verify_email("v@x.com", code)

    def test_wrong_code_rejected(self, service: AuthService, notifier, integration_key) -> None:
        service.register_external(integration_key, "v@x.com", "secret1", "V")
        wrong = "100000" if notifier.last_code("v@x.com") != "100000" else "100001"
        with pytest.raises(ValidationError):
            service.verify_email("v@x.com", wrong)

    def test_unknown_email_rejected(self, service: AuthService) -> None:
        with pytest.raises(ValidationError, match="Invalid or expired verification code"):
            service.verify_email("ghost@x.com", "123456")

    @pytest.mark.parametrize("external", [False, True])
    def test_blocked_account_never_reactivated(
        self, service: AuthService, notifier, admin, integration_key, external: bool
    ) -> None:
        service.register_external(integration_key, "b@x.com", "secret1", "B")
        user = service.store.get_by_email("b@x.com")
        service.update_user(admin, user.id, status=Status.blocked)
        code = notifier.last_code("b@x.com")
        with pytest.raises(Forbidden, match="Account has been blocked"):
            if external:
                service.verify_external(integration_key, "b@x.com", code)
            else:
                service.verify_email("b@x.com", code)
        assert service.store.get_by_email("b@x.com").status is Status.blocked
        assert service.store.get_verification_code("b@x.com", code) is None

    def test_external_verify_opens_session(self, service: AuthService, notifier, integration_key) -> None:
        service.register_external(integration_key, "e@x.com", "secret1", "E")
        result = service.verify_external(integration_key, "e@x.com", notifier.last_code("e@x.com"))
        assert result.user.status is Status.active
        assert result.session.access_token
        assert service.store.get_refresh_token(result.session.refresh_token) is not None
        assert result.session.user.last_login_at is not None

    def test_external_verify_pending_has_no_session(self, service: AuthService, notifier, admin, integration_key) -> None:
        signup_key, _ = service.create_signup_key("Acme Web", "acme")
        service.signup_public(signup_key, "p@x.com", "secret1", "P")
        result = service.verify_external(integration_key, "p@x.com", notifier.last_code("p@x.com"))
        assert result.session is None
        assert result.message == "Email verified. Waiting for admin approval."


class TestResend:
    def test_new_code_inherits_policy(self, service: AuthService, notifier, integration_key) -> None:
        service.register_external(integration_key, "r@x.com", "secret1", "R")
        service.resend_code("r@x.com")
        assert len([c for c in notifier.codes if c[0] == "r@x.com"]) == 2
        latest = service.store.latest_verification_code("r@x.com")
        assert latest.auto_approve is True
        assert latest.api_key_name == "Acme App"
        assert notifier.codes[-1][2] == "Acme App"

    def test_unknown_email(self, service: AuthService) -> None:
        with pytest.raises(ValidationError, match="User not found"):
            service.resend_code("ghost@x.com")

    def test_earlier_code_still_valid(self, service: AuthService, notifier, integration_key) -> None:
        service.register_external(integration_key, "r@x.com", "secret1", "R")
        first = notifier.last_code("r@x.com")
        service.resend_code("r@x.com")
        assert service.verify_email("r@x.com", first).user.email == "r@x.com"


class TestDeliveryContract:
    def test_verification_failure_surfaces_after_rows_written(
        self, service: AuthService, notifier, integration_key
    ) -> None:
        notifier.fail = True
        with pytest.raises(DeliveryFailed):
            service.register_external(integration_key, "d@x.com", "secret1", "D")
        assert service.store.get_by_email("d@x.com") is not None
        assert service.store.latest_verification_code("d@x.com") is not None

    def test_resend_recovers_after_outage(self, service: AuthService, notifier, integration_key) -> None:
        notifier.fail = True
        with pytest.raises(DeliveryFailed):
            service.register_external(integration_key, "d@x.com", "secret1", "D")
        notifier.fail = False
        service.resend_code("d@x.com")
        service.verify_email("d@x.com", notifier.last_code("d@x.com"))
        assert service.store.get_by_email("d@x.com").status is Status.active

    def test_delivery_failed_is_502(self) -> None:
        assert DeliveryFailed().status_code == 502

    def test_approval_failure_ignored(self, service: AuthService, notifier, admin, make_user) -> None:
        pending = make_user(status=Status.pending)
        notifier.fail = True
        updated = service.update_user(admin, pending.id, status=Status.active)
        assert updated.status is Status.active
        assert notifier.approvals == []


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestLogin:
    def test_active_account_gets_session(self, service: AuthService, make_user) -> None:
        user = make_user(password="secret1")
        session = service.login(user.email, "secret1")
        assert service.issuer.decode_access_token(session.access_token)["sub"] == user.id
        assert service.store.get_refresh_token(session.refresh_token).user_id == user.id

    def test_pending_account_after_correct_password(self, service: AuthService, make_user) -> None:
        user = make_user(status=Status.pending)
        with pytest.raises(Forbidden, match="Account pending approval"):
            service.login(user.email, "secret1")

    def test_blocked_account(self, service: AuthService, make_user) -> None:
        user = make_user(status=Status.blocked)
        with pytest.raises(Forbidden, match="Account has been blocked"):
            service.login(user.email, "secret1")

    def test_status_not_revealed_without_password(self, service: AuthService, make_user) -> None:
        user = make_user(status=Status.blocked)
        with pytest.raises(Unauthorized, match="Invalid email or password"):
            service.login(user.email, "wrong-pass")

    def test_external_login_pending_message(self, service: AuthService, make_user, integration_key) -> None:
        user = make_user(status=Status.pending)
        with pytest.raises(Forbidden, match="Please verify your email first"):
            service.login_external(integration_key, user.email, "secret1")

    def test_deleted_account_cannot_log_in(self, service: AuthService, admin, make_user) -> None:
        user = make_user()
        service.delete_user(admin, user.id)
        with pytest.raises(Unauthorized):
            service.login(user.email, "secret1")


class TestRefresh:
    def test_refresh_issues_access_token_without_rotation(self, service: AuthService, make_user) -> None:
        user = make_user()
        session = service.login(user.email, "secret1")
        refreshed = service.refresh(session.refresh_token)
        assert refreshed.refresh_token is None
        assert service.issuer.decode_access_token(refreshed.access_token)["sub"] == user.id
        assert service.store.get_refresh_token(session.refresh_token) is not None

    def test_missing_token(self, service: AuthService) -> None:
        with pytest.raises(Unauthorized, match="Refresh token required"):
            service.refresh(None)

    def test_unknown_token(self, service: AuthService) -> None:
        with pytest.raises(Unauthorized, match="Invalid refresh token"):
            service.refresh("f" * 128)

    def test_expired_token_is_deleted(self, service: AuthService, make_user) -> None:
        user = make_user()
        service.store.create_refresh_token(
            RefreshToken(user_id=user.id, token="e" * 128, expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        with pytest.raises(Unauthorized, match="Refresh token expired"):
            service.refresh("e" * 128)
        assert service.store.get_refresh_token("e" * 128) is None

    def test_blocked_owner_rejected(self, service: AuthService, admin, make_user) -> None:
        user = make_user()
        session = service.login(user.email, "secret1")
        service.update_user(admin, user.id, status=Status.blocked)
        with pytest.raises(Unauthorized, match="User not found or inactive"):
            service.refresh(session.refresh_token)

    def test_logout_is_idempotent(self, service: AuthService, make_user) -> None:
        user = make_user()
        session = service.login(user.email, "secret1")
        service.logout(session.refresh_token)
        service.logout(session.refresh_token)
        service.logout(None)
        with pytest.raises(Unauthorized):
            service.refresh(session.refresh_token)


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


class TestSelfService:
    def test_change_password_revokes_refresh_tokens(self, service: AuthService, make_user) -> None:
        user = make_user()
        first = service.login(user.email, "secret1")
        second = service.login(user.email, "secret1")
        service.change_password(user, "secret1", "newsecret")
        for token in (first.refresh_token, second.refresh_token):
            with pytest.raises(Unauthorized):
                service.refresh(token)
        assert service.login(user.email, "newsecret").access_token

    def test_change_password_checks_current(self, service: AuthService, make_user) -> None:
        user = make_user()
        with pytest.raises(ValidationError, match="Current password is incorrect"):
            service.change_password(user, "wrong-pass", "newsecret")

    def test_profile_email_taken(self, service: AuthService, make_user) -> None:
        taken, user = make_user(), make_user()
        with pytest.raises(Conflict, match="Email already in use"):
            service.update_profile(user, email=taken.email)

    def test_profile_update(self, service: AuthService, make_user) -> None:
        user = make_user()
        updated = service.update_profile(user, name="New Name", email="moved@x.com")
        assert (updated.name, updated.email) == ("New Name", "moved@x.com")


# ---------------------------------------------------------------------------
# Admin user management
# ---------------------------------------------------------------------------


class TestAdminManagement:
    def test_approval_notice_sent_once(self, service: AuthService, notifier, admin, make_user) -> None:
        pending = make_user(status=Status.pending, name="Pat")
        service.update_user(admin, pending.id, status=Status.active)
        service.update_user(admin, pending.id, status=Status.active)
        assert notifier.approvals == [(pending.email, "Pat")]

    def test_update_records_activity(self, service: AuthService, admin, make_user) -> None:
        pending = make_user(status=Status.pending)
        service.update_user(admin, pending.id, status=Status.active)
        actions = [a.action for a, _ in service.store.recent_activities()]
        assert f"User {pending.email} updated" in actions

    @pytest.mark.parametrize("change", [{"role": Role.user}, {"status": Status.blocked}, {"status": Status.pending}])
    def test_cannot_demote_or_block_self(self, service: AuthService, admin, change) -> None:
        with pytest.raises(ValidationError, match="Cannot demote or block your own account"):
            service.update_user(admin, admin.id, **change)

    def test_self_rename_allowed(self, service: AuthService, admin) -> None:
        assert service.update_user(admin, admin.id, name="Boss", role=Role.admin).name == "Boss"

    def test_update_missing_account(self, service: AuthService, admin) -> None:
        with pytest.raises(NotFound):
            service.update_user(admin, "missing", name="x")

    def test_cannot_delete_self(self, service: AuthService, admin) -> None:
        with pytest.raises(ValidationError, match="Cannot delete your own account"):
            service.delete_user(admin, admin.id)

    def test_delete_soft_deletes_and_revokes(self, service: AuthService, admin, make_user) -> None:
        user = make_user()
        session = service.login(user.email, "secret1")
        service.delete_user(admin, user.id)
        assert service.store.get_by_id(user.id) is None
        assert service.store.get_refresh_token(session.refresh_token) is None

    def test_delete_missing_account(self, service: AuthService, admin) -> None:
        with pytest.raises(NotFound):
            service.delete_user(admin, "missing")

    def test_admin_created_account_is_active_and_audited(self, service: AuthService, admin) -> None:
        user = service.create_user(admin, "new@x.com", "secret1", "New")
        assert user.status is Status.active
        entry = service.store.list_audit_logs()[0]
        assert (entry.action, entry.resource, entry.user_id) == ("create", "user", admin.id)


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class TestApiKeys:
    def test_raw_key_not_stored(self, service: AuthService, admin) -> None:
        api_key, raw = service.create_api_key(admin, "CI")
        assert raw not in (api_key.key_hash, api_key.key_prefix)
        assert api_key.key_prefix == raw[:12]

    def test_limit_per_account(self, service: AuthService, admin) -> None:
        for i in range(MAX_API_KEYS_PER_USER):
            service.create_api_key(admin, f"key {i}")
        with pytest.raises(ValidationError, match="Maximum of 10 API keys"):
            service.create_api_key(admin, "one too many")

    def test_other_owner_cannot_touch_key(self, service: AuthService, admin, make_user) -> None:
        api_key, _ = service.create_api_key(admin, "CI")
        intruder = make_user()
        with pytest.raises(NotFound):
            service.set_api_key_active(intruder, api_key.id, False)
        with pytest.raises(NotFound):
            service.delete_api_key(intruder, api_key.id)

    def test_signup_key_update_missing(self, service: AuthService) -> None:
        with pytest.raises(NotFound, match="Signup key not found"):
            service.update_signup_key("missing", is_active=False)

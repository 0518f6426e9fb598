"""
Unit tests for member and admin sign-in.

Tests cover:
- Magic-link requests and verification
- Member passwords and password login
- Admin login (setup password and env super admin)
- Password reset request and completion
- Profile edits and password status
"""

import pytest

from kartel_server.auth import JwtAuthenticator
from kartel_server.config import AuthConfig, EmailConfig, ServerConfig
from kartel_server.errors import (
    NotFoundError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from kartel_server.passwords import hash_password
from kartel_server.records import APPLICATIONS, LOGIN_TOKENS, PASSWORD_RESET_TOKENS
from kartel_server.services import MemberService
from kartel_server.services.members import (
    INVALID_CREDENTIALS,
    INVALID_MEMBER_CREDENTIALS,
    LOGIN_LINK_SENT_MESSAGE,
    RESET_LINK_SENT_MESSAGE,
)
from kartel_server.tokens import TokenManager

SECRET = "member-tests-secret-0123456789abcdef"


@pytest.fixture
def config():
    return ServerConfig(
        auth=AuthConfig(
            jwt_secret=SECRET,
            super_admin_email="Boss@Kartel.test",
            super_admin_password="env-super-password",
        ),
        email=EmailConfig(site_url="https://kartel.test"),
    )


@pytest.fixture
def authenticator(config, clock):
    return JwtAuthenticator(config.auth, clock)


@pytest.fixture
def login_tokens(store, clock):
    return TokenManager(store, LOGIN_TOKENS, "memberId", clock)


@pytest.fixture
def reset_tokens(store, clock):
    return TokenManager(store, PASSWORD_RESET_TOKENS, "memberId", clock)


@pytest.fixture
def service(index, login_tokens, reset_tokens, authenticator, email, config, clock):
    return MemberService(index, login_tokens, reset_tokens, authenticator, email, config, clock)


@pytest.fixture
async def member(index):
    record = {
        "id": "app_1",
        "email": "jane@example.com",
        "firstName": "Jane",
        "lastName": "Doe",
        "status": "approved",
    }
    await index.append_or_update(APPLICATIONS, record)
    return record


def token_from(message, marker):
    start = message.html.index(marker) + len(marker)
    return message.html[start : start + 64]


class TestLoginLink:
    """Tests for magic-link sign-in."""

    @pytest.mark.asyncio
    async def test_sends_link_to_approved_member(self, service, member, email):
        result = await service.request_login_link("JANE@example.com")

        assert result.value == LOGIN_LINK_SENT_MESSAGE
        [message] = email.to("jane@example.com")
        assert "https://kartel.test/members.html?token=" in message.html

    @pytest.mark.asyncio
    async def test_unknown_email_gets_same_answer(self, service, email, store):
        result = await service.request_login_link("ghost@example.com")

        assert result.value == LOGIN_LINK_SENT_MESSAGE
        assert email.sent == []
        assert store.count(LOGIN_TOKENS) == 0

    @pytest.mark.asyncio
    async def test_pending_applicant_gets_no_link(self, service, index, email):
        await index.append_or_update(
            APPLICATIONS, {"id": "app_2", "email": "pending@example.com", "status": "pending"}
        )
        await service.request_login_link("pending@example.com")
        assert email.sent == []

    @pytest.mark.asyncio
    async def test_invalid_email(self, service):
        with pytest.raises(ValidationError):
            await service.request_login_link("not-an-email")

    @pytest.mark.asyncio
    async def test_verify_issues_session(self, service, member, email, authenticator):
        await service.request_login_link("jane@example.com")
        token = token_from(email.sent[0], "members.html?token=")

        session = await service.verify_login_token(token)

        assert session.roles == ("member",)
        assert session.profile["email"] == "jane@example.com"
        assert session.profile["hasPassword"] is False
        principal = authenticator.authenticate(f"Bearer {session.token}")
        assert principal.subject == "app_1"

    @pytest.mark.asyncio
    async def test_link_works_once(self, service, member, email):
        await service.request_login_link("jane@example.com")
        token = token_from(email.sent[0], "members.html?token=")

        await service.verify_login_token(token)
        with pytest.raises(TokenAlreadyUsedError):
            await service.verify_login_token(token)

    @pytest.mark.asyncio
    async def test_link_expires_after_thirty_minutes(self, service, member, email, clock):
        await service.request_login_link("jane@example.com")
        token = token_from(email.sent[0], "members.html?token=")
        clock.advance(minutes=31)

        with pytest.raises(TokenExpiredError):
            await service.verify_login_token(token)

    @pytest.mark.asyncio
    async def test_unknown_token(self, service):
        with pytest.raises(TokenNotFoundError):
            await service.verify_login_token("0" * 64)

    @pytest.mark.asyncio
    async def test_member_no_longer_approved(self, service, member, index, email):
        await service.request_login_link("jane@example.com")
        token = token_from(email.sent[0], "members.html?token=")
        await index.append_or_update(APPLICATIONS, {**member, "status": "rejected"})

        with pytest.raises(UnauthorizedError) as exc_info:
            await service.verify_login_token(token)
        assert exc_info.value.message == "Member account not found or not active"


class TestMemberPasswords:
    @pytest.mark.asyncio
    async def test_set_then_login(self, service, member):
        await service.set_member_password("app_1", "member-pass-1")

        session = await service.member_login("jane@example.com", "member-pass-1")

        assert session.profile["id"] == "app_1"
        assert session.profile["hasPassword"] is True
        assert "memberPasswordHash" not in session.profile

    @pytest.mark.asyncio
    async def test_short_password(self, service, member):
        with pytest.raises(ValidationError):
            await service.set_member_password("app_1", "short")

    @pytest.mark.asyncio
    async def test_set_for_unapproved_member(self, service, index):
        await index.append_or_update(APPLICATIONS, {"id": "app_9", "email": "x@x.com", "status": "pending"})
        with pytest.raises(NotFoundError):
            await service.set_member_password("app_9", "long-enough-password")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "login,password",
        [
            ("jane@example.com", "wrong-password"),
            ("ghost@example.com", "member-pass-1"),
        ],
    )
    async def test_failures_share_one_message(self, service, member, login, password):
        await service.set_member_password("app_1", "member-pass-1")
        with pytest.raises(UnauthorizedError) as exc_info:
            await service.member_login(login, password)
        assert exc_info.value.message == INVALID_MEMBER_CREDENTIALS

    @pytest.mark.asyncio
    async def test_login_without_password_set(self, service, member):
        with pytest.raises(UnauthorizedError):
            await service.member_login("jane@example.com", "anything-at-all")


class TestAdminLogin:
    """Tests for admin sign-in."""

    @pytest.mark.asyncio
    async def test_env_super_admin(self, service, authenticator):
        session = await service.admin_login("boss@kartel.test", "env-super-password")

        assert session.roles == ("admin", "super-admin")
        principal = authenticator.authenticate(f"Bearer {session.token}")
        assert principal.is_super_admin

    @pytest.mark.asyncio
    async def test_env_super_admin_wrong_password(self, service):
        with pytest.raises(UnauthorizedError) as exc_info:
            await service.admin_login("boss@kartel.test", "nope-nope-nope")
        assert exc_info.value.message == INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_application_admin(self, service, index):
        hashed = hash_password("admin-pass-123")
        await index.append_or_update(
            APPLICATIONS,
            {
                "id": "app_5",
                "email": "admin@example.com",
                "status": "approved",
                "isAdmin": True,
                "adminPasswordSalt": hashed.salt,
                "adminPasswordHash": hashed.hash,
            },
        )

        session = await service.admin_login("Admin@Example.com", "admin-pass-123")

        assert session.roles == ("admin",)
        assert session.profile["isAdmin"] is True

    @pytest.mark.asyncio
    async def test_member_is_not_admin(self, service, member):
        await service.set_member_password("app_1", "member-pass-1")
        with pytest.raises(UnauthorizedError):
            await service.admin_login("jane@example.com", "member-pass-1")

    @pytest.mark.asyncio
    async def test_missing_fields(self, service):
        with pytest.raises(ValidationError):
            await service.admin_login("", "x")


class TestPasswordReset:
    """Tests for password reset."""

    @pytest.mark.asyncio
    async def test_full_reset_flow(self, service, member, email, store):
        result = await service.request_password_reset("jane@example.com")
        assert result.value == RESET_LINK_SENT_MESSAGE
        token = token_from(email.sent[0], "members.html?reset=")

        await service.reset_password(token, "Jane@Example.com", "brand-new-pass")

        session = await service.member_login("jane@example.com", "brand-new-pass")
        assert session.profile["id"] == "app_1"
        assert (await store.get(PASSWORD_RESET_TOKENS, token))["used"] is True

    @pytest.mark.asyncio
    async def test_unknown_email_gets_same_answer(self, service, email):
        result = await service.request_password_reset("ghost@example.com")
        assert result.value == RESET_LINK_SENT_MESSAGE
        assert email.sent == []

    @pytest.mark.asyncio
    async def test_email_mismatch(self, service, member, email):
        await service.request_password_reset("jane@example.com")
        token = token_from(email.sent[0], "members.html?reset=")

        with pytest.raises(UnauthorizedError) as exc_info:
            await service.reset_password(token, "other@example.com", "brand-new-pass")
        assert exc_info.value.message == "Invalid or expired reset token"

    @pytest.mark.asyncio
    async def test_reset_token_single_use(self, service, member, email):
        await service.request_password_reset("jane@example.com")
        token = token_from(email.sent[0], "members.html?reset=")

        await service.reset_password(token, "jane@example.com", "brand-new-pass")
        with pytest.raises(TokenAlreadyUsedError):
            await service.reset_password(token, "jane@example.com", "another-pass-1")

    @pytest.mark.asyncio
    async def test_short_password_rejected_before_token_check(self, service):
        with pytest.raises(ValidationError):
            await service.reset_password("0" * 64, "jane@example.com", "short")

    @pytest.mark.asyncio
    async def test_email_failure_is_warning(self, service, member, email):
        email.fail = True
        result = await service.request_password_reset("jane@example.com")
        assert result.value == RESET_LINK_SENT_MESSAGE
        assert result.warnings


class TestProfile:
    """Tests for member self-service profile edits."""

    @pytest.mark.asyncio
    async def test_update_profile(self, service, member, index, store):
        result = await service.update_profile(
            "app_1",
            {"firstName": " Janet ", "lastName": "Doe", "company": "Acme", "phone": "0123"},
        )

        assert result.clean
        assert result.value["firstName"] == "Janet"
        assert result.value["company"] == "Acme"
        assert result.value["position"] == ""
        stored = await store.get("applications", "app_1")
        assert stored["updatedAt"] == "2025-06-01T12:00:00.000Z"
        assert stored["status"] == "approved"
        [listed] = await index.read_list(APPLICATIONS)
        assert listed["firstName"] == "Janet"

    @pytest.mark.asyncio
    async def test_display_name_follows_edit(self, service, index):
        await index.append_or_update(
            APPLICATIONS,
            {"id": "app_3", "email": "x@example.com", "status": "approved", "fullName": "Old Name"},
        )

        result = await service.update_profile("app_3", {"firstName": "New", "lastName": "Name"})

        assert result.value["fullName"] == "New Name"

    @pytest.mark.asyncio
    async def test_list_failure_is_warning(self, service, member, store):
        store.inject_failure("set", "applications", "_list")

        result = await service.update_profile("app_1", {"firstName": "Janet", "lastName": "Doe"})

        assert result.warnings
        assert (await store.get("applications", "app_1"))["firstName"] == "Janet"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [{"firstName": "Jane"}, {"firstName": " ", "lastName": "Doe"}])
    async def test_names_required(self, service, member, fields):
        with pytest.raises(ValidationError) as exc_info:
            await service.update_profile("app_1", fields)
        assert exc_info.value.message == "First name and last name are required"

    @pytest.mark.asyncio
    async def test_unapproved_member(self, service, index):
        await index.append_or_update(APPLICATIONS, {"id": "app_9", "email": "p@example.com", "status": "pending"})
        with pytest.raises(NotFoundError):
            await service.update_profile("app_9", {"firstName": "A", "lastName": "B"})


class TestPasswordStatus:
    """Tests for credential status lookups."""

    @pytest.mark.asyncio
    async def test_member_without_password(self, service, member):
        status = await service.password_status("JANE@example.com")

        assert status["id"] == "app_1"
        assert status["hasMemberPassword"] is False
        assert status["hasAdminPassword"] is False
        assert status["passwordFields"] == []

    @pytest.mark.asyncio
    async def test_reports_fields_not_values(self, service, member):
        await service.set_member_password("app_1", "member-pass-1")

        status = await service.password_status("jane@example.com")

        assert status["hasMemberPassword"] is True
        assert status["passwordSetAt"] == "2025-06-01T12:00:00.000Z"
        assert status["passwordFields"] == ["memberPasswordHash", "memberPasswordSalt", "passwordSetAt"]
        assert "member-pass-1" not in str(status)

    @pytest.mark.asyncio
    async def test_admin_password(self, service, index):
        hashed = hash_password("admin-pass-123")
        await index.append_or_update(
            APPLICATIONS,
            {
                "id": "app_5",
                "email": "admin@example.com",
                "status": "approved",
                "isAdmin": True,
                "adminPasswordSalt": hashed.salt,
                "adminPasswordHash": hashed.hash,
            },
        )

        status = await service.password_status("admin@example.com")

        assert status["isAdmin"] is True
        assert status["hasAdminPassword"] is True

    @pytest.mark.asyncio
    async def test_unknown_email(self, service):
        with pytest.raises(NotFoundError):
            await service.password_status("ghost@example.com")

    @pytest.mark.asyncio
    async def test_missing_email(self, service):
        with pytest.raises(ValidationError):
            await service.password_status("")

    @pytest.mark.asyncio
    async def test_own_status(self, service, member):
        status = await service.own_password_status("app_1")
        assert status["email"] == "jane@example.com"

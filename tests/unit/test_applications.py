"""
Unit tests for the membership application lifecycle.

Tests cover:
- Public submission, validation and duplicate detection
- Admin review and email quick actions
- Applicant detail edits and deletion
- Admin invitations, setup tokens and credential grants
- Super admin promotion and list recovery
- CSV member import
"""

import pytest

from kartel_server.config import EmailConfig, ServerConfig
from kartel_server.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    TokenAlreadyUsedError,
    UpstreamError,
    ValidationError,
)
from kartel_server.passwords import verify_password
from kartel_server.records import ADMIN_TOKENS, APPLICATIONS
from kartel_server.services import ApplicationService
from kartel_server.tokens import TokenManager

ADMIN_EMAIL = "admin@kartel.test"


@pytest.fixture
def config():
    return ServerConfig(
        email=EmailConfig(
            admin_email=ADMIN_EMAIL,
            site_url="https://kartel.test",
        )
    )


@pytest.fixture
def setup_tokens(store, clock):
    return TokenManager(store, ADMIN_TOKENS, "applicationId", clock)


@pytest.fixture
def service(index, setup_tokens, email, config, clock):
    return ApplicationService(index, setup_tokens, email, config, clock)


async def submit(service, email="jane@example.com", name="Jane Doe"):
    result = await service.submit({"name": name, "email": email, "phone": "07123456789"})
    return result.value


class TestSubmit:
    """Tests for public application submission."""

    @pytest.mark.asyncio
    async def test_creates_pending_application(self, service, store):
        result = await service.submit(
            {
                "name": "Jane Doe",
                "email": " jane@example.com ",
                "phone": "07123456789",
                "company": "Acme",
            }
        )
        application = result.value

        assert result.clean
        assert application["id"].startswith("app_")
        assert application["status"] == "pending"
        assert application["email"] == "jane@example.com"
        assert application["firstName"] == "Jane"
        assert application["lastName"] == "Doe"
        assert application["submittedAt"] == "2025-06-01T12:00:00.000Z"
        assert await store.get("applications", application["id"]) == application
        assert [a["id"] for a in await service.list_applications()] == [application["id"]]

    @pytest.mark.asyncio
    async def test_action_tokens_are_distinct(self, service):
        application = await submit(service)
        assert len(application["approveToken"]) == 32
        assert application["approveToken"] != application["rejectToken"]

    @pytest.mark.asyncio
    async def test_first_and_last_name_accepted(self, service):
        result = await service.submit(
            {"firstName": "Sam", "lastName": "Hill", "email": "sam@example.com", "phone": "1"}
        )
        assert result.value["name"] == "Sam Hill"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fields,missing",
        [
            ({"email": "a@example.com", "phone": "1"}, "name"),
            ({"name": "A", "phone": "1"}, "email"),
            ({"name": "A", "email": "a@example.com"}, "phone"),
            ({"name": "A", "email": "a@example.com", "phone": "  "}, "phone"),
        ],
    )
    async def test_missing_fields(self, service, store, fields, missing):
        with pytest.raises(ValidationError) as exc_info:
            await service.submit(fields)
        assert exc_info.value.message == f"Missing required field: {missing}"
        assert store.count("applications") == 0

    @pytest.mark.asyncio
    async def test_duplicate_email_is_case_insensitive(self, service):
        await submit(service, email="jane@example.com")
        with pytest.raises(ConflictError) as exc_info:
            await submit(service, email="JANE@Example.com")
        assert exc_info.value.message == "An application with this email address already exists"

    @pytest.mark.asyncio
    async def test_notifies_admin_with_quick_action_links(self, service, email):
        application = await submit(service)

        [message] = email.to(ADMIN_EMAIL)
        assert "Jane Doe" in message.subject
        assert application["approveToken"] in message.html
        assert application["rejectToken"] in message.html
        assert "https://kartel.test/admin.html" in message.html

    @pytest.mark.asyncio
    async def test_email_failure_is_warning(self, service, email, store):
        email.fail = True
        result = await service.submit(
            {"name": "Jane", "email": "jane@example.com", "phone": "1"}
        )
        assert result.warnings
        assert await store.get("applications", result.value["id"]) is not None

    @pytest.mark.asyncio
    async def test_list_sync_failure_is_warning(self, service, store):
        store.inject_failure("set", "applications", "_list")
        result = await service.submit({"name": "Jane", "email": "jane@example.com", "phone": "1"})
        assert result.warnings
        assert (await service.get_application(result.value["id"]))["email"] == "jane@example.com"


class TestReview:
    """Tests for admin review and quick actions."""

    @pytest.mark.asyncio
    async def test_approve(self, service, clock):
        application = await submit(service)
        clock.advance(hours=1)

        result = await service.review(application["id"], "approved", "Admin", notes="Welcome")

        assert result.value["status"] == "approved"
        assert result.value["reviewedBy"] == "Admin"
        assert result.value["reviewedAt"] == "2025-06-01T13:00:00.000Z"
        assert result.value["notes"] == "Welcome"

    @pytest.mark.asyncio
    async def test_invalid_decision(self, service):
        application = await submit(service)
        with pytest.raises(ValidationError):
            await service.review(application["id"], "maybe")

    @pytest.mark.asyncio
    async def test_unknown_application(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.review("app_missing", "approved")
        assert exc_info.value.message == "Application not found"

    @pytest.mark.asyncio
    async def test_review_notifies_applicant_when_asked(self, service, email):
        application = await submit(service)
        email.clear()

        await service.review(application["id"], "rejected", notify=True)

        [message] = email.to("jane@example.com")
        assert message.subject == "Thank you for your interest in The Kartel"

    @pytest.mark.asyncio
    async def test_quick_approve(self, service, email):
        application = await submit(service)
        email.clear()

        result = await service.quick_action(application["id"], "approve", application["approveToken"])

        assert result.value["status"] == "approved"
        assert result.value["reviewedBy"] == "Admin (Quick Action)"
        [message] = email.to("jane@example.com")
        assert "Approved" in message.subject

    @pytest.mark.asyncio
    async def test_quick_action_with_other_token_forbidden(self, service):
        application = await submit(service)
        with pytest.raises(ForbiddenError) as exc_info:
            await service.quick_action(application["id"], "approve", application["rejectToken"])
        assert exc_info.value.message == "Invalid action token"

    @pytest.mark.asyncio
    async def test_quick_action_only_once(self, service):
        application = await submit(service)
        await service.quick_action(application["id"], "reject", application["rejectToken"])
        with pytest.raises(ConflictError) as exc_info:
            await service.quick_action(application["id"], "approve", application["approveToken"])
        assert exc_info.value.message == "Application already processed"

    @pytest.mark.asyncio
    async def test_quick_action_invalid_action(self, service):
        application = await submit(service)
        with pytest.raises(ValidationError):
            await service.quick_action(application["id"], "delete", application["approveToken"])


class TestDetailsAndDelete:
    @pytest.mark.asyncio
    async def test_update_details(self, service):
        application = await submit(service)

        result = await service.update_details(
            application["id"],
            {"firstName": "Janet", "lastName": "Doe", "email": "Janet@Example.com", "company": "Acme"},
        )

        assert result.value["fullName"] == "Janet Doe"
        assert result.value["email"] == "janet@example.com"
        assert result.value["updatedBy"] == "Admin"
        assert result.value["status"] == "pending"

    @pytest.mark.asyncio
    async def test_update_rejects_taken_email(self, service):
        await submit(service, email="taken@example.com", name="Other Person")
        application = await submit(service)
        with pytest.raises(ConflictError):
            await service.update_details(
                application["id"],
                {"firstName": "Jane", "lastName": "Doe", "email": "taken@example.com"},
            )

    @pytest.mark.asyncio
    async def test_update_rejects_bad_email(self, service):
        application = await submit(service)
        with pytest.raises(ValidationError) as exc_info:
            await service.update_details(
                application["id"], {"firstName": "J", "lastName": "D", "email": "nope"}
            )
        assert exc_info.value.message == "Invalid email format"

    @pytest.mark.asyncio
    async def test_delete(self, service, store):
        application = await submit(service)
        await service.delete_application(application["id"])

        assert await store.get("applications", application["id"]) is None
        assert await service.list_applications() == []
        with pytest.raises(NotFoundError):
            await service.delete_application(application["id"])

    @pytest.mark.asyncio
    async def test_list_sorts_admins_first(self, service, index):
        await index.append_or_update(APPLICATIONS, {"id": "a", "email": "a@x.com", "name": "Zed"})
        await index.append_or_update(
            APPLICATIONS, {"id": "b", "email": "b@x.com", "name": "Yan", "isAdmin": True}
        )
        await index.append_or_update(APPLICATIONS, {"id": "c", "email": "c@x.com", "name": "Abe"})

        assert [a["id"] for a in await service.list_applications()] == ["b", "c", "a"]


class TestAdminCredentials:
    """Tests for admin invitations and password setup."""

    @pytest.mark.asyncio
    async def test_invitation_emails_setup_link(self, service, email):
        application = await submit(service)
        email.clear()

        issued = await service.send_admin_invitation(application["id"], "Jane", "Doe", "jane@example.com")

        [message] = email.to("jane@example.com")
        assert f"https://kartel.test/admin-setup.html?token={issued.token}" in message.html
        assert issued.record["type"] == "admin-setup"

    @pytest.mark.asyncio
    async def test_invitation_email_failure_propagates(self, service, email):
        application = await submit(service)
        email.fail = True
        with pytest.raises(UpstreamError):
            await service.send_admin_invitation(application["id"], "Jane", "Doe", "jane@example.com")

    @pytest.mark.asyncio
    async def test_validate_setup_token_does_not_consume(self, service):
        application = await submit(service)
        issued = await service.send_admin_invitation(application["id"], "Jane", "Doe", "jane@example.com")

        preview = await service.validate_setup_token(issued.token)
        again = await service.validate_setup_token(issued.token)

        assert preview == {"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"}
        assert again == preview

    @pytest.mark.asyncio
    async def test_grant_credentials(self, service, store):
        application = await submit(service)
        issued = await service.send_admin_invitation(application["id"], "Jane", "Doe", "jane@example.com")

        result = await service.grant_admin_credentials(issued.token, "s3cure-password")

        updated = result.value
        assert updated["isAdmin"] is True
        assert verify_password("s3cure-password", updated["adminPasswordSalt"], updated["adminPasswordHash"])
        assert (await store.get(ADMIN_TOKENS, issued.token))["used"] is True

        with pytest.raises(TokenAlreadyUsedError):
            await service.grant_admin_credentials(issued.token, "another-password")

    @pytest.mark.asyncio
    async def test_grant_rejects_short_password(self, service, store):
        application = await submit(service)
        issued = await service.send_admin_invitation(application["id"], "Jane", "Doe", "jane@example.com")

        with pytest.raises(ValidationError):
            await service.grant_admin_credentials(issued.token, "short")
        assert (await store.get(ADMIN_TOKENS, issued.token))["used"] is False

    @pytest.mark.asyncio
    async def test_token_not_consumed_when_record_write_fails(self, service, store):
        application = await submit(service)
        issued = await service.send_admin_invitation(application["id"], "Jane", "Doe", "jane@example.com")
        store.inject_failure("set", "applications", application["id"])

        with pytest.raises(StorageError):
            await service.grant_admin_credentials(issued.token, "s3cure-password")
        assert (await store.get(ADMIN_TOKENS, issued.token))["used"] is False

    @pytest.mark.asyncio
    async def test_promote_to_super_admin(self, service):
        application = await submit(service)

        result = await service.promote_to_super_admin("JANE@example.com")

        assert result.value["id"] == application["id"]
        assert result.value["isSuperAdmin"] is True
        assert result.value["promotedToSuperAdminAt"] == "2025-06-01T12:00:00.000Z"

    @pytest.mark.asyncio
    async def test_promote_unknown_email(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.promote_to_super_admin("ghost@example.com")
        assert exc_info.value.message == "User not found"


class TestRecovery:
    @pytest.mark.asyncio
    async def test_recover_after_lost_list(self, service, store):
        first = await submit(service, email="a@example.com")
        second = await submit(service, email="b@example.com")
        await store.delete("applications", "_list")

        summary = await service.recover_applications()

        assert summary.recovered == 2
        assert {a["id"] for a in await service.list_applications()} == {first["id"], second["id"]}


class TestImportMembers:
    """Tests for ApplicationService.import_members."""

    @pytest.mark.asyncio
    async def test_imports_rows_as_approved(self, service, store):
        rows = [
            {"email": "Ann@Example.com", "firstName": "Ann", "lastName": "Lee", "company": "Acme"},
            {"email": "bob@example.com", "firstName": "Bob", "lastName": "Ray"},
        ]

        result = await service.import_members(rows)

        assert (result.value.imported, result.value.skipped, result.value.errors) == (2, 0, 0)
        listed = {a["email"]: a for a in await service.list_applications()}
        assert set(listed) == {"ann@example.com", "bob@example.com"}
        ann = listed["ann@example.com"]
        assert ann["status"] == "approved"
        assert ann["reviewedBy"] == "Admin (CSV Import)"
        assert ann["importedAt"] == "2025-06-01T12:00:00.000Z"
        assert ann["approveToken"] != ann["rejectToken"]
        assert await store.get("applications", ann["id"]) == ann
        assert result.value.details[0]["applicationId"] == ann["id"]

    @pytest.mark.asyncio
    async def test_existing_and_repeated_emails_skipped(self, service):
        await submit(service, email="jane@example.com")
        rows = [
            {"email": "JANE@example.com", "firstName": "Jane", "lastName": "Doe"},
            {"email": "new@example.com", "firstName": "New", "lastName": "One"},
            {"email": "new@example.com", "firstName": "New", "lastName": "Again"},
        ]

        result = await service.import_members(rows)

        assert [d["status"] for d in result.value.details] == ["skipped", "imported", "skipped"]
        assert result.value.details[0]["message"] == "Member already exists"
        assert len(await service.list_applications()) == 2

    @pytest.mark.asyncio
    async def test_invalid_rows_are_errors(self, service):
        rows = [
            {"email": "a@example.com", "firstName": "", "lastName": "Lee"},
            {"email": "not-an-email", "firstName": "A", "lastName": "B"},
            "junk",
        ]

        result = await service.import_members(rows)

        assert result.value.errors == 3
        assert result.value.imported == 0
        assert result.value.details[0]["message"] == (
            "Missing required fields (email, firstName, lastName)"
        )
        assert await service.list_applications() == []

    @pytest.mark.asyncio
    async def test_accepts_csv_text(self, service):
        text = "email,firstName,lastName,phone\nann@example.com,Ann,Lee,0123\nbob@example.com,Bob,,\n"

        result = await service.import_members(text)

        assert (result.value.imported, result.value.errors) == (1, 1)
        [ann] = await service.list_applications()
        assert ann["phone"] == "0123"
        assert ann["fullName"] == "Ann Lee"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rows", [None, {"email": "a@example.com"}, 42])
    async def test_rejects_non_list(self, service, rows):
        with pytest.raises(ValidationError) as exc_info:
            await service.import_members(rows)
        assert exc_info.value.message == "Invalid CSV data format"

    @pytest.mark.asyncio
    async def test_list_failure_is_warning(self, service, store):
        store.inject_failure("set", "applications", "_list")

        result = await service.import_members(
            [{"email": "ann@example.com", "firstName": "Ann", "lastName": "Lee"}]
        )

        assert result.value.imported == 1
        assert result.warnings
        store.clear_failures()
        summary = await service.recover_applications()
        assert summary.recovered == 1

    @pytest.mark.asyncio
    async def test_to_dict(self, service):
        result = await service.import_members(
            [{"email": "ann@example.com", "firstName": "Ann", "lastName": "Lee"}]
        )
        body = result.value.to_dict()
        assert body["imported"] == 1
        assert body["details"][0]["status"] == "imported"

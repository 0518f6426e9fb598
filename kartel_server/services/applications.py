"""
Membership application lifecycle.

States:
    pending -> approved | rejected      (admin review or email quick action)
    any     -> admin credentials granted (via a single-use setup token)
    any     -> super admin               (promotion by email)
    (none)  -> approved                  (admin CSV import)

Every mutation writes the individual record first and then syncs the
``_list`` entry as a best-effort step. Notification emails are sent after
the write and never fail the operation, except admin invitations where the
email is the whole point.

Invariants:
    - Emails are unique across applications (case-insensitive, checked against the list)
    - Quick actions only apply to pending applications
    - approveToken and rejectToken are distinct random values
    - Validation happens before any store access
"""

from __future__ import annotations

import csv
import io
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

from ..config import ServerConfig
from ..errors import ConflictError, ForbiddenError, NotFoundError, StorageError, ValidationError
from ..list_index import ListIndex, RebuildSummary, WriteResult
from ..notify import templates
from ..notify.email import EmailSender
from ..passwords import MIN_PASSWORD_LENGTH, hash_password, timing_safe_equal
from ..records import (
    APPLICATIONS,
    Clock,
    Record,
    display_name,
    generate_id,
    is_valid_email,
    normalize_email,
    to_iso,
    utc_now,
)
from ..tokens import IssuedToken, TokenManager, token_hint
from .common import clean_str, is_blank, require_fields, send_best_effort

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
REVIEW_DECISIONS = (STATUS_APPROVED, STATUS_REJECTED)

QUICK_ACTIONS = {"approve": STATUS_APPROVED, "reject": STATUS_REJECTED}
QUICK_ACTION_REVIEWER = "Admin (Quick Action)"

ACTION_TOKEN_BYTES = 16

IMPORT_REVIEWER = "Admin (CSV Import)"
IMPORT_REQUIRED_FIELDS = ("email", "firstName", "lastName")


def _action_tokens() -> tuple[str, str]:
    """Distinct approve and reject tokens for the quick-action links."""
    approve_token = secrets.token_hex(ACTION_TOKEN_BYTES)
    reject_token = secrets.token_hex(ACTION_TOKEN_BYTES)
    while reject_token == approve_token:
        reject_token = secrets.token_hex(ACTION_TOKEN_BYTES)
    return approve_token, reject_token


@dataclass
class ImportResults:
    """Per-row outcome of a CSV member import.

    Attributes:
        imported: Rows that became approved applications
        skipped: Rows whose email already had an application
        errors: Rows that were invalid or failed to save
        details: One entry per row, in input order
    """

    imported: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def add(self, row: Any, status: str, message: str, application_id: str | None = None) -> None:
        if status == "imported":
            self.imported += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.errors += 1
        detail: dict[str, Any] = {"row": row, "status": status, "message": message}
        if application_id:
            detail["applicationId"] = application_id
        self.details.append(detail)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
            "details": list(self.details),
        }


def sort_for_admin(records: list[Record]) -> list[Record]:
    """Admins first, then alphabetical by display name."""
    return sorted(records, key=lambda r: (not r.get("isAdmin"), display_name(r).lower()))


class ApplicationService:
    """Create, review and administer membership applications.

    Example:
        >>> service = ApplicationService(index, setup_tokens, email, config)
        >>> created = await service.submit(
        ...     {"name": "Jane Doe", "email": "jane@x.com", "phone": "07123456789"}
        ... )
        >>> reviewed = await service.review(created.value["id"], "approved", "Admin")
        >>> reviewed.value["status"]
        'approved'
    """

    def __init__(
        self,
        index: ListIndex,
        setup_tokens: TokenManager,
        email: EmailSender,
        config: ServerConfig,
        clock: Clock = utc_now,
    ) -> None:
        self.index = index
        self.setup_tokens = setup_tokens
        self.email = email
        self.config = config
        self._clock = clock

    # Lookups

    async def list_applications(self) -> list[Record]:
        return sort_for_admin(await self.index.read_list(APPLICATIONS))

    async def get_application(self, application_id: str) -> Record:
        """Load an application from its record, or its list entry.

        Raises:
            NotFoundError: If the application exists in neither
        """
        record = await self.index.get_record(APPLICATIONS, application_id)
        if record is None:
            raise NotFoundError("Application not found", "application", application_id)
        return record

    async def find_by_email(self, email: str, exclude_id: str | None = None) -> Record | None:
        """Case-insensitive email lookup against the applications list."""
        wanted = normalize_email(email)
        if not wanted:
            return None
        for record in await self.index.read_list(APPLICATIONS):
            if record.get("id") == exclude_id:
                continue
            if normalize_email(record.get("email")) == wanted:
                return record
        return None

    # Lifecycle

    async def submit(self, fields: dict[str, Any]) -> WriteResult[Record]:
        """Accept a public application.

        Raises:
            ValidationError: If name, email or phone is missing
            ConflictError: If an application with the same email exists
        """
        if is_blank(fields.get("name")) and is_blank(fields.get("firstName")):
            raise ValidationError("Missing required field: name", field_name="name")
        require_fields(fields, ("email", "phone"))

        email = clean_str(fields["email"])
        if await self.find_by_email(email) is not None:
            raise ConflictError("An application with this email address already exists")

        first_name = clean_str(fields.get("firstName"))
        last_name = clean_str(fields.get("lastName"))
        name = clean_str(fields.get("name")) or f"{first_name} {last_name}".strip()

        approve_token, reject_token = _action_tokens()

        now = self._clock()
        application: Record = {
            "id": generate_id(APPLICATIONS.id_prefix, now),
            "name": name,
            "firstName": first_name or name.split(" ")[0],
            "lastName": last_name or " ".join(name.split(" ")[1:]),
            "email": email,
            "company": clean_str(fields.get("company")),
            "phone": clean_str(fields["phone"]),
            "industry": clean_str(fields.get("industry")),
            "message": clean_str(fields.get("message")),
            "status": STATUS_PENDING,
            "submittedAt": to_iso(now),
            "reviewedAt": None,
            "reviewedBy": None,
            "approveToken": approve_token,
            "rejectToken": reject_token,
        }

        result = await self.index.append_or_update(APPLICATIONS, application)
        logger.info(f"Application submitted: {application['id']}")

        admin_email = self.config.email.admin_email
        if admin_email:
            subject, html = templates.new_application(application, self.config.email.link_base_url)
            await send_best_effort(self.email, result, admin_email, subject, html)
        return result

    async def _apply_decision(
        self,
        application: Record,
        status: str,
        reviewer: str,
        notes: str | None,
        notify: bool,
    ) -> WriteResult[Record]:
        updated = dict(application)
        updated["status"] = status
        updated["reviewedAt"] = to_iso(self._clock())
        updated["reviewedBy"] = reviewer
        if notes:
            updated["notes"] = notes

        result = await self.index.append_or_update(APPLICATIONS, updated)
        logger.info(f"Application {updated['id']} {status} by {reviewer}")

        if notify and updated.get("email"):
            if status == STATUS_APPROVED:
                subject, html = templates.application_approved(updated)
            else:
                subject, html = templates.application_rejected(updated)
            await send_best_effort(self.email, result, updated["email"], subject, html)
        return result

    async def review(
        self,
        application_id: str,
        decision: str,
        reviewer: str = "Admin",
        notes: str | None = None,
        notify: bool = False,
    ) -> WriteResult[Record]:
        """Approve or reject an application.

        Raises:
            ValidationError: If the decision is not approved/rejected
            NotFoundError: If the application does not exist
        """
        if is_blank(application_id):
            raise ValidationError("Missing required field: applicationId", "applicationId")
        if decision not in REVIEW_DECISIONS:
            raise ValidationError(
                f"Invalid status '{decision}'. Must be one of: approved, rejected", "status"
            )
        application = await self.get_application(application_id)
        return await self._apply_decision(application, decision, reviewer, notes, notify)

    async def quick_action(
        self,
        application_id: str,
        action: str,
        action_token: str,
    ) -> WriteResult[Record]:
        """Apply an approve/reject link from the admin notification email.

        Raises:
            ValidationError: If the action is not approve/reject
            NotFoundError: If the application does not exist
            ForbiddenError: If the action token does not match
            ConflictError: If the application is no longer pending
        """
        if action not in QUICK_ACTIONS:
            raise ValidationError("Invalid action. Must be approve or reject", "action")
        require_fields(
            {"applicationId": application_id, "actionToken": action_token},
            ("applicationId", "actionToken"),
        )

        application = await self.get_application(application_id)
        expected = application.get("approveToken" if action == "approve" else "rejectToken")
        if not expected or not timing_safe_equal(str(action_token), str(expected)):
            raise ForbiddenError("Invalid action token")
        if application.get("status") != STATUS_PENDING:
            raise ConflictError("Application already processed")

        return await self._apply_decision(
            application, QUICK_ACTIONS[action], QUICK_ACTION_REVIEWER, None, notify=True
        )

    async def update_details(self, application_id: str, fields: dict[str, Any]) -> WriteResult[Record]:
        """Edit an applicant's contact details.

        Raises:
            ValidationError: If a required field is missing or the email is malformed
            NotFoundError: If the application does not exist
            ConflictError: If the new email belongs to another application
        """
        require_fields(
            {"id": application_id, **fields},
            ("id", "firstName", "lastName", "email"),
        )
        if not is_valid_email(fields["email"]):
            raise ValidationError("Invalid email format", "email")
        status = fields.get("status")
        if status and status not in (STATUS_PENDING, *REVIEW_DECISIONS):
            raise ValidationError(f"Invalid status '{status}'", "status")

        application = await self.get_application(application_id)
        email = normalize_email(fields["email"])
        if email != normalize_email(application.get("email")):
            if await self.find_by_email(email, exclude_id=application_id) is not None:
                raise ConflictError("Email address is already used by another application")

        updated = {
            **application,
            "firstName": clean_str(fields["firstName"]),
            "lastName": clean_str(fields["lastName"]),
            "email": email,
            "company": clean_str(fields.get("company")),
            "position": clean_str(fields.get("position")),
            "phone": clean_str(fields.get("phone")),
            "status": status or application.get("status"),
            "updatedAt": to_iso(self._clock()),
            "updatedBy": "Admin",
        }
        updated["fullName"] = f"{updated['firstName']} {updated['lastName']}".strip()
        return await self.index.append_or_update(APPLICATIONS, updated)

    async def delete_application(self, application_id: str) -> WriteResult[str]:
        """Remove an application record and its list entry.

        Raises:
            NotFoundError: If the application does not exist
        """
        await self.get_application(application_id)
        result = await self.index.remove(APPLICATIONS, application_id)
        logger.info(f"Application deleted: {application_id}")
        return result

    # Admin credentials

    async def send_admin_invitation(
        self,
        application_id: str,
        first_name: str,
        last_name: str,
        email: str,
    ) -> IssuedToken:
        """Issue an admin setup token and email the setup link.

        Raises:
            ValidationError: If a field is missing
            UpstreamError: If the invitation email cannot be sent
        """
        require_fields(
            {
                "applicationId": application_id,
                "firstName": first_name,
                "lastName": last_name,
                "email": email,
            },
            ("applicationId", "firstName", "lastName", "email"),
        )
        ttl = self.config.tokens.admin_setup_ttl_seconds
        issued = await self.setup_tokens.issue(
            application_id,
            email,
            ttl,
            firstName=first_name,
            lastName=last_name,
            type="admin-setup",
        )
        setup_url = f"{self.config.email.link_base_url}/admin-setup.html?token={issued.token}"
        subject, html = templates.admin_invitation(first_name, setup_url, max(ttl // 3600, 1))
        await self.email.send(email, subject, html)
        logger.info(f"Admin invitation sent to {email}")
        return issued

    async def validate_setup_token(self, token: str) -> dict[str, Any]:
        """Preview a setup token without consuming it."""
        if is_blank(token):
            raise ValidationError("Token parameter is required", "token")
        record = await self.setup_tokens.validate(token)
        return {
            "firstName": record.data.get("firstName"),
            "lastName": record.data.get("lastName"),
            "email": record.email,
        }

    async def grant_admin_credentials(self, setup_token: str, new_password: str) -> WriteResult[Record]:
        """Set an admin password using a setup token.

        The application record is written before the token is marked used.

        Raises:
            ValidationError: If the password is too short
            TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError: Token problems
            NotFoundError: If the referenced application no longer exists
        """
        if is_blank(setup_token) or is_blank(new_password):
            raise ValidationError("Token and password are required", "password")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", "password"
            )

        token = await self.setup_tokens.validate(setup_token)
        application = await self.index.get_record(APPLICATIONS, token.subject_id)
        if application is None:
            raise NotFoundError("Application not found", "application", token.subject_id)

        hashed = hash_password(new_password)
        updated = {
            **application,
            "isAdmin": True,
            "adminPasswordSalt": hashed.salt,
            "adminPasswordHash": hashed.hash,
            "adminSetupCompletedAt": to_iso(self._clock()),
        }
        result = await self.index.append_or_update(APPLICATIONS, updated)
        await self.setup_tokens.consume(token)
        logger.info(
            f"Admin credentials set for {updated['id']} using token {token_hint(setup_token)}"
        )
        return result

    async def promote_to_super_admin(self, email: str) -> WriteResult[Record]:
        """Grant super admin rights to the application with this email.

        Raises:
            ValidationError: If the email is missing
            NotFoundError: If no application has this email
        """
        if is_blank(email):
            raise ValidationError("Missing required field: email", "email")
        match = await self.find_by_email(email)
        if match is None:
            raise NotFoundError("User not found", "application", email)
        application = await self.index.get_record(APPLICATIONS, match["id"]) or match
        updated = {
            **application,
            "isSuperAdmin": True,
            "isAdmin": True,
            "promotedToSuperAdminAt": to_iso(self._clock()),
        }
        result = await self.index.append_or_update(APPLICATIONS, updated)
        logger.info(f"Promoted {updated['id']} to super admin")
        return result

    async def import_members(
        self,
        rows: Any,
        imported_by: str = IMPORT_REVIEWER,
    ) -> WriteResult[ImportResults]:
        """Bulk-create approved applications from CSV rows.

        ``rows`` is CSV text with a header line, or already parsed rows as a
        list of objects. Rows without email, firstName and lastName are
        errors; rows whose email already has an application are skipped.

        Raises:
            ValidationError: If rows is neither CSV text nor a list
        """
        if isinstance(rows, str):
            rows = list(csv.DictReader(io.StringIO(rows.strip())))
        if not isinstance(rows, list):
            raise ValidationError("Invalid CSV data format", "csvData")

        existing = {
            normalize_email(r.get("email")) for r in await self.index.read_list(APPLICATIONS)
        }
        now = self._clock()
        timestamp = to_iso(now)
        results = ImportResults()
        outcome: WriteResult[ImportResults] = WriteResult(value=results)

        for row in rows:
            if not isinstance(row, dict):
                results.add(row, "error", "Row must be an object")
                continue
            fields = {k.strip(): v for k, v in row.items() if isinstance(k, str)}
            if any(is_blank(fields.get(name)) for name in IMPORT_REQUIRED_FIELDS):
                results.add(row, "error", "Missing required fields (email, firstName, lastName)")
                continue
            email = normalize_email(fields["email"])
            if not is_valid_email(email):
                results.add(row, "error", "Invalid email format")
                continue
            if email in existing:
                results.add(row, "skipped", "Member already exists")
                continue

            first_name = clean_str(fields["firstName"])
            last_name = clean_str(fields["lastName"])
            approve_token, reject_token = _action_tokens()
            application: Record = {
                "id": generate_id(APPLICATIONS.id_prefix, now),
                "firstName": first_name,
                "lastName": last_name,
                "fullName": f"{first_name} {last_name}",
                "email": email,
                "company": clean_str(fields.get("company")),
                "position": clean_str(fields.get("position")),
                "phone": clean_str(fields.get("phone")),
                "message": clean_str(fields.get("message")) or "Imported from CSV",
                "status": STATUS_APPROVED,
                "submittedAt": timestamp,
                "reviewedAt": timestamp,
                "reviewedBy": imported_by,
                "approveToken": approve_token,
                "rejectToken": reject_token,
                "importedAt": timestamp,
            }
            try:
                write = await self.index.append_or_update(APPLICATIONS, application)
            except StorageError as e:
                logger.warning(f"Import of {email} failed: {e.message}")
                results.add(row, "error", e.message)
                continue
            outcome.merge(write)
            existing.add(email)
            results.add(row, "imported", "Successfully imported", application["id"])

        logger.info(
            f"Import completed: {results.imported} imported, "
            f"{results.skipped} skipped, {results.errors} errors"
        )
        return outcome

    async def recover_applications(self, dry_run: bool = False) -> RebuildSummary:
        """Rebuild the applications list from individual records."""
        return await self.index.rebuild(APPLICATIONS, dry_run=dry_run)

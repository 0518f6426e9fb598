"""
Member and admin authentication.

Approved applications are members. Members sign in with a magic link
(single-use, 30 minutes) or a password they set once signed in. Admins sign
in with the password chosen through their setup invitation; one super
admin may also be configured through the environment.

Every successful sign-in returns a MemberSession whose token is issued by
the configured AuthenticationPort.

Invariants:
    - Link and reset requests answer identically whether or not the email is known
    - Credential failures use one message regardless of which check failed
    - Only approved applications can sign in as members
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..auth import ROLE_ADMIN, ROLE_SUPER_ADMIN, AuthenticationPort, roles_for
from ..config import ServerConfig
from ..errors import NotFoundError, UnauthorizedError, ValidationError
from ..list_index import ListIndex, WriteResult
from ..notify import templates
from ..notify.email import EmailSender
from ..passwords import (
    MIN_PASSWORD_LENGTH,
    hash_password,
    timing_safe_email_equal,
    timing_safe_equal,
    verify_password,
)
from ..records import APPLICATIONS, Clock, Record, display_name, normalize_email, to_iso, utc_now
from ..tokens import TokenManager, token_hint
from .applications import STATUS_APPROVED
from .common import clean_str, is_blank, send_best_effort

logger = logging.getLogger(__name__)

LOGIN_LINK_SENT_MESSAGE = "If your email is registered, you will receive a login link shortly."
RESET_LINK_SENT_MESSAGE = (
    "If this email is associated with a member account, a password reset link has been sent."
)
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_MEMBER_CREDENTIALS = "Invalid credentials or application not approved"


def has_member_password(record: Record) -> bool:
    return bool(record.get("memberPasswordHash") and record.get("memberPasswordSalt"))


def member_profile(record: Record) -> dict[str, Any]:
    """Public view of a member record (no secrets)."""
    return {
        "id": record.get("id"),
        "email": record.get("email"),
        "fullName": display_name(record),
        "firstName": record.get("firstName"),
        "lastName": record.get("lastName"),
        "company": record.get("company"),
        "position": record.get("position"),
        "phone": record.get("phone"),
        "linkedin": record.get("linkedin"),
        "isAdmin": bool(record.get("isAdmin")),
        "isSuperAdmin": bool(record.get("isSuperAdmin")),
        "hasPassword": has_member_password(record),
    }


@dataclass
class MemberSession:
    """A signed-in caller.

    Attributes:
        token: Bearer token for subsequent requests
        roles: Roles embedded in the token
        profile: Profile of the signed-in member or admin
    """

    token: str
    roles: tuple[str, ...]
    profile: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token, "roles": list(self.roles), "user": self.profile}


class MemberService:
    """Magic-link, password and admin sign-in flows."""

    def __init__(
        self,
        index: ListIndex,
        login_tokens: TokenManager,
        reset_tokens: TokenManager,
        authenticator: AuthenticationPort,
        email: EmailSender,
        config: ServerConfig,
        clock: Clock = utc_now,
    ) -> None:
        self.index = index
        self.login_tokens = login_tokens
        self.reset_tokens = reset_tokens
        self.authenticator = authenticator
        self.email = email
        self.config = config
        self._clock = clock

    async def _find_approved(self, email: str) -> Record | None:
        wanted = normalize_email(email)
        for record in await self.index.read_list(APPLICATIONS):
            if (
                normalize_email(record.get("email")) == wanted
                and record.get("status") == STATUS_APPROVED
            ):
                return record
        return None

    async def _load_approved(self, member_id: str) -> Record:
        record = await self.index.get_record(APPLICATIONS, member_id)
        if record is None or record.get("status") != STATUS_APPROVED:
            raise NotFoundError("Member not found", "member", member_id)
        return record

    def _session(self, record: Record, roles: tuple[str, ...]) -> MemberSession:
        token = self.authenticator.issue_session(
            str(record["id"]), record.get("email"), roles, name=display_name(record)
        )
        return MemberSession(token=token, roles=roles, profile=member_profile(record))

    # Magic link

    async def request_login_link(self, email: str) -> WriteResult[str]:
        """Email a single-use login link to an approved member.

        Always returns the same message so callers cannot enumerate members.

        Raises:
            ValidationError: If the email is missing or malformed
        """
        if is_blank(email) or "@" not in email:
            raise ValidationError("Email is required or invalid", "email")

        result: WriteResult[str] = WriteResult(value=LOGIN_LINK_SENT_MESSAGE)
        member = await self._find_approved(email)
        if member is None:
            logger.info("Login link requested for unknown or unapproved email")
            return result

        ttl = self.config.tokens.login_link_ttl_seconds
        issued = await self.login_tokens.issue(str(member["id"]), member["email"], ttl)
        login_url = f"{self.config.email.link_base_url}/members.html?token={issued.token}"
        subject, html = templates.login_link(member, login_url, max(ttl // 60, 1))
        await send_best_effort(self.email, result, member["email"], subject, html)
        return result

    async def verify_login_token(self, token: str) -> MemberSession:
        """Exchange a login link token for a session.

        Raises:
            ValidationError: If no token is given
            TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError: Token problems
            UnauthorizedError: If the member is gone or no longer approved
        """
        if is_blank(token):
            raise ValidationError("Token is required", "token")
        record = await self.login_tokens.validate(token)
        member = await self.index.get_record(APPLICATIONS, record.subject_id)
        if member is None or member.get("status") != STATUS_APPROVED:
            raise UnauthorizedError("Member account not found or not active")
        await self.login_tokens.consume(record)
        logger.info(f"Login link {token_hint(token)} used by {member['id']}")
        return self._session(member, roles_for(member))

    # Passwords

    async def set_member_password(self, member_id: str, password: str) -> WriteResult[Record]:
        """Set or replace a signed-in member's password.

        Raises:
            ValidationError: If the password is too short
            NotFoundError: If the member is not an approved application
        """
        if is_blank(member_id) or is_blank(password):
            raise ValidationError("Member ID and password are required", "password")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", "password"
            )
        member = await self._load_approved(member_id)
        hashed = hash_password(password)
        updated = {
            **member,
            "memberPasswordHash": hashed.hash,
            "memberPasswordSalt": hashed.salt,
            "passwordSetAt": to_iso(self._clock()),
        }
        return await self.index.append_or_update(APPLICATIONS, updated)

    async def member_login(self, email: str, password: str) -> MemberSession:
        """Password sign-in for approved members.

        Raises:
            ValidationError: If email or password is missing
            UnauthorizedError: On any credential mismatch
        """
        if is_blank(email) or is_blank(password):
            raise ValidationError("Email and password are required", "email")
        member = await self._find_approved(email)
        if member is None or not has_member_password(member):
            raise UnauthorizedError(INVALID_MEMBER_CREDENTIALS)
        if not verify_password(
            password, member.get("memberPasswordSalt"), member.get("memberPasswordHash")
        ):
            raise UnauthorizedError(INVALID_MEMBER_CREDENTIALS)
        logger.info(f"Member password login: {member['id']}")
        return self._session(member, roles_for(member))

    async def admin_login(self, email: str, password: str) -> MemberSession:
        """Admin sign-in via setup-invitation password or env super admin.

        Raises:
            ValidationError: If email or password is missing
            UnauthorizedError: On any credential mismatch
        """
        if is_blank(email) or is_blank(password):
            raise ValidationError("Email and password are required", "email")

        auth = self.config.auth
        if auth.super_admin_email and auth.super_admin_password:
            email_ok = timing_safe_email_equal(email, auth.super_admin_email)
            password_ok = timing_safe_equal(password, auth.super_admin_password)
            if email_ok and password_ok:
                roles = (ROLE_ADMIN, ROLE_SUPER_ADMIN)
                token = self.authenticator.issue_session(
                    normalize_email(auth.super_admin_email), auth.super_admin_email, roles
                )
                logger.info("Super admin login")
                profile = {
                    "email": auth.super_admin_email,
                    "fullName": "Super Admin",
                    "isAdmin": True,
                    "isSuperAdmin": True,
                }
                return MemberSession(token=token, roles=roles, profile=profile)

        wanted = normalize_email(email)
        admin = next(
            (
                r
                for r in await self.index.read_list(APPLICATIONS)
                if r.get("isAdmin")
                and normalize_email(r.get("email")) == wanted
                and r.get("adminPasswordHash")
                and r.get("adminPasswordSalt")
            ),
            None,
        )
        if admin is None:
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not verify_password(password, admin["adminPasswordSalt"], admin["adminPasswordHash"]):
            raise UnauthorizedError(INVALID_CREDENTIALS)
        logger.info(f"Admin login: {admin['id']}")
        return self._session(admin, roles_for(admin, base=(ROLE_ADMIN,)))

    # Password reset

    async def request_password_reset(self, email: str) -> WriteResult[str]:
        """Email a reset link to a member. Same answer for unknown emails.

        Raises:
            ValidationError: If the email is missing
        """
        if is_blank(email):
            raise ValidationError("Email is required", "email")
        result: WriteResult[str] = WriteResult(value=RESET_LINK_SENT_MESSAGE)
        member = await self._find_approved(email)
        if member is None:
            return result

        ttl = self.config.tokens.password_reset_ttl_seconds
        issued = await self.reset_tokens.issue(str(member["id"]), normalize_email(member["email"]), ttl)
        reset_url = f"{self.config.email.link_base_url}/members.html?reset={issued.token}"
        subject, html = templates.password_reset(member, reset_url, max(ttl // 60, 1))
        await send_best_effort(self.email, result, member["email"], subject, html)
        return result

    async def reset_password(self, token: str, email: str, password: str) -> WriteResult[Record]:
        """Complete a password reset.

        Raises:
            ValidationError: If a field is missing or the password is too short
            TokenNotFoundError, TokenExpiredError, TokenAlreadyUsedError: Token problems
            UnauthorizedError: If the token was issued for a different email
            NotFoundError: If the member no longer exists
        """
        if is_blank(token) or is_blank(email) or is_blank(password):
            raise ValidationError("Token, email and password are required", "token")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", "password"
            )
        record = await self.reset_tokens.validate(token)
        if not timing_safe_email_equal(record.email, email):
            raise UnauthorizedError("Invalid or expired reset token")

        member = await self._load_approved(record.subject_id)
        hashed = hash_password(password)
        updated = {
            **member,
            "memberPasswordHash": hashed.hash,
            "memberPasswordSalt": hashed.salt,
            "passwordSetAt": to_iso(self._clock()),
        }
        result = await self.index.append_or_update(APPLICATIONS, updated)
        await self.reset_tokens.consume(record)
        logger.info(f"Password reset for {member['id']} with token {token_hint(token)}")
        return result

    # Profile

    async def update_profile(self, member_id: str, fields: dict[str, Any]) -> WriteResult[dict[str, Any]]:
        """Let a signed-in member edit their own contact details.

        Raises:
            ValidationError: If first or last name is missing
            NotFoundError: If the member is not an approved application
        """
        first_name = clean_str(fields.get("firstName"))
        last_name = clean_str(fields.get("lastName"))
        if not first_name or not last_name:
            raise ValidationError("First name and last name are required", "firstName")

        member = await self._load_approved(member_id)
        updated = {
            **member,
            "firstName": first_name,
            "lastName": last_name,
            "company": clean_str(fields.get("company")),
            "position": clean_str(fields.get("position")),
            "phone": clean_str(fields.get("phone")),
            "updatedAt": to_iso(self._clock()),
        }
        for name_field in ("fullName", "name"):
            if name_field in member:
                updated[name_field] = f"{first_name} {last_name}"

        write = await self.index.append_or_update(APPLICATIONS, updated)
        logger.info(f"Profile updated for {member_id}")
        return WriteResult(value=member_profile(updated), warnings=write.warnings)

    @staticmethod
    def _password_status(record: Record) -> dict[str, Any]:
        return {
            "id": record.get("id"),
            "email": record.get("email"),
            "isAdmin": bool(record.get("isAdmin")),
            "hasAdminPassword": bool(
                record.get("adminPasswordHash") and record.get("adminPasswordSalt")
            ),
            "hasMemberPassword": has_member_password(record),
            "passwordSetAt": record.get("passwordSetAt"),
            "passwordFields": sorted(k for k in record if "password" in k.lower()),
        }

    async def password_status(self, email: str) -> dict[str, Any]:
        """Which credentials an application has, without exposing them.

        Raises:
            ValidationError: If the email is missing
            NotFoundError: If no application uses the email
        """
        if is_blank(email):
            raise ValidationError("Email is required", "email")
        wanted = normalize_email(email)
        for record in await self.index.read_list(APPLICATIONS):
            if normalize_email(record.get("email")) == wanted:
                return self._password_status(record)
        raise NotFoundError("Member not found", "member", wanted)

    async def own_password_status(self, member_id: str) -> dict[str, Any]:
        """Raises NotFoundError if the member is not an approved application."""
        return self._password_status(await self._load_approved(member_id))

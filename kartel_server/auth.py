"""
Bearer token authentication.

Two interchangeable implementations of one port, selected by
``AUTH_SCHEME``:

- JwtAuthenticator: HS256 session tokens carrying a ``roles`` array,
  issuer ``the-kartel`` and audience ``the-kartel-users``.
- LegacyTokenAuthenticator (deprecated): opaque random tokens accepted on
  length alone. Every accepted token gets every role.

Invariants:
    - authenticate() either returns a Principal or raises UnauthorizedError
    - require_role() raises ForbiddenError, never UnauthorizedError
    - Secrets and token values never appear in error messages
"""

from __future__ import annotations

import logging
import secrets
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

import jwt

from .config import AuthConfig, AuthScheme
from .errors import ConfigurationError, ForbiddenError, UnauthorizedError
from .records import Clock, utc_now

logger = logging.getLogger(__name__)

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super-admin"

ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)
MEMBER_ROLES = (ROLE_MEMBER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


@dataclass(frozen=True)
class Principal:
    """An authenticated caller.

    Attributes:
        subject: Member/application id, or an email for env-configured admins
        roles: Granted roles
        email: Caller's email when known
        claims: Raw token claims
    """

    subject: str
    roles: tuple[str, ...]
    email: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    def has_any_role(self, allowed: tuple[str, ...] | list[str]) -> bool:
        return any(role in self.roles for role in allowed)

    @property
    def is_admin(self) -> bool:
        return self.has_any_role(ADMIN_ROLES)

    @property
    def is_super_admin(self) -> bool:
        return ROLE_SUPER_ADMIN in self.roles


def roles_for(record: dict[str, Any], base: tuple[str, ...] = (ROLE_MEMBER,)) -> tuple[str, ...]:
    """Roles granted to an application/member record."""
    roles = list(base)
    if record.get("isAdmin") and ROLE_ADMIN not in roles:
        roles.append(ROLE_ADMIN)
    if record.get("isSuperAdmin") and ROLE_SUPER_ADMIN not in roles:
        roles.append(ROLE_SUPER_ADMIN)
    return tuple(roles)


def parse_bearer(header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer`` header.

    Raises:
        UnauthorizedError: If the header is missing or malformed
    """
    if not header or not header.startswith("Bearer "):
        raise UnauthorizedError("Missing or invalid Authorization header")
    token = header[len("Bearer ") :].strip()
    if not token:
        raise UnauthorizedError("No token provided")
    return token


def require_role(principal: Principal, allowed: tuple[str, ...] | list[str]) -> Principal:
    """Check that a principal holds at least one allowed role.

    Raises:
        ForbiddenError: If no allowed role is held
    """
    if not principal.roles:
        raise ForbiddenError("No roles found in token")
    if not principal.has_any_role(allowed):
        raise ForbiddenError("Insufficient permissions")
    return principal


@runtime_checkable
class AuthenticationPort(Protocol):
    """Validates bearer headers and issues session tokens."""

    @abstractmethod
    def authenticate(self, header: str | None) -> Principal:
        """Validate an Authorization header.

        Raises:
            UnauthorizedError: If the credentials are missing or invalid
        """
        ...

    @abstractmethod
    def issue_session(
        self,
        subject: str,
        email: str | None,
        roles: tuple[str, ...],
        **claims: Any,
    ) -> str:
        """Create a session token for a successfully authenticated caller."""
        ...


class JwtAuthenticator(AuthenticationPort):
    """HS256 JWT sessions with role claims.

    Example:
        >>> auth = JwtAuthenticator(AuthConfig(jwt_secret="s3cret"))
        >>> token = auth.issue_session("app_1", "jane@x.com", ("member",))
        >>> auth.authenticate(f"Bearer {token}").roles
        ('member',)
    """

    algorithm = "HS256"

    def __init__(self, config: AuthConfig, clock: Clock = utc_now) -> None:
        if not config.jwt_secret:
            raise ConfigurationError("JWT_SECRET not configured")
        self.config = config
        self._clock = clock

    def issue_session(
        self,
        subject: str,
        email: str | None,
        roles: tuple[str, ...],
        **claims: Any,
    ) -> str:
        now = self._clock()
        payload = {
            **claims,
            "sub": subject,
            "email": email,
            "roles": list(roles),
            "iat": now,
            "exp": now + timedelta(seconds=self.config.jwt_expiry_seconds),
            "iss": self.config.jwt_issuer,
            "aud": self.config.jwt_audience,
        }
        return jwt.encode(payload, self.config.jwt_secret, algorithm=self.algorithm)

    def authenticate(self, header: str | None) -> Principal:
        token = parse_bearer(header)
        try:
            # Expiry is checked against the injected clock below
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=[self.algorithm],
                issuer=self.config.jwt_issuer,
                audience=self.config.jwt_audience,
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except jwt.InvalidTokenError:
            raise UnauthorizedError("Invalid token")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self._clock().timestamp() >= exp:
            raise UnauthorizedError("Token expired")

        roles = claims.get("roles")
        if not isinstance(roles, list):
            roles = []
        return Principal(
            subject=str(claims.get("sub") or ""),
            roles=tuple(str(r) for r in roles),
            email=claims.get("email"),
            claims=claims,
        )


class LegacyTokenAuthenticator(AuthenticationPort):
    """Deprecated opaque-token scheme.

    Tokens are random hex strings that are never stored, so validation is a
    length check only. Kept so old clients keep working during migration.
    """

    def __init__(self, config: AuthConfig) -> None:
        self.min_length = config.legacy_min_token_length
        logger.warning("Legacy bearer authentication enabled, tokens are only length-checked")

    def issue_session(
        self,
        subject: str,
        email: str | None,
        roles: tuple[str, ...],
        **claims: Any,
    ) -> str:
        return secrets.token_hex(32)

    def authenticate(self, header: str | None) -> Principal:
        token = parse_bearer(header)
        if len(token) < self.min_length:
            raise UnauthorizedError("Invalid token")
        return Principal(subject="legacy", roles=MEMBER_ROLES)


def create_authenticator(config: AuthConfig, clock: Clock = utc_now) -> AuthenticationPort:
    """Factory selecting the configured authentication scheme."""
    if config.scheme == AuthScheme.JWT:
        return JwtAuthenticator(config, clock=clock)
    elif config.scheme == AuthScheme.LEGACY:
        return LegacyTokenAuthenticator(config)
    else:
        raise ConfigurationError(f"Unsupported auth scheme: {config.scheme}")

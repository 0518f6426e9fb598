"""
Configuration management for the Kartel backend.

All configuration is done via environment variables. This module provides
typed configuration classes with validation. A ServerConfig is built once
at process start and handed to every collaborator's constructor; nothing
reads the environment after that.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for secrets
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Document new variables in the dataclass docstring
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported record store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    NETLIFY = "netlify"


class ListReadMode(Enum):
    """How collection lists are read.

    CACHED reads the denormalized list blob. SCAN derives the list from the
    individually keyed records on every read and never persists it.
    """

    CACHED = "cached"
    SCAN = "scan"


class AuthScheme(Enum):
    """Bearer token validation scheme."""

    JWT = "jwt"
    LEGACY = "legacy"


@dataclass(frozen=True)
class StoreConfig:
    """Record store configuration.

    Attributes:
        backend: Which store backend to use
        sqlite_path: Database file for the sqlite backend
        netlify_site_id: Netlify site ID (netlify backend)
        netlify_access_token: Netlify API token (netlify backend)
        netlify_blobs_url: Base URL of the Netlify Blobs API
        timeout_seconds: Per-request timeout for remote backends
        list_read_mode: How collection lists are read
    """

    backend: StoreBackend = StoreBackend.MEMORY
    sqlite_path: str = "kartel.db"
    netlify_site_id: str | None = None
    netlify_access_token: str | None = None
    netlify_blobs_url: str = "https://api.netlify.com/api/v1/blobs"
    timeout_seconds: float = 10.0
    list_read_mode: ListReadMode = ListReadMode.CACHED

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORE_BACKEND", "memory").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite, netlify"
            )
        mode_str = os.getenv("LIST_READ_MODE", "cached").lower()
        try:
            list_read_mode = ListReadMode(mode_str)
        except ValueError:
            raise ValueError(f"Invalid LIST_READ_MODE '{mode_str}'. Must be one of: cached, scan")

        return cls(
            backend=backend,
            sqlite_path=os.getenv("SQLITE_PATH", "kartel.db"),
            netlify_site_id=os.getenv("NETLIFY_SITE_ID"),
            netlify_access_token=os.getenv("NETLIFY_ACCESS_TOKEN"),
            netlify_blobs_url=os.getenv("NETLIFY_BLOBS_URL", "https://api.netlify.com/api/v1/blobs"),
            timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "10")),
            list_read_mode=list_read_mode,
        )


@dataclass(frozen=True)
class AuthConfig:
    """Authentication configuration.

    Attributes:
        scheme: Bearer validation scheme (jwt is authoritative, legacy is deprecated)
        jwt_secret: HMAC secret for session tokens
        jwt_expiry_seconds: Session token lifetime
        jwt_issuer: Expected ``iss`` claim
        jwt_audience: Expected ``aud`` claim
        legacy_min_token_length: Minimum bearer length accepted by the legacy scheme
        super_admin_email: Email of the environment-configured super admin
        super_admin_password: Password of the environment-configured super admin
    """

    scheme: AuthScheme = AuthScheme.JWT
    jwt_secret: str | None = None
    jwt_expiry_seconds: int = 24 * 60 * 60
    jwt_issuer: str = "the-kartel"
    jwt_audience: str = "the-kartel-users"
    legacy_min_token_length: int = 32
    super_admin_email: str | None = None
    super_admin_password: str | None = None

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables."""
        scheme_str = os.getenv("AUTH_SCHEME", "jwt").lower()
        try:
            scheme = AuthScheme(scheme_str)
        except ValueError:
            raise ValueError(f"Invalid AUTH_SCHEME '{scheme_str}'. Must be one of: jwt, legacy")

        return cls(
            scheme=scheme,
            jwt_secret=os.getenv("JWT_SECRET"),
            jwt_expiry_seconds=int(os.getenv("JWT_EXPIRY", str(24 * 60 * 60))),
            jwt_issuer=os.getenv("JWT_ISSUER", "the-kartel"),
            jwt_audience=os.getenv("JWT_AUDIENCE", "the-kartel-users"),
            legacy_min_token_length=int(os.getenv("LEGACY_MIN_TOKEN_LENGTH", "32")),
            super_admin_email=os.getenv("SUPER_ADMIN_EMAIL"),
            super_admin_password=os.getenv("SUPER_ADMIN_PASSWORD"),
        )


@dataclass(frozen=True)
class TokenConfig:
    """Single-use token lifetimes.

    Attributes:
        admin_setup_ttl_seconds: Lifetime of admin password-setup tokens
        login_link_ttl_seconds: Lifetime of magic-link login tokens
        password_reset_ttl_seconds: Lifetime of password reset tokens
    """

    admin_setup_ttl_seconds: int = 24 * 60 * 60
    login_link_ttl_seconds: int = 30 * 60
    password_reset_ttl_seconds: int = 30 * 60

    @classmethod
    def from_env(cls) -> TokenConfig:
        """Load configuration from environment variables."""
        return cls(
            admin_setup_ttl_seconds=int(os.getenv("ADMIN_SETUP_TTL_SECONDS", str(24 * 60 * 60))),
            login_link_ttl_seconds=int(os.getenv("LOGIN_LINK_TTL_SECONDS", str(30 * 60))),
            password_reset_ttl_seconds=int(os.getenv("PASSWORD_RESET_TTL_SECONDS", str(30 * 60))),
        )


@dataclass(frozen=True)
class EmailConfig:
    """Outbound email configuration.

    Attributes:
        sendgrid_api_key: SendGrid API key (email disabled when unset)
        sendgrid_url: SendGrid v3 send endpoint
        from_email: Sender address
        from_name: Sender display name
        admin_email: Recipient of new-application notifications
        site_url: Public site URL used in links
        deploy_prime_url: Preview deploy URL, preferred for magic links when set
        timeout_seconds: HTTP timeout for the email API
    """

    sendgrid_api_key: str | None = None
    sendgrid_url: str = "https://api.sendgrid.com/v3/mail/send"
    from_email: str | None = None
    from_name: str = "The Kartel"
    admin_email: str | None = None
    site_url: str = "https://the-kartel.com"
    deploy_prime_url: str | None = None
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        """Whether email sending is configured."""
        return bool(self.sendgrid_api_key and self.from_email)

    @property
    def link_base_url(self) -> str:
        """Base URL for links embedded in emails."""
        return (self.deploy_prime_url or self.site_url).rstrip("/")

    @classmethod
    def from_env(cls) -> EmailConfig:
        """Load configuration from environment variables."""
        return cls(
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY"),
            sendgrid_url=os.getenv("SENDGRID_URL", "https://api.sendgrid.com/v3/mail/send"),
            from_email=os.getenv("FROM_EMAIL"),
            from_name=os.getenv("FROM_NAME", "The Kartel"),
            admin_email=os.getenv("ADMIN_EMAIL"),
            site_url=os.getenv("SITE_URL", "https://the-kartel.com"),
            deploy_prime_url=os.getenv("DEPLOY_PRIME_URL"),
            timeout_seconds=float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10")),
        )


@dataclass(frozen=True)
class PushConfig:
    """Web push configuration.

    Attributes:
        vapid_public_key: VAPID public key handed to browsers
        vapid_private_key: VAPID private key used to sign pushes
        vapid_subject: VAPID contact (mailto: or https: URL)
        subscription_max_age_days: Subscriptions older than this are pruned
    """

    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    vapid_subject: str = "mailto:admin@the-kartel.com"
    subscription_max_age_days: int = 90

    @property
    def enabled(self) -> bool:
        """Whether push sending is configured."""
        return bool(self.vapid_public_key and self.vapid_private_key)

    @classmethod
    def from_env(cls) -> PushConfig:
        """Load configuration from environment variables."""
        return cls(
            vapid_public_key=os.getenv("VAPID_PUBLIC_KEY"),
            vapid_private_key=os.getenv("VAPID_PRIVATE_KEY"),
            vapid_subject=os.getenv("VAPID_SUBJECT", "mailto:admin@the-kartel.com"),
            subscription_max_age_days=int(os.getenv("PUSH_SUBSCRIPTION_MAX_AGE_DAYS", "90")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete backend configuration.

    Attributes:
        store: Record store configuration
        auth: Authentication configuration
        tokens: Single-use token lifetimes
        email: Outbound email configuration
        push: Web push configuration
        observability: Logging configuration
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    push: PushConfig = field(default_factory=PushConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            store=StoreConfig.from_env(),
            auth=AuthConfig.from_env(),
            tokens=TokenConfig.from_env(),
            email=EmailConfig.from_env(),
            push=PushConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store.backend == StoreBackend.NETLIFY:
            if not self.store.netlify_site_id or not self.store.netlify_access_token:
                raise ValueError(
                    "NETLIFY_SITE_ID and NETLIFY_ACCESS_TOKEN are required when STORE_BACKEND=netlify"
                )

        if self.auth.scheme == AuthScheme.JWT and not self.auth.jwt_secret:
            raise ValueError("JWT_SECRET is required when AUTH_SCHEME=jwt")

        if self.auth.scheme == AuthScheme.LEGACY:
            logger.warning("AUTH_SCHEME=legacy is deprecated, bearer tokens are only length-checked")

        if not self.email.enabled:
            logger.warning("SENDGRID_API_KEY or FROM_EMAIL not set, outgoing email is disabled")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.store.backend.value,
                "list_read_mode": self.store.list_read_mode.value,
                "sqlite_path": self.store.sqlite_path
                if self.store.backend == StoreBackend.SQLITE
                else None,
                "netlify_site_id": self.store.netlify_site_id
                if self.store.backend == StoreBackend.NETLIFY
                else None,
                "auth_scheme": self.auth.scheme.value,
                "email_enabled": self.email.enabled,
                "push_enabled": self.push.enabled,
                "site_url": self.email.site_url,
                "log_level": self.observability.log_level,
            },
        )

"""
Error types for the Kartel backend.

Every domain failure is raised as a subclass of KartelError. Each class
carries the HTTP status it maps to so the API layer can render a
``{"error": message}`` body without knowing the domain.

Invariants:
    - All errors inherit from KartelError
    - Messages are safe to show to end users (no secrets, no stack traces)
    - Token errors are surfaced verbatim to the caller

How to change safely:
    - Add new error classes rather than changing status codes of old ones
    - Keep ``code`` values stable, clients may match on them
"""

from __future__ import annotations

from typing import Any


class KartelError(Exception):
    """Base exception for all Kartel backend errors.

    Attributes:
        message: Human readable error message
        code: Error code for programmatic handling
        details: Additional error context
        status_code: HTTP status the error maps to
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "KARTEL_ERROR"
        self.details = details or {}


class ValidationError(KartelError):
    """Missing or malformed input.

    Raised when:
    - A required field is missing
    - A field has an invalid format (email, password length)
    """

    status_code = 400

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details={"field": field_name})
        self.field_name = field_name


class UnauthorizedError(KartelError):
    """Missing, malformed or rejected credentials."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, code="UNAUTHORIZED")


class ForbiddenError(KartelError):
    """Valid credentials without the required role or action token."""

    status_code = 403

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message, code="FORBIDDEN")


class NotFoundError(KartelError):
    """Entity does not exist.

    Attributes:
        resource_type: Kind of entity that was looked up
        resource_id: Identifier that was looked up
    """

    status_code = 404

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(KartelError):
    """Operation conflicts with existing state.

    Raised when:
    - A member is already signed up for an event
    - A venue name or applicant email is already taken
    - An application has already been processed
    """

    status_code = 409

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFLICT")


class TokenError(KartelError):
    """Base class for single-use token failures."""

    status_code = 400


class TokenNotFoundError(TokenError):
    """Token does not exist in its store."""

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message, code="TOKEN_NOT_FOUND")


class TokenExpiredError(TokenError):
    """Token is past its expiry time."""

    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message, code="TOKEN_EXPIRED")


class TokenAlreadyUsedError(TokenError):
    """Token has already been consumed."""

    def __init__(self, message: str = "Token has already been used") -> None:
        super().__init__(message, code="TOKEN_ALREADY_USED")


class ConfigurationError(KartelError):
    """Required environment or collaborator configuration is missing."""

    status_code = 500

    def __init__(self, message: str = "Server configuration error") -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")


class StorageError(KartelError):
    """The record store failed."""

    status_code = 500

    def __init__(self, message: str, collection: str | None = None, key: str | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"collection": collection, "key": key},
        )
        self.collection = collection
        self.key = key


class RecordDecodeError(StorageError):
    """A stored blob could not be parsed as JSON."""


class UpstreamError(KartelError):
    """An external service (email, push) failed."""

    status_code = 500

    def __init__(self, message: str, service: str | None = None) -> None:
        super().__init__(message, code="UPSTREAM_ERROR", details={"service": service})
        self.service = service

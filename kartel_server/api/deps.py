"""
FastAPI dependencies: backend access and bearer authentication.

Role checks raise ForbiddenError and credential checks raise
UnauthorizedError; the app's exception handlers render both as
``{"error": message}``.
"""

from fastapi import Depends, Request

from ..auth import ADMIN_ROLES, MEMBER_ROLES, Principal, require_role
from ..backend import Backend
from .settings import ApiSettings


def get_backend(request: Request) -> Backend:
    """Get the backend from app state."""
    return request.app.state.backend


def get_settings(request: Request) -> ApiSettings:
    return request.app.state.settings


def get_principal(request: Request, backend: Backend = Depends(get_backend)) -> Principal:
    """Authenticate the Authorization header."""
    return backend.authenticator.authenticate(request.headers.get("Authorization"))


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    return require_role(principal, ADMIN_ROLES)


def require_member(principal: Principal = Depends(get_principal)) -> Principal:
    return require_role(principal, MEMBER_ROLES)

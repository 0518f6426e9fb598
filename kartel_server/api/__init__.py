"""
HTTP API for the Kartel backend.
"""

from .app import create_app
from .settings import ApiSettings

__all__ = ["create_app", "ApiSettings"]

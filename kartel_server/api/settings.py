"""
HTTP settings for the Kartel API.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """API process configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="API bind host")
    port: int = Field(default=8000, description="API bind port")

    cors_origins: list[str] = Field(
        default=["https://the-kartel.com", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    home_venue_id: str | None = Field(
        default=None, description="Venue listed first in public venue lists"
    )

    model_config = {"env_prefix": "KARTEL_API_"}

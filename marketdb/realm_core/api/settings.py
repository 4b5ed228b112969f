"""
Configuration for the MarketDB HTTP API.

Uses pydantic-settings for environment variable loading. Core storage and
realm settings come from CoreConfig.from_env().
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """HTTP API configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="API bind host")
    port: int = Field(default=8080, description="API bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Pagination defaults
    default_page_size: int = Field(default=50, description="Default items per page")
    max_page_size: int = Field(default=200, description="Maximum items per page")

    model_config = {"env_prefix": "MARKETDB_API_"}

"""
Configuration for the JOAP maintenance API.

Uses pydantic-settings for environment variable loading. Engine settings
(data directory, storage backends, restore policy) come from
joap.backup_engine.config.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Maintenance API configuration loaded from environment."""

    # Bind address
    host: str = Field(default="0.0.0.0", description="API bind host")
    port: int = Field(default=8090, description="API bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Acting administrator when the X-Actor header is absent
    default_actor: str = Field(default="admin", description="Fallback actor name")

    # Pagination defaults
    default_page_size: int = Field(default=5, description="Default backups per history page")
    max_page_size: int = Field(default=100, description="Maximum backups per history page")

    # Upload limit
    max_upload_bytes: int = Field(
        default=100 * 1024 * 1024, description="Largest accepted snapshot upload"
    )

    model_config = {"env_prefix": "MAINTENANCE_"}

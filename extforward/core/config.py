"""
Application configuration settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "extforward"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    # Trace every forwarding decision (peer trust, header choice, substitution)
    LOG_REQUEST_HANDLING: bool = False

    # Forwarded address resolution
    # YAML file with forwarder/headers/conditions; takes precedence over the
    # EXTFORWARD_FORWARDER / EXTFORWARD_HEADERS values below when set.
    EXTFORWARD_CONFIG_PATH: Optional[str] = None
    # JSON in the environment, e.g. '{"10.0.0.232": "trust"}'
    EXTFORWARD_FORWARDER: Dict[str, str] = Field(
        default_factory=dict,
        description="Trusted intermediaries: address (or 'all') -> 'trust'",
    )
    # Empty means the default ["X-Forwarded-For", "Forwarded-For"]
    EXTFORWARD_HEADERS: List[str] = Field(
        default_factory=list,
        description="Forwarding headers to consult, in priority order",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )


settings = Settings()

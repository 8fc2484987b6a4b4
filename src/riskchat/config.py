"""
Application settings and logging setup.

Settings are loaded from environment variables (prefix ``RISKCHAT_``) and an
optional ``.env`` file through pydantic-settings.
"""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

KNOWN_INVALID_API_KEYS = {
    "RUNTIME_API_KEY_NOT_SET",
    "MISSING_API_KEY_PLACEHOLDER",
    "FALLBACK_INVALID_KEY_RUNTIME",
    "",
}

SUPPORTED_LANGUAGES = ("vi", "en")
DEFAULT_LANGUAGE = "vi"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Main application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RISKCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RISKCHAT_API_KEY", "GEMINI_API_KEY", "API_KEY"),
    )
    model_name: str = "gemini-2.5-flash"
    language: str = DEFAULT_LANGUAGE

    # Attachment ceilings
    max_file_bytes: int = 10 * 1024 * 1024
    max_text_file_bytes: int = 4 * 1024 * 1024

    # History
    max_saved_conversations: int = 10
    storage_backend: Literal["memory", "file", "sqlite"] = "memory"
    storage_path: str = "./riskchat_data"

    # External deadline for the provider call, in seconds
    request_timeout: Optional[float] = None

    log_level: str = "INFO"

    @field_validator("language")
    @classmethod
    def validate_language(cls, value: str) -> str:
        if value not in SUPPORTED_LANGUAGES:
            logger.warning(
                "Unsupported language '%s', falling back to '%s'",
                value,
                DEFAULT_LANGUAGE,
            )
            return DEFAULT_LANGUAGE
        return value

    @field_validator("max_saved_conversations")
    @classmethod
    def validate_retention(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_saved_conversations must be at least 1")
        return value

    @property
    def effective_api_key(self) -> Optional[str]:
        """The configured API key, or None when it is missing or a placeholder."""
        if self.api_key is None or self.api_key in KNOWN_INVALID_API_KEYS:
            return None
        return self.api_key


@lru_cache()
def get_settings() -> Settings:
    """Returns the process-wide settings instance."""
    return Settings()


def setup_logging(level: Optional[str] = None) -> None:
    """Configures root logging for applications embedding the package."""
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)

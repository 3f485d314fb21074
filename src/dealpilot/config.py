"""Settings loaded from ``DEALPILOT_*`` environment variables or a ``.env`` file."""

import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import Credential

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Agent settings.

    Only ``primary_api_key`` is required to talk to a model; a secondary key
    enables quota failover.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEALPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: Literal["openai", "openrouter", "gemini"] = "gemini"
    primary_api_key: Optional[SecretStr] = None
    primary_model: str = "gemini-2.5-flash"
    secondary_api_key: Optional[SecretStr] = None
    secondary_model: Optional[str] = None
    step_budget: int = Field(5, ge=1)
    failover_delay: float = Field(0.0, ge=0.0)
    store_dir: Optional[Path] = None
    log_level: Optional[str] = None

    def primary_credential(self) -> Credential:
        if self.primary_api_key is None or not self.primary_api_key.get_secret_value():
            raise ConfigurationError(
                "API key not configured. Set DEALPILOT_PRIMARY_API_KEY."
            )
        return Credential(api_key=self.primary_api_key, model=self.primary_model)

    def secondary_credential(self) -> Optional[Credential]:
        if self.secondary_api_key is None or not self.secondary_api_key.get_secret_value():
            return None
        return Credential(
            api_key=self.secondary_api_key,
            model=self.secondary_model or self.primary_model,
        )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Sends the package's log records to stderr at ``level``."""
    logger = logging.getLogger("dealpilot")
    logger.setLevel(level.upper())
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger

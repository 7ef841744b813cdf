# config.py
# Runtime settings loaded from the environment and .env.
#
# Every field can be set as TASKLOOP_<FIELD>. Provider API keys are read by
# the SDKs from their usual variables (ANTHROPIC_API_KEY, OPENAI_API_KEY).

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TASKLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend
    provider: Literal["anthropic", "openai", "ollama"] = "anthropic"
    model: Optional[str] = None
    openai_base_url: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434/v1"

    # Agent
    preset: str = "general"
    step_delay: float = Field(default=0.5, ge=0)
    permissions_dir: Path = Path(".")

    # Context window
    context_max_tokens: int = Field(default=16000, ge=1)
    compression_trigger: float = Field(default=0.7, gt=0, le=1)
    min_messages_to_keep: int = Field(default=6, ge=1)
    summary_max_tokens: int = Field(default=500, ge=1)

    # Logging
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}, got '{value}'")
        return level

    def backend_options(self) -> dict:
        """Keyword arguments for backends.create_backend()."""
        options: dict = {"default_model": self.model}
        if self.provider == "openai" and self.openai_base_url:
            options["base_url"] = self.openai_base_url
        if self.provider == "ollama":
            options["base_url"] = self.ollama_base_url
        return options


@lru_cache
def get_settings() -> Settings:
    return Settings()

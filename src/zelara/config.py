"""Configuration management for Zelara."""

from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ZELARA_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Link Configuration
    connect_attempt_timeout: float = Field(default=3.0, gt=0, description="Seconds to wait for one candidate")
    validation_timeout: float = Field(default=30.0, gt=0, description="Deadline for image validation tasks")
    inversion_timeout: float = Field(default=30.0, gt=0, description="Deadline for image inversion tests")
    counter_timeout: float = Field(default=5.0, gt=0, description="Deadline for counter heartbeats")
    pairing_scheme: str = Field(default="zelara", description="URI scheme of pairing payloads")

    # Progress Configuration
    home: Path = Field(default=Path.home() / ".zelara", description="Directory for persisted state")
    progress_key: str = Field(default="@zelara_progress", description="Storage key of the progress record")
    unlock_thresholds: dict[str, int] = Field(
        default_factory=lambda: {"finance": 50}, description="Points required to unlock each module"
    )
    default_modules: list[str] = Field(
        default_factory=lambda: ["green"], description="Modules unlocked on a fresh record"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    def resolve_home(self) -> Path:
        return self.home.expanduser().resolve()


def load_settings(**overrides: Any) -> Settings:
    """Load settings from the environment and ``.env``, applying explicit overrides."""
    return Settings(**{key: value for key, value in overrides.items() if value is not None})

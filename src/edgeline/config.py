"""Process-wide settings for edgeline."""

from pathlib import Path

from platformdirs import user_data_dir
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EdgelineSettings(BaseSettings):
    """Settings resolved from ``EDGELINE_*`` environment variables."""

    # Engine configuration
    config_path: Path = Field(
        default=Path("config/engine.yaml"),
        description="Base YAML file for the engine configuration",
        alias="EDGELINE_CONFIG_PATH",
    )

    environment: str | None = Field(
        default=None,
        description="Named configuration layer, e.g. 'production'",
        alias="EDGELINE_ENV",
    )

    # Storage
    data_dir: Path = Field(
        default_factory=lambda: Path(user_data_dir("edgeline")),
        description="Directory holding the selection store",
        alias="EDGELINE_DATA_DIR",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level used by the command line tools",
        alias="EDGELINE_LOG_LEVEL",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def store_path(self) -> Path:
        return self.data_dir / "selections.sqlite3"


# Global settings instance
settings = EdgelineSettings()


def get_settings() -> EdgelineSettings:
    """Get the current settings."""
    return settings


def update_settings(**kwargs) -> None:
    """Update settings in place."""
    global settings
    for key, value in kwargs.items():
        if hasattr(settings, key):
            setattr(settings, key, value)
        else:
            raise ValueError(f"Unknown setting: {key}")


def reset_settings() -> None:
    """Reset settings to defaults."""
    global settings
    settings = EdgelineSettings()

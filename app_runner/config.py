"""
Configuration Management
========================

Centralized configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Shared config that all settings classes use to load .env
_shared_config = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    env_prefix="",
    extra="ignore",
)


class LockSettings(BaseSettings):
    """Exclusive device access configuration."""

    model_config = _shared_config

    lock_dir: Path = Field(
        default=Path(tempfile.gettempdir()) / "app-runner-locks",
        description="Directory holding the per-device lock files",
    )
    lock_timeout: float = Field(
        default=3600.0,
        description="Seconds to wait for a busy device before giving up",
    )
    lock_progress_interval: float = Field(
        default=60.0,
        description="Seconds between 'still waiting' progress messages",
    )
    abandoned_lock_policy: Literal["warn", "fail"] = Field(
        default="warn",
        description="What to do when the previous lock holder died without releasing",
    )

    @field_validator("abandoned_lock_policy", mode="before")
    @classmethod
    def normalize_policy(cls, v: str) -> str:
        """Accept any casing for the policy name."""
        return v.lower() if isinstance(v, str) else v


class ExecutionSettings(BaseSettings):
    """Command execution, retry and detection timing."""

    model_config = _shared_config

    command_poll_interval: float = Field(
        default=30.0,
        description="Seconds between progress checks on a supervised command",
    )
    default_timeout: float = Field(
        default=0.0,
        description="Default per-command timeout in seconds (0 = no timeout)",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a timed-out command, a device restart runs between attempts",
    )
    target_detection_timeout: float = Field(
        default=60.0,
        description="Overall deadline for resolving a default target",
    )
    run_timeout: float = Field(
        default=3600.0,
        description="Maximum seconds to wait for a launched application to exit",
    )
    process_start_grace: float = Field(
        default=10.0,
        description="Seconds to wait for a launched process to appear",
    )


class SdkSettings(BaseSettings):
    """Platform SDK locations."""

    model_config = _shared_config

    xbox_sdk_root: str = Field(
        default="",
        validation_alias=AliasChoices("XBOX_SDK_ROOT", "GAMEDK"),
        description="Microsoft GDK root (tools live under bin/)",
    )
    prospero_sdk_root: str = Field(
        default="",
        validation_alias=AliasChoices("PROSPERO_SDK_ROOT", "SCE_PROSPERO_SDK_DIR"),
        description="PlayStation 5 SDK root",
    )
    nintendo_sdk_root: str = Field(
        default="",
        validation_alias=AliasChoices("NINTENDO_SDK_ROOT"),
        description="NintendoSDK root",
    )
    android_home: str = Field(
        default="",
        validation_alias=AliasChoices("ANDROID_HOME", "ANDROID_SDK_ROOT"),
        description="Android SDK root (adb lives under platform-tools/)",
    )


class SauceLabsSettings(BaseSettings):
    """Sauce Labs device cloud configuration."""

    model_config = _shared_config

    sauce_username: str = Field(default="", description="Sauce Labs user name")
    sauce_access_key: str = Field(default="", description="Sauce Labs access key")
    sauce_region: str = Field(
        default="us-west-1",
        description="Sauce Labs data center (us-west-1, eu-central-1, ...)",
    )
    sauce_device_name: str = Field(
        default="",
        description="Default device name when no target is given",
    )
    sauce_session_name: str = Field(
        default="app-runner",
        description="Name shown for sessions in the Sauce Labs dashboard",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = _shared_config

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    json_logs: bool = Field(default=False, description="Emit JSON lines instead of console output")


class Settings(BaseSettings):
    """
    Main settings class combining all configuration sections.

    Usage:
        from app_runner.config import get_settings
        settings = get_settings()
        print(settings.lock.lock_timeout)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Nested settings
    lock: LockSettings = Field(default_factory=LockSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    sdk: SdkSettings = Field(default_factory=SdkSettings)
    saucelabs: SauceLabsSettings = Field(default_factory=SauceLabsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings loaded from environment.
    """
    return Settings()

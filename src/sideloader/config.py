"""Runtime configuration for the sideloader service."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "SIDELOADER_"


class Settings(BaseModel):
    """Service settings.

    Defaults target a Quest headset; every field can be overridden from a
    JSON file or from ``SIDELOADER_<FIELD>`` environment variables.
    """

    adb_path: str = Field("adb", description="adb executable name or path")
    device_temp_dir: str = Field(
        "/data/local/tmp", description="Device directory for pushed packages"
    )
    obb_root: str = Field(
        "/sdcard/Android/obb", description="Device root for auxiliary data"
    )
    release_owner: str = Field("LeGeRyChEeSe", description="Release feed owner")
    release_repo: str = Field("rookie-on-quest", description="Release feed repository")
    github_api_url: str = Field(
        "https://api.github.com", pattern=r"^https?://.+", description="Release feed API base"
    )
    apk_url: Optional[str] = Field(
        None, description="Direct package download URL, bypasses the release feed"
    )
    download_dir: str = Field("./tmp", description="Local directory for downloaded packages")
    auth_timeout: float = Field(
        120.0, gt=0, description="Seconds to wait for on-device authorization"
    )
    poll_interval: float = Field(1.0, gt=0, description="Seconds between device polls")
    http_timeout: float = Field(30.0, gt=0, description="HTTP timeout in seconds")
    host: str = Field("127.0.0.1", description="API bind address")
    port: int = Field(12316, gt=0, lt=65536, description="API port")
    log_file: str = Field("./logs/sideloader.log", description="Rotating log file")
    log_level: str = Field("INFO", description="DEBUG/INFO/WARNING/ERROR")
    log_max_bytes: int = Field(10 * 1024 * 1024, gt=0, description="Log size before rotation")
    log_backup_count: int = Field(3, ge=0, description="Rotated log files to keep")
    log_history: int = Field(500, gt=0, description="Attempt log lines kept in memory")

    @field_validator("github_api_url", "device_temp_dir", "obb_root")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/") or v

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from an optional JSON file, then the environment.

    Args:
        path: JSON file with settings; ``SIDELOADER_CONFIG`` is used if None

    Returns:
        Validated Settings

    Raises:
        pydantic.ValidationError: If a value is invalid
        json.JSONDecodeError: If the config file is not valid JSON
    """
    logger = logging.getLogger("sideloader.config")
    data: dict = {}

    config_path = path or os.environ.get(f"{ENV_PREFIX}CONFIG")
    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file, "r", encoding="utf-8") as f:
                data.update(json.load(f))
            logger.info(f"Loaded settings from {config_file}")
        else:
            logger.warning(f"Config file not found: {config_file}, using defaults")

    for name in Settings.model_fields:
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            data[name] = value

    return Settings(**data)

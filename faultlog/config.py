"""Configuration loaded from FAULTLOG_* environment variables or .env."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from faultlog.diagnostics.storage import DEFAULT_STORAGE_DIR


class DiagnosticsSettings(BaseSettings):
    """Diagnostics settings.

    Example:
        FAULTLOG_MAX_LOGS=500 FAULTLOG_DEV_MODE=1 faultlog logs
    """

    model_config = SettingsConfigDict(
        env_prefix="FAULTLOG_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # Store
    max_logs: int = Field(100, ge=1)
    storage_dir: Path = DEFAULT_STORAGE_DIR
    storage_key: str = "error_logs"
    storage_quota_bytes: Optional[int] = Field(None, gt=0)

    # Sinks
    dev_mode: bool = False
    remote_endpoint: Optional[str] = None
    remote_timeout: float = 5.0

    # Application
    log_level: str = "INFO"

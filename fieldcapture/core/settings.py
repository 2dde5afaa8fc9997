"""
Centralized settings using Pydantic.

Environment variables (and an optional .env file) are read once at import
and validated. Use these instead of scattered os.getenv() calls.
"""

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """General settings: logging and where sessions are stored."""

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    FIELDCAPTURE_STORAGE_DIR: str = "./fieldcapture-data"
    FIELDCAPTURE_INDEX_KEY: str = "@fieldcapture_saved_scans"

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}

    @property
    def storage_dir(self) -> Path:
        """Resolve the storage directory from the environment value."""
        env_dir = self.FIELDCAPTURE_STORAGE_DIR.strip()
        if env_dir:
            return Path(env_dir).resolve()
        return Path.cwd() / "fieldcapture-data"


class RecognitionSettings(BaseSettings):
    """Recognizer call and live barcode feed tuning."""

    RECOGNIZER_TIMEOUT_SECONDS: float = 30.0
    BARCODE_COOLDOWN_SECONDS: float = 2.0
    BARCODE_QUEUE_SIZE: int = 64

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class ExportSettings(BaseSettings):
    """Export webhook configuration. Export is disabled without a URL."""

    EXPORT_WEBHOOK_URL: str | None = None
    EXPORT_WEBHOOK_USERNAME: str | None = None
    EXPORT_WEBHOOK_PASSWORD: SecretStr | None = None
    EXPORT_TIMEOUT_SECONDS: float = 10.0

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


# Singleton instances - loaded once at module import
app_settings = AppSettings()
recognition_settings = RecognitionSettings()
export_settings = ExportSettings()

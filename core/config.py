"""
Application configuration using Pydantic Settings
"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Export settings with environment variable support.

    Constructed once at startup and handed to the client and to each
    stage explicitly; nothing reads configuration from module globals.
    """

    # Magento API
    MAGENTO_BASE_URL: str = ""
    MAGENTO_ACCESS_TOKEN: Optional[str] = None
    REQUESTS_PER_SECOND: int = 2
    REQUEST_TIMEOUT: float = 30.0

    # Pagination
    PAGE_SIZE: int = 50
    CREATED_FROM: Optional[str] = None  # e.g. "2024-01-01 00:00:00"

    # Export
    EXPORT_DIR: Path = Path("exports")
    CHECKPOINT_INTERVAL: int = 10
    MAX_PAGE_RETRIES: int = 3

    # Environment
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    def cache_dir(self, kind: str) -> Path:
        """Directory holding the durable units and checkpoints for ``kind``."""
        return Path(self.EXPORT_DIR) / "cache" / kind

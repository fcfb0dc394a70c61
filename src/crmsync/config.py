"""Configuration and environment handling for crmsync."""

import os
from pathlib import Path

from dotenv import load_dotenv


class HTTPConfig:
    """HTTP-specific configuration.

    Read timeouts are set per vendor; timeout_s bounds connection setup.
    """

    def __init__(self):
        self.timeout_s: float = float(os.getenv("CRMSYNC_HTTP_TIMEOUT_S", "10"))
        self.user_agent: str = os.getenv("CRMSYNC_USER_AGENT", "crmsync/1.0")


class Config:
    """Central configuration object."""

    def __init__(self):
        # Load .env file if it exists
        env_path = Path(__file__).parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)

        self.project_root = Path(__file__).parent.parent.parent

        # Settings store (JSON document holding credentials and caches)
        self.settings_path: Path = Path(
            os.getenv("CRMSYNC_SETTINGS_PATH", "data/settings.json")
        )
        if not self.settings_path.is_absolute():
            self.settings_path = self.project_root / self.settings_path

        # Activity log database
        self.log_db_path: Path = Path(
            os.getenv("CRMSYNC_LOG_DB_PATH", "data/activity.sqlite")
        )
        if not self.log_db_path.is_absolute():
            self.log_db_path = self.project_root / self.log_db_path

        self.log_cap: int = int(os.getenv("CRMSYNC_LOG_CAP", "10000"))

        # Diagnostic logging
        self.log_level: str = os.getenv("CRMSYNC_LOG_LEVEL", "INFO")

        self.http = HTTPConfig()

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_db_path.parent.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()

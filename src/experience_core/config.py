"""Configuration management for the experience core."""

import os
from pathlib import Path

try:
    from dotenv import load_dotenv

    # Load .env file from config directory or project root
    config_env = Path(__file__).parent.parent.parent / "config" / ".env"
    if config_env.exists():
        load_dotenv(config_env)
    else:
        load_dotenv()
except ImportError:
    # python-dotenv not available, skip loading
    pass


class Config:
    """Application configuration."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        # Database settings
        default_db_path = str(Path.home() / ".experience-core" / "core.db")
        self.database_path = Path(
            os.getenv("EXPERIENCE_CORE_DATABASE_PATH", default_db_path)
        )

        # Logging settings
        self.log_level = os.getenv("EXPERIENCE_CORE_LOG_LEVEL", "INFO").upper()
        log_file = os.getenv("EXPERIENCE_CORE_LOG_FILE")
        self.log_file = Path(log_file) if log_file else None

        # Sync settings
        self.default_backup_type = os.getenv(
            "EXPERIENCE_CORE_BACKUP_TYPE", "manual"
        ).lower()
        self.lock_timeout = float(os.getenv("EXPERIENCE_CORE_LOCK_TIMEOUT", "30"))
        self.history_page_size = int(
            os.getenv("EXPERIENCE_CORE_HISTORY_PAGE_SIZE", "20")
        )

        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def get_config() -> Config:
    """Get application configuration."""
    return Config()

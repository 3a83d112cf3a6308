"""Application object shared by CLI commands."""

from pathlib import Path
from typing import Any, Optional

from ..config import get_config
from ..core.sync import SyncService
from ..database import DatabaseService


class ExperienceCoreApp:
    """Holds configuration and lazily opened services for one CLI run."""

    def __init__(self, config_override: Optional[dict[str, Any]] = None) -> None:
        """Initialize application.

        Args:
            config_override: Optional configuration overrides
        """
        self.config = get_config()
        if config_override:
            for key, value in config_override.items():
                setattr(self.config, key, value)

        self._db_service: Optional[DatabaseService] = None
        self._sync_service: Optional[SyncService] = None

    @property
    def db_service(self) -> DatabaseService:
        """Database service, opened on first use."""
        if self._db_service is None:
            self._db_service = DatabaseService(db_path=Path(self.config.database_path))
        return self._db_service

    @property
    def sync_service(self) -> SyncService:
        """Sync service bound to the database service."""
        if self._sync_service is None:
            self._sync_service = SyncService(self.config, self.db_service)
        return self._sync_service

    def close(self) -> None:
        """Release the database connection, if one was opened."""
        if self._db_service is not None:
            self._db_service.close()

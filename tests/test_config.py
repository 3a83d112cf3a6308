"""Tests for configuration."""

from experience_core.config import Config, get_config


class TestConfig:
    """Test configuration loading from the environment."""

    def test_defaults(self, tmp_path, monkeypatch):
        """Test defaults when only the database path is set."""
        monkeypatch.setenv("EXPERIENCE_CORE_DATABASE_PATH", str(tmp_path / "core.db"))
        for name in (
            "EXPERIENCE_CORE_LOG_LEVEL",
            "EXPERIENCE_CORE_LOG_FILE",
            "EXPERIENCE_CORE_BACKUP_TYPE",
            "EXPERIENCE_CORE_LOCK_TIMEOUT",
            "EXPERIENCE_CORE_HISTORY_PAGE_SIZE",
        ):
            monkeypatch.delenv(name, raising=False)

        config = Config()

        assert config.database_path == tmp_path / "core.db"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.default_backup_type == "manual"
        assert config.lock_timeout == 30.0
        assert config.history_page_size == 20

    def test_environment_overrides(self, tmp_path, monkeypatch):
        """Test every setting can be overridden."""
        db_path = tmp_path / "nested" / "dir" / "core.db"
        monkeypatch.setenv("EXPERIENCE_CORE_DATABASE_PATH", str(db_path))
        monkeypatch.setenv("EXPERIENCE_CORE_LOG_LEVEL", "debug")
        monkeypatch.setenv("EXPERIENCE_CORE_LOG_FILE", str(tmp_path / "core.log"))
        monkeypatch.setenv("EXPERIENCE_CORE_BACKUP_TYPE", "AUTOMATIC")
        monkeypatch.setenv("EXPERIENCE_CORE_LOCK_TIMEOUT", "2.5")
        monkeypatch.setenv("EXPERIENCE_CORE_HISTORY_PAGE_SIZE", "5")

        config = get_config()

        assert config.database_path == db_path
        assert config.log_level == "DEBUG"
        assert config.log_file == tmp_path / "core.log"
        assert config.default_backup_type == "automatic"
        assert config.lock_timeout == 2.5
        assert config.history_page_size == 5

    def test_database_directory_created(self, tmp_path, monkeypatch):
        """Test the database directory is created on load."""
        db_path = tmp_path / "data" / "core.db"
        monkeypatch.setenv("EXPERIENCE_CORE_DATABASE_PATH", str(db_path))

        Config()

        assert db_path.parent.is_dir()

"""Tests for configuration loading and saving."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

from commesse.config import MAX_PAGE_SIZE, Config, SessionDefaults, SyncSettings


class TestConfig:
    """Tests for Config."""

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config_file = self.temp_dir / "config.json"

    def test_defaults(self):
        """Test default configuration values."""
        config = Config()

        assert config.remote_url is None
        assert config.sync.enabled is True
        assert config.sync.page_size == 200
        assert config.sync.pull_interval_seconds == 0
        assert config.sync.timeout == 30
        assert config.sessions.default_rounding == "off"

    def test_load_missing_file_returns_defaults(self):
        """Test load missing file returns defaults."""
        config = Config.load(self.temp_dir / "absent.json")

        assert config == Config()

    def test_save_and_load(self):
        """Test save and load."""
        config = Config(
            remote_url="https://mirror.example.com/api",
            device_id="dev-1",
            sync=SyncSettings(page_size=100, pull_interval_seconds=300),
            sessions=SessionDefaults(default_rounding="nearest15"),
            debug_mode=True,
        )

        config.save(self.config_file)
        loaded = Config.load(self.config_file)

        assert loaded == config

    def test_unknown_keys_ignored(self):
        """Test unknown keys ignored."""
        self.config_file.write_text(json.dumps({"remote_url": "https://x", "legacy": 1}))

        config = Config.load(self.config_file)

        assert config.remote_url == "https://x"

    def test_corrupt_file_falls_back_to_defaults(self):
        """Test corrupt file falls back to defaults."""
        self.config_file.write_text("{not json")

        assert Config.load(self.config_file) == Config()

    def test_page_size_clamped(self):
        """Test page size clamped."""
        assert Config(sync=SyncSettings(page_size=5000)).page_size == MAX_PAGE_SIZE
        assert Config(sync=SyncSettings(page_size=0)).page_size == 1

    def test_database_path_override(self):
        """Test database path override."""
        config = Config(db_path=str(self.temp_dir / "custom.db"))

        assert config.database_path == self.temp_dir / "custom.db"

    def test_database_path_default_in_data_dir(self):
        """Test database path default in data dir."""
        with patch.object(Config, "get_data_dir", return_value=self.temp_dir):
            assert Config().database_path == self.temp_dir / "commesse.db"

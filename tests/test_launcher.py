"""Tests for configuration loading and the launcher's logging setup."""

import os

from uvicorn.config import LOGGING_CONFIG

from config import Settings, load_settings
from launcher import APP_LOGGERS, build_log_config


class TestSettings:

    def test_paths(self, tmp_path):
        settings = Settings(root_dir=str(tmp_path))
        assert settings.db_path == os.path.join(str(tmp_path), "data", "library.db")
        assert settings.book_dir("abc") == os.path.join(str(tmp_path), "converted", "abc")

    def test_book_dir_cannot_escape(self, tmp_path):
        settings = Settings(root_dir=str(tmp_path))
        assert settings.book_dir("../../etc") == os.path.join(settings.converted_dir, "etc")

    def test_load_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LIBRARY_ROOT", str(tmp_path))
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        settings = load_settings()
        assert settings.root_dir == str(tmp_path)
        assert settings.port == 8080
        assert settings.log_level == "debug"
        assert settings.host == "127.0.0.1"


class TestLogConfig:

    def test_application_loggers_added(self):
        config = build_log_config("debug")
        for name in APP_LOGGERS:
            assert config["loggers"][name]["level"] == "DEBUG"
            assert config["loggers"][name]["handlers"] == ["app"]
        assert "uvicorn.access" in config["loggers"]

    def test_uvicorn_defaults_untouched(self):
        build_log_config()
        assert "app" not in LOGGING_CONFIG["handlers"]

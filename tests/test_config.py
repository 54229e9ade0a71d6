# tests/test_config.py
"""
Tests for Config loading from the environment.

Run:
    pytest tests/test_config.py -v
"""
import pytest

from config import Config, ConfigurationError


class TestConfig:

    def test_defaults(self, config_values, monkeypatch):
        for name in ("DATABASE_URL", "COMPENSATION_PLAN_PATH", "RECONCILE_INTERVAL_MINUTES", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr("config.load_dotenv", lambda: None)

        Config.initialize_from_env()

        assert Config.get(Config.DATABASE_URL) == "sqlite:///commissions.db"
        assert Config.get(Config.COMPENSATION_PLAN_PATH) is None
        assert Config.get(Config.RECONCILE_INTERVAL_MINUTES) == 10
        assert Config.get(Config.LOG_LEVEL) == "INFO"

    def test_environment_overrides(self, config_values, monkeypatch):
        monkeypatch.setattr("config.load_dotenv", lambda: None)
        monkeypatch.setenv("RANK_CHECK_HOUR", "3")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        Config.initialize_from_env()

        assert Config.get(Config.RANK_CHECK_HOUR) == 3
        assert Config.get(Config.LOG_LEVEL) == "DEBUG"

    def test_unparseable_value(self, config_values, monkeypatch):
        monkeypatch.setattr("config.load_dotenv", lambda: None)
        monkeypatch.setenv("DOWNLINE_TREE_DEPTH", "deep")

        with pytest.raises(ConfigurationError):
            Config.initialize_from_env()

    def test_missing_critical_key(self, config_values):
        Config.set(Config.DATABASE_URL, "")

        with pytest.raises(ConfigurationError):
            Config.validate_critical_keys()

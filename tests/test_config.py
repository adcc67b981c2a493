"""Tests for config module: env parsing helpers, ensure_loaded, logging setup."""

import json
import logging

import pytest


class TestParsing:
    """Helpers that turn env vars into typed settings."""

    def test_int_default_when_unset(self, monkeypatch):
        from notebridge import config

        monkeypatch.delenv("NB_TEST_INT", raising=False)
        assert config._int("NB_TEST_INT", 42) == 42

    def test_int_reads_value(self, monkeypatch):
        from notebridge import config

        monkeypatch.setenv("NB_TEST_INT", " 120000 ")
        assert config._int("NB_TEST_INT", 1) == 120000

    def test_int_rejects_garbage(self, monkeypatch, capsys):
        from notebridge import config

        monkeypatch.setenv("NB_TEST_INT", "five minutes")
        with pytest.raises(SystemExit):
            config._int("NB_TEST_INT", 1)
        assert "NB_TEST_INT must be an integer" in capsys.readouterr().out

    @pytest.mark.parametrize("value,expected", [
        ("true", True), ("1", True), ("YES", True), ("false", False), ("0", False),
    ])
    def test_bool(self, monkeypatch, value, expected):
        from notebridge import config

        monkeypatch.setenv("NB_TEST_BOOL", value)
        assert config._bool("NB_TEST_BOOL", not expected) is expected

    def test_bool_default_when_blank(self, monkeypatch):
        from notebridge import config

        monkeypatch.setenv("NB_TEST_BOOL", "")
        assert config._bool("NB_TEST_BOOL", True) is True

    def test_path_expands_user(self, monkeypatch, tmp_path):
        from notebridge import config

        monkeypatch.setenv("NB_TEST_PATH", "~/state.json")
        assert "~" not in str(config._path("NB_TEST_PATH", tmp_path))


class TestDefaults:
    def test_interval_defaults_are_ordered(self):
        from notebridge import config

        assert config.INTERVAL_ACCELERATED_MS <= config.INTERVAL_BASE_MS
        assert config.MAX_NOTES_PER_CYCLE >= 1

    def test_files_live_in_config_dir(self):
        from notebridge import config

        assert config.STATE_PATH.parent == config.CONFIG_DIR


class TestEnsureLoaded:
    """Startup refuses to run without any completion credential."""

    def test_exits_without_key_or_accounts(self, monkeypatch, tmp_path, capsys):
        from notebridge import config

        monkeypatch.setattr(config, "_loaded", False)
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "")
        monkeypatch.setattr(config, "DEVICE_EMAIL", "")
        monkeypatch.setattr(config, "USERS_PATH", tmp_path / "users.json")

        with pytest.raises(SystemExit):
            config.ensure_loaded()
        assert "No accounts found" in capsys.readouterr().out
        monkeypatch.setattr(config, "_loaded", False)

    def test_exits_when_accounts_have_no_key(self, monkeypatch, tmp_path, capsys):
        from notebridge import config

        users_path = tmp_path / "users.json"
        users_path.write_text(json.dumps([{"id": "1", "settings": {"deviceEmail": "a@b.c"}}]))
        monkeypatch.setattr(config, "_loaded", False)
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "")
        monkeypatch.setattr(config, "USERS_PATH", users_path)

        with pytest.raises(SystemExit):
            config.ensure_loaded()
        assert "No completion API key" in capsys.readouterr().out
        monkeypatch.setattr(config, "_loaded", False)

    def test_per_account_key_is_enough(self, monkeypatch, tmp_path):
        from notebridge import config

        users_path = tmp_path / "users.json"
        users_path.write_text(json.dumps([{"id": "1", "settings": {"completionApiKey": "sk-1"}}]))
        monkeypatch.setattr(config, "_loaded", False)
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "")
        monkeypatch.setattr(config, "USERS_PATH", users_path)

        config.ensure_loaded()
        assert config._loaded
        monkeypatch.setattr(config, "_loaded", False)

    def test_global_key_is_enough(self, monkeypatch):
        from notebridge import config

        monkeypatch.setattr(config, "_loaded", False)
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "sk-global")

        config.ensure_loaded()
        assert config._loaded
        monkeypatch.setattr(config, "_loaded", False)

    def test_unreadable_users_file_exits(self, monkeypatch, tmp_path):
        from notebridge import config

        users_path = tmp_path / "users.json"
        users_path.write_text("{not json")
        monkeypatch.setattr(config, "_loaded", False)
        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "")
        monkeypatch.setattr(config, "USERS_PATH", users_path)

        with pytest.raises(SystemExit):
            config.ensure_loaded()
        monkeypatch.setattr(config, "_loaded", False)


def test_setup_logging_uses_configured_level(monkeypatch):
    from notebridge import config

    monkeypatch.setattr(config, "LOG_LEVEL", "DEBUG")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = []
    try:
        config.setup_logging()
        assert root.level == logging.DEBUG
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)

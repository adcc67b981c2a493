"""Tests for the command-line entry point."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from notebridge import __version__


@pytest.fixture
def isolated_state(tmp_path, monkeypatch):
    """Point the state and lock files at a temp dir."""
    from notebridge import state

    state_path = tmp_path / "state.json"
    monkeypatch.setattr(state, "STATE_PATH", state_path)
    monkeypatch.setattr(state, "LOCK_PATH", tmp_path / "state.lock")
    return state_path


def _run(monkeypatch, *args):
    from notebridge.main import main

    monkeypatch.setattr("sys.argv", ["notebridge", *args])
    main()


class TestInfoFlags:
    def test_help(self, monkeypatch, capsys):
        _run(monkeypatch, "--help")
        assert "Usage: notebridge" in capsys.readouterr().out

    def test_version(self, monkeypatch, capsys):
        _run(monkeypatch, "-V")
        assert capsys.readouterr().out.strip() == f"notebridge {__version__}"

    def test_simulate_prints_requested_count(self, monkeypatch, capsys, isolated_state):
        _run(monkeypatch, "--simulate", "3")
        lines = [l for l in capsys.readouterr().out.splitlines() if l.strip().startswith("#")]
        assert len(lines) == 3

    def test_status(self, monkeypatch, capsys, isolated_state, tmp_path):
        from notebridge import config

        monkeypatch.setattr(config, "USERS_PATH", tmp_path / "users.json")
        monkeypatch.setattr(config, "DEVICE_EMAIL", "")
        _run(monkeypatch, "--status")
        out = capsys.readouterr().out
        assert "Checks:" in out
        assert "Accounts:  0 active of 0" in out


class TestMaintenance:
    def test_cleanup_drops_stale_fingerprints(self, monkeypatch, capsys, isolated_state):
        old = (datetime.now(timezone.utc) - timedelta(days=30)).isoformat()
        isolated_state.write_text(json.dumps({
            "notes": {"u1": {"/n/1": {"snippet": "old", "last_processed_at": old}}},
        }))
        _run(monkeypatch, "--cleanup")
        assert "Removed 1 stale note fingerprint." in capsys.readouterr().out
        assert json.loads(isolated_state.read_text())["notes"] == {}

    def test_reset_stats(self, monkeypatch, capsys, isolated_state):
        isolated_state.write_text(json.dumps({"total_checks": 12, "empty_checks_count": 4}))
        _run(monkeypatch, "--reset-stats")
        saved = json.loads(isolated_state.read_text())
        assert saved["total_checks"] == 0
        assert saved["empty_checks_count"] == 0

    def test_lock_held_exits_quietly(self, monkeypatch, isolated_state):
        from notebridge import state

        with patch.object(state, "acquire_lock", return_value=False), \
                patch("notebridge.worker.Worker") as worker_cls:
            _run(monkeypatch, "--once")
        worker_cls.assert_not_called()


class TestOnce:
    def test_once_runs_single_cycle_and_releases_lock(self, monkeypatch, isolated_state, tmp_path):
        from notebridge import config

        monkeypatch.setattr(config, "_loaded", True)
        worker = MagicMock()
        worker.poll_once.return_value = MagicMock(processed_count=0, users_checked=0, failures=0)
        with patch("notebridge.worker.Worker", return_value=worker):
            _run(monkeypatch, "--once")

        worker.poll_once.assert_called_once()
        worker.run_forever.assert_not_called()
        assert not (tmp_path / "state.lock").exists()
        monkeypatch.setattr(config, "_loaded", False)

    def test_dry_run_flag(self, monkeypatch, isolated_state):
        from notebridge import config

        monkeypatch.setattr(config, "_loaded", True)
        monkeypatch.setattr(config, "DRY_RUN", False)
        worker = MagicMock()
        worker.poll_once.return_value = MagicMock(processed_count=0, users_checked=0, failures=0)
        with patch("notebridge.worker.Worker", return_value=worker):
            _run(monkeypatch, "--once", "--dry-run")
        assert config.DRY_RUN is True
        monkeypatch.setattr(config, "_loaded", False)

"""Persistent worker state.

Tracks the scheduling counters (last activity, consecutive empty checks,
totals) and one fingerprint per (user, note) used to tell whether a
triggered note changed since it was last answered. State is stored as a
single JSON document and written atomically so an interrupted write never
leaves a truncated file behind.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from notebridge import config

log = logging.getLogger(__name__)

STATE_PATH = config.STATE_PATH
LOCK_PATH = STATE_PATH.with_suffix(".lock")

_DEFAULT_STATE = {
    "last_activity_at": None,
    "last_check_at": None,
    "empty_checks_count": 0,
    "total_checks": 0,
    "total_notes_processed": 0,
    "last_cleanup_at": None,
    "notes": {},
}


@dataclass(frozen=True)
class WorkerState:
    """Read-only view of the scheduling counters."""

    last_activity_at: Optional[datetime] = None
    last_check_at: Optional[datetime] = None
    empty_checks_count: int = 0
    total_checks: int = 0
    total_notes_processed: int = 0
    last_cleanup_at: Optional[datetime] = None


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _defaults() -> Dict[str, Any]:
    data = dict(_DEFAULT_STATE)
    data["notes"] = {}
    return data


def _clean_notes(notes: Any, path: Path) -> Dict[str, Any]:
    """Keep only well-formed {user_id: {note_id: fingerprint}} entries."""
    if not isinstance(notes, dict):
        log.warning("State file %s has malformed notes, dropping them", path)
        return {}
    cleaned = {}
    dropped = 0
    for user_id, user_notes in notes.items():
        if not isinstance(user_notes, dict):
            dropped += 1
            continue
        kept = {k: v for k, v in user_notes.items() if isinstance(v, dict)}
        dropped += len(user_notes) - len(kept)
        if kept:
            cleaned[user_id] = kept
    if dropped:
        log.warning("Dropped %d malformed note fingerprint(s) from %s", dropped, path)
    return cleaned


def _load_raw(path: Path) -> Dict[str, Any]:
    data = _defaults()
    if not path.exists():
        log.info("No state file at %s, starting fresh", path)
        return data
    try:
        saved = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        log.warning("Could not read state file %s (%s), using defaults", path, e)
        return data
    if not isinstance(saved, dict):
        log.warning("State file %s is not a JSON object, using defaults", path)
        return data

    data.update({k: v for k, v in saved.items() if k in _DEFAULT_STATE})
    data["notes"] = _clean_notes(data["notes"], path)
    for key in ("empty_checks_count", "total_checks", "total_notes_processed"):
        if not isinstance(data[key], int):
            data[key] = 0
    return data


def _save_raw(path: Path, data: Dict[str, Any]) -> None:
    """Write state atomically: write to temp file, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=path.parent, prefix=".state_", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        os.unlink(tmp)
        raise


class State:
    """Interface for reading and writing persistent worker state."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or STATE_PATH
        self._data = _load_raw(self.path)

    def save(self) -> bool:
        """Persist the document. Failures are logged; memory stays authoritative."""
        try:
            _save_raw(self.path, self._data)
        except OSError:
            log.exception("Failed to save state to %s", self.path)
            return False
        log.debug("State saved to %s", self.path)
        return True

    # -- Scheduling counters --

    @property
    def worker(self) -> WorkerState:
        return WorkerState(
            last_activity_at=_parse_time(self._data["last_activity_at"]),
            last_check_at=_parse_time(self._data["last_check_at"]),
            empty_checks_count=self._data["empty_checks_count"],
            total_checks=self._data["total_checks"],
            total_notes_processed=self._data["total_notes_processed"],
            last_cleanup_at=_parse_time(self._data["last_cleanup_at"]),
        )

    def record_cycle(self, processed_count: int, now: datetime) -> None:
        """Fold the outcome of one finished cycle into the counters."""
        if processed_count > 0:
            self._data["last_activity_at"] = _format_time(now)
            self._data["empty_checks_count"] = 0
        else:
            self._data["empty_checks_count"] += 1
        self._data["last_check_at"] = _format_time(now)
        self._data["total_checks"] += 1
        self._data["total_notes_processed"] += processed_count

    def reset_statistics(self) -> None:
        for key in ("last_activity_at", "last_check_at"):
            self._data[key] = None
        for key in ("empty_checks_count", "total_checks", "total_notes_processed"):
            self._data[key] = 0
        log.info("Statistics reset")

    # -- Note fingerprints --

    @property
    def notes(self) -> Dict[str, Dict[str, Any]]:
        return self._data["notes"]

    def get_fingerprint(self, user_id: str, note_id: str) -> Optional[Dict[str, Any]]:
        return self._data["notes"].get(str(user_id), {}).get(note_id)

    def has_changed(self, user_id: str, note_id: str, snippet: str) -> bool:
        """True for a note never seen before or whose snippet differs."""
        saved = self.get_fingerprint(user_id, note_id)
        if saved is None:
            return True
        return saved.get("snippet") != snippet

    def record_processed(
        self, user_id: str, note_id: str, snippet: str, now: datetime,
    ) -> None:
        user_notes = self._data["notes"].setdefault(str(user_id), {})
        user_notes[note_id] = {
            "snippet": snippet,
            "last_processed_at": _format_time(now),
        }

    def tracked_note_count(self) -> int:
        return sum(len(notes) for notes in self._data["notes"].values())

    # -- Cleanup --

    def should_cleanup(self, now: datetime, interval: timedelta) -> bool:
        last = _parse_time(self._data["last_cleanup_at"])
        return last is None or now - last > interval

    def cleanup(self, now: datetime, retention: timedelta) -> int:
        """Drop fingerprints not refreshed within ``retention``.

        Returns the number of fingerprints removed.
        """
        removed = 0
        for user_id in list(self._data["notes"]):
            user_notes = self._data["notes"][user_id]
            for note_id in list(user_notes):
                processed_at = _parse_time(user_notes[note_id].get("last_processed_at"))
                if processed_at is None or now - processed_at > retention:
                    del user_notes[note_id]
                    removed += 1
            if not user_notes:
                del self._data["notes"][user_id]

        self._data["last_cleanup_at"] = _format_time(now)
        if removed:
            log.info("Cleaned up %d stale note fingerprint(s)", removed)
        return removed

    def statistics(self) -> Dict[str, Any]:
        worker = self.worker
        return {
            "total_checks": worker.total_checks,
            "total_notes_processed": worker.total_notes_processed,
            "empty_checks_count": worker.empty_checks_count,
            "tracked_notes": self.tracked_note_count(),
            "last_activity_at": worker.last_activity_at,
            "last_check_at": worker.last_check_at,
            "last_cleanup_at": worker.last_cleanup_at,
        }


def _try_create_lock() -> bool:
    """Attempt to create the lock file. Returns True if successful."""
    LOCK_PATH.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(LOCK_PATH, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        os.write(fd, str(os.getpid()).encode())
        os.close(fd)
        return True
    except FileExistsError:
        return False


def acquire_lock() -> bool:
    """Try to acquire a file lock. Returns True if acquired, False if already held.

    If the lock is held by a dead process (stale lock), it is automatically
    removed and re-acquired.
    """
    if _try_create_lock():
        return True

    # Lock exists: check if the holding process is still alive
    try:
        pid = int(LOCK_PATH.read_text().strip())
        os.kill(pid, 0)  # signal 0: check existence only
    except (ValueError, OSError):
        log.warning("Removing stale lock (previous process died)")
        try:
            LOCK_PATH.unlink()
        except FileNotFoundError:
            pass
        return _try_create_lock()

    return False


def release_lock() -> None:
    """Release the file lock."""
    try:
        LOCK_PATH.unlink()
    except FileNotFoundError:
        pass

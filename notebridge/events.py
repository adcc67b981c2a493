"""Structured event log consumed by the dashboard front end.

Events are appended to a JSON array capped at EVENTS_MAX_ENTRIES (oldest
dropped first) and mirrored to the ``notebridge.events`` logger.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from notebridge import config

log = logging.getLogger(__name__)


class EventLog:
    def __init__(self, path: Optional[Path] = None, max_entries: Optional[int] = None) -> None:
        self.path = path or config.EVENTS_PATH
        self.max_entries = max_entries or config.EVENTS_MAX_ENTRIES

    def read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            entries = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            log.warning("Event log %s unreadable (%s), starting a new one", self.path, e)
            return []
        return entries if isinstance(entries, list) else []

    def record(
        self,
        user_id: Optional[str],
        action: str,
        result: Optional[str] = None,
        message: Optional[str] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "userId": user_id,
            "action": action,
            "result": result,
            "message": message,
            **extra,
        }
        level = logging.WARNING if result == "error" else logging.INFO
        log.log(level, "[%s] %s%s", user_id or "-", action, f": {message}" if message else "")

        entries = self.read()
        entries.append(entry)
        try:
            self._write(entries[-self.max_entries:])
        except (OSError, TypeError, ValueError):
            log.exception("Failed to write event log %s", self.path)
        return entry

    def _write(self, entries: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=self.path.parent, prefix=".events_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(entries, f, indent=2, default=str)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

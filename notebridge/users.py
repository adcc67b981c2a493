"""Read-only view of the account store.

Accounts live in a JSON array written by the web front end. Only the
fields the worker needs are read; credentials are never modified here.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from notebridge import config
from notebridge.errors import UserStoreError

log = logging.getLogger(__name__)

ENV_USER_ID = "env"


@dataclass
class UserSettings:
    device_email: str = ""
    device_password: str = ""
    device_url: str = ""
    completion_api_key: str = ""
    trigger_prefix: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSettings":
        def _str(*keys: str) -> str:
            for key in keys:
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            return ""

        # Older account records use the lightPhone*/claude* names
        return cls(
            device_email=_str("deviceEmail", "lightPhoneEmail"),
            device_password=_str("devicePassword", "lightPhonePassword"),
            device_url=_str("deviceUrl"),
            completion_api_key=_str("completionApiKey", "claudeApiKey"),
            trigger_prefix=data.get("triggerPrefix", data.get("trigger")),
        )


@dataclass
class User:
    id: str
    email: str = ""
    settings: UserSettings = field(default_factory=UserSettings)

    @property
    def api_key(self) -> str:
        return self.settings.completion_api_key or config.ANTHROPIC_API_KEY

    @property
    def device_url(self) -> str:
        return self.settings.device_url or config.DASHBOARD_URL

    @property
    def is_active(self) -> bool:
        s = self.settings
        return bool(s.device_email and s.device_password and self.api_key)


def read_users(path: Optional[Path] = None) -> List[User]:
    """Parse the users file. A missing file means no accounts."""
    path = path or config.USERS_PATH
    if not path.exists():
        return []
    try:
        raw = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise UserStoreError(f"Could not read users file {path}: {e}") from e
    if not isinstance(raw, list):
        raise UserStoreError(f"Users file {path} must contain a JSON array")

    users = []
    for entry in raw:
        if not isinstance(entry, dict) or entry.get("id") in (None, ""):
            log.warning("Skipping malformed account record in %s", path)
            continue
        users.append(User(
            id=str(entry["id"]),
            email=str(entry.get("email", "")),
            settings=UserSettings.from_dict(entry.get("settings") or {}),
        ))
    return users


def env_user() -> Optional[User]:
    """Single account configured through DEVICE_EMAIL / DEVICE_PASSWORD."""
    if not (config.DEVICE_EMAIL and config.DEVICE_PASSWORD):
        return None
    return User(
        id=ENV_USER_ID,
        email=config.DEVICE_EMAIL,
        settings=UserSettings(
            device_email=config.DEVICE_EMAIL,
            device_password=config.DEVICE_PASSWORD,
        ),
    )


def load_users(path: Optional[Path] = None) -> List[User]:
    path = path or config.USERS_PATH
    if path.exists():
        return read_users(path)
    single = env_user()
    return [single] if single else []


def active_users(users: List[User]) -> List[User]:
    return [u for u in users if u.is_active]


def trigger_prefixes(user: User) -> List[str]:
    """Resolve the accepted leading characters for one account.

    A string setting contributes each of its characters, a list its
    items; with nothing set the global TRIGGER_PREFIXES apply.
    """
    raw = user.settings.trigger_prefix
    if isinstance(raw, str):
        candidates = list(raw.strip())
    elif isinstance(raw, list):
        candidates = [str(p).strip() for p in raw]
    else:
        candidates = []
    prefixes = [p for p in candidates if p]
    if not prefixes:
        prefixes = list(config.TRIGGER_PREFIXES)
    # Keep order, drop duplicates
    return list(dict.fromkeys(prefixes))

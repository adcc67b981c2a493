import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Config directory: respects XDG_CONFIG_HOME, overridable with NOTEBRIDGE_CONFIG_DIR
CONFIG_DIR = Path(
    os.environ.get("NOTEBRIDGE_CONFIG_DIR", "")
    or (
        Path(os.environ.get("XDG_CONFIG_HOME", "") or Path.home() / ".config")
        / "notebridge"
    )
)
CONFIG_DIR.mkdir(parents=True, exist_ok=True)

# .env file: config dir first, CWD as fallback for dev installs
ENV_PATH = CONFIG_DIR / ".env"
if not ENV_PATH.exists() and (Path.cwd() / ".env").exists():
    ENV_PATH = Path.cwd() / ".env"

load_dotenv(ENV_PATH)


def _int(var: str, default: int) -> int:
    value = os.environ.get(var, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Error: {var} must be an integer, got {value!r}")
        sys.exit(1)


def _bool(var: str, default: bool) -> bool:
    value = os.environ.get(var, "").strip().lower()
    if not value:
        return default
    return value in ("true", "1", "yes")


def _path(var: str, default: Path) -> Path:
    value = os.environ.get(var, "").strip()
    return Path(value).expanduser() if value else default


# -- Files --

STATE_PATH: Path = _path("STATE_PATH", CONFIG_DIR / "state.json")
USERS_PATH: Path = _path("USERS_PATH", CONFIG_DIR / "users.json")
EVENTS_PATH: Path = _path("EVENTS_PATH", CONFIG_DIR / "events.json")
SESSION_DIR: Path = _path("SESSION_DIR", CONFIG_DIR / "sessions")
EVENTS_MAX_ENTRIES: int = _int("EVENTS_MAX_ENTRIES", 1000)

# -- Polling intervals (milliseconds) --

INTERVAL_BASE_MS: int = _int("INTERVAL_BASE_MS", 5 * 60 * 1000)
INTERVAL_ACCELERATED_MS: int = _int("INTERVAL_ACCELERATED_MS", 2 * 60 * 1000)
INTERVAL_NIGHT_MS: int = _int("INTERVAL_NIGHT_MS", 20 * 60 * 1000)
INTERVAL_MAX_INACTIVE_MS: int = _int("INTERVAL_MAX_INACTIVE_MS", 15 * 60 * 1000)

# Night window, local hours, 24h clock. start > end spans midnight.
NIGHT_START_HOUR: int = _int("NIGHT_START_HOUR", 0)
NIGHT_END_HOUR: int = _int("NIGHT_END_HOUR", 7)

ACTIVITY_RECENT_WINDOW_HOURS: int = _int("ACTIVITY_RECENT_WINDOW_HOURS", 1)
ACTIVITY_EMPTY_CHECKS_BEFORE_SLOWDOWN: int = _int("ACTIVITY_EMPTY_CHECKS_BEFORE_SLOWDOWN", 5)
ACTIVITY_MAX_EMPTY_CHECKS: int = _int("ACTIVITY_MAX_EMPTY_CHECKS", 20)

# -- Fingerprint cleanup --

CLEANUP_RETENTION_DAYS: int = _int("CLEANUP_RETENTION_DAYS", 7)
CLEANUP_INTERVAL_HOURS: int = _int("CLEANUP_INTERVAL_HOURS", 24)

# -- Notes --

# Every character is an accepted leading trigger
TRIGGER_PREFIXES: str = os.environ.get("TRIGGER_PREFIXES", "<>").strip() or "<>"
MAX_NOTES_PER_CYCLE: int = max(_int("MAX_NOTES_PER_CYCLE", 1), 1)
DRY_RUN: bool = _bool("DRY_RUN", False)

# -- Completion service --

ANTHROPIC_API_KEY: str = os.environ.get("ANTHROPIC_API_KEY", "").strip()
COMPLETION_MODEL: str = os.environ.get("COMPLETION_MODEL", "claude-sonnet-4-20250514").strip()
COMPLETION_MAX_TOKENS: int = _int("COMPLETION_MAX_TOKENS", 1500)
COMPLETION_TIMEOUT: int = _int("COMPLETION_TIMEOUT", 60)
COMPLETION_SYSTEM_PROMPT: str = os.environ.get(
    "COMPLETION_SYSTEM_PROMPT",
    "Answer as briefly as possible, in 3-4 sentences. "
    "Reply in the language the question was asked in.",
).strip()
API_MIN_GAP_MS: int = _int("API_MIN_GAP_MS", 60 * 1000)

# -- Dashboard / browser --

DASHBOARD_URL: str = os.environ.get(
    "DASHBOARD_URL", "https://dashboard.thelightphone.com/"
).strip()
BROWSER_HEADLESS: bool = _bool("BROWSER_HEADLESS", True)
BROWSER_EXECUTABLE: str = os.environ.get("BROWSER_EXECUTABLE", "").strip()
PAGE_TIMEOUT_MS: int = _int("PAGE_TIMEOUT_MS", 10000)
NAVIGATION_TIMEOUT_MS: int = _int("NAVIGATION_TIMEOUT_MS", 10000)
STEP_TIMEOUT_MS: int = _int("STEP_TIMEOUT_MS", 5000)
STEP_SETTLE_MS: int = _int("STEP_SETTLE_MS", 2000)
LOGIN_TIMEOUT_MS: int = _int("LOGIN_TIMEOUT_MS", 30000)
NOTES_TIMEOUT_MS: int = _int("NOTES_TIMEOUT_MS", 10000)
SAVE_TIMEOUT_MS: int = _int("SAVE_TIMEOUT_MS", 15000)

# Implicit single account, used when no users file exists
DEVICE_EMAIL: str = os.environ.get("DEVICE_EMAIL", "").strip()
DEVICE_PASSWORD: str = os.environ.get("DEVICE_PASSWORD", "").strip()

# -- Health --

ALERT_AFTER_INACTIVE_MINUTES: int = _int("ALERT_AFTER_INACTIVE_MINUTES", 30)

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").strip().upper()


_loaded = False


def ensure_loaded() -> None:
    """Refuse to start when no completion-service credential exists anywhere.

    Call at the start of the worker entry points.
    """
    global _loaded
    if _loaded:
        return

    from notebridge import users
    from notebridge.errors import UserStoreError

    if not ANTHROPIC_API_KEY:
        try:
            accounts = users.load_users()
        except UserStoreError as e:
            print(f"Error: {e}")
            sys.exit(1)
        if not any(u.settings.completion_api_key for u in accounts):
            if not USERS_PATH.exists() and not DEVICE_EMAIL:
                print(f"Error: No accounts found. Create {USERS_PATH} or set DEVICE_EMAIL in {ENV_PATH}")
            else:
                print(
                    "Error: No completion API key configured. Set ANTHROPIC_API_KEY "
                    f"in {ENV_PATH} or add completionApiKey to the accounts in {USERS_PATH}"
                )
            sys.exit(1)
    _loaded = True


def setup_logging() -> None:
    """Configure logging for the worker. Call once at each entry point."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

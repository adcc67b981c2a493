"""Dashboard walk for one account: reach the notes list, answer a triggered note.

The path from the landing page to the notes list differs between accounts
(some land on the phone picker, some are already inside a device), so the
walk is a list of optional steps. Each step waits a bounded time for its
target; a step whose target never shows up is skipped rather than treated
as a failure. Only the final location is checked.

Once on the list, titles are scanned in document order and the first note
that starts with a trigger and changed since it was last answered is
opened, answered, and saved. A capped number of notes is handled per
cycle (one by default); anything left over waits for the next cycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from notebridge import completion, config
from notebridge.errors import AutomationError, CompletionError, NavigationError
from notebridge.events import EventLog
from notebridge.ratelimit import RateLimiter
from notebridge.state import State
from notebridge.users import User, trigger_prefixes

log = logging.getLogger(__name__)

SEPARATOR = "---"
SNIPPET_LENGTH = 15
LOGIN_PATH = "/login"
NOTES_PATH = "/tools/notes"

SELECTORS = {
    "login_email": 'input[type="email"], input[id$="_email"][type="text"]',
    "login_password": 'input[type="password"]',
    "login_button": 'button[type="submit"], label[for="login-submit"]',
    "note_item": "li.flex.flex-row",
    "note_title": "span.title",
    "note_link": "a",
    "editor": "textarea.ember-text-area",
    "save_button": 'button[type="submit"]',
}

# Outcomes of a single note
PROCESSED = "processed"
ERROR_WRITTEN = "error_written"
ALREADY_ANSWERED = "already_answered"
DEFERRED = "deferred"
DRY_RUN = "dry_run"


@dataclass(frozen=True)
class NavigationStep:
    name: str
    locator: str
    timeout_ms: Optional[int] = None
    settle_ms: Optional[int] = None


NAVIGATION_STEPS = (
    NavigationStep(
        "phone menu",
        "xpath=//a[contains(@class, 'MainMenu__link') and @href='/devices']",
    ),
    NavigationStep(
        "pick phone",
        "xpath=//body[//p[normalize-space(.)='Select a Phone']]"
        "//ul[contains(@class, 'MenuList')]//li[contains(@class, 'title')]",
    ),
    NavigationStep(
        "toolbox",
        "xpath=//ul[contains(@class, 'MenuList')]//li[normalize-space(.)='Toolbox']",
    ),
    NavigationStep(
        "notes tool",
        "xpath=//a[substring(@href, string-length(@href) - string-length('/tools/notes') + 1)"
        " = '/tools/notes']",
    ),
    NavigationStep(
        "view notes",
        "xpath=//a[./li[normalize-space(.)='View Notes']]",
    ),
)


@dataclass
class ScannedNote:
    note_id: str
    title: str
    prefix: str
    snippet: str
    element: Any = None


@dataclass
class NoteOutcome:
    note_id: str
    title: str
    outcome: str
    message: str = ""


@dataclass
class UserCheckResult:
    user_id: str
    notes_seen: int = 0
    matched: int = 0
    outcomes: List[NoteOutcome] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome in (PROCESSED, ERROR_WRITTEN))

    @property
    def deferred(self) -> bool:
        return any(o.outcome == DEFERRED for o in self.outcomes)


def make_snippet(title: str, prefix: str) -> str:
    """Trigger-stripped, trimmed head of the title, for change detection only."""
    return title[len(prefix):].strip()[:SNIPPET_LENGTH]


def build_prompt(body: str, prefix: str, title: str) -> str:
    text = body.strip()
    if text.startswith(prefix):
        text = text[len(prefix):].strip()
    return text or title[len(prefix):].strip()


def _local_now() -> datetime:
    return datetime.now().astimezone()


class NoteNavigator:
    """Drives one open browser session for one account through one cycle."""

    def __init__(
        self,
        browser,
        user: User,
        state: State,
        limiter: RateLimiter,
        events: Optional[EventLog] = None,
        complete: Callable[..., str] = completion.complete,
        clock: Callable[[], datetime] = _local_now,
        max_notes: Optional[int] = None,
        dry_run: Optional[bool] = None,
        steps: Sequence[NavigationStep] = NAVIGATION_STEPS,
    ) -> None:
        self.browser = browser
        self.user = user
        self.state = state
        self.limiter = limiter
        self.events = events
        self.complete = complete
        self.clock = clock
        self.max_notes = max_notes or config.MAX_NOTES_PER_CYCLE
        self.dry_run = config.DRY_RUN if dry_run is None else dry_run
        self.steps = steps
        self.prefixes = trigger_prefixes(user)

    def _event(self, action: str, **data: Any) -> None:
        if self.events is not None:
            self.events.record(self.user.id, action, **data)

    # -- Whole cycle --

    def run(self) -> UserCheckResult:
        self.open_dashboard()
        self.walk_to_notes()

        result = UserCheckResult(user_id=self.user.id)
        attempted = set()
        first_scan = True
        while len(attempted) < self.max_notes:
            seen, candidates = self.scan_titles()
            if first_scan:
                result.notes_seen = seen
                result.matched = len(candidates)
                first_scan = False
            candidate = next((c for c in candidates if c.note_id not in attempted), None)
            if candidate is None:
                break
            attempted.add(candidate.note_id)
            outcome = self.process_note(candidate)
            result.outcomes.append(outcome)
            if outcome.outcome == DEFERRED:
                break

        log.info(
            "User %s: %d notes, %d triggered, %d processed",
            self.user.id, result.notes_seen, result.matched, result.processed_count,
        )
        return result

    # -- Start / login --

    def open_dashboard(self) -> None:
        url = self.user.device_url
        try:
            self.browser.navigate_to(url)
        except AutomationError as e:
            raise NavigationError(f"could not load {url}: {e}") from e

        if LOGIN_PATH in self.browser.current_url():
            self.login()
        else:
            log.debug("User %s already logged in", self.user.id)

    def login(self) -> None:
        self._event("login:required", message="Login required")
        settings = self.user.settings
        try:
            email = self.browser.wait_for_element(
                SELECTORS["login_email"], config.STEP_TIMEOUT_MS,
            )
            self.browser.type(email, settings.device_email)
            password = self.browser.wait_for_element(
                SELECTORS["login_password"], config.STEP_TIMEOUT_MS,
            )
            self.browser.type(password, settings.device_password)
            button = self.browser.wait_for_element(
                SELECTORS["login_button"], config.STEP_TIMEOUT_MS,
            )
            self.browser.click(button)
            self.browser.wait_for_url(
                lambda url: LOGIN_PATH not in url, config.LOGIN_TIMEOUT_MS,
            )
        except AutomationError as e:
            raise NavigationError(f"login failed: {e}") from e
        self._event("login:success", result="success", message="Logged in")

    # -- Optional steps --

    def walk_to_notes(self) -> None:
        """Run every optional step, then require the notes surface."""
        for step in self.steps:
            timeout = step.timeout_ms or config.STEP_TIMEOUT_MS
            try:
                element = self.browser.wait_for_element(step.locator, timeout)
                self.browser.click(element)
            except AutomationError:
                log.debug("Step '%s' not applicable, skipping", step.name)
                self._event("navigation:step:skip", message=f"{step.name} not found", step=step.name)
                continue
            self.browser.pause(step.settle_ms if step.settle_ms is not None else config.STEP_SETTLE_MS)
            self._event("navigation:step", message=f"Clicked {step.name}", step=step.name)

        url = self.browser.current_url()
        if NOTES_PATH not in url:
            raise NavigationError(f"did not reach the notes list (ended on {url})")
        self._event("navigation:notes", result="success", message="Reached notes", url=url)

    # -- Notes list --

    def scan_titles(self):
        """Return (visible note count, triggered notes that changed) in page order."""
        try:
            self.browser.wait_for_element(SELECTORS["note_item"], config.NOTES_TIMEOUT_MS)
        except AutomationError:
            log.info("User %s: no notes visible", self.user.id)
            return 0, []

        items = self.browser.find_all(SELECTORS["note_item"])
        candidates = []
        for item in items:
            title_el = self.browser.find_in(item, SELECTORS["note_title"])
            if title_el is None:
                continue
            title = self.browser.read_text(title_el).strip()
            prefix = next((p for p in self.prefixes if title.startswith(p)), None)
            if prefix is None:
                continue

            note_id = self._note_id(item, title)
            snippet = make_snippet(title, prefix)
            if not self.state.has_changed(self.user.id, note_id, snippet):
                continue
            candidates.append(ScannedNote(note_id, title, prefix, snippet, item))

        return len(items), candidates

    def _note_id(self, item, title: str) -> str:
        link = self.browser.find_in(item, SELECTORS["note_link"])
        href = self.browser.read_attribute(link, "href") if link is not None else None
        return href or f"title:{title}"

    # -- One note --

    def process_note(self, note: ScannedNote) -> NoteOutcome:
        self._event(
            "note:triggered",
            message=f'Triggered note "{note.title[:50]}"',
            noteId=note.note_id,
        )
        try:
            self.browser.click(note.element)
            editor = self.browser.wait_for_element(SELECTORS["editor"], config.NOTES_TIMEOUT_MS)
            body = self.browser.read_value(editor)
        except AutomationError as e:
            raise NavigationError(f"could not open note {note.note_id}: {e}") from e

        if SEPARATOR in body:
            log.info("Note %s already answered, skipping", note.note_id)
            self.state.record_processed(self.user.id, note.note_id, note.snippet, self.clock())
            self.back_to_list(explicit=True)
            return NoteOutcome(note.note_id, note.title, ALREADY_ANSWERED)

        if self.dry_run:
            log.info("[DRY RUN] Would answer note %s: %r", note.note_id, note.title)
            self.state.record_processed(self.user.id, note.note_id, note.snippet, self.clock())
            self.back_to_list(explicit=True)
            return NoteOutcome(note.note_id, note.title, DRY_RUN)

        now = self.clock()
        if not self.limiter.can_proceed(now):
            wait = self.limiter.remaining(now).total_seconds()
            log.info("Rate limit active, deferring note %s (%.1fs left)", note.note_id, wait)
            self._event("note:deferred", message=f"Rate limited, {wait:.1f}s left", noteId=note.note_id)
            return NoteOutcome(note.note_id, note.title, DEFERRED, f"{wait:.1f}s left")

        prompt = build_prompt(body, note.prefix, note.title)
        self.limiter.record_call(now)
        outcome, message = PROCESSED, ""
        try:
            reply = self.complete(
                prompt,
                self.user.api_key,
                model=config.COMPLETION_MODEL,
                system_prompt=config.COMPLETION_SYSTEM_PROMPT or None,
            )
        except CompletionError as e:
            log.warning("Completion failed for note %s: %s", note.note_id, e)
            reply = completion.error_reply(e)
            outcome, message = ERROR_WRITTEN, str(e)

        base = body if body.strip() else note.title
        self.write_and_save(editor, f"{base}\n\n{SEPARATOR}\n\n{reply}", note)
        self.state.record_processed(self.user.id, note.note_id, note.snippet, self.clock())
        self._event(
            "note:processed",
            result="success" if outcome == PROCESSED else "error",
            message=message or f'Note "{note.title[:50]}" answered',
            noteId=note.note_id,
        )
        return NoteOutcome(note.note_id, note.title, outcome, message)

    def write_and_save(self, editor, text: str, note: ScannedNote) -> None:
        try:
            self.browser.set_value_and_notify(editor, text)
            button = self.browser.wait_for_element(SELECTORS["save_button"], config.STEP_TIMEOUT_MS)
            self.browser.click(button)
        except AutomationError as e:
            raise NavigationError(f"could not save note {note.note_id}: {e}") from e
        self.back_to_list()

    def back_to_list(self, explicit: bool = False) -> bool:
        """Get back to the notes list, at most one explicit back navigation.

        Saving normally returns to the list on its own. Failure is only
        logged: by this point the note is already saved.
        """
        if not explicit:
            try:
                self.browser.wait_for_element(SELECTORS["note_item"], config.SAVE_TIMEOUT_MS)
                return True
            except AutomationError:
                log.info("Notes list did not reappear, navigating back")
        try:
            self.browser.go_back(config.NAVIGATION_TIMEOUT_MS)
            self.browser.wait_for_element(SELECTORS["note_item"], config.SAVE_TIMEOUT_MS)
            return True
        except AutomationError:
            log.warning("User %s: could not return to the notes list", self.user.id)
            return False

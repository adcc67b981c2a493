"""Shared fixtures: isolated config dir and an in-memory dashboard."""

import os
import tempfile

# Must happen before notebridge.config is imported anywhere
os.environ["NOTEBRIDGE_CONFIG_DIR"] = tempfile.mkdtemp(prefix="notebridge-test-")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from notebridge.errors import AutomationTimeout  # noqa: E402
from notebridge.navigator import NAVIGATION_STEPS, SELECTORS  # noqa: E402

DASHBOARD = "https://dashboard.example/"
NOTES_URL = "https://dashboard.example/devices/1/tools/notes/view"


class FakeElement:
    def __init__(self, kind, note=None, target=None):
        self.kind = kind
        self.note = note
        self.target = target


class FakeDashboard:
    """Stands in for a browser session on the notes dashboard.

    ``landing`` is where navigate_to() ends up; ``steps`` maps optional step
    locators that are present to the URL clicking them leads to.
    """

    def __init__(
        self,
        notes=None,
        landing=NOTES_URL,
        steps=None,
        save_returns=True,
        back_works=True,
        after_login=NOTES_URL,
    ):
        self.notes = [dict(n) for n in (notes or [])]
        self.landing = landing
        self.url = None
        self.steps = dict(steps or {})
        self.save_returns = save_returns
        self.back_works = back_works
        self.after_login = after_login
        self.view = "list"
        self.open_note = None
        self.pending = None
        self.typed = []
        self.clicked_steps = []
        self.saves = 0
        self.backs = 0
        self.closed = False
        self.entered = False

    # -- session lifecycle --

    def __enter__(self):
        self.entered = True
        return self

    def __exit__(self, *exc):
        self.closed = True

    def close(self):
        self.closed = True

    # -- surface used by the navigator --

    def navigate_to(self, url):
        self.url = self.landing
        self.view = "list"

    def current_url(self):
        return self.url

    def wait_for_url(self, predicate, timeout_ms):
        if not predicate(self.url):
            raise AutomationTimeout("wait for url")

    def _on_list(self):
        return "/tools/notes" in (self.url or "") and self.view == "list"

    def wait_for_element(self, locator, timeout_ms):
        if locator == SELECTORS["note_item"]:
            if self._on_list() and self.notes:
                return FakeElement("item", self.notes[0])
        elif locator in (SELECTORS["editor"], SELECTORS["save_button"]):
            if self.view == "editor":
                return FakeElement("editor" if locator == SELECTORS["editor"] else "save")
        elif locator in (SELECTORS["login_email"], SELECTORS["login_password"]):
            if "/login" in (self.url or ""):
                return FakeElement("input")
        elif locator == SELECTORS["login_button"]:
            if "/login" in (self.url or ""):
                return FakeElement("login_button")
        elif locator in self.steps:
            return FakeElement("step", target=self.steps[locator])
        raise AutomationTimeout(locator)

    def find_all(self, locator):
        if locator == SELECTORS["note_item"] and self._on_list():
            return [FakeElement("item", n) for n in self.notes]
        return []

    def find_in(self, element, locator):
        if locator == SELECTORS["note_title"]:
            return FakeElement("title", element.note)
        if locator == SELECTORS["note_link"] and element.note.get("id"):
            return FakeElement("link", element.note)
        return None

    def click(self, element):
        if element.kind == "item":
            self.view = "editor"
            self.open_note = element.note
            self.pending = None
        elif element.kind == "save":
            if self.pending is not None:
                self.open_note["body"] = self.pending
            self.saves += 1
            if self.save_returns:
                self.view = "list"
        elif element.kind == "step":
            self.clicked_steps.append(element.target)
            self.url = element.target
        elif element.kind == "login_button":
            self.url = self.after_login

    def type(self, element, text):
        self.typed.append(text)

    def read_value(self, element):
        return self.open_note["body"]

    def read_text(self, element):
        return element.note["title"]

    def read_attribute(self, element, name):
        return element.note.get("id")

    def set_value_and_notify(self, element, text):
        self.pending = text

    def go_back(self, timeout_ms):
        self.backs += 1
        if not self.back_works:
            raise AutomationTimeout("go back")
        self.view = "list"

    def pause(self, ms):
        pass

    def note(self, note_id):
        return next(n for n in self.notes if n.get("id") == note_id)


@pytest.fixture
def fake_dashboard():
    return FakeDashboard


@pytest.fixture
def notes_url():
    return NOTES_URL


@pytest.fixture
def step_locators():
    return [step.locator for step in NAVIGATION_STEPS]


@pytest.fixture
def now():
    return datetime(2025, 3, 12, 14, 0, tzinfo=timezone.utc)

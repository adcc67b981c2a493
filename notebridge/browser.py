"""Browser automation adapter over Playwright's sync API.

The navigator only relies on the small surface below, so tests can swap
in any object with the same methods:

  navigate_to, wait_for_element, find_all, find_in, click, type,
  read_value, read_text, read_attribute, set_value_and_notify,
  current_url, wait_for_url, go_back, pause, close

Locators are Playwright selector strings ("css", or "xpath=//..."). Every
wait is bounded; failures surface as ElementNotFound / AutomationTimeout.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from notebridge import config
from notebridge.errors import AutomationError, AutomationTimeout, ElementNotFound

log = logging.getLogger(__name__)

_BLOCKED_RESOURCES = {"image", "font", "media", "manifest"}
_BLOCKED_HOSTS = (
    "google-analytics",
    "googletagmanager",
    "facebook.net",
    "doubleclick",
)
_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--no-first-run",
    "--no-default-browser-check",
]

_SET_VALUE_JS = """(el, text) => {
    el.value = text;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
}"""


@contextmanager
def _translate(action: str) -> Iterator[None]:
    """Re-raise Playwright failures as our automation errors."""
    try:
        yield
    except PlaywrightTimeoutError as e:
        raise AutomationTimeout(f"{action}: timed out") from e
    except PlaywrightError as e:
        raise AutomationError(f"{action}: {e.message}") from e


class PlaywrightSession:
    """One isolated browser for one account, for one cycle.

    Use as a context manager; the browser is closed on every exit path.
    The profile directory persists between cycles so the dashboard login
    survives.
    """

    def __init__(
        self,
        user_id: str,
        session_dir: Optional[Path] = None,
        headless: Optional[bool] = None,
    ) -> None:
        self.user_id = user_id
        self.profile_dir = (session_dir or config.SESSION_DIR) / _safe_dirname(user_id)
        self.headless = config.BROWSER_HEADLESS if headless is None else headless
        self._playwright = None
        self._context = None
        self._page = None

    def __enter__(self) -> "PlaywrightSession":
        self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def open(self) -> None:
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        log.debug("Launching browser for user %s (profile %s)", self.user_id, self.profile_dir)
        self._playwright = sync_playwright().start()
        try:
            with _translate("launch browser"):
                self._context = self._playwright.chromium.launch_persistent_context(
                    user_data_dir=str(self.profile_dir),
                    headless=self.headless,
                    executable_path=config.BROWSER_EXECUTABLE or None,
                    args=_LAUNCH_ARGS,
                    user_agent=_USER_AGENT,
                    timeout=config.NAVIGATION_TIMEOUT_MS,
                )
                pages = self._context.pages
                self._page = pages[0] if pages else self._context.new_page()
                self._page.set_default_timeout(config.PAGE_TIMEOUT_MS)
                self._page.set_default_navigation_timeout(config.NAVIGATION_TIMEOUT_MS)
                self._page.route("**/*", _filter_request)
        except AutomationError:
            self.close()
            raise

    def close(self) -> None:
        if self._context is not None:
            try:
                self._context.close()
            except PlaywrightError as e:
                log.warning("Error closing browser for user %s: %s", self.user_id, e.message)
            self._context = None
            self._page = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
            log.debug("Browser closed for user %s", self.user_id)

    @property
    def page(self):
        if self._page is None:
            raise AutomationError("browser session is not open")
        return self._page

    # -- Interaction surface --

    def navigate_to(self, url: str) -> None:
        with _translate(f"navigate to {url}"):
            self.page.goto(url, wait_until="networkidle")

    def current_url(self) -> str:
        return self.page.url

    def wait_for_url(self, predicate: Callable[[str], bool], timeout_ms: int) -> None:
        with _translate("wait for url"):
            self.page.wait_for_url(predicate, timeout=timeout_ms)

    def wait_for_element(self, locator: str, timeout_ms: int):
        with _translate(f"wait for {locator}"):
            element = self.page.wait_for_selector(locator, timeout=timeout_ms, state="visible")
        if element is None:
            raise ElementNotFound(locator)
        return element

    def find_all(self, locator: str) -> List[Any]:
        with _translate(f"find {locator}"):
            return self.page.query_selector_all(locator)

    def find_in(self, element, locator: str):
        with _translate(f"find {locator}"):
            return element.query_selector(locator)

    def click(self, element) -> None:
        with _translate("click"):
            element.click()

    def type(self, element, text: str) -> None:
        with _translate("type"):
            element.type(text, delay=50)

    def read_value(self, element) -> str:
        with _translate("read value"):
            return element.input_value()

    def read_text(self, element) -> str:
        with _translate("read text"):
            return (element.text_content() or "").strip()

    def read_attribute(self, element, name: str) -> Optional[str]:
        with _translate(f"read attribute {name}"):
            return element.get_attribute(name)

    def set_value_and_notify(self, element, text: str) -> None:
        with _translate("set value"):
            element.evaluate(_SET_VALUE_JS, text)

    def go_back(self, timeout_ms: int) -> None:
        with _translate("go back"):
            self.page.go_back(wait_until="networkidle", timeout=timeout_ms)

    def pause(self, ms: int) -> None:
        self.page.wait_for_timeout(ms)


def _filter_request(route) -> None:
    request = route.request
    if request.resource_type in _BLOCKED_RESOURCES or any(
        host in request.url for host in _BLOCKED_HOSTS
    ):
        route.abort()
        return
    route.continue_()


def _safe_dirname(name: str) -> str:
    """Remove characters that are problematic in directory names."""
    bad_chars = '<>:"/\\|?*'
    result = str(name)
    for c in bad_chars:
        result = result.replace(c, "_")
    return result.strip() or "default"

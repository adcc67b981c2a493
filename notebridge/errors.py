"""Exception types shared across the worker."""


class NotebridgeError(Exception):
    """Base class for errors raised by notebridge."""


class AutomationError(NotebridgeError):
    """The browser could not perform a requested interaction."""


class ElementNotFound(AutomationError):
    pass


class AutomationTimeout(AutomationError):
    pass


class NavigationError(NotebridgeError):
    """A required step of the dashboard walk could not be completed.

    Aborts the current user's portion of the cycle; the next scheduled
    cycle is the retry.
    """


class CompletionError(NotebridgeError):
    """The completion service failed or returned an unusable payload."""


class UserStoreError(NotebridgeError):
    """The account store could not be read."""

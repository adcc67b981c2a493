"""Polling loop across all active accounts.

One cycle walks every active account strictly one after another, each in
its own browser session that is closed before the next account starts.
After the last account the counters are folded into the state, the state
is saved, and the next cycle is armed as a single-shot wait, so a slow
cycle delays the next one instead of overlapping it.
"""

import logging
import signal
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from notebridge import completion, config, scheduler, users
from notebridge.browser import PlaywrightSession
from notebridge.errors import AutomationError, NavigationError, UserStoreError
from notebridge.events import EventLog
from notebridge.navigator import NoteNavigator, UserCheckResult
from notebridge.ratelimit import RateLimiter
from notebridge.state import State

log = logging.getLogger(__name__)


@dataclass
class CycleResult:
    processed_count: int = 0
    users_checked: int = 0
    failures: int = 0
    interrupted: bool = False

    @property
    def had_activity(self) -> bool:
        return self.processed_count > 0


def _local_now() -> datetime:
    return datetime.now().astimezone()


class Worker:
    def __init__(
        self,
        state: Optional[State] = None,
        policy: Optional[scheduler.IntervalPolicy] = None,
        limiter: Optional[RateLimiter] = None,
        events: Optional[EventLog] = None,
        session_factory: Callable = PlaywrightSession,
        complete: Callable[..., str] = completion.complete,
        users_provider: Callable[[], List[users.User]] = users.load_users,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.state = state if state is not None else State()
        self.policy = policy or scheduler.IntervalPolicy.from_config()
        self.limiter = limiter or RateLimiter(config.API_MIN_GAP_MS)
        self.events = events if events is not None else EventLog()
        self.session_factory = session_factory
        self.complete = complete
        self.users_provider = users_provider
        self.clock = clock
        self.stop_event = threading.Event()

        self.started_at = clock()
        self.cycles = 0
        self.failed_cycles = 0
        self.last_successful_cycle: Optional[datetime] = None

    # -- One account --

    def check_user(self, user: users.User) -> UserCheckResult:
        with self.session_factory(user.id) as browser:
            navigator = NoteNavigator(
                browser,
                user,
                self.state,
                self.limiter,
                events=self.events,
                complete=self.complete,
                clock=self.clock,
            )
            return navigator.run()

    # -- One cycle --

    def active_users(self) -> List[users.User]:
        try:
            accounts = self.users_provider()
        except UserStoreError:
            log.exception("Could not load accounts, treating this cycle as empty")
            return []
        return users.active_users(accounts)

    def run_cycle(self, accounts: List[users.User]) -> CycleResult:
        """Check every account in turn, then fold the result into the state."""
        result = CycleResult()
        if not accounts:
            log.info("No active accounts to check")

        for user in accounts:
            if self.stop_event.is_set():
                log.info("Shutdown requested, skipping remaining accounts")
                result.interrupted = True
                break

            result.users_checked += 1
            self.events.record(user.id, "user:check:start", message=f"Checking {user.email or user.id}")
            try:
                outcome = self.check_user(user)
            except NavigationError as e:
                result.failures += 1
                log.warning("User %s: navigation failed: %s", user.id, e)
                self.events.record(user.id, "user:check:error", result="error", message=str(e), kind="navigation")
                continue
            except AutomationError as e:
                result.failures += 1
                log.warning("User %s: browser error: %s", user.id, e)
                self.events.record(user.id, "user:check:error", result="error", message=str(e), kind="browser")
                continue
            except Exception as e:
                result.failures += 1
                log.exception("User %s: unexpected error, skipping", user.id)
                self.events.record(user.id, "user:check:error", result="error", message=str(e), kind="unexpected")
                continue

            result.processed_count += outcome.processed_count
            self.events.record(
                user.id,
                "user:check:success",
                result="success",
                message=f"{outcome.processed_count} note(s) processed",
                notesFound=outcome.notes_seen,
                notesProcessed=outcome.processed_count,
            )

        self.finish_cycle(result)
        return result

    def finish_cycle(self, result: CycleResult) -> None:
        now = self.clock()
        self.state.record_cycle(result.processed_count, now)
        self.state.save()

        retention = timedelta(days=config.CLEANUP_RETENTION_DAYS)
        if self.state.should_cleanup(now, timedelta(hours=config.CLEANUP_INTERVAL_HOURS)):
            self.state.cleanup(now, retention)
            self.state.save()

        self.cycles += 1
        if result.failures and result.failures == result.users_checked:
            self.failed_cycles += 1
        else:
            self.last_successful_cycle = now
        self.check_health(now)

        self.events.record(
            None,
            "worker:check:complete",
            result="success",
            message=f"{result.processed_count} note(s) processed for {result.users_checked} account(s)",
            notesProcessed=result.processed_count,
            usersChecked=result.users_checked,
            failures=result.failures,
        )

    def check_health(self, now: datetime) -> None:
        limit = timedelta(minutes=config.ALERT_AFTER_INACTIVE_MINUTES)
        last = self.last_successful_cycle
        if last is not None and now - last > limit:
            minutes = round((now - last).total_seconds() / 60)
            log.warning("No successful cycle for %d minutes", minutes)
            self.events.record(
                None,
                "worker:health:inactive_warning",
                result="error",
                message=f"No successful cycle for {minutes} minutes",
            )
        log.debug(
            "Health: %d cycles, %d failed, uptime %s",
            self.cycles, self.failed_cycles, now - self.started_at,
        )

    def poll_once(self) -> CycleResult:
        return self.run_cycle(self.active_users())

    # -- Scheduling --

    def next_delay(self):
        return scheduler.next_delay(self.state.worker, self.clock(), self.policy)

    def run_forever(self) -> None:
        """Poll until stop() is called. Saves state on the way out."""
        self.events.record(None, "worker:started", message="Worker started")
        try:
            while not self.stop_event.is_set():
                self.poll_once()
                if self.stop_event.is_set():
                    break
                delay, reason = self.next_delay()
                log.info("Next check in %.1f min (%s)", delay / 60000, reason)
                self.events.record(
                    None, "worker:scheduled",
                    message=f"Next check in {delay}ms", intervalMs=delay, reason=reason,
                )
                if self.stop_event.wait(delay / 1000):
                    break
        finally:
            self.state.save()
            self.events.record(None, "worker:stopped", message="Worker stopped")

    def stop(self) -> None:
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        def _handle(signum, frame):
            log.info("Received %s, shutting down after the current account", signal.Signals(signum).name)
            self.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, _handle)

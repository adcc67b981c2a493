"""notebridge entry point.

Long-running worker: polls the Light Phone dashboard for every active
account, answers triggered notes, and reschedules itself adaptively.
"""

import logging
import sys
from datetime import datetime, timedelta

from notebridge import __version__

log = logging.getLogger("notebridge")


def _ago(then: datetime, now: datetime) -> str:
    seconds = (now - then).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        mins = int(seconds / 60)
        return f"{mins} min{'s' if mins != 1 else ''} ago"
    if seconds < 86400:
        hours = int(seconds / 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = int(seconds / 86400)
    return f"{days} day{'s' if days != 1 else ''} ago"


def _status() -> None:
    """Print state counters, the current schedule, and suggestions."""
    from notebridge import config, scheduler, users
    from notebridge.errors import UserStoreError
    from notebridge.state import State

    config.setup_logging()
    state = State()
    now = datetime.now().astimezone()
    stats = state.statistics()
    sched = scheduler.statistics(state.worker, now)

    print()
    print("  notebridge")
    print("  " + "─" * 40)
    print(f"  Checks:    {stats['total_checks']} total, {stats['empty_checks_count']} empty in a row")
    print(f"  Notes:     {stats['total_notes_processed']} answered, {stats['tracked_notes']} tracked")
    for label, key in (("Activity", "last_activity_at"), ("Last check", "last_check_at")):
        value = stats[key]
        print(f"  {label + ':':<11}{_ago(value, now) if value else 'never'}")

    print()
    print(f"  Interval:  {sched['interval_minutes']} min ({sched['reason']})")
    print(f"  Next:      ~{sched['next_check_estimate']:%H:%M}")

    try:
        accounts = users.load_users()
    except UserStoreError as e:
        accounts = []
        print(f"  Accounts:  unreadable ({e})")
    else:
        active = users.active_users(accounts)
        print(f"  Accounts:  {len(active)} active of {len(accounts)}")

    tips = scheduler.suggestions(state.worker, now)
    if tips:
        print()
        for kind, message in tips:
            print(f"  [{kind}] {message}")
    print()


def _simulate(args: list[str]) -> None:
    from notebridge import config, scheduler
    from notebridge.state import State

    config.setup_logging()
    count = 5
    if args and args[0].isdigit():
        count = int(args[0])

    state = State()
    print()
    for entry in scheduler.simulate(state.worker, count):
        print(
            f"  #{entry['check_number']:<3} {entry['interval_minutes']:>3} min  "
            f"~{entry['estimated_time']:%H:%M}  {entry['reason']}"
        )
    print()


def _cleanup() -> None:
    from notebridge import config
    from notebridge.state import State

    config.setup_logging()
    state = State()
    now = datetime.now().astimezone()
    removed = state.cleanup(now, timedelta(days=config.CLEANUP_RETENTION_DAYS))
    state.save()
    print(f"Removed {removed} stale note fingerprint{'s' if removed != 1 else ''}.")


def _reset_stats() -> None:
    from notebridge import config
    from notebridge.state import State

    config.setup_logging()
    state = State()
    state.reset_statistics()
    state.save()
    print("Statistics reset.")


_HELP = """\
Usage: notebridge [command]

  notebridge [--run]       Run the worker until interrupted
  notebridge --once        Run a single polling cycle, then exit
  notebridge --status      Show counters, schedule and suggestions
  notebridge --simulate N  Preview the next N intervals (default 5)

Options:
  --dry-run               Find triggered notes but do not answer them
  -h, --help              Show this help
  -V, --version           Show version

Maintenance:
  --cleanup               Drop note fingerprints older than the retention window
  --reset-stats           Reset check and activity counters
"""


def main():
    if "--help" in sys.argv or "-h" in sys.argv:
        print(_HELP)
        return

    if "--version" in sys.argv or "-V" in sys.argv:
        print(f"notebridge {__version__}")
        return

    if "--status" in sys.argv:
        _status()
        return

    if "--simulate" in sys.argv:
        idx = sys.argv.index("--simulate")
        _simulate(sys.argv[idx + 1:])
        return

    from notebridge import config
    from notebridge.state import acquire_lock, release_lock

    if "--dry-run" in sys.argv:
        config.DRY_RUN = True

    config.setup_logging()

    # Everything below writes the state file
    if not acquire_lock():
        log.warning("Another instance is running (lock held), exiting")
        return

    try:
        if "--cleanup" in sys.argv:
            _cleanup()
            return

        if "--reset-stats" in sys.argv:
            _reset_stats()
            return

        config.ensure_loaded()

        from notebridge.worker import Worker

        worker = Worker()
        log.info(
            "Intervals: base %d min, accelerated %d min, night %d min (%02d:00-%02d:00)",
            config.INTERVAL_BASE_MS // 60000,
            config.INTERVAL_ACCELERATED_MS // 60000,
            config.INTERVAL_NIGHT_MS // 60000,
            config.NIGHT_START_HOUR,
            config.NIGHT_END_HOUR,
        )
        if config.DRY_RUN:
            log.info("Dry run: notes will be detected but not answered")

        if "--once" in sys.argv:
            result = worker.poll_once()
            log.info(
                "Done: %d note(s) processed, %d account(s) checked, %d failed",
                result.processed_count, result.users_checked, result.failures,
            )
            return

        worker.install_signal_handlers()
        worker.run_forever()
    finally:
        release_lock()


if __name__ == "__main__":
    main()

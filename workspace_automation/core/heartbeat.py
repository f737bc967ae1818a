"""
Time-based trigger - cooperative task loop that fires registered jobs.

Interval tasks run every `interval_sec` seconds; daily tasks run once a day at
a local HH:MM. Fire time is best effort: a daily task fires on the first loop
cycle at or after its due time.
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict

from util.logging import logger

from .config import validate_config

SECONDS_PER_DAY = 86400

tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run[, at, next_due]}
running = False
shutdown_event = None


def _parse_time_of_day(at: str):
    try:
        hour, minute = (int(part) for part in at.split(":"))
    except (AttributeError, ValueError):
        raise ValueError(f"Daily task time must be HH:MM: {at!r}")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Daily task time must be HH:MM: {at!r}")
    return hour, minute


def next_daily_run(at: str, now: datetime = None) -> datetime:
    """Next occurrence of local time HH:MM after `now`."""
    now = now or datetime.now()
    hour, minute = _parse_time_of_day(at)
    due = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if due <= now:
        due += timedelta(days=1)
    return due


def register_task(name: str, interval_sec: int, func: Callable):
    """
    Register a task to be executed periodically.

    Args:
        name: Unique task identifier
        interval_sec: How often to run this task in seconds
        func: Function to call
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    issues = validate_config()
    if issues:
        raise ValueError(f"Scheduler configuration invalid: {issues}")

    tasks[name] = {
        "func": func,
        "interval": interval_sec,
        "last_run": None
    }

    logger.info(f"Registered task '{name}' (every {interval_sec}s)")


def register_daily_task(name: str, at: str, func: Callable):
    """
    Register a task that runs once a day at local time `at` (HH:MM).
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    issues = validate_config()
    if issues:
        raise ValueError(f"Scheduler configuration invalid: {issues}")

    tasks[name] = {
        "func": func,
        "interval": SECONDS_PER_DAY,
        "at": at,
        "next_due": next_daily_run(at),
        "last_run": None
    }

    logger.info(f"Registered daily task '{name}' (at {at})")


def unregister_task(name: str):
    """Remove a task from the registry."""
    if name in tasks:
        del tasks[name]
        logger.info(f"Unregistered task '{name}'")


def list_tasks():
    """Return list of registered task names."""
    return list(tasks.keys())


def start():
    """
    Start the scheduler loop. Blocks until stop() or Ctrl+C.
    """
    global running, shutdown_event

    if running:
        raise RuntimeError("Scheduler already running")

    issues = validate_config()
    if issues:
        raise ValueError(f"Scheduler configuration invalid: {issues}")

    running = True
    shutdown_event = threading.Event()

    logger.log_operation("scheduler.start", "running", {"tasks": list(tasks.keys())})

    try:
        while running and not shutdown_event.is_set():
            cycle_start = time.monotonic()

            for name, task_info in list(tasks.items()):
                if should_run_task(name, task_info):
                    try:
                        run_task(name, task_info)
                    except Exception as e:
                        # Error isolation - log error but continue loop
                        logger.error(f"Task '{name}' failed: {e}")

            elapsed = time.monotonic() - cycle_start
            if elapsed > 10.0:
                logger.warning(f"Scheduler cycle slow ({elapsed:.1f}s)")

            shutdown_event.wait(0.5)

    except KeyboardInterrupt:
        logger.info("Scheduler interrupted by user")
    finally:
        running = False
        logger.log_operation("scheduler.stop", "stopped")


def stop():
    """Stop the scheduler loop gracefully."""
    global running

    if not running:
        logger.info("Scheduler not running")
        return

    running = False

    if shutdown_event:
        shutdown_event.set()


def should_run_task(name: str, task_info: Dict) -> bool:
    """Check if a task should run this cycle."""
    if "next_due" in task_info:
        return datetime.now() >= task_info["next_due"]

    if task_info["last_run"] is None:
        return True  # Run immediately if never run

    elapsed = time.monotonic() - task_info["last_run"]
    return elapsed >= task_info["interval"]


def run_task(name: str, task_info: Dict):
    """Execute a task and record timing. Failed runs are rescheduled like successful ones."""
    start_time = time.monotonic()

    try:
        task_info["func"]()
    except Exception as e:
        duration = time.monotonic() - start_time
        raise RuntimeError(f"Task '{name}' failed after {duration:.2f}s: {e}")
    finally:
        task_info["last_run"] = time.monotonic()
        if "at" in task_info:
            task_info["next_due"] = next_daily_run(task_info["at"])

    logger.debug(f"Task '{name}' completed in {time.monotonic() - start_time:.2f}s")


def reset_task(name: str):
    """Reset a task so it runs on the next cycle."""
    if name in tasks:
        tasks[name]["last_run"] = None
        if "next_due" in tasks[name]:
            tasks[name]["next_due"] = datetime.now()
        logger.info(f"Reset task '{name}' (will run immediately)")


def get_status():
    """Return current scheduler status for monitoring."""
    return {
        "status": "running" if running else "stopped",
        "tasks": {
            name: {
                "interval_sec": info["interval"],
                "at": info.get("at"),
                "last_run": info["last_run"],
                "next_due": info["next_due"].isoformat() if info.get("next_due") else None
            }
            for name, info in tasks.items()
        }
    }

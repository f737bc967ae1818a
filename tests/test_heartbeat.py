"""
Scheduler loop - task registration, due checks, execution and status.
"""

import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from workspace_automation.core import heartbeat
from workspace_automation.core.heartbeat import (
    get_status,
    list_tasks,
    next_daily_run,
    register_daily_task,
    register_task,
    reset_task,
    run_task,
    should_run_task,
    start,
    stop,
    unregister_task,
)


@pytest.fixture(autouse=True)
def reset_heartbeat():
    """Reset scheduler state between tests."""
    heartbeat.tasks.clear()
    heartbeat.running = False
    heartbeat.shutdown_event = None
    yield
    heartbeat.tasks.clear()
    heartbeat.running = False


class TestRegistration:
    """Test task registration functionality."""

    def test_register_task_valid(self):
        """Test registering a valid task."""
        register_task("test_task", 30, lambda: None)
        assert list_tasks() == ["test_task"]

    def test_register_task_invalid_func(self):
        """Test registering with non-callable function."""
        with pytest.raises(ValueError, match="Task function must be callable"):
            register_task("bad_task", 30, "not_callable")

    def test_register_task_invalid_interval(self):
        """Test registering with invalid interval."""
        with pytest.raises(ValueError, match="Interval must be >= 1 second"):
            register_task("bad_task", 0, lambda: None)

    def test_register_duplicate_task(self):
        """Test registering task with existing name replaces it."""
        register_task("duplicate", 30, lambda: None)
        register_task("duplicate", 60, lambda: None)
        assert len(list_tasks()) == 1
        assert heartbeat.tasks["duplicate"]["interval"] == 60

    def test_unregister_task(self):
        register_task("test_task", 30, lambda: None)
        unregister_task("test_task")
        assert "test_task" not in list_tasks()

    def test_unregister_nonexistent_task(self):
        """Test unregistering non-existent task is safe."""
        unregister_task("nonexistent")

    @patch('workspace_automation.core.heartbeat.validate_config', return_value=["Invalid setting"])
    def test_register_with_invalid_config(self, mock_validate):
        """Test task registration fails with invalid config."""
        with pytest.raises(ValueError, match="Scheduler configuration invalid"):
            register_task("bad_config", 30, lambda: None)

    def test_register_daily_task(self):
        register_daily_task("sweep", "08:00", lambda: None)
        info = heartbeat.tasks["sweep"]
        assert info["at"] == "08:00"
        assert info["next_due"] > datetime.now()
        assert (info["next_due"].hour, info["next_due"].minute) == (8, 0)

    @pytest.mark.parametrize("at", ["25:00", "8am", "", "12:60"])
    def test_register_daily_task_bad_time(self, at):
        with pytest.raises(ValueError, match="HH:MM"):
            register_daily_task("sweep", at, lambda: None)


class TestScheduling:
    """Test task scheduling logic."""

    def test_should_run_first_time(self):
        """Interval tasks run immediately when never run before."""
        assert should_run_task("test", {"last_run": None, "interval": 30}) is True

    def test_should_run_when_due(self):
        past_time = time.monotonic() - 35
        assert should_run_task("test", {"last_run": past_time, "interval": 30}) is True

    def test_should_not_run_too_soon(self):
        recent_time = time.monotonic() - 10
        assert should_run_task("test", {"last_run": recent_time, "interval": 30}) is False

    def test_daily_task_waits_for_due_time(self):
        """Daily tasks ignore last_run and wait for their due time."""
        future = {"last_run": None, "interval": 86400, "at": "08:00", "next_due": datetime.now() + timedelta(hours=1)}
        past = dict(future, next_due=datetime.now() - timedelta(seconds=1))
        assert should_run_task("sweep", future) is False
        assert should_run_task("sweep", past) is True

    def test_next_daily_run(self):
        now = datetime(2026, 3, 10, 9, 30)
        assert next_daily_run("08:00", now) == datetime(2026, 3, 11, 8, 0)
        assert next_daily_run("10:15", now) == datetime(2026, 3, 10, 10, 15)
        assert next_daily_run("09:30", now) == datetime(2026, 3, 11, 9, 30)

    def test_reset_task(self):
        register_daily_task("sweep", "08:00", lambda: None)
        reset_task("sweep")
        assert should_run_task("sweep", heartbeat.tasks["sweep"]) is True


class TestExecution:
    """Test task execution and the loop."""

    def test_run_task_success(self):
        mock_func = MagicMock()
        task_info = {"func": mock_func, "interval": 30, "last_run": None}

        run_task("test_task", task_info)

        mock_func.assert_called_once()
        assert task_info["last_run"] is not None

    def test_run_task_failure(self):
        """Failures raise but the task is still rescheduled."""
        mock_func = MagicMock(side_effect=ValueError("Task failed"))
        task_info = {"func": mock_func, "interval": 30, "last_run": None}

        with pytest.raises(RuntimeError, match="Task failed"):
            run_task("failing_task", task_info)

        assert task_info["last_run"] is not None

    def test_daily_task_rescheduled_after_run(self):
        task_info = {"func": MagicMock(), "interval": 86400, "at": "08:00", "last_run": None,
                     "next_due": datetime.now() - timedelta(minutes=1)}
        run_task("sweep", task_info)
        assert task_info["next_due"] > datetime.now()

    def test_start_already_running(self):
        with patch('workspace_automation.core.heartbeat.running', True), \
             pytest.raises(RuntimeError, match="already running"):
            start()

    def test_loop_runs_tasks_and_isolates_failures(self):
        """A failing task does not stop other tasks or the loop."""
        ran = threading.Event()
        register_task("broken", 60, MagicMock(side_effect=RuntimeError("boom")))
        register_task("healthy", 60, ran.set)

        loop = threading.Thread(target=start)
        loop.start()
        try:
            assert ran.wait(5)
        finally:
            stop()
            loop.join(5)

        assert not loop.is_alive()
        assert heartbeat.running is False

    def test_stop_not_running(self):
        """Stopping an idle scheduler is safe."""
        stop()
        assert heartbeat.running is False


class TestStatus:

    def test_get_status(self):
        register_task("test_task", 60, lambda: None)
        register_daily_task("sweep", "08:00", lambda: None)

        status = get_status()
        assert status["status"] == "stopped"
        assert status["tasks"]["test_task"]["interval_sec"] == 60
        assert status["tasks"]["sweep"]["at"] == "08:00"
        assert status["tasks"]["sweep"]["next_due"] is not None

    def test_get_status_running(self):
        with patch('workspace_automation.core.heartbeat.running', True):
            assert get_status()["status"] == "running"

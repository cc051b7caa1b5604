"""Tests for bounded retries."""

import threading
from unittest.mock import MagicMock

import pytest

from ollama_operator.utils.retry import RetryPolicy, retry_call


class TestRetryPolicy:
    """Test backoff delays."""

    def test_default_delays(self) -> None:
        """Test delays double from one second."""
        policy = RetryPolicy()

        assert policy.attempts == 3
        assert [policy.delay_for(i) for i in range(3)] == [1.0, 2.0, 4.0]


class TestRetryCall:
    """Test retry_call behavior."""

    def test_success_first_try(self) -> None:
        """Test a successful call is not retried."""
        func = MagicMock(return_value="ok")
        sleeps: list[float] = []

        assert retry_call(func, sleep=sleeps.append) == "ok"
        assert func.call_count == 1
        assert sleeps == []

    def test_success_after_failures(self) -> None:
        """Test transient failures are retried with backoff."""
        func = MagicMock(side_effect=[ValueError("a"), ValueError("b"), "ok"])
        sleeps: list[float] = []

        assert retry_call(func, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]

    def test_attempts_bounded(self) -> None:
        """Test the last error is raised after the budget is spent."""
        func = MagicMock(side_effect=[ValueError("1"), ValueError("2"), ValueError("3"), "ok"])
        sleeps: list[float] = []

        with pytest.raises(ValueError, match="3"):
            retry_call(func, sleep=sleeps.append)

        assert func.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_give_up_on(self) -> None:
        """Test listed exception types are not retried."""
        func = MagicMock(side_effect=KeyError("gone"))
        sleeps: list[float] = []

        with pytest.raises(KeyError):
            retry_call(func, give_up_on=(KeyError,), sleep=sleeps.append)

        assert func.call_count == 1
        assert sleeps == []

    def test_cancel_stops_retries(self) -> None:
        """Test a set cancel event ends the retry loop."""
        cancel = threading.Event()
        cancel.set()
        func = MagicMock(side_effect=ValueError("down"))
        sleeps: list[float] = []

        with pytest.raises(ValueError):
            retry_call(func, sleep=sleeps.append, cancel=cancel)

        assert func.call_count == 1
        assert sleeps == []

    def test_cancel_during_backoff(self) -> None:
        """Test cancellation while waiting stops further attempts."""
        cancel = threading.Event()
        func = MagicMock(side_effect=ValueError("down"))

        with pytest.raises(ValueError):
            retry_call(func, sleep=lambda _: cancel.set(), cancel=cancel)

        assert func.call_count == 1

    def test_waits_on_cancel_event_by_default(self) -> None:
        """Test the default wait returns as soon as cancel is set."""
        cancel = threading.Event()
        func = MagicMock(side_effect=ValueError("down"))
        timer = threading.Timer(0.05, cancel.set)
        timer.start()

        with pytest.raises(ValueError):
            retry_call(func, RetryPolicy(attempts=3, base_delay=30.0), cancel=cancel)

        assert func.call_count == 1

    def test_custom_policy(self) -> None:
        """Test a custom attempt budget."""
        func = MagicMock(side_effect=ValueError("down"))
        sleeps: list[float] = []

        with pytest.raises(ValueError):
            retry_call(func, RetryPolicy(attempts=2, base_delay=0.5), sleep=sleeps.append)

        assert func.call_count == 2
        assert sleeps == [0.5]

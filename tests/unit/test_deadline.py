"""
Unit tests for the run deadline (backstop/backup/deadline.py).
"""

import pytest

from backstop.backup.deadline import RunDeadline, DeadlineExceeded, unbounded
from backstop.backup.errors import RunError


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now


class TestRunDeadline:
    """Test deadline accounting."""

    def test_timeout_is_default_while_time_remains(self):
        clock = FakeClock()
        deadline = RunDeadline(600, clock=clock)

        assert deadline.timeout(60) == 60

    def test_timeout_shrinks_to_remaining_time(self):
        """Near the end of the run each call gets only what is left."""
        clock = FakeClock()
        deadline = RunDeadline(600, clock=clock)
        clock.now += 590

        assert deadline.timeout(60) == pytest.approx(10)

    def test_check_raises_when_spent(self):
        clock = FakeClock()
        deadline = RunDeadline(30, clock=clock)
        clock.now += 31

        with pytest.raises(DeadlineExceeded, match='kv dump'):
            deadline.check('kv dump')

    def test_timeout_raises_when_spent(self):
        clock = FakeClock()
        deadline = RunDeadline(30, clock=clock)
        clock.now += 30

        with pytest.raises(DeadlineExceeded):
            deadline.timeout(60, 'drive upload')

    def test_remaining_never_negative(self):
        clock = FakeClock()
        deadline = RunDeadline(5, clock=clock)
        clock.now += 100

        assert deadline.remaining() == 0.0

    def test_unbounded(self):
        """An unbounded deadline never expires."""
        deadline = unbounded()

        assert deadline.remaining() is None
        assert deadline.timeout(45) == 45
        deadline.check()

    def test_exceeded_is_a_run_error(self):
        clock = FakeClock()
        deadline = RunDeadline(10, clock=clock)
        clock.now += 11

        with pytest.raises(RunError) as excinfo:
            deadline.check('drive listing')

        assert excinfo.value.step == 'deadline'
        assert str(excinfo.value) == 'Deadline of 10s exceeded during drive listing'

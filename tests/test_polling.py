"""Tests for condition polling."""

import pytest

from calabash_android.errors import CalabashError, OperationTimedOutError
from calabash_android.models import WaitOptions
from calabash_android.polling import PollingEngine, PollState


@pytest.fixture
def engine(fake_clock):
    return PollingEngine(clock=fake_clock, sleep=fake_clock.sleep)


class Counter:
    """Condition that becomes true on a given evaluation."""

    def __init__(self, true_on=None):
        self.calls = 0
        self.true_on = true_on

    def __call__(self):
        self.calls += 1
        return self.true_on is not None and self.calls >= self.true_on


class TestPollingEngine:
    @pytest.mark.asyncio
    async def test_immediately_true(self, engine, fake_clock):
        assert await engine.wait_for(lambda: True) is True
        assert engine.attempts == 1
        assert engine.state is PollState.SUCCEEDED
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_never_true_evaluates_four_times(self, engine, fake_clock):
        condition = Counter()
        options = WaitOptions(
            timeout_seconds=20,
            retry_frequency_seconds=5,
            failure_message="greeting never changed",
        )

        with pytest.raises(OperationTimedOutError) as exc_info:
            await engine.wait_for(condition, options)

        assert condition.calls == 4
        assert str(exc_info.value) == "greeting never changed"
        assert exc_info.value.details["attempts"] == 4
        assert fake_clock.sleeps == [5, 5, 5]
        assert engine.state is PollState.TIMED_OUT

    @pytest.mark.asyncio
    async def test_true_on_third_attempt(self, engine, fake_clock):
        condition = Counter(true_on=3)
        options = WaitOptions(timeout_seconds=20, retry_frequency_seconds=5)
        assert await engine.wait_for(condition, options) is True
        assert condition.calls == 3
        assert fake_clock.now == 10

    @pytest.mark.asyncio
    async def test_return_false_instead_of_raising(self, engine):
        options = WaitOptions(timeout_seconds=3, retry_frequency_seconds=1, throw_on_timeout=False)
        assert await engine.wait_for(Counter(), options) is False
        assert engine.attempts == 3

    @pytest.mark.asyncio
    async def test_zero_timeout_evaluates_once(self, engine):
        condition = Counter()
        options = WaitOptions(timeout_seconds=0, throw_on_timeout=False)
        assert await engine.wait_for(condition, options) is False
        assert condition.calls == 1

    @pytest.mark.asyncio
    async def test_initial_delay(self, engine, fake_clock):
        options = WaitOptions(timeout_seconds=2, retry_frequency_seconds=1, initial_delay_seconds=3)
        seen = []
        await engine.wait_for(lambda: seen.append(fake_clock.now) or True, options)
        assert seen == [3]

    @pytest.mark.asyncio
    async def test_initial_delay_does_not_eat_timeout(self, engine):
        condition = Counter()
        options = WaitOptions(
            timeout_seconds=2,
            retry_frequency_seconds=1,
            initial_delay_seconds=10,
            throw_on_timeout=False,
        )
        await engine.wait_for(condition, options)
        assert condition.calls == 2

    @pytest.mark.asyncio
    async def test_async_condition(self, engine):
        results = iter([False, True])

        async def condition():
            return next(results)

        assert await engine.wait_for(condition, WaitOptions(retry_frequency_seconds=1)) is True
        assert engine.attempts == 2

    @pytest.mark.asyncio
    async def test_condition_error_is_not_retried(self, engine):
        calls = []

        def condition():
            calls.append(1)
            raise CalabashError("helper died")

        with pytest.raises(CalabashError, match="helper died"):
            await engine.wait_for(condition)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_default_options(self, engine, fake_clock):
        with pytest.raises(OperationTimedOutError) as exc_info:
            await engine.wait_for(lambda: False)
        assert str(exc_info.value) == "Timed out waiting for condition"
        assert engine.attempts == 30

    @pytest.mark.asyncio
    async def test_nested_wait_keeps_outer_count(self, engine, caplog):
        outer_calls = []

        async def condition():
            outer_calls.append(1)
            await engine.wait_for(lambda: True)
            return False

        options = WaitOptions(
            timeout_seconds=20, retry_frequency_seconds=5, failure_message="outer wait"
        )
        with caplog.at_level("INFO", logger="calabash_android.polling"):
            with pytest.raises(OperationTimedOutError) as exc_info:
                await engine.wait_for(condition, options)

        assert len(outer_calls) == 4
        assert exc_info.value.details["attempts"] == 4
        assert engine.attempts == 4
        assert engine.state is PollState.TIMED_OUT
        assert "Condition not met after 4 attempt(s)" in caplog.text

import asyncio

import pytest

from blueprint_chat.config import BreakerConfig
from blueprint_chat.errors import CircuitOpenError, GatewayError
from blueprint_chat.gateway.breaker import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _fail() -> None:
    raise GatewayError("upstream 500", status_code=500)


async def _ok() -> str:
    return "ok"


@pytest.mark.asyncio
async def test_opens_at_exactly_the_failure_threshold() -> None:
    breaker = CircuitBreaker("test", failure_threshold=3, clock=FakeClock())

    for expected_count in (1, 2):
        with pytest.raises(GatewayError):
            await breaker.execute(_fail)
        assert breaker.get_state() is CircuitState.CLOSED
        assert breaker.get_failure_count() == expected_count

    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.get_failure_count() == 3


@pytest.mark.asyncio
async def test_open_circuit_fails_fast_without_invoking_operation() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("gateway", failure_threshold=1, reset_timeout=30.0, clock=clock)
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)

    invoked = False

    async def _tracked() -> str:
        nonlocal invoked
        invoked = True
        return "ok"

    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.execute(_tracked)

    assert invoked is False
    assert excinfo.value.circuit_name == "gateway"
    assert excinfo.value.next_retry_at.timestamp() == pytest.approx(clock.now + 30.0)
    assert "gateway" in str(excinfo.value)


@pytest.mark.asyncio
async def test_success_resets_failure_count_while_closed() -> None:
    breaker = CircuitBreaker("test", failure_threshold=3, clock=FakeClock())
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    assert breaker.get_failure_count() == 1

    assert await breaker.execute(_ok) == "ok"
    assert breaker.get_failure_count() == 0
    assert breaker.get_state() is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_trial_success_closes_circuit() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("test", failure_threshold=2, reset_timeout=30.0, clock=clock)
    for _ in range(2):
        with pytest.raises(GatewayError):
            await breaker.execute(_fail)
    assert breaker.get_state() is CircuitState.OPEN

    clock.now += 29.0
    with pytest.raises(CircuitOpenError):
        await breaker.execute(_ok)

    clock.now += 1.0
    assert await breaker.execute(_ok) == "ok"
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_failure_count() == 0


@pytest.mark.asyncio
async def test_half_open_trial_failure_reopens_and_refreshes_last_failure() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=10.0, clock=clock)
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    first_failure = breaker.last_failure_at

    clock.now += 10.0
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)

    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.last_failure_at == first_failure + 10.0
    with pytest.raises(CircuitOpenError):
        await breaker.execute(_ok)


@pytest.mark.asyncio
async def test_concurrent_callers_during_trial_fail_fast() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=5.0, clock=clock)
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    clock.now += 5.0

    release = asyncio.Event()

    async def _slow_trial() -> str:
        await release.wait()
        return "trial"

    trial = asyncio.create_task(breaker.execute(_slow_trial))
    await asyncio.sleep(0)
    assert breaker.get_state() is CircuitState.HALF_OPEN

    with pytest.raises(CircuitOpenError):
        await breaker.execute(_ok)

    release.set()
    assert await trial == "trial"
    assert breaker.get_state() is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_racing_failures_all_counted() -> None:
    breaker = CircuitBreaker("test", failure_threshold=5, clock=FakeClock())

    results = await asyncio.gather(*(breaker.execute(_fail) for _ in range(5)), return_exceptions=True)

    assert all(isinstance(result, GatewayError) for result in results)
    assert breaker.get_failure_count() == 5
    assert breaker.get_state() is CircuitState.OPEN


@pytest.mark.asyncio
async def test_original_exception_is_reraised_unchanged() -> None:
    breaker = CircuitBreaker("test", clock=FakeClock())
    error = ValueError("boom")

    async def _raise() -> None:
        raise error

    with pytest.raises(ValueError) as excinfo:
        await breaker.execute(_raise)
    assert excinfo.value is error


@pytest.mark.asyncio
async def test_reset_forces_closed() -> None:
    breaker = CircuitBreaker.from_config(
        "test", BreakerConfig(failure_threshold=1, reset_timeout_seconds=60.0), clock=FakeClock()
    )
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    assert breaker.get_state() is CircuitState.OPEN

    breaker.reset()

    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_failure_count() == 0
    assert await breaker.execute(_ok) == "ok"


@pytest.mark.asyncio
async def test_retry_message_uses_breaker_clock() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30.0, clock=clock)
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    clock.now += 12.0

    with pytest.raises(CircuitOpenError) as excinfo:
        await breaker.execute(_ok)

    assert excinfo.value.retry_in == 18
    assert "Retry in 18s" in str(excinfo.value)


@pytest.mark.asyncio
async def test_cancelled_trial_releases_the_trial_slot() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=5.0, clock=clock)
    with pytest.raises(GatewayError):
        await breaker.execute(_fail)
    clock.now += 5.0

    async def _hang() -> None:
        await asyncio.Event().wait()

    trial = asyncio.create_task(breaker.execute(_hang))
    await asyncio.sleep(0)
    assert breaker.get_state() is CircuitState.HALF_OPEN

    trial.cancel()
    with pytest.raises(asyncio.CancelledError):
        await trial

    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.get_failure_count() == 1
    assert await breaker.execute(_ok) == "ok"
    assert breaker.get_state() is CircuitState.CLOSED

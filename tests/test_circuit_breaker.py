import asyncio

import pytest

from app.circuit_breaker import CLOSED, HALF_OPEN, OPEN, CircuitBreaker, CircuitOpenError, CircuitTimeoutError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def ok():
    return "ok"


async def boom():
    raise RuntimeError("provider down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    breaker = CircuitBreaker(clock=clock)
    breaker.configure("svc", failure_threshold=2, recovery_timeout=30.0, success_threshold=2)
    return breaker


def fail(breaker, times=1):
    for _ in range(times):
        with pytest.raises(RuntimeError):
            asyncio.run(breaker.call("svc", boom))


def test_opens_after_threshold(breaker):
    fail(breaker, 2)
    assert breaker.get_state("svc").state == OPEN

    with pytest.raises(CircuitOpenError):
        asyncio.run(breaker.call("svc", ok))


def test_success_resets_failure_count(breaker):
    fail(breaker)
    assert asyncio.run(breaker.call("svc", ok)) == "ok"
    fail(breaker)
    assert breaker.get_state("svc").state == CLOSED


def test_half_open_after_recovery_timeout(breaker, clock):
    fail(breaker, 2)
    clock.now += 31
    assert breaker.can_request("svc") is True
    assert breaker.get_state("svc").state == HALF_OPEN

    asyncio.run(breaker.call("svc", ok))
    assert breaker.get_state("svc").state == HALF_OPEN
    asyncio.run(breaker.call("svc", ok))
    assert breaker.get_state("svc").state == CLOSED


def test_half_open_failure_reopens(breaker, clock):
    fail(breaker, 2)
    clock.now += 31
    fail(breaker)
    assert breaker.get_state("svc").state == OPEN


def test_timeout_counts_as_failure(breaker):
    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(CircuitTimeoutError):
        asyncio.run(breaker.call("svc", slow, timeout=0.01))
    assert breaker.get_stats("svc")["total_failures"] == 1


def test_service_overrides():
    breaker = CircuitBreaker()
    assert breaker.config_for("anthropic-api").failure_threshold == 3
    assert breaker.config_for("unknown").failure_threshold == 5


def test_circuits_health_endpoint(client):
    response = client.get("/health/circuits")
    assert response.status_code == 200
    assert response.json() == {"circuits": {}}

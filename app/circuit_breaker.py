"""
Circuit breaker for outbound calls to hosted services (Anthropic, R2, FoundDR, Bannerbear, Stripe).

States:
- CLOSED: requests pass through
- OPEN: failure threshold reached, requests fail fast until the recovery timeout elapses
- HALF_OPEN: probing; enough successes close the circuit, any failure reopens it
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 30.0  # seconds
    success_threshold: int = 3
    track_timeouts: bool = True
    request_timeout: float = 10.0  # seconds


DEFAULT_CONFIG = CircuitConfig()

SERVICE_CONFIGS = {
    # AI API incidents tend to last a while
    "anthropic-api": {"failure_threshold": 3, "recovery_timeout": 60.0, "success_threshold": 2},
    "r2-storage": {"failure_threshold": 5, "recovery_timeout": 15.0, "success_threshold": 2},
    "founddr": {"failure_threshold": 5, "recovery_timeout": 30.0, "success_threshold": 3},
    "bannerbear": {"failure_threshold": 5, "recovery_timeout": 30.0, "success_threshold": 2},
    "stripe": {"failure_threshold": 5, "recovery_timeout": 30.0, "success_threshold": 2},
}


@dataclass
class CircuitStateData:
    state: str = CLOSED
    failures: int = 0
    successes: int = 0
    last_failure: Optional[float] = None
    last_success: Optional[float] = None
    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_state_change: float = field(default_factory=time.time)


class CircuitOpenError(Exception):
    """Raised instead of calling a service whose circuit is open"""

    def __init__(self, service: str, circuit_state: CircuitStateData):
        super().__init__(f"Circuit is open for service: {service}")
        self.service = service
        self.circuit_state = circuit_state


class CircuitTimeoutError(TimeoutError):
    pass


class CircuitBreaker:
    """Per-service circuit state, kept in process memory"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.circuits: dict[str, CircuitStateData] = {}
        self.configs: dict[str, CircuitConfig] = {
            service: replace(DEFAULT_CONFIG, **overrides) for service, overrides in SERVICE_CONFIGS.items()
        }

    def configure(self, service: str, **overrides) -> None:
        current = self.configs.get(service, DEFAULT_CONFIG)
        self.configs[service] = replace(current, **overrides)

    def config_for(self, service: str) -> CircuitConfig:
        return self.configs.get(service, DEFAULT_CONFIG)

    def get_state(self, service: str) -> CircuitStateData:
        if service not in self.circuits:
            self.circuits[service] = CircuitStateData(last_state_change=self._clock())
        return self.circuits[service]

    def get_stats(self, service: str) -> dict:
        state = self.get_state(service)
        return {
            "state": state.state,
            "failures": state.failures,
            "successes": state.successes,
            "last_failure": state.last_failure,
            "last_success": state.last_success,
            "total_requests": state.total_requests,
            "total_failures": state.total_failures,
            "total_successes": state.total_successes,
        }

    def can_request(self, service: str) -> bool:
        state = self.get_state(service)

        if state.state == CLOSED:
            return True

        if state.state == OPEN:
            if self._clock() - state.last_state_change >= self.config_for(service).recovery_timeout:
                self._transition(service, HALF_OPEN)
                return True
            return False

        return True

    async def call(
        self, service: str, fn: Callable[[], Awaitable[Any]], timeout: Optional[float] = None
    ) -> Any:
        """Run the coroutine factory `fn` under the service's circuit"""
        config = self.config_for(service)

        if not self.can_request(service):
            state = self.get_state(service)
            logger.warning(f"🚫 Circuit open for {service} (failures={state.failures})")
            raise CircuitOpenError(service, state)

        state = self.get_state(service)
        state.total_requests += 1
        timeout = timeout if timeout is not None else config.request_timeout

        try:
            if config.track_timeouts:
                try:
                    result = await asyncio.wait_for(fn(), timeout=timeout)
                except asyncio.TimeoutError as e:
                    raise CircuitTimeoutError(f"Request timed out after {int(timeout * 1000)}ms") from e
            else:
                result = await fn()
        except Exception as e:
            self.record_failure(service, e)
            raise

        self.record_success(service)
        return result

    def record_success(self, service: str) -> None:
        state = self.get_state(service)
        state.successes += 1
        state.total_successes += 1
        state.last_success = self._clock()
        state.failures = 0

        if state.state == HALF_OPEN and state.successes >= self.config_for(service).success_threshold:
            self._transition(service, CLOSED)

        logger.debug(f"Circuit breaker success for {service} ({state.state}, successes={state.successes})")

    def record_failure(self, service: str, error: Optional[BaseException] = None) -> None:
        state = self.get_state(service)
        state.failures += 1
        state.total_failures += 1
        state.last_failure = self._clock()
        state.successes = 0

        logger.warning(
            f"⚠️ Circuit breaker failure for {service} ({state.state}, failures={state.failures}): "
            f"{error if error else 'Unknown error'}"
        )

        if state.state == CLOSED and state.failures >= self.config_for(service).failure_threshold:
            self._transition(service, OPEN)
        elif state.state == HALF_OPEN:
            self._transition(service, OPEN)

    def open(self, service: str) -> None:
        self._transition(service, OPEN)

    def close(self, service: str) -> None:
        self._transition(service, CLOSED)

    def reset(self, service: str) -> None:
        self.circuits.pop(service, None)
        logger.info(f"🔄 Circuit reset for {service}")

    def reset_all(self) -> None:
        self.circuits.clear()
        logger.info("🔄 All circuits reset")

    def _transition(self, service: str, new_state: str) -> None:
        state = self.get_state(service)
        previous = state.state
        state.state = new_state
        state.last_state_change = self._clock()
        state.successes = 0
        if new_state == CLOSED:
            state.failures = 0

        if new_state == OPEN:
            logger.warning(f"🔴 Circuit OPEN for {service} (was {previous}, failures={state.failures})")
        else:
            logger.info(f"Circuit {new_state} for {service} (was {previous})")


circuit_breaker = CircuitBreaker()


async def with_circuit_breaker(
    service: str, fn: Callable[[], Awaitable[Any]], timeout: Optional[float] = None
) -> Any:
    return await circuit_breaker.call(service, fn, timeout=timeout)


def get_all_circuit_states() -> dict:
    return {service: circuit_breaker.get_stats(service) for service in sorted(circuit_breaker.circuits)}

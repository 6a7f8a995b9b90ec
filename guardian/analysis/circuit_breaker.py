"""Circuit breaker in front of the classifier API.

When the API is down every changed revision would otherwise wait out a full
request timeout, once per item, before the run fails. After
``failure_threshold`` consecutive outage errors the breaker opens and calls
fail immediately with CircuitOpenError. Once ``recovery_timeout`` seconds
have passed a single probe call is let through: success closes the
breaker, failure opens it for another window.

Only exceptions in ``trip_on`` count as outage errors. Anything else (a bad
request, say) propagates without moving the breaker.
"""

import enum
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """The dependency is considered down; the call was not attempted."""


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "circuit_breaker",
        trip_on: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._name = name
        self._trip_on = trip_on
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._reopen_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def retry_after(self) -> float:
        """Seconds until an open breaker admits a probe (0 when not open)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self._reopen_at - self._clock())

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)`` through the breaker.

        Raises:
            CircuitOpenError: Still inside the recovery window
        """
        self._before_call()
        try:
            result = await fn(*args, **kwargs)
        except self._trip_on:
            self._record_failure()
            raise
        self._record_success()
        return result

    def _before_call(self) -> None:
        if self._state != CircuitState.OPEN:
            return
        if self.retry_after > 0:
            raise CircuitOpenError(
                f"{self._name} circuit is open, retry in {self.retry_after:.0f}s"
            )
        self._state = CircuitState.HALF_OPEN
        logger.info("%s circuit half-open, sending probe", self._name)

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("%s circuit closed, probe succeeded", self._name)
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        probing = self._state == CircuitState.HALF_OPEN
        if probing or self._consecutive_failures >= self._failure_threshold:
            self._state = CircuitState.OPEN
            self._reopen_at = self._clock() + self._recovery_timeout
            logger.warning(
                "%s circuit opened after %d consecutive failures",
                self._name,
                self._consecutive_failures,
            )

"""Reconnect delays for the consume loop."""

import random
from dataclasses import dataclass, field


@dataclass
class ExponentialBackoff:
    """
    Growing delay between attempts to reach an unavailable Redis.

    The nth consecutive failure waits ``base_delay * multiplier**n`` seconds,
    capped at ``max_delay`` and spread by up to ``jitter_range`` of itself
    either way so that restarted workers do not reconnect in lockstep.

    Usage:
        backoff = ExponentialBackoff(max_delay=30.0)
        while running:
            try:
                await read_batch()
                backoff.reset()
            except redis.ConnectionError:
                await asyncio.sleep(backoff.next_delay())
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter_range: float = 0.5
    _attempt: int = field(default=0, init=False, repr=False)

    @property
    def attempt(self) -> int:
        return self._attempt

    def next_delay(self) -> float:
        capped = min(self.max_delay, self.base_delay * self.multiplier**self._attempt)
        self._attempt += 1
        spread = random.uniform(-self.jitter_range, self.jitter_range)
        return max(0.0, capped * (1 + spread))

    def reset(self) -> None:
        self._attempt = 0

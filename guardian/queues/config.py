"""
Reclaim and retry settings for Redis Streams queues.

At-least-once delivery: a job delivered to a worker that never acknowledges
it becomes eligible for another worker after ``idle_timeout_ms``; after
``max_delivery_attempts`` deliveries it goes to the dead letter stream.
"""

from dataclasses import dataclass


@dataclass
class QueueConfig:
    """
    Configuration for pending-message reclaim.

    Attributes:
        idle_timeout_ms: How long a delivered job may stay unacknowledged
            before another consumer may claim it. Ingestion runs are slow
            (network fetch plus classifier calls), so this should exceed
            the longest expected run.
        max_delivery_attempts: Deliveries allowed before the job is moved
            to the dead letter stream.
        reclaim_batch_size: Pending jobs claimed per XAUTOCLAIM call.
        backoff_base_delay: First delay after a consume() error, seconds.
        backoff_max_delay: Upper bound for consume() error delays, seconds.
    """

    idle_timeout_ms: int = 300_000
    max_delivery_attempts: int = 3
    reclaim_batch_size: int = 10

    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 60.0

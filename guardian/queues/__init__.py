"""
Redis Streams job queues with pending-message reclaim.

Classes:
    BaseRedisQueue: Abstract consumer-group queue (reclaim, ack, DLQ)
    StreamConfig: Stream, group and dead letter stream names
    QueueConfig: Reclaim and retry settings
    ExponentialBackoff: Delay calculator for consume() error recovery
"""

from guardian.queues.backoff import ExponentialBackoff
from guardian.queues.base import BaseRedisQueue, StreamConfig
from guardian.queues.config import QueueConfig

__all__ = ["BaseRedisQueue", "ExponentialBackoff", "QueueConfig", "StreamConfig"]

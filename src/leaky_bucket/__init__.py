"""leaky-bucket - Cost-based admission control for asyncio."""

__version__ = "0.1.0"

from leaky_bucket.bucket import LeakyBucket
from leaky_bucket.config import BucketConfig
from leaky_bucket.decorators import throttled
from leaky_bucket.errors import BucketEndedError, CapacityExceededError
from leaky_bucket.events import (
    Event,
    EventBus,
    EventTypes,
    Notifier,
    NullNotifier,
)
from leaky_bucket.ledger import CapacityLedger
from leaky_bucket.projector import OverflowProjector
from leaky_bucket.queue import AdmissionQueue, QueueEntry

__all__ = [
    "__version__",
    "AdmissionQueue",
    "BucketConfig",
    "BucketEndedError",
    "CapacityExceededError",
    "CapacityLedger",
    "Event",
    "EventBus",
    "EventTypes",
    "LeakyBucket",
    "Notifier",
    "NullNotifier",
    "OverflowProjector",
    "QueueEntry",
    "throttled",
]

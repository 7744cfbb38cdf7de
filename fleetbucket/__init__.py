"""Token bucket shared by unsynchronized processes through a common store."""

from .store import BucketError, BucketStore, InMemoryBucketStore, StoreCommunicationError
from .lease import LeaseManager, LeaseState, LeaseValue
from .token_queue import TOKEN, TokenQueue
from .fault import FaultCell
from .refill import LoopState, RefillLoop
from .bucket import Bucket, BucketConfig, BucketStats, TokenTimeoutError, new_bucket
from .config import BucketDefaults, ConfigManager, RedisSettings, Settings

__all__ = [
    "BucketError",
    "BucketStore",
    "InMemoryBucketStore",
    "StoreCommunicationError",
    "LeaseManager",
    "LeaseState",
    "LeaseValue",
    "TOKEN",
    "TokenQueue",
    "FaultCell",
    "LoopState",
    "RefillLoop",
    "Bucket",
    "BucketConfig",
    "BucketStats",
    "TokenTimeoutError",
    "new_bucket",
    "BucketDefaults",
    "ConfigManager",
    "RedisSettings",
    "Settings",
]

"""
oracle-sync package.

Multi-chain synchronization of optimistic oracle price requests, driven by
a cooperative state machine executor.
"""

from .client import OracleSyncClient
from .config import ChainConfig, SchedulingConfig, SyncConfig
from .models import Request, RequestKey, RequestState
from .store import Store

__all__ = [
    "ChainConfig",
    "OracleSyncClient",
    "Request",
    "RequestKey",
    "RequestState",
    "SchedulingConfig",
    "Store",
    "SyncConfig",
]
__version__ = "0.1.0"

"""Services: connection lifecycle, fetch, deduplication and scheduled sync."""

from .connection import ConnectionManager, ConnectionStatus
from .dedupe_gate import DeduplicationGate
from .fetch import FetchCoordinator, FetchStats
from .inbox import InboxService
from .locks import KeyedLock
from .scheduler import SyncScheduler

__all__ = [
    "ConnectionManager",
    "ConnectionStatus",
    "DeduplicationGate",
    "FetchCoordinator",
    "FetchStats",
    "InboxService",
    "KeyedLock",
    "SyncScheduler",
]

"""Cache-first synchronisation of on-chain lottery data."""

from .cache import CacheStore, TTLPolicy
from .orchestrator import DataOrchestrator
from .state import SyncState
from .types import LotteryDraw, LotteryTicket, PaginationOptions, SeriesInfo

__all__ = [
    "CacheStore",
    "DataOrchestrator",
    "LotteryDraw",
    "LotteryTicket",
    "PaginationOptions",
    "SeriesInfo",
    "SyncState",
    "TTLPolicy",
]

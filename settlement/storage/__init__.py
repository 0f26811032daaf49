"""Data storage layer."""

from settlement.storage.database import Database, get_database, init_database
from settlement.storage.memory import MemorySignalStore, MemorySubscriptionStore
from settlement.storage.price_cache import PriceCache, RedisPriceCache
from settlement.storage.signal_repo import SqlSignalStore, SqlSubscriptionStore
from settlement.storage import cache

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "MemorySignalStore",
    "MemorySubscriptionStore",
    "PriceCache",
    "RedisPriceCache",
    "SqlSignalStore",
    "SqlSubscriptionStore",
    "cache",
]

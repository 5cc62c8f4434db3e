"""JSON-file stores for standalone wars and CWL seasons."""

from warcollector.storage.envelope import (
    LeagueStorageStats,
    StorageError,
    StorageStats,
    UpsertOutcome,
)
from warcollector.storage.league_store import DedupeReport, LeagueStore
from warcollector.storage.match_store import MatchStore

__all__ = [
    "DedupeReport",
    "LeagueStorageStats",
    "LeagueStore",
    "MatchStore",
    "StorageError",
    "StorageStats",
    "UpsertOutcome",
]

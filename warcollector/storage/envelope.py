"""Versioned JSON envelope files shared by both stores."""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from warcollector.models import SCHEMA_VERSION

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when a store cannot be read for writing or cannot be written."""


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class StorageStats:
    count: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "totalWars": self.count,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else "Never",
        }


@dataclass(frozen=True)
class LeagueStorageStats:
    season_count: int = 0
    count: int = 0
    last_updated: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "totalSeasons": self.season_count,
            "totalWars": self.count,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else "Never",
        }


class EnvelopeFile:
    """
    A `{version, lastUpdated, <collection>}` JSON document on disk.

    load() returns None when the file does not exist and raises StorageError
    when it is unreadable, corrupt, or written by a newer schema version.
    save() writes atomically (temp file + os.replace), creating parent
    directories on first use.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Cannot read {self.path}: top-level value is not an object")

        version = data.setdefault("version", SCHEMA_VERSION)
        if not isinstance(version, int) or version > SCHEMA_VERSION:
            raise StorageError(
                f"{self.path} has schema version {version!r}, this build supports up to {SCHEMA_VERSION}"
            )
        return data

    def save(self, data: dict) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e

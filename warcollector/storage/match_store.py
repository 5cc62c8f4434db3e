"""Standalone war store (data/wars.json)."""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from warcollector.etl.timestamps import utcnow
from warcollector.models import SCHEMA_VERSION, Match, MatchEnvelope
from warcollector.storage.envelope import EnvelopeFile, StorageError, StorageStats, UpsertOutcome
from warcollector.telemetry import record_store_write

logger = logging.getLogger(__name__)


class MatchStore:
    """
    Single-writer store of standalone wars, newest end time first.

    Reads never raise: an absent, corrupt or newer-version file reads as empty.
    Writes raise StorageError rather than clobber a file they cannot parse.
    """

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow):
        self._file = EnvelopeFile(path)
        self._lock = threading.RLock()
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._file.path

    def _load(self) -> MatchEnvelope:
        data = self._file.load()
        if data is None:
            return MatchEnvelope()
        try:
            return MatchEnvelope.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Corrupt war store {self.path}: {e}") from e

    def _load_soft(self) -> MatchEnvelope:
        try:
            return self._load()
        except StorageError as e:
            logger.error(f"[STORE] Reading wars failed, returning empty: {e}")
            return MatchEnvelope()

    def _save(self, matches: list[Match]) -> None:
        matches.sort(key=lambda m: (-m.end_time.timestamp(), m.id))
        envelope = MatchEnvelope(version=SCHEMA_VERSION, last_updated=self._clock(), matches=matches)
        self._file.save(envelope.model_dump(mode="json", by_alias=True))

    # =========================================================================
    # WRITES
    # =========================================================================

    def upsert(self, match: Match) -> UpsertOutcome:
        """Insert or wholly replace the war with the same id."""
        with self._lock:
            matches = list(self._load().matches)
            for i, existing in enumerate(matches):
                if existing.id == match.id:
                    matches[i] = match
                    outcome = UpsertOutcome.UPDATED
                    logger.info(f"[STORE] War {match.id} updated ({existing.state} -> {match.state})")
                    break
            else:
                matches.append(match)
                outcome = UpsertOutcome.CREATED
                logger.info(f"[STORE] War {match.id} saved ({match.state})")

            self._save(matches)

        record_store_write("wars", outcome.value)
        return outcome

    # =========================================================================
    # READS
    # =========================================================================

    def list_matches(self) -> list[Match]:
        with self._lock:
            return list(self._load_soft().matches)

    def get_match(self, match_id: str) -> Optional[Match]:
        return next((m for m in self.list_matches() if m.id == match_id), None)

    def get_latest(self) -> Optional[Match]:
        matches = self.list_matches()
        return matches[0] if matches else None

    def stats(self) -> StorageStats:
        with self._lock:
            envelope = self._load_soft()
        return StorageStats(count=len(envelope.matches), last_updated=envelope.last_updated)

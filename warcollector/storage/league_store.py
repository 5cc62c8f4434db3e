"""CWL season store (data/leaguewars.json)."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from warcollector.etl.timestamps import utcnow
from warcollector.models import (
    SCHEMA_VERSION,
    LeagueEnvelope,
    LeagueGroup,
    LeagueMatch,
    SeasonSummary,
)
from warcollector.storage.envelope import (
    EnvelopeFile,
    LeagueStorageStats,
    StorageError,
    UpsertOutcome,
)
from warcollector.telemetry import record_dedupe_removed, record_store_write

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DedupeReport:
    before: int
    after: int

    @property
    def removed(self) -> int:
        return self.before - self.after

    def to_dict(self) -> dict:
        return {"before": self.before, "after": self.after, "removed": self.removed}


def dedupe_key(match: LeagueMatch) -> tuple[str, int, str]:
    return (match.season, match.round_number, match.opponent_tag)


def _freshness(match: LeagueMatch) -> tuple[datetime, bool]:
    # Equal collection instants prefer the id the provider assigned.
    return (match.collected_at, match.id.startswith("#"))


def dedupe_matches(matches: list[LeagueMatch]) -> list[LeagueMatch]:
    """Keep the most recently collected war per (season, round, opponent), ordered by round."""
    kept: dict[tuple[str, int, str], LeagueMatch] = {}
    for match in matches:
        key = dedupe_key(match)
        current = kept.get(key)
        if current is None or _freshness(match) > _freshness(current):
            kept[key] = match
    return sorted(kept.values(), key=lambda m: m.round_number)


def summarize(group: LeagueGroup) -> SeasonSummary:
    return SeasonSummary(
        season=group.season,
        state=group.state,
        collected_at=group.collected_at,
        match_count=len(group.matches),
        rounds=sorted({m.round_number for m in group.matches}),
        participating_clans=len(group.participating_clans),
    )


class LeagueStore:
    """
    Single-writer store of CWL seasons, newest season first.

    Within a season, wars are merged by id and kept in round order. The same
    read/write failure policy as MatchStore applies.
    """

    def __init__(self, path: Path, clock: Callable[[], datetime] = utcnow):
        self._file = EnvelopeFile(path)
        self._lock = threading.RLock()
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._file.path

    def _load(self) -> LeagueEnvelope:
        data = self._file.load()
        if data is None:
            return LeagueEnvelope()
        try:
            return LeagueEnvelope.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Corrupt league store {self.path}: {e}") from e

    def _load_soft(self) -> LeagueEnvelope:
        try:
            return self._load()
        except StorageError as e:
            logger.error(f"[STORE] Reading league wars failed, returning empty: {e}")
            return LeagueEnvelope()

    def _save(self, seasons: list[LeagueGroup]) -> None:
        seasons.sort(key=lambda s: s.season, reverse=True)
        envelope = LeagueEnvelope(version=SCHEMA_VERSION, last_updated=self._clock(), seasons=seasons)
        self._file.save(envelope.model_dump(mode="json", by_alias=True))

    # =========================================================================
    # WRITES
    # =========================================================================

    def upsert_group(self, group: LeagueGroup) -> UpsertOutcome:
        """
        Merge a season into the store.

        Wars are matched by id: known ids are replaced, new ids appended.
        Season metadata (state, collected_at, participating clans) is replaced.
        """
        with self._lock:
            seasons = list(self._load().seasons)
            index = next((i for i, s in enumerate(seasons) if s.season == group.season), None)

            if index is None:
                merged = group.model_copy(
                    update={"matches": sorted(group.matches, key=lambda m: m.round_number)}
                )
                seasons.append(merged)
                outcome = UpsertOutcome.CREATED
                logger.info(f"[STORE] League season {group.season} added ({len(group.matches)} wars)")
            else:
                existing = seasons[index]
                by_id = {m.id: m for m in existing.matches}
                for match in group.matches:
                    if match.id in by_id:
                        logger.info(f"[STORE] League war {match.id} updated in {group.season}")
                    else:
                        logger.info(f"[STORE] League war {match.id} added to {group.season}")
                    by_id[match.id] = match
                seasons[index] = existing.model_copy(
                    update={
                        "state": group.state,
                        "collected_at": group.collected_at,
                        "participating_clans": group.participating_clans,
                        "matches": sorted(by_id.values(), key=lambda m: m.round_number),
                    }
                )
                outcome = UpsertOutcome.UPDATED

            self._save(seasons)

        record_store_write("league_wars", outcome.value)
        return outcome

    def dedupe(self) -> DedupeReport:
        """
        Collapse duplicate wars per (season, round, opponent), keeping the latest collected.

        Idempotent: a store with no duplicates is not rewritten.
        """
        with self._lock:
            seasons = list(self._load().seasons)
            before = sum(len(s.matches) for s in seasons)

            deduped = [s.model_copy(update={"matches": dedupe_matches(s.matches)}) for s in seasons]
            after = sum(len(s.matches) for s in deduped)

            if after != before:
                for old, new in zip(seasons, deduped):
                    if len(old.matches) != len(new.matches):
                        logger.info(
                            f"[STORE] Season {old.season}: {len(old.matches)} -> {len(new.matches)} wars after dedup"
                        )
                self._save(deduped)

        report = DedupeReport(before=before, after=after)
        record_dedupe_removed(report.removed)
        return report

    # =========================================================================
    # READS
    # =========================================================================

    def list_groups(self) -> list[LeagueGroup]:
        with self._lock:
            return list(self._load_soft().seasons)

    def list_seasons(self) -> list[SeasonSummary]:
        return [summarize(g) for g in self.list_groups()]

    def list_league_matches(self) -> list[LeagueMatch]:
        """All league wars across seasons, newest season first, rounds ascending."""
        return [m for group in self.list_groups() for m in group.matches]

    def get_season(self, season: str) -> Optional[LeagueGroup]:
        return next((g for g in self.list_groups() if g.season == season), None)

    def get_latest_season(self) -> Optional[LeagueGroup]:
        groups = self.list_groups()
        return groups[0] if groups else None

    def stats(self) -> LeagueStorageStats:
        with self._lock:
            envelope = self._load_soft()
        return LeagueStorageStats(
            season_count=len(envelope.seasons),
            count=sum(len(s.matches) for s in envelope.seasons),
            last_updated=envelope.last_updated,
        )

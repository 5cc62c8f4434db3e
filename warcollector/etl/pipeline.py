"""Collection pipeline: fetch -> transform -> store, one entry point per stream."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from warcollector.config import get_settings
from warcollector.etl.base import (
    ProviderError,
    ProviderForbiddenError,
    TransformError,
    WarDataProvider,
)
from warcollector.etl.timestamps import parse_provider_timestamp, utcnow
from warcollector.etl.transformer import (
    PLACEHOLDER_WAR_TAG,
    RoundPayload,
    same_tag,
    should_collect_league,
    should_collect_match,
    transform_league_group,
    transform_match,
)
from warcollector.models import LeagueMatch, Lifecycle, lifecycle_of
from warcollector.storage import DedupeReport, LeagueStore, MatchStore, UpsertOutcome
from warcollector.telemetry import record_round_fetches

logger = logging.getLogger(__name__)

IN_FLIGHT = (Lifecycle.PREPARATION, Lifecycle.IN_PROGRESS)


@dataclass
class MatchCollectionResult:
    """What a standalone sweep observed and did. `end_time` drives the one-shot timer."""

    state: Optional[str] = None
    lifecycle: Lifecycle = Lifecycle.NOT_IN_MATCH
    end_time: Optional[datetime] = None
    collected: bool = False
    match_id: Optional[str] = None
    outcome: Optional[UpsertOutcome] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "lifecycle": self.lifecycle.value,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "collected": self.collected,
            "match_id": self.match_id,
            "outcome": self.outcome.value if self.outcome else None,
        }


@dataclass
class RoundFetchReport:
    """Per-round outcome counts for a league sweep."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"succeeded": self.succeeded, "failed": self.failed, "skipped": self.skipped}


@dataclass
class LeagueCollectionResult:
    """What a league sweep observed and did. `next_end_time` is the earliest in-flight round end."""

    state: Optional[str] = None
    lifecycle: Lifecycle = Lifecycle.NOT_IN_MATCH
    season: Optional[str] = None
    collected: bool = False
    matches_collected: int = 0
    rounds: RoundFetchReport = field(default_factory=RoundFetchReport)
    next_end_time: Optional[datetime] = None
    outcome: Optional[UpsertOutcome] = None
    dedupe: Optional[DedupeReport] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "lifecycle": self.lifecycle.value,
            "season": self.season,
            "collected": self.collected,
            "matches_collected": self.matches_collected,
            "rounds": self.rounds.to_dict(),
            "next_end_time": self.next_end_time.isoformat() if self.next_end_time else None,
            "outcome": self.outcome.value if self.outcome else None,
            "dedupe": self.dedupe.to_dict() if self.dedupe else None,
        }


def earliest_in_flight_end(matches: list[LeagueMatch]) -> Optional[datetime]:
    ends = [m.end_time for m in matches if m.lifecycle in IN_FLIGHT]
    return min(ends) if ends else None


class CollectionPipeline:
    """Runs one collection pass per stream against a provider and the two stores."""

    def __init__(
        self,
        provider: WarDataProvider,
        match_store: MatchStore,
        league_store: LeagueStore,
        clan_tag: Optional[str] = None,
        round_pause_seconds: Optional[float] = None,
        dedupe_after_write: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.provider = provider
        self.match_store = match_store
        self.league_store = league_store
        self.clan_tag = clan_tag or settings.CLAN_TAG
        self.round_pause_seconds = (
            settings.LEAGUE_ROUND_PAUSE_SECONDS if round_pause_seconds is None else round_pause_seconds
        )
        self.dedupe_after_write = (
            settings.LEAGUE_DEDUPE_AFTER_WRITE if dedupe_after_write is None else dedupe_after_write
        )
        self.standalone_attacks_per_member = settings.STANDALONE_ATTACKS_PER_MEMBER
        self.league_attacks_per_member = settings.LEAGUE_ATTACKS_PER_MEMBER
        self._sleep = sleep
        self._clock = clock

    # =========================================================================
    # STANDALONE WARS
    # =========================================================================

    async def collect_current_match(self) -> MatchCollectionResult:
        """
        Fetch the current war and write it when it is in progress or ended.

        Preparation is reported with its end time but not written.
        Provider errors and StorageError propagate to the caller.
        """
        raw = await self.provider.fetch_current_match(self.clan_tag)
        if raw is None:
            logger.info("[WAR_SWEEP] No war data (clan not found or war log private)")
            return MatchCollectionResult()

        state = raw.get("state")
        lifecycle = lifecycle_of(state)
        result = MatchCollectionResult(state=state, lifecycle=lifecycle)

        if lifecycle is Lifecycle.NOT_IN_MATCH:
            logger.info(f"[WAR_SWEEP] Clan is not in war (state={state})")
            return result

        if lifecycle is Lifecycle.PREPARATION:
            end_time = raw.get("endTime")
            try:
                result.end_time = parse_provider_timestamp(end_time) if end_time else None
            except ValueError:
                logger.error(f"[WAR_SWEEP] Preparation war has unparseable endTime {end_time!r}")
            logger.info(f"[WAR_SWEEP] War in preparation, ends at {result.end_time}")
            return result

        if not should_collect_match(state):
            return result

        match = transform_match(
            raw,
            self.clan_tag,
            attacks_per_member_default=self.standalone_attacks_per_member,
            now=self._clock(),
        )
        result.outcome = self.match_store.upsert(match)
        result.collected = True
        result.match_id = match.id
        result.end_time = match.end_time

        logger.info(
            f"[WAR_SWEEP] Collected war {match.id} vs {match.opponent_name} ({match.state}): "
            f"{match.clan_stats.attacks_used}/{match.clan_stats.attacks_available} attacks, "
            f"{match.clan_stats.total_stars} stars"
        )
        return result

    # =========================================================================
    # CLAN WAR LEAGUE
    # =========================================================================

    async def _fetch_rounds(self, raw_group: dict) -> tuple[list[RoundPayload], RoundFetchReport]:
        """
        Fetch every round war involving the tracked clan.

        Placeholder tags are skipped. A failing fetch is counted and the loop
        continues, except for credential errors, which abort the sweep.
        """
        report = RoundFetchReport()
        payloads: list[RoundPayload] = []
        first_request = True

        for index, round_ in enumerate(raw_group.get("rounds") or []):
            round_number = index + 1
            for war_tag in round_.get("warTags") or []:
                if not war_tag or war_tag == PLACEHOLDER_WAR_TAG:
                    report.skipped += 1
                    continue

                if not first_request and self.round_pause_seconds > 0:
                    await self._sleep(self.round_pause_seconds)
                first_request = False

                try:
                    raw = await self.provider.fetch_league_match(war_tag)
                except ProviderForbiddenError:
                    raise
                except ProviderError as e:
                    logger.error(f"[CWL_SWEEP] Round {round_number} war {war_tag} failed: {e}")
                    report.failed += 1
                    continue

                if raw is None:
                    logger.warning(f"[CWL_SWEEP] Round {round_number} war {war_tag} not found, skipping")
                    report.failed += 1
                    continue

                sides = (raw.get("clan") or {}, raw.get("opponent") or {})
                if any(same_tag(side.get("tag"), self.clan_tag) for side in sides):
                    payloads.append(RoundPayload(round_number, war_tag, raw))

        return payloads, report

    async def collect_league_group(self) -> LeagueCollectionResult:
        """
        Fetch the current league group and every round war, then upsert the season.

        Every round is re-fetched on every pass regardless of its own state.
        A round that fails to fetch or transform is counted and dropped.
        Group-level provider errors, TransformError and StorageError propagate.
        """
        raw_group = await self.provider.fetch_current_league_group(self.clan_tag)
        if raw_group is None:
            logger.info("[CWL_SWEEP] Clan is not in CWL")
            return LeagueCollectionResult()

        state = raw_group.get("state")
        result = LeagueCollectionResult(
            state=state,
            lifecycle=lifecycle_of(state),
            season=raw_group.get("season"),
        )

        if not should_collect_league(state):
            logger.info(f"[CWL_SWEEP] Not collecting, group state={state}")
            return result

        if "season" not in raw_group:
            raise TransformError("League group payload has no season")

        clans = raw_group.get("clans") or []
        if clans and not any(same_tag(c.get("tag"), self.clan_tag) for c in clans):
            raise TransformError(f"Clan {self.clan_tag} not found in league group {result.season}")

        now = self._clock()
        payloads, report = await self._fetch_rounds(raw_group)
        group = transform_league_group(
            raw_group,
            payloads,
            self.clan_tag,
            attacks_per_member_default=self.league_attacks_per_member,
            now=now,
            skip_malformed=True,
        )
        report.succeeded = len(group.matches)
        report.failed += len(payloads) - len(group.matches)
        result.rounds = report
        result.next_end_time = earliest_in_flight_end(group.matches)

        for match in group.matches:
            logger.info(
                f"[CWL_SWEEP] Round {match.round_number}: vs {match.opponent_name} "
                f"({match.clan_stats.total_stars}-{match.opponent_stats.total_stars}) [{match.state}]"
            )
        logger.info(
            f"[CWL_SWEEP] Fetch summary: {report.succeeded} succeeded, "
            f"{report.failed} failed, {report.skipped} skipped"
        )
        record_round_fetches(report.succeeded, report.failed, report.skipped)

        if not group.matches:
            logger.warning(f"[CWL_SWEEP] No wars found for our clan in season {result.season}")
            return result

        result.outcome = self.league_store.upsert_group(group)
        result.collected = True
        result.matches_collected = len(group.matches)

        if self.dedupe_after_write:
            result.dedupe = self.league_store.dedupe()
            if result.dedupe.removed:
                logger.info(f"[CWL_SWEEP] Dedup removed {result.dedupe.removed} stale league wars")

        logger.info(
            f"[CWL_SWEEP] Season {group.season} ({group.state}): {len(group.matches)} wars stored"
        )
        return result

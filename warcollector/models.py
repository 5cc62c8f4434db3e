"""Canonical war records.

These are the normalized shapes we persist, independent of the raw provider
payloads (see etl/transformer.py for the mapping). Field names serialize to
camelCase so stored JSON stays compatible with the historic data files.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from warcollector.etl.timestamps import parse_provider_timestamp

logger = logging.getLogger(__name__)


class Lifecycle(str, Enum):
    """Lifecycle of a war (or a league group) as seen by the scheduler."""

    NOT_IN_MATCH = "not_in_match"
    PREPARATION = "preparation"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


# Provider state strings. Regular wars end in "warEnded", league groups in "ended".
_PROVIDER_STATES = {
    "notInWar": Lifecycle.NOT_IN_MATCH,
    "preparation": Lifecycle.PREPARATION,
    "inWar": Lifecycle.IN_PROGRESS,
    "warEnded": Lifecycle.ENDED,
    "ended": Lifecycle.ENDED,
}


def lifecycle_of(state: Optional[str]) -> Lifecycle:
    """Classify a raw provider state. Unknown states are treated as not-in-match."""
    if state is None:
        return Lifecycle.NOT_IN_MATCH
    lifecycle = _PROVIDER_STATES.get(state)
    if lifecycle is None:
        logger.warning(f"Unknown provider state {state!r}, treating as not-in-match")
        return Lifecycle.NOT_IN_MATCH
    return lifecycle


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ClanStats(_Record):
    """Aggregate stats for one side of a war."""

    attacks_used: int = 0
    attacks_available: int = 0
    total_stars: int = 0
    destruction_percentage: float = 0.0  # average per attack

    @model_validator(mode="after")
    def _attacks_within_budget(self):
        if self.attacks_used > self.attacks_available:
            raise ValueError(
                f"attacks_used ({self.attacks_used}) exceeds attacks_available ({self.attacks_available})"
            )
        return self


class Member(_Record):
    tag: str
    name: str
    townhall_level: int = 0
    map_position: int = 0
    attacks_used: int = 0
    is_own_clan: bool = Field(alias="isOurClan")


class Action(_Record):
    """One attack. `order` is global across both sides of the war."""

    match_id: str = Field(alias="warId")
    attacker_tag: str
    attacker_name: str
    defender_tag: str
    defender_name: str
    stars: int = Field(ge=0, le=3)
    destruction_percentage: float
    order: int
    is_own_clan: bool = Field(alias="isOurClan")


class Match(_Record):
    """A standalone clan war."""

    id: str
    clan_tag: str
    clan_name: str
    opponent_tag: str
    opponent_name: str
    team_size: int
    attacks_per_member: int = 2
    state: str
    preparation_start_time: datetime
    start_time: datetime
    end_time: datetime
    collected_at: datetime
    clan_stats: ClanStats
    opponent_stats: ClanStats
    members: list[Member] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list, alias="attacks")

    @field_validator("preparation_start_time", "start_time", "end_time", "collected_at", mode="before")
    @classmethod
    def _parse_instant(cls, value):
        return parse_provider_timestamp(value)

    @model_validator(mode="after")
    def _actions_in_order(self):
        orders = [a.order for a in self.actions]
        if any(later <= earlier for earlier, later in zip(orders, orders[1:])):
            raise ValueError("attack order must be strictly increasing")
        return self

    @property
    def lifecycle(self) -> Lifecycle:
        return lifecycle_of(self.state)

    def own_members(self) -> list[Member]:
        return [m for m in self.members if m.is_own_clan]


class LeagueMatch(Match):
    """A Clan War League war: one round of a season."""

    attacks_per_member: int = 1
    season: str
    round_number: int = Field(ge=1, le=7)
    war_tag: Optional[str] = None


class ParticipatingClan(_Record):
    tag: str
    name: str
    clan_level: int = 0


class LeagueGroup(_Record):
    """One CWL season for the tracked clan."""

    season: str
    state: str
    collected_at: datetime
    participating_clans: list[ParticipatingClan] = Field(default_factory=list)
    matches: list[LeagueMatch] = Field(default_factory=list, alias="wars")

    @field_validator("collected_at", mode="before")
    @classmethod
    def _parse_instant(cls, value):
        return parse_provider_timestamp(value)


class SeasonSummary(_Record):
    season: str
    state: str
    collected_at: datetime
    match_count: int
    rounds: list[int]
    participating_clans: int


# =============================================================================
# PERSISTED ENVELOPES
# =============================================================================

SCHEMA_VERSION = 1


class MatchEnvelope(_Record):
    version: int = SCHEMA_VERSION
    last_updated: Optional[datetime] = None
    matches: list[Match] = Field(default_factory=list, alias="wars")


class LeagueEnvelope(_Record):
    version: int = SCHEMA_VERSION
    last_updated: Optional[datetime] = None
    seasons: list[LeagueGroup] = Field(default_factory=list)

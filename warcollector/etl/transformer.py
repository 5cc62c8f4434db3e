"""Map raw Clash of Clans war payloads to canonical records.

Both streams go through the same pipeline: resolve which side is ours,
aggregate stats per side, flatten per-member attacks into a global action
list, and build the member roster. Standalone and league wars differ only
in identifier scheme and default attacks per member.
"""

import hashlib
import logging
from datetime import datetime
from typing import NamedTuple, Optional

from pydantic import ValidationError

from warcollector.etl.base import TransformError
from warcollector.etl.timestamps import parse_provider_timestamp, utcnow
from warcollector.models import (
    Action,
    ClanStats,
    LeagueGroup,
    LeagueMatch,
    Lifecycle,
    Match,
    Member,
    ParticipatingClan,
    lifecycle_of,
)

logger = logging.getLogger(__name__)

UNKNOWN_DEFENDER = "Unknown"
PLACEHOLDER_WAR_TAG = "#0"


class RoundPayload(NamedTuple):
    """A fetched league round war, paired with where it came from."""

    round_number: int
    war_tag: Optional[str]
    payload: dict


def normalize_tag(tag: str) -> str:
    return "#" + tag.strip().lstrip("#").upper()


def same_tag(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return normalize_tag(a) == normalize_tag(b)


def compute_match_id(end_time, own_tag: str, opponent_tag: str) -> str:
    """Compute a deterministic standalone war identifier.

    Formula: SHA256(end_instant_iso|tag_a|tag_b)[:32] with the two tags in
    sorted order, so the id is the same whichever side the provider lists
    first and whatever timestamp format the end time arrived in.

    Returns:
        32-character hex string
    """
    instant = parse_provider_timestamp(end_time).isoformat()
    tag_a, tag_b = sorted((normalize_tag(own_tag), normalize_tag(opponent_tag)))
    raw = f"{instant}|{tag_a}|{tag_b}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


def league_match_id(season: str, round_number: int, opponent_tag: str, war_tag: Optional[str]) -> str:
    """War tag when the provider assigned one, otherwise season/round/opponent."""
    if war_tag and war_tag != PLACEHOLDER_WAR_TAG:
        return war_tag
    return f"{season}-round{round_number}-{opponent_tag}"


def should_collect_match(state: Optional[str]) -> bool:
    """Standalone wars are written while in progress and once ended."""
    return lifecycle_of(state) in (Lifecycle.IN_PROGRESS, Lifecycle.ENDED)


def should_collect_league(state: Optional[str]) -> bool:
    """League groups are written in every state except not-in-war."""
    return lifecycle_of(state) is not Lifecycle.NOT_IN_MATCH


# =============================================================================
# SHARED HELPERS
# =============================================================================


def _resolve_sides(raw: dict, context_tag: str) -> tuple[dict, dict]:
    clan = raw["clan"]
    opponent = raw["opponent"]
    if same_tag(clan.get("tag"), context_tag):
        return clan, opponent
    if same_tag(opponent.get("tag"), context_tag):
        return opponent, clan
    logger.warning(
        f"Tracked clan {context_tag} is on neither side "
        f"({clan.get('tag')} vs {opponent.get('tag')}), using provider order"
    )
    return clan, opponent


def _side_members(side: dict) -> list[dict]:
    return side.get("members") or []


def _compute_stats(members: list[dict], attacks_per_member: int, team_size: int) -> ClanStats:
    attacks_used = 0
    total_stars = 0
    total_destruction = 0.0
    for member in members:
        for attack in member.get("attacks") or []:
            attacks_used += 1
            total_stars += attack["stars"]
            total_destruction += attack["destructionPercentage"]

    return ClanStats(
        attacks_used=attacks_used,
        attacks_available=team_size * attacks_per_member,
        total_stars=total_stars,
        destruction_percentage=total_destruction / attacks_used if attacks_used else 0.0,
    )


def _flatten_actions(match_id: str, own: list[dict], opponent: list[dict]) -> list[Action]:
    own_names = {m["tag"]: m["name"] for m in own}
    opponent_names = {m["tag"]: m["name"] for m in opponent}

    actions = []
    for members, defenders, is_own in ((own, opponent_names, True), (opponent, own_names, False)):
        for member in members:
            for attack in member.get("attacks") or []:
                actions.append(
                    Action(
                        match_id=match_id,
                        attacker_tag=attack.get("attackerTag", member["tag"]),
                        attacker_name=member["name"],
                        defender_tag=attack["defenderTag"],
                        defender_name=defenders.get(attack["defenderTag"], UNKNOWN_DEFENDER),
                        stars=attack["stars"],
                        destruction_percentage=attack["destructionPercentage"],
                        order=attack["order"],
                        is_own_clan=is_own,
                    )
                )

    actions.sort(key=lambda a: a.order)
    return actions


def _build_members(own: list[dict], opponent: list[dict]) -> list[Member]:
    members = []
    for side, is_own in ((own, True), (opponent, False)):
        for member in side:
            members.append(
                Member(
                    tag=member["tag"],
                    name=member["name"],
                    townhall_level=member.get("townhallLevel", 0),
                    map_position=member.get("mapPosition", 0),
                    attacks_used=len(member.get("attacks") or []),
                    is_own_clan=is_own,
                )
            )

    members.sort(key=lambda m: (not m.is_own_clan, m.map_position))
    return members


def _common_fields(raw: dict, own: dict, opponent: dict, match_id: str, attacks_per_member: int, now) -> dict:
    team_size = raw["teamSize"]
    own_members = _side_members(own)
    opponent_members = _side_members(opponent)
    return {
        "id": match_id,
        "clan_tag": own["tag"],
        "clan_name": own.get("name", ""),
        "opponent_tag": opponent["tag"],
        "opponent_name": opponent.get("name", ""),
        "team_size": team_size,
        "attacks_per_member": attacks_per_member,
        "state": raw["state"],
        "preparation_start_time": raw["preparationStartTime"],
        "start_time": raw["startTime"],
        "end_time": raw["endTime"],
        "collected_at": now or utcnow(),
        "clan_stats": _compute_stats(own_members, attacks_per_member, team_size),
        "opponent_stats": _compute_stats(opponent_members, attacks_per_member, team_size),
        "members": _build_members(own_members, opponent_members),
        "actions": _flatten_actions(match_id, own_members, opponent_members),
    }


# =============================================================================
# PUBLIC TRANSFORMS
# =============================================================================


def transform_match(
    raw: dict,
    context_tag: str,
    attacks_per_member_default: int = 2,
    now: Optional[datetime] = None,
) -> Match:
    """
    Transform a current-war payload into a Match.

    Raises:
        TransformError: if the payload is missing required fields or is inconsistent.
    """
    try:
        own, opponent = _resolve_sides(raw, context_tag)
        attacks_per_member = raw.get("attacksPerMember") or attacks_per_member_default
        match_id = compute_match_id(raw["endTime"], own["tag"], opponent["tag"])
        return Match(**_common_fields(raw, own, opponent, match_id, attacks_per_member, now))
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise TransformError(f"Malformed war payload: {e}") from e


def transform_league_match(
    raw: dict,
    season: str,
    round_number: int,
    context_tag: str,
    attacks_per_member_default: int = 1,
    war_tag: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LeagueMatch:
    """
    Transform a league round war payload into a LeagueMatch.

    The tracked clan may appear on either side of a league war; the own side
    is resolved by tag.

    Raises:
        TransformError: if the payload is missing required fields or is inconsistent.
    """
    try:
        own, opponent = _resolve_sides(raw, context_tag)
        attacks_per_member = raw.get("attacksPerMember") or attacks_per_member_default
        war_tag = war_tag or raw.get("warTag")
        match_id = league_match_id(season, round_number, opponent["tag"], war_tag)
        fields = _common_fields(raw, own, opponent, match_id, attacks_per_member, now)
        return LeagueMatch(
            **fields,
            season=season,
            round_number=round_number,
            war_tag=war_tag if war_tag and war_tag != PLACEHOLDER_WAR_TAG else None,
        )
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise TransformError(f"Malformed league war payload (round {round_number}): {e}") from e


def transform_league_group(
    raw_group: dict,
    rounds: list[RoundPayload],
    context_tag: str,
    attacks_per_member_default: int = 1,
    now: Optional[datetime] = None,
    skip_malformed: bool = False,
) -> LeagueGroup:
    """
    Transform a league group payload plus its fetched round wars into a LeagueGroup.

    With skip_malformed, a round war that fails to transform is logged and left
    out of the group instead of failing the whole season.

    Raises:
        TransformError: if the group metadata is malformed, or a round is and
            skip_malformed is off.
    """
    now = now or utcnow()
    try:
        season = raw_group["season"]
    except (KeyError, TypeError) as e:
        raise TransformError(f"Malformed league group payload: {e}") from e

    matches = []
    for r in rounds:
        try:
            matches.append(
                transform_league_match(
                    r.payload,
                    season,
                    r.round_number,
                    context_tag,
                    attacks_per_member_default=attacks_per_member_default,
                    war_tag=r.war_tag,
                    now=now,
                )
            )
        except TransformError as e:
            if not skip_malformed:
                raise
            logger.error(f"Dropping round {r.round_number} war {r.war_tag}: {e}")

    try:
        return LeagueGroup(
            season=season,
            state=raw_group["state"],
            collected_at=now,
            participating_clans=[
                ParticipatingClan(tag=c["tag"], name=c.get("name", ""), clan_level=c.get("clanLevel", 0))
                for c in raw_group.get("clans") or []
            ],
            matches=sorted(matches, key=lambda m: m.round_number),
        )
    except (KeyError, TypeError, ValidationError) as e:
        raise TransformError(f"Malformed league group payload: {e}") from e

"""CWL participation grid: one row per player, one cell per round (1-7)."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Iterable, Optional

from warcollector.models import LeagueMatch

ROUNDS_PER_SEASON = 7


class ParticipationSort(str, Enum):
    STARS = "stars"
    ATTACKS = "attacks"
    MISSED = "missed"
    NAME = "name"


@dataclass
class RoundCell:
    round_number: int
    participated: bool = False  # in the roster for this round
    attacked: bool = False
    stars: Optional[int] = None
    destruction_percentage: Optional[float] = None

    @property
    def display(self) -> str:
        if not self.participated:
            return "-"
        if not self.attacked:
            return "X"
        return str(self.stars if self.stars is not None else 0)


@dataclass
class PlayerParticipation:
    tag: str
    name: str
    rounds: list[RoundCell] = field(
        default_factory=lambda: [RoundCell(round_number=i + 1) for i in range(ROUNDS_PER_SEASON)]
    )
    total_attacks: int = 0
    total_stars: int = 0
    rounds_participated: int = 0
    missed_attacks: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        for cell, row in zip(self.rounds, data["rounds"]):
            row["display"] = cell.display
        return data


@dataclass
class ParticipationGrid:
    season: str
    rounds_available: list[int]
    players: list[PlayerParticipation]

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "rounds_available": self.rounds_available,
            "players": [p.to_dict() for p in self.players],
        }


def build_participation_grid(matches: Iterable[LeagueMatch]) -> ParticipationGrid:
    """
    Build the per-round participation grid from a season's league wars.

    A roster entry with no recorded attack but attacks_used > 0 still counts
    as attacked (stars unknown).
    """
    matches = list(matches)
    if not matches:
        return ParticipationGrid(season="", rounds_available=[], players=[])

    players: dict[str, PlayerParticipation] = {}

    for match in matches:
        cell_index = match.round_number - 1
        own_actions = {a.attacker_tag: a for a in match.actions if a.is_own_clan}

        for member in match.own_members():
            player = players.get(member.tag)
            if player is None:
                player = players[member.tag] = PlayerParticipation(tag=member.tag, name=member.name)

            cell = player.rounds[cell_index]
            cell.participated = True
            player.rounds_participated += 1

            action = own_actions.get(member.tag)
            if action is not None:
                cell.attacked = True
                cell.stars = action.stars
                cell.destruction_percentage = action.destruction_percentage
                player.total_attacks += 1
                player.total_stars += action.stars
            elif member.attacks_used > 0:
                cell.attacked = True
                player.total_attacks += 1
            else:
                player.missed_attacks += 1

    return ParticipationGrid(
        season=matches[0].season,
        rounds_available=sorted({m.round_number for m in matches}),
        players=list(players.values()),
    )


def sort_participants(
    players: list[PlayerParticipation], sort_by: ParticipationSort
) -> list[PlayerParticipation]:
    """Sorted copy: counts descending, then name ascending."""
    sort_by = ParticipationSort(sort_by)

    def name_key(p: PlayerParticipation) -> tuple[str, str]:
        return (p.name.casefold(), p.name)

    if sort_by is ParticipationSort.NAME:
        return sorted(players, key=name_key)

    count = {
        ParticipationSort.STARS: lambda p: p.total_stars,
        ParticipationSort.ATTACKS: lambda p: p.total_attacks,
        ParticipationSort.MISSED: lambda p: p.missed_attacks,
    }[sort_by]
    return sorted(players, key=lambda p: (-count(p), name_key(p)))

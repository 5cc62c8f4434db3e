"""
Attack participation prediction.

Per player, across stored wars:
- overall rate:  attacks used / attacks available, all time (0-100)
- recent rate:   same within the last `recent_days` days, or -1 when no recent sample
- score:         overall_weight * overall + recent_weight * recent (overall alone without a recent sample)

Works on standalone wars and CWL wars alike: available attacks come from each
record's attacks_per_member, and used attacks are capped at it.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from warcollector.config import get_settings
from warcollector.etl.timestamps import utcnow
from warcollector.models import Match

logger = logging.getLogger(__name__)

NO_RECENT_SAMPLE = -1.0


class PredictionSort(str, Enum):
    PREDICTION_HIGH = "prediction-high"
    PREDICTION_LOW = "prediction-low"
    OVERALL_HIGH = "overall-high"
    OVERALL_LOW = "overall-low"
    RECENT_HIGH = "recent-high"
    RECENT_LOW = "recent-low"
    TH_HIGH = "th-high"
    TH_LOW = "th-low"
    NAME = "name"


@dataclass(frozen=True)
class PredictionConfig:
    overall_weight: float = 0.4
    recent_weight: float = 0.6
    recent_days: int = 30
    min_matches_high: int = 5
    min_matches_medium: int = 3
    high_reliability: float = 80.0
    medium_reliability: float = 50.0

    @classmethod
    def from_settings(cls, **overrides) -> "PredictionConfig":
        settings = get_settings()
        values = {
            "overall_weight": settings.PREDICTION_OVERALL_WEIGHT,
            "recent_weight": settings.PREDICTION_RECENT_WEIGHT,
            "recent_days": settings.PREDICTION_RECENT_DAYS,
            "min_matches_high": settings.PREDICTION_MIN_MATCHES_HIGH,
            "min_matches_medium": settings.PREDICTION_MIN_MATCHES_MEDIUM,
            "high_reliability": settings.PREDICTION_HIGH_RELIABILITY,
            "medium_reliability": settings.PREDICTION_MEDIUM_RELIABILITY,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class PlayerPrediction:
    tag: str
    name: str
    townhall_level: int
    total_matches: int
    total_attacks_used: int
    total_attacks_available: int
    overall_rate: float
    recent_matches: int
    recent_attacks_used: int
    recent_attacks_available: int
    recent_rate: float
    prediction_score: float
    confidence_level: str
    reliability_color: str
    last_match_end: Optional[datetime]

    @property
    def has_recent_sample(self) -> bool:
        return self.recent_rate != NO_RECENT_SAMPLE

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_match_end"] = self.last_match_end.isoformat() if self.last_match_end else None
        return data


def get_confidence_level(match_count: int, config: PredictionConfig = PredictionConfig()) -> str:
    if match_count >= config.min_matches_high:
        return "high"
    if match_count >= config.min_matches_medium:
        return "medium"
    return "low"


def get_reliability_color(score: float, config: PredictionConfig = PredictionConfig()) -> str:
    if score >= config.high_reliability:
        return "green"
    if score >= config.medium_reliability:
        return "yellow"
    return "red"


def calculate_prediction_score(overall_rate: float, recent_rate: float, config: PredictionConfig) -> float:
    if recent_rate == NO_RECENT_SAMPLE:
        return overall_rate
    return overall_rate * config.overall_weight + recent_rate * config.recent_weight


def _rate(used: int, available: int) -> float:
    return used / available * 100 if available > 0 else 0.0


class _Tally:
    def __init__(self, tag: str):
        self.tag = tag
        self.name = ""
        self.name_seen_at: Optional[datetime] = None
        self.townhall_level = 0
        self.total_matches = 0
        self.total_used = 0
        self.total_available = 0
        self.recent_matches = 0
        self.recent_used = 0
        self.recent_available = 0
        self.last_match_end: Optional[datetime] = None


def predict(
    matches: Iterable[Match],
    config: Optional[PredictionConfig] = None,
    now: Optional[datetime] = None,
) -> list[PlayerPrediction]:
    """
    Aggregate own-clan members across `matches` into per-player predictions.

    Wars without a roster are ignored. Names follow the most recent war a
    player appeared in; town hall is the highest seen. Output order is
    unspecified, see sort_predictions.
    """
    config = config or PredictionConfig()
    cutoff = (now or utcnow()) - timedelta(days=config.recent_days)
    tallies: dict[str, _Tally] = {}

    for match in matches:
        if not match.members:
            continue

        per_member = match.attacks_per_member
        is_recent = match.end_time >= cutoff

        for member in match.own_members():
            tally = tallies.get(member.tag)
            if tally is None:
                tally = tallies[member.tag] = _Tally(member.tag)

            if tally.name_seen_at is None or match.end_time >= tally.name_seen_at:
                tally.name = member.name
                tally.name_seen_at = match.end_time
            tally.townhall_level = max(tally.townhall_level, member.townhall_level)

            used = min(member.attacks_used, per_member)
            tally.total_matches += 1
            tally.total_used += used
            tally.total_available += per_member

            if is_recent:
                tally.recent_matches += 1
                tally.recent_used += used
                tally.recent_available += per_member

            if tally.last_match_end is None or match.end_time > tally.last_match_end:
                tally.last_match_end = match.end_time

    predictions = []
    for tally in tallies.values():
        overall_rate = _rate(tally.total_used, tally.total_available)
        recent_rate = (
            _rate(tally.recent_used, tally.recent_available)
            if tally.recent_available > 0
            else NO_RECENT_SAMPLE
        )
        score = calculate_prediction_score(overall_rate, recent_rate, config)
        predictions.append(
            PlayerPrediction(
                tag=tally.tag,
                name=tally.name,
                townhall_level=tally.townhall_level,
                total_matches=tally.total_matches,
                total_attacks_used=tally.total_used,
                total_attacks_available=tally.total_available,
                overall_rate=overall_rate,
                recent_matches=tally.recent_matches,
                recent_attacks_used=tally.recent_used,
                recent_attacks_available=tally.recent_available,
                recent_rate=recent_rate,
                prediction_score=score,
                confidence_level=get_confidence_level(tally.total_matches, config),
                reliability_color=get_reliability_color(score, config),
                last_match_end=tally.last_match_end,
            )
        )

    return predictions


def _name_key(p: PlayerPrediction) -> tuple[str, str]:
    return (p.name.casefold(), p.name)


def sort_predictions(predictions: list[PlayerPrediction], sort_by: PredictionSort) -> list[PlayerPrediction]:
    """
    Return a sorted copy. Ties always fall back to name ascending; players
    without a recent sample sort last under both recent-rate orders.
    """
    sort_by = PredictionSort(sort_by)

    numeric = {
        PredictionSort.PREDICTION_HIGH: (lambda p: p.prediction_score, True),
        PredictionSort.PREDICTION_LOW: (lambda p: p.prediction_score, False),
        PredictionSort.OVERALL_HIGH: (lambda p: p.overall_rate, True),
        PredictionSort.OVERALL_LOW: (lambda p: p.overall_rate, False),
        PredictionSort.RECENT_HIGH: (lambda p: p.recent_rate, True),
        PredictionSort.RECENT_LOW: (lambda p: p.recent_rate, False),
        PredictionSort.TH_HIGH: (lambda p: p.townhall_level, True),
        PredictionSort.TH_LOW: (lambda p: p.townhall_level, False),
    }

    if sort_by is PredictionSort.NAME:
        return sorted(predictions, key=_name_key)

    value, descending = numeric[sort_by]
    sign = -1 if descending else 1

    if sort_by in (PredictionSort.RECENT_HIGH, PredictionSort.RECENT_LOW):
        return sorted(
            predictions,
            key=lambda p: (not p.has_recent_sample, sign * value(p), _name_key(p)),
        )

    return sorted(predictions, key=lambda p: (sign * value(p), _name_key(p)))

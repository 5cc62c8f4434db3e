"""Participation prediction and the CWL participation grid."""

from warcollector.prediction.engine import (
    NO_RECENT_SAMPLE,
    PlayerPrediction,
    PredictionConfig,
    PredictionSort,
    calculate_prediction_score,
    get_confidence_level,
    get_reliability_color,
    predict,
    sort_predictions,
)
from warcollector.prediction.participation import (
    ParticipationGrid,
    ParticipationSort,
    PlayerParticipation,
    build_participation_grid,
    sort_participants,
)

__all__ = [
    "NO_RECENT_SAMPLE",
    "ParticipationGrid",
    "ParticipationSort",
    "PlayerParticipation",
    "PlayerPrediction",
    "PredictionConfig",
    "PredictionSort",
    "build_participation_grid",
    "calculate_prediction_score",
    "get_confidence_level",
    "get_reliability_color",
    "predict",
    "sort_participants",
    "sort_predictions",
]

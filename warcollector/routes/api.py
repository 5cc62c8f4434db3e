"""War data API: stored wars, CWL seasons, predictions and collection triggers."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from warcollector import state
from warcollector.config import get_settings
from warcollector.models import LeagueGroup, Match
from warcollector.prediction import (
    ParticipationSort,
    PredictionConfig,
    PredictionSort,
    build_participation_grid,
    predict,
    sort_participants,
    sort_predictions,
)
from warcollector.security import limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wars"])
settings = get_settings()


def _dump(record) -> dict:
    return record.model_dump(mode="json", by_alias=True)


# =============================================================================
# STANDALONE WARS
# =============================================================================


@router.get("/wars")
async def list_wars():
    """All stored standalone wars, newest first."""
    matches = state.match_store.list_matches()
    return {
        "wars": [_dump(m) for m in matches],
        "stats": state.match_store.stats().to_dict(),
        "success": True,
    }


@router.post("/wars")
async def save_war(match: Match):
    """Insert or replace a war (manual ingestion)."""
    outcome = state.match_store.upsert(match)
    logger.info(f"[API] Manual war ingest {match.id}: {outcome.value}")
    return {"success": True, "outcome": outcome.value, "id": match.id}


# =============================================================================
# CLAN WAR LEAGUE
# =============================================================================


@router.get("/league-wars")
async def list_league_wars(season: Optional[str] = Query(None, description="Season key, e.g. 2025-12")):
    """Stored CWL wars (optionally one season) with season summaries."""
    if season:
        group = state.league_store.get_season(season)
        matches = group.matches if group else []
    else:
        matches = state.league_store.list_league_matches()

    return {
        "wars": [_dump(m) for m in matches],
        "seasons": [_dump(s) for s in state.league_store.list_seasons()],
        "stats": state.league_store.stats().to_dict(),
        "success": True,
    }


@router.post("/league-wars")
async def save_league_group(group: LeagueGroup):
    """Merge a CWL season into the store (manual ingestion)."""
    if not group.matches:
        raise HTTPException(status_code=400, detail="League group must contain at least one war")

    outcome = state.league_store.upsert_group(group)
    logger.info(f"[API] Manual league ingest {group.season}: {outcome.value} ({len(group.matches)} wars)")
    return {
        "success": True,
        "outcome": outcome.value,
        "season": group.season,
        "wars": len(group.matches),
    }


@router.post("/league-wars/dedupe")
async def dedupe_league_wars():
    """Collapse duplicate CWL wars per (season, round, opponent)."""
    report = state.league_store.dedupe()
    return {"success": True, **report.to_dict()}


@router.get("/league-wars/participation")
async def league_participation(
    season: Optional[str] = Query(None, description="Season key; latest season when omitted"),
    sort: ParticipationSort = Query(ParticipationSort.STARS),
):
    """Per-player 7-round participation grid for one CWL season."""
    if season:
        group = state.league_store.get_season(season)
        if group is None:
            raise HTTPException(status_code=404, detail=f"Season {season} not found")
    else:
        group = state.league_store.get_latest_season()

    grid = build_participation_grid(group.matches if group else [])
    grid.players = sort_participants(grid.players, sort)
    return {"success": True, **grid.to_dict()}


# =============================================================================
# PREDICTIONS
# =============================================================================


@router.get("/predictions")
async def attack_predictions(
    stream: str = Query("wars", pattern="^(wars|league-wars)$"),
    sort: PredictionSort = Query(PredictionSort.PREDICTION_HIGH),
    recent_days: Optional[int] = Query(None, ge=1, le=365),
    season: Optional[str] = Query(None, description="Restrict league-wars to one season"),
):
    """Per-player attack participation predictions from stored wars."""
    if stream == "wars":
        matches = state.match_store.list_matches()
    elif season:
        group = state.league_store.get_season(season)
        matches = group.matches if group else []
    else:
        matches = state.league_store.list_league_matches()

    config = PredictionConfig.from_settings(recent_days=recent_days)
    predictions = sort_predictions(predict(matches, config), sort)
    return {
        "success": True,
        "stream": stream,
        "sort": sort.value,
        "count": len(predictions),
        "predictions": [p.to_dict() for p in predictions],
    }


# =============================================================================
# COLLECTION TRIGGERS
# =============================================================================


def _require_scheduler():
    scheduler = state.collection_scheduler
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Collector not configured (COC_API_TOKEN missing)")
    return scheduler


def _sweep_response(result: dict):
    if result.get("status") == "ok":
        return {"success": True, "result": result}
    return JSONResponse(
        status_code=502,
        content={"success": False, "error": result.get("error", "Collection failed"), "detail": result},
    )


@router.post("/collect/wars")
@limiter.limit(settings.COLLECT_RATE_LIMIT)
async def collect_wars(request: Request):
    """Run a standalone war sweep now."""
    return _sweep_response(await _require_scheduler().run_standalone_sweep_now())


@router.post("/collect/league-wars")
@limiter.limit(settings.COLLECT_RATE_LIMIT)
async def collect_league_wars(request: Request):
    """Run a CWL sweep now."""
    return _sweep_response(await _require_scheduler().run_league_sweep_now())

"""Shared singletons for the collector application.

Singleton-by-import pattern: main.py, routers and scripts read the stores and
the scheduler from this module so they all share the same instances (and the
same per-store write locks). Access them as attributes (`state.match_store`)
at call time so they can be swapped in tests.
"""

from typing import Optional

from warcollector.config import get_settings
from warcollector.scheduler import CollectionScheduler
from warcollector.storage import LeagueStore, MatchStore

_settings = get_settings()

match_store = MatchStore(_settings.matches_path)
league_store = LeagueStore(_settings.league_matches_path)

# Set by the application lifespan when COC_API_TOKEN is configured.
collection_scheduler: Optional[CollectionScheduler] = None

"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Clash of Clans API
    COC_API_TOKEN: str = ""
    COC_API_BASE_URL: str = "https://api.clashofclans.com/v1"
    CLAN_TAG: str = "#2YGUQGY90"

    # Provider retry policy
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_RETRY_BASE_DELAY_SECONDS: float = 1.0  # doubles each attempt
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    LEAGUE_ROUND_PAUSE_SECONDS: float = 0.2  # pause between round fetches

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    STANDALONE_SWEEP_INTERVAL_MINUTES: int = 120
    LEAGUE_SWEEP_INTERVAL_MINUTES: int = 360
    # Cron day-of-month expression for league sweeps, e.g. "1-8".
    # Empty = plain interval every LEAGUE_SWEEP_INTERVAL_MINUTES.
    LEAGUE_SWEEP_MONTH_DAYS: str = ""
    ONE_SHOT_LEAD_SECONDS: int = 60
    STARTUP_SWEEP_DELAY_SECONDS: int = 5

    # Storage
    DATA_DIR: str = "./data"
    MATCHES_FILE: str = "wars.json"
    LEAGUE_MATCHES_FILE: str = "leaguewars.json"
    LEAGUE_DEDUPE_AFTER_WRITE: bool = True

    # Transformer defaults (used when the payload omits attacksPerMember)
    STANDALONE_ATTACKS_PER_MEMBER: int = 2
    LEAGUE_ATTACKS_PER_MEMBER: int = 1

    # Participation prediction
    PREDICTION_OVERALL_WEIGHT: float = 0.4
    PREDICTION_RECENT_WEIGHT: float = 0.6
    PREDICTION_RECENT_DAYS: int = 30
    PREDICTION_MIN_MATCHES_HIGH: int = 5
    PREDICTION_MIN_MATCHES_MEDIUM: int = 3
    PREDICTION_HIGH_RELIABILITY: float = 80.0
    PREDICTION_MEDIUM_RELIABILITY: float = 50.0

    # HTTP surface
    COLLECT_RATE_LIMIT: str = "10/minute"

    @property
    def matches_path(self) -> Path:
        return Path(self.DATA_DIR) / self.MATCHES_FILE

    @property
    def league_matches_path(self) -> Path:
        return Path(self.DATA_DIR) / self.LEAGUE_MATCHES_FILE

    class Config:
        env_file = (".env", ".env.local")
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

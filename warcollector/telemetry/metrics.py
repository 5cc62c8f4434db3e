"""
Prometheus metrics for collection telemetry.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

ALLOWED LABELS (bounded sets):
- provider:     "coc_api"
- endpoint:     "currentwar", "leaguegroup", "leaguewar"
- status_code:  "200", "403", "404", "429", "503", "0"
- error_code:   "timeout", "request_error", "forbidden", "unavailable", "invalid_body", "http_<code>"
- job:          "war_sweep", "cwl_sweep", "war_one_shot", "cwl_one_shot"
- store:        "wars", "league_wars"

FORBIDDEN AS LABELS: war tags, clan tags, player tags, names, timestamps.
Use logs for anything per-war.
"""

import time
import logging

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PROVIDER METRICS
# =============================================================================

provider_requests_total = Counter(
    "wc_provider_requests_total",
    "Total requests to the war data provider",
    ["provider", "endpoint", "status_code"],
)

provider_errors_total = Counter(
    "wc_provider_errors_total",
    "Total errors from the war data provider",
    ["provider", "endpoint", "error_code"],
)

provider_latency_ms = Histogram(
    "wc_provider_latency_ms",
    "Request latency in milliseconds",
    ["provider", "endpoint"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

# =============================================================================
# JOB METRICS
# =============================================================================

job_runs_total = Counter(
    "wc_job_runs_total",
    "Scheduler job executions by status",
    ["job", "status"],  # ok, error, forbidden
)

job_duration_ms = Histogram(
    "wc_job_duration_ms",
    "Scheduler job duration in milliseconds",
    ["job"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000],
)

job_last_success_timestamp = Gauge(
    "wc_job_last_success_timestamp",
    "Unix timestamp of last successful job run",
    ["job"],
)

one_shot_pending = Gauge(
    "wc_one_shot_pending",
    "Whether a one-shot collection is armed for the stream (0/1)",
    ["stream"],
)

league_round_fetches_total = Counter(
    "wc_league_round_fetches_total",
    "CWL round war fetches by result",
    ["result"],  # ok, failed, skipped
)

# =============================================================================
# STORE METRICS
# =============================================================================

store_writes_total = Counter(
    "wc_store_writes_total",
    "Store upserts by outcome",
    ["store", "outcome"],  # created, updated
)

store_dedupe_removed_total = Counter(
    "wc_store_dedupe_removed_total",
    "League wars removed by the dedup pass",
    [],
)


# =============================================================================
# HELPER FUNCTIONS (for instrumentation)
# =============================================================================


def record_provider_request(
    provider: str,
    endpoint: str,
    status_code: int,
    latency_ms: float,
) -> None:
    """Record a provider request with count and latency."""
    try:
        provider_requests_total.labels(
            provider=provider,
            endpoint=endpoint,
            status_code=str(status_code),
        ).inc()
        provider_latency_ms.labels(provider=provider, endpoint=endpoint).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record provider request metric: {e}")


def record_provider_error(provider: str, endpoint: str, error_code: str) -> None:
    """Record a provider error."""
    try:
        provider_errors_total.labels(
            provider=provider,
            endpoint=endpoint,
            error_code=error_code,
        ).inc()
    except Exception as e:
        logger.warning(f"Failed to record provider error metric: {e}")


def record_job_run(job: str, status: str, duration_ms: float) -> None:
    """
    Record a job run with status and duration.

    Args:
        job: Job identifier (war_sweep, cwl_sweep, war_one_shot, cwl_one_shot)
        status: "ok", "error", "forbidden"
        duration_ms: Job duration in milliseconds
    """
    try:
        job_runs_total.labels(job=job, status=status).inc()
        if duration_ms > 0:
            job_duration_ms.labels(job=job).observe(duration_ms)
        if status == "ok":
            job_last_success_timestamp.labels(job=job).set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record job run metric: {e}")


def set_one_shot_pending(stream: str, pending: bool) -> None:
    try:
        one_shot_pending.labels(stream=stream).set(1 if pending else 0)
    except Exception as e:
        logger.warning(f"Failed to set one-shot gauge: {e}")


def record_round_fetches(succeeded: int, failed: int, skipped: int) -> None:
    try:
        if succeeded:
            league_round_fetches_total.labels(result="ok").inc(succeeded)
        if failed:
            league_round_fetches_total.labels(result="failed").inc(failed)
        if skipped:
            league_round_fetches_total.labels(result="skipped").inc(skipped)
    except Exception as e:
        logger.warning(f"Failed to record round fetch metrics: {e}")


def record_store_write(store: str, outcome: str) -> None:
    try:
        store_writes_total.labels(store=store, outcome=outcome).inc()
    except Exception as e:
        logger.warning(f"Failed to record store write metric: {e}")


def record_dedupe_removed(removed: int) -> None:
    try:
        if removed:
            store_dedupe_removed_total.inc(removed)
    except Exception as e:
        logger.warning(f"Failed to record dedupe metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST

"""
Collection Telemetry Module

Provides Prometheus metrics for:
- Provider requests (count, errors, latency)
- Scheduler jobs (runs, duration, last success, armed one-shots)
- Store writes and dedup removals

and optional Sentry error tracking (warcollector.telemetry.sentry).
"""

from warcollector.telemetry.metrics import (
    record_provider_request,
    record_provider_error,
    record_job_run,
    set_one_shot_pending,
    record_round_fetches,
    record_store_write,
    record_dedupe_removed,
    get_metrics_text,
)

__all__ = [
    "record_provider_request",
    "record_provider_error",
    "record_job_run",
    "set_one_shot_pending",
    "record_round_fetches",
    "record_store_write",
    "record_dedupe_removed",
    "get_metrics_text",
]

"""
Collection scheduler.

Two independent streams, each with:
- a periodic sweep (IntervalTrigger, or CronTrigger for CWL month days)
- at most one dynamic one-shot (DateTrigger) timed just before the in-flight war ends

Sweeps of the same stream are serialized; the two streams never wait on each other.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from warcollector.config import get_settings
from warcollector.etl.base import ProviderForbiddenError
from warcollector.etl.pipeline import CollectionPipeline, LeagueCollectionResult, MatchCollectionResult
from warcollector.etl.timestamps import utcnow
from warcollector.models import Lifecycle
from warcollector.telemetry import record_job_run, set_one_shot_pending
from warcollector.telemetry.sentry import sentry_job_context

logger = logging.getLogger(__name__)

STANDALONE = "war"
LEAGUE = "cwl"


def compute_one_shot_time(end_time: datetime, now: datetime, lead: timedelta) -> Optional[datetime]:
    """
    When to fire the one-shot for a war ending at `end_time`.

    end - lead while that is still ahead; end + lead when we are already inside
    the lead window; None once the war has ended.
    """
    target = end_time - lead
    if target > now:
        return target
    if end_time > now:
        return end_time + lead
    return None


class OneShotTimer:
    """
    At most one pending APScheduler date job for a stream.

    arm() cancels and replaces whatever is pending unless it is already set
    for the same instant.
    """

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        stream: str,
        func: Callable[[], Awaitable],
        lead_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._scheduler = scheduler
        self.stream = stream
        self.job_id = f"{stream}_one_shot"
        self._func = func
        self.lead = timedelta(seconds=lead_seconds)
        self._clock = clock
        self._run_at: Optional[datetime] = None

    @property
    def pending(self) -> bool:
        return self._scheduler.get_job(self.job_id) is not None

    @property
    def run_at(self) -> Optional[datetime]:
        return self._run_at if self.pending else None

    def arm(self, end_time: datetime) -> Optional[datetime]:
        """Schedule the one-shot for a war ending at `end_time`. Returns the fire time, if any."""
        run_at = compute_one_shot_time(end_time, self._clock(), self.lead)
        if run_at is None:
            logger.info(f"[ONE_SHOT] {self.stream}: war already ended at {end_time}, nothing to arm")
            self.cancel()
            return None

        if self.pending and self._run_at == run_at:
            return run_at

        self.cancel()
        self._scheduler.add_job(
            self._func,
            trigger=DateTrigger(run_date=run_at, timezone=timezone.utc),
            id=self.job_id,
            name=f"One-shot {self.stream} collection near war end",
            replace_existing=True,
            misfire_grace_time=int(self.lead.total_seconds()) * 5 or None,
        )
        self._run_at = run_at
        set_one_shot_pending(self.stream, True)
        logger.info(f"[ONE_SHOT] {self.stream}: armed for {run_at.isoformat()} (war ends {end_time.isoformat()})")
        return run_at

    def cancel(self) -> bool:
        """Cancel the pending one-shot. Returns True if one was pending."""
        self._run_at = None
        set_one_shot_pending(self.stream, False)
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            return False
        logger.info(f"[ONE_SHOT] {self.stream}: cancelled")
        return True


class CollectionScheduler:
    """Drives the collection pipeline on fixed sweeps plus per-stream one-shot timers."""

    def __init__(
        self,
        pipeline: CollectionPipeline,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = get_settings()
        self.pipeline = pipeline
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._clock = clock

        lead = self.settings.ONE_SHOT_LEAD_SECONDS
        self.standalone_timer = OneShotTimer(
            self.scheduler, STANDALONE, self._standalone_one_shot, lead, clock=clock
        )
        self.league_timer = OneShotTimer(self.scheduler, LEAGUE, self._league_one_shot, lead, clock=clock)

        self._locks = {STANDALONE: asyncio.Lock(), LEAGUE: asyncio.Lock()}
        self._last_runs: dict[str, dict] = {}

    # =========================================================================
    # TIMER TRANSITIONS
    # =========================================================================

    def apply_standalone_result(self, result: MatchCollectionResult) -> None:
        """Re-arm or cancel the standalone one-shot according to the observed lifecycle."""
        if result.lifecycle in (Lifecycle.PREPARATION, Lifecycle.IN_PROGRESS) and result.end_time:
            self.standalone_timer.arm(result.end_time)
        else:
            self.standalone_timer.cancel()

    def apply_league_result(self, result: LeagueCollectionResult) -> None:
        """Arm the league one-shot at the earliest in-flight round end, or cancel."""
        if result.lifecycle is not Lifecycle.NOT_IN_MATCH and result.next_end_time:
            self.league_timer.arm(result.next_end_time)
        else:
            self.league_timer.cancel()

    # =========================================================================
    # SWEEPS
    # =========================================================================

    async def _run(self, stream: str, job_name: str, trigger: str) -> dict:
        start_time = time.time()
        started_at = self._clock()

        async with self._locks[stream]:
            try:
                with sentry_job_context(job_name, trigger=trigger):
                    if stream == STANDALONE:
                        result = await self.pipeline.collect_current_match()
                        self.apply_standalone_result(result)
                    else:
                        result = await self.pipeline.collect_league_group()
                        self.apply_league_result(result)

                duration_ms = (time.time() - start_time) * 1000
                record_job_run(job=job_name, status="ok", duration_ms=duration_ms)
                outcome = {"status": "ok", **result.to_dict()}

            except ProviderForbiddenError as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(f"[{job_name.upper()}] Credential rejected, skipping tick: {e}")
                record_job_run(job=job_name, status="forbidden", duration_ms=duration_ms)
                outcome = {"status": "forbidden", "error": str(e)}

            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(f"[{job_name.upper()}] Failed: {e}", exc_info=True)
                record_job_run(job=job_name, status="error", duration_ms=duration_ms)
                outcome = {"status": "error", "error": str(e)}

        outcome.update(
            {
                "job": job_name,
                "trigger": trigger,
                "started_at": started_at.isoformat(),
                "duration_ms": round(duration_ms, 1),
            }
        )
        self._last_runs[stream] = outcome
        return outcome

    async def run_standalone_sweep(self, trigger: str = "interval") -> dict:
        return await self._run(STANDALONE, "war_sweep", trigger)

    async def run_league_sweep(self, trigger: str = "interval") -> dict:
        return await self._run(LEAGUE, "cwl_sweep", trigger)

    async def _standalone_one_shot(self) -> dict:
        logger.info("[ONE_SHOT] war: executing collection near war end")
        return await self._run(STANDALONE, "war_one_shot", "one_shot")

    async def _league_one_shot(self) -> dict:
        logger.info("[ONE_SHOT] cwl: executing collection near round end")
        return await self._run(LEAGUE, "cwl_one_shot", "one_shot")

    async def run_standalone_sweep_now(self) -> dict:
        """Operator trigger. Serialized with scheduled standalone sweeps."""
        return await self.run_standalone_sweep(trigger="manual")

    async def run_league_sweep_now(self) -> dict:
        """Operator trigger. Serialized with scheduled league sweeps."""
        return await self.run_league_sweep(trigger="manual")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _league_trigger(self):
        if self.settings.LEAGUE_SWEEP_MONTH_DAYS:
            every_hours = max(1, self.settings.LEAGUE_SWEEP_INTERVAL_MINUTES // 60)
            return CronTrigger(
                day=self.settings.LEAGUE_SWEEP_MONTH_DAYS,
                hour=f"*/{every_hours}",
                minute=0,
                timezone=timezone.utc,
            )
        return IntervalTrigger(minutes=self.settings.LEAGUE_SWEEP_INTERVAL_MINUTES, timezone=timezone.utc)

    def schedule_sweeps(self, run_at_startup: bool = True) -> None:
        """Register both periodic sweeps. With run_at_startup, each also fires shortly after start."""
        first_run = None
        if run_at_startup:
            first_run = self._clock() + timedelta(seconds=self.settings.STARTUP_SWEEP_DELAY_SECONDS)

        standalone_kwargs = {"next_run_time": first_run} if first_run else {}
        self.scheduler.add_job(
            self.run_standalone_sweep,
            trigger=IntervalTrigger(
                minutes=self.settings.STANDALONE_SWEEP_INTERVAL_MINUTES, timezone=timezone.utc
            ),
            id="war_sweep",
            name=f"War sweep (every {self.settings.STANDALONE_SWEEP_INTERVAL_MINUTES} min)",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **standalone_kwargs,
        )

        # Offset the league startup run so the two streams don't hit the provider together.
        league_kwargs = {"next_run_time": first_run + timedelta(seconds=10)} if first_run else {}
        self.scheduler.add_job(
            self.run_league_sweep,
            trigger=self._league_trigger(),
            id="cwl_sweep",
            name="CWL sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **league_kwargs,
        )

    def start(self, run_at_startup: bool = True) -> None:
        self.schedule_sweeps(run_at_startup=run_at_startup)
        self.scheduler.start()
        logger.info(
            f"Scheduler started:\n"
            f"  - War sweep: every {self.settings.STANDALONE_SWEEP_INTERVAL_MINUTES} min + one-shot near war end\n"
            f"  - CWL sweep: every {self.settings.LEAGUE_SWEEP_INTERVAL_MINUTES} min"
            + (f" on days {self.settings.LEAGUE_SWEEP_MONTH_DAYS}" if self.settings.LEAGUE_SWEEP_MONTH_DAYS else "")
            + f" + one-shot near round end\n"
            f"  - One-shot lead: {self.settings.ONE_SHOT_LEAD_SECONDS}s"
        )

    def shutdown(self) -> None:
        """Cancel pending one-shots, then stop APScheduler."""
        self.standalone_timer.cancel()
        self.league_timer.cancel()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def get_status(self) -> dict:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )

        def stream_status(stream: str, timer: OneShotTimer) -> dict:
            run_at = timer.run_at
            return {
                "last_run": self._last_runs.get(stream),
                "one_shot_pending": timer.pending,
                "one_shot_run_at": run_at.isoformat() if run_at else None,
            }

        return {
            "running": self.scheduler.running,
            "jobs": jobs,
            "wars": stream_status(STANDALONE, self.standalone_timer),
            "league_wars": stream_status(LEAGUE, self.league_timer),
        }


# =============================================================================
# PROCESS-WIDE INSTANCE
# =============================================================================

# Flag to prevent multiple scheduler instances (e.g., with --reload)
_scheduler_started = False
_collection_scheduler: Optional[CollectionScheduler] = None


def get_collection_scheduler() -> Optional[CollectionScheduler]:
    return _collection_scheduler


def start_scheduler(collection_scheduler: CollectionScheduler) -> None:
    """
    Start the background scheduler.

    Uses a module-level flag to prevent duplicate scheduler instances.
    """
    global _scheduler_started, _collection_scheduler

    if _scheduler_started:
        logger.warning("Scheduler already started, skipping duplicate initialization")
        return

    collection_scheduler.start()
    _collection_scheduler = collection_scheduler
    _scheduler_started = True


def stop_scheduler() -> None:
    """Stop the background scheduler, cancelling pending one-shots first."""
    global _scheduler_started, _collection_scheduler
    if _collection_scheduler is not None:
        _collection_scheduler.shutdown()
    _collection_scheduler = None
    _scheduler_started = False

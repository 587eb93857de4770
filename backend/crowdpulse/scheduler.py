"""Prediction update scheduler using APScheduler."""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field

from crowdpulse.config import SchedulerConfig
from crowdpulse.engine import (
    DEFAULT_ALIAS_RULES,
    DEFAULT_SOURCE,
    AliasRules,
    is_active,
    overlaps_local_day,
    utc_now,
)
from crowdpulse.models import Event
from crowdpulse.pipeline import PipelineOutcome, PredictionProvider, run_event_pipeline
from crowdpulse.storage import EventRepository

logger = logging.getLogger(__name__)

JOB_ID = "prediction-update"


class SchedulerConfigError(ValueError):
    """Cadence, timezone or lead time cannot be used to schedule ticks."""

    pass


class TickResult(BaseModel):
    """Aggregate outcome of one tick."""

    started_at: datetime
    finished_at: datetime | None = None
    duration_seconds: float = 0.0
    candidates: int = 0
    live: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_in_flight: int = 0
    outcomes: list[PipelineOutcome] = Field(default_factory=list)
    error: str | None = None


class SchedulerStatus(BaseModel):
    enabled: bool
    running: bool
    tick_running: bool
    cadence: str
    timezone: str
    lead_time_minutes: int
    last_tick_time: datetime | None = None
    next_run_time: datetime | None = None
    last_tick: TickResult | None = None


def build_trigger(config: SchedulerConfig) -> CronTrigger:
    """Validate cadence, timezone and lead time, returning the cron trigger."""
    try:
        tz = ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise SchedulerConfigError(f"Unknown timezone: {config.timezone!r}") from e

    if config.lead_time_minutes < 0:
        raise SchedulerConfigError(
            f"Lead time must not be negative: {config.lead_time_minutes}"
        )

    try:
        return CronTrigger.from_crontab(config.cadence, timezone=tz)
    except ValueError as e:
        raise SchedulerConfigError(f"Invalid cadence {config.cadence!r}: {e}") from e


class PredictionScheduler:
    """Runs the prediction update for every live event on a cron cadence.

    Each tick lists events once, keeps those inside their activation window,
    and runs one independent pipeline per event concurrently. A failing
    pipeline never affects its siblings or the tick. Events whose pipeline is
    still running from an earlier tick are skipped.

    ``start`` needs a running asyncio event loop.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        provider: PredictionProvider,
        repository: EventRepository,
        *,
        alias_rules: AliasRules = DEFAULT_ALIAS_RULES,
        source: str = DEFAULT_SOURCE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._trigger = build_trigger(config)
        self.config = config
        self.provider = provider
        self.repository = repository
        self.alias_rules = alias_rules
        self.source = source
        self._clock = clock

        self._scheduler: AsyncIOScheduler | None = None
        self._in_flight: set[str] = set()
        # Monotonic counter of finished pipelines and the value at each event's last finish
        self._finish_seq = 0
        self._finished_at: dict[str, int] = {}
        self._active_ticks = 0
        self.last_tick_time: datetime | None = None
        self.last_tick: TickResult | None = None

        logger.info(
            f"PredictionScheduler initialized (enabled={config.enabled}, "
            f"cadence='{config.cadence}', timezone={config.timezone})"
        )

    # ------------------------------------------------------------------
    # Trigger lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def tick_running(self) -> bool:
        return self._active_ticks > 0

    def start(self) -> bool:
        """Start the recurring trigger. Returns False if disabled or already running."""
        if not self.config.enabled:
            logger.info("Prediction scheduler is disabled by configuration")
            return False

        if self.running:
            logger.warning("Prediction scheduler is already running")
            return False

        scheduler = AsyncIOScheduler(
            timezone=self._trigger.timezone,
            event_loop=asyncio.get_running_loop(),
        )
        scheduler.add_job(
            self.run_tick,
            self._trigger,
            id=JOB_ID,
            name="Prediction update for ongoing events",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(f"✓ Prediction scheduler started (cadence='{self.config.cadence}')")
        return True

    def stop(self) -> bool:
        """Stop the recurring trigger. Returns False if it was not running."""
        if self._scheduler is None:
            logger.info("No prediction scheduler to stop")
            return False

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("✓ Prediction scheduler stopped")
        return True

    def restart(self, config: SchedulerConfig | None = None) -> bool:
        """Stop, adopt ``config`` if given, and start again."""
        logger.info("Restarting prediction scheduler")
        trigger = build_trigger(config) if config is not None else None

        self.stop()
        if config is not None:
            self.config = config
            self._trigger = trigger
        return self.start()

    def next_run_time(self) -> datetime | None:
        if not self.running:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            enabled=self.config.enabled,
            running=self.running,
            tick_running=self.tick_running,
            cadence=self.config.cadence,
            timezone=self.config.timezone,
            lead_time_minutes=self.config.lead_time_minutes,
            last_tick_time=self.last_tick_time,
            next_run_time=self.next_run_time(),
            last_tick=self.last_tick,
        )

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def select_live_events(self, events: list[Event], now: datetime) -> list[Event]:
        """Events with a forecast whose activation window contains ``now``."""
        lead_time = timedelta(minutes=self.config.lead_time_minutes)
        tz = ZoneInfo(self.config.timezone)
        live: list[Event] = []

        for event in events:
            if event.forecast is None:
                logger.debug(f"Event {event.id} has no forecast, not a candidate")
                continue
            if event.end_utc < event.start_utc:
                logger.warning(f"Event {event.id} ends before it starts, ignoring")
                continue
            if self.config.local_day_prefilter and not overlaps_local_day(
                now, event.start_utc, event.end_utc, tz, lead_time
            ):
                continue
            if is_active(now, event.start_utc, event.end_utc, lead_time):
                live.append(event)

        return live

    async def _run_pipeline(
        self,
        event: Event,
        now: datetime,
        semaphore: asyncio.Semaphore | None,
    ) -> PipelineOutcome:
        kwargs = dict(
            provider=self.provider,
            repository=self.repository,
            tick_time=now,
            rules=self.alias_rules,
            source=self.source,
            dedup_bucket_seconds=self.config.dedup_bucket_seconds,
        )
        try:
            if semaphore is None:
                return await run_event_pipeline(event, **kwargs)
            async with semaphore:
                return await run_event_pipeline(event, **kwargs)
        finally:
            self._release(event.id)

    def _release(self, event_id: str) -> None:
        if event_id in self._in_flight:
            self._in_flight.discard(event_id)
            self._finish_seq += 1
            self._finished_at[event_id] = self._finish_seq

    def _listed_stale(self, event_id: str, listed_after: int) -> bool:
        """True if the event's pipeline finished after the listing began."""
        return self._finished_at.get(event_id, 0) > listed_after

    async def run_tick(self, now: datetime | None = None) -> TickResult:
        """Run one prediction update across all live events."""
        now = now or self._clock()
        started = time.monotonic()
        self.last_tick_time = now
        self._active_ticks += 1
        result = TickResult(started_at=now)

        logger.info("Starting prediction update")
        try:
            listed_after = self._finish_seq
            try:
                events = await self.repository.list_events()
            except Exception as e:
                logger.error(f"Error listing events for prediction update: {e}")
                result.error = str(e)
                return result

            result.candidates = len(events)
            live = self.select_live_events(events, now)
            result.live = len(live)

            if not live:
                logger.info("No ongoing events found for prediction update")
                return result

            runnable: list[Event] = []
            for event in live:
                if event.id in self._in_flight:
                    logger.warning(
                        f"Prediction update for event {event.id} still in flight, skipping"
                    )
                    result.skipped_in_flight += 1
                    continue
                if self._listed_stale(event.id, listed_after):
                    # Listed before a sibling tick persisted; merging would drop its readings
                    logger.warning(
                        f"Series for event {event.id} changed while listing, skipping"
                    )
                    result.skipped_in_flight += 1
                    continue
                self._in_flight.add(event.id)
                runnable.append(event)

            logger.info(
                f"Found {len(runnable)} ongoing events for prediction update: "
                f"{[event.id for event in runnable]}"
            )

            limit = self.config.max_concurrency
            semaphore = asyncio.Semaphore(limit) if limit else None
            try:
                settled = await asyncio.gather(
                    *(self._run_pipeline(event, now, semaphore) for event in runnable),
                    return_exceptions=True,
                )
            finally:
                for event in runnable:
                    self._release(event.id)

            for event, outcome in zip(runnable, settled):
                if isinstance(outcome, BaseException):
                    logger.error(f"Pipeline for event {event.id} aborted: {outcome!r}")
                    outcome = PipelineOutcome(
                        event_id=event.id,
                        success=False,
                        failure="unexpected",
                        error=repr(outcome),
                    )
                result.outcomes.append(outcome)
                if outcome.success:
                    result.succeeded += 1
                else:
                    result.failed += 1

            return result

        finally:
            self._active_ticks -= 1
            result.duration_seconds = time.monotonic() - started
            result.finished_at = now + timedelta(seconds=result.duration_seconds)
            self.last_tick = result
            logger.info(
                f"Prediction update completed: live={result.live} "
                f"succeeded={result.succeeded} failed={result.failed} "
                f"skipped={result.skipped_in_flight} ({result.duration_seconds:.2f}s)"
            )

    async def trigger_now(self) -> TickResult:
        """Manually trigger a prediction update outside the cadence."""
        logger.info("Manually triggering prediction update")
        return await self.run_tick()

"""Scheduler running mappings on their cron schedules.

This module provides:
- parse_schedule: Cron expression validation
- SyncScheduler: Cron triggers per mapping with single-flight runs
"""

from __future__ import annotations

import contextlib
import logging
import threading
from concurrent.futures import Future
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from framesync.sync.types import MappingState, RunResult, ScheduledTask

if TYPE_CHECKING:
    from framesync.store.database import Database
    from framesync.store.models import SyncMapping
    from framesync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


def parse_schedule(expression: str, timezone: str | None = None) -> CronTrigger:
    """Build a trigger from a cron expression.

    Accepts standard 5-field crontab expressions and 6-field expressions
    with a leading seconds field.

    Args:
        expression: Cron expression.
        timezone: Time zone of the schedule (local time when None).

    Returns:
        The trigger.

    Raises:
        ValueError: If the expression is invalid.
    """
    fields = expression.split() if expression else []
    if len(fields) == 5:
        names = CRON_FIELDS
    elif len(fields) == 6:
        names = ("second", *CRON_FIELDS)
    else:
        raise ValueError(
            f"Invalid schedule {expression!r}: expected 5 or 6 fields, got {len(fields)}"
        )

    try:
        return CronTrigger(timezone=timezone, **dict(zip(names, fields, strict=True)))
    except ValueError as e:
        raise ValueError(f"Invalid schedule {expression!r}: {e}") from e


def _job_id(mapping_id: int) -> str:
    return f"sync_mapping_{mapping_id}"


class SyncScheduler:
    """Runs mappings on their schedules and on demand.

    At most one run per mapping is in flight: triggering a mapping that is
    already running returns the future of the current run. Runs of different
    mappings execute in parallel, optionally limited by ``max_concurrent_runs``.
    """

    def __init__(
        self,
        db: Database,
        engine: SyncEngine,
        *,
        max_concurrent_runs: int | None = None,
        timezone: str | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            db: Database with the mappings.
            engine: Engine executing runs.
            max_concurrent_runs: Limit on parallel runs across mappings (None = no limit).
            timezone: Time zone of cron schedules (local time when None).
        """
        if max_concurrent_runs is not None and max_concurrent_runs < 1:
            raise ValueError("max_concurrent_runs must be a positive integer")

        self._db = db
        self._engine = engine
        self._timezone = timezone
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()
        self._in_flight: dict[int, Future[RunResult]] = {}
        self._threads: dict[int, threading.Thread] = {}
        self._schedules: dict[int, str] = {}
        self._slots = (
            threading.BoundedSemaphore(max_concurrent_runs) if max_concurrent_runs else None
        )

    @property
    def running(self) -> bool:
        """Whether cron triggers are active."""
        return self._scheduler is not None

    # === Lifecycle ===

    def start(self) -> None:
        """Start the scheduler and register every active scheduled mapping."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler(timezone=self._timezone)
        self._scheduler.start()

        scheduled = 0
        for mapping in self._db.list_mappings(active_only=True):
            if mapping.schedule and self.schedule(mapping):
                scheduled += 1
        logger.info("Sync scheduler started (%d mappings scheduled)", scheduled)

    def stop(self, wait: bool = False) -> None:
        """Cancel all future triggers.

        Runs in flight are never interrupted.

        Args:
            wait: Block until runs in flight have finished.
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            with self._lock:
                self._schedules.clear()
            logger.info("Sync scheduler stopped")

        if wait:
            with self._lock:
                threads = list(self._threads.values())
            for thread in threads:
                thread.join()

    # === Schedules ===

    def schedule(self, mapping: SyncMapping) -> bool:
        """Register or replace the cron trigger of a mapping.

        Inactive mappings and mappings without a schedule are unscheduled.
        An invalid expression is logged and leaves the mapping unscheduled;
        it can still be run with ``trigger``.

        Returns:
            True if the mapping is now scheduled.

        Raises:
            RuntimeError: If the scheduler is not started.
        """
        if self._scheduler is None:
            raise RuntimeError("Scheduler is not started")

        if not mapping.is_active or not mapping.schedule:
            self.unschedule(mapping.id)
            return False

        try:
            trigger = parse_schedule(mapping.schedule, self._timezone)
        except ValueError as e:
            logger.error("Not scheduling mapping %d: %s", mapping.id, e)
            self.unschedule(mapping.id)
            return False

        self._scheduler.add_job(
            self._scheduled_run,
            trigger=trigger,
            args=[mapping.id],
            id=_job_id(mapping.id),
            name=f"Sync mapping {mapping.id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        with self._lock:
            self._schedules[mapping.id] = mapping.schedule
        logger.info("Scheduled mapping %d (%s)", mapping.id, mapping.schedule)
        return True

    def unschedule(self, mapping_id: int) -> bool:
        """Remove the cron trigger of a mapping; a run in flight continues.

        Returns:
            True if a trigger was removed.
        """
        with self._lock:
            removed = self._schedules.pop(mapping_id, None) is not None
        if self._scheduler is not None:
            with contextlib.suppress(JobLookupError):
                self._scheduler.remove_job(_job_id(mapping_id))
        if removed:
            logger.info("Unscheduled mapping %d", mapping_id)
        return removed

    def delete_mapping(self, mapping_id: int) -> bool:
        """Unschedule a mapping and delete it with its ledger rows."""
        self.unschedule(mapping_id)
        return self._db.delete_mapping(mapping_id)

    def get_scheduled_tasks(self) -> list[ScheduledTask]:
        """Mappings with a registered trigger, by mapping id."""
        with self._lock:
            schedules = sorted(self._schedules.items())

        tasks = []
        for mapping_id, expression in schedules:
            job = self._scheduler.get_job(_job_id(mapping_id)) if self._scheduler else None
            tasks.append(
                ScheduledTask(
                    mapping_id=mapping_id,
                    schedule=expression,
                    next_run_at=job.next_run_time if job else None,
                )
            )
        return tasks

    def state(self, mapping_id: int) -> MappingState:
        """Scheduling state of a mapping."""
        with self._lock:
            if mapping_id in self._in_flight:
                return MappingState.RUNNING
            if mapping_id in self._schedules:
                return MappingState.SCHEDULED
        return MappingState.UNSCHEDULED

    def is_running(self, mapping_id: int) -> bool:
        """Whether a run of the mapping is in flight."""
        with self._lock:
            return mapping_id in self._in_flight

    # === Runs ===

    def trigger(self, mapping_id: int) -> Future[RunResult]:
        """Start a run of a mapping unless one is already in flight.

        Returns:
            Future of the run's result; the future of the current run if the
            mapping is already running.
        """
        with self._lock:
            future = self._in_flight.get(mapping_id)
            if future is not None:
                logger.info("Mapping %d is already running, joining the current run", mapping_id)
                return future

            future = Future()
            thread = threading.Thread(
                target=self._run,
                args=(mapping_id, future),
                name=f"framesync-run-{mapping_id}",
                daemon=True,
            )
            self._in_flight[mapping_id] = future
            self._threads[mapping_id] = thread
            thread.start()
            return future

    def run_now(self, mapping_id: int, timeout: float | None = None) -> RunResult:
        """Trigger a mapping and wait for the result.

        Raises:
            TimeoutError: If the run does not finish within ``timeout``.
        """
        return self.trigger(mapping_id).result(timeout=timeout)

    def _run(self, mapping_id: int, future: Future[RunResult]) -> None:
        """Thread body of one run."""
        if not future.set_running_or_notify_cancel():
            self._finish(mapping_id)
            return

        if self._slots is not None:
            self._slots.acquire()
        try:
            result = self._engine.run(mapping_id)
        except Exception as e:
            logger.exception("Sync of mapping %d failed", mapping_id)
            self._finish(mapping_id)
            future.set_exception(e)
            return
        finally:
            if self._slots is not None:
                self._slots.release()

        # Leave the in-flight map before waking waiters so they can trigger again
        self._finish(mapping_id)
        future.set_result(result)

    def _finish(self, mapping_id: int) -> None:
        with self._lock:
            self._in_flight.pop(mapping_id, None)
            self._threads.pop(mapping_id, None)

    def _scheduled_run(self, mapping_id: int) -> None:
        """Job function for a cron trigger."""
        logger.info("Scheduled sync of mapping %d", mapping_id)
        try:
            self.trigger(mapping_id).add_done_callback(self._log_outcome)
        except Exception:
            logger.exception("Error while triggering scheduled sync of mapping %d", mapping_id)

    @staticmethod
    def _log_outcome(future: Future[RunResult]) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        result = future.result()
        if not result.success:
            logger.warning(
                "Scheduled sync of mapping %d finished with %d errors",
                result.mapping_id,
                len(result.errors),
            )

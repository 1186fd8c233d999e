"""Tests for the sync scheduler."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from concurrent.futures import Future

import pytest
from apscheduler.triggers.cron import CronTrigger

from framesync.core.types import SourceType
from framesync.store.database import Database
from framesync.sync.scheduler import SyncScheduler, parse_schedule
from framesync.sync.types import MappingState, RunResult


class BlockingEngine:
    """Engine stand-in whose runs wait until released."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.started: dict[int, threading.Event] = {}
        self.calls: list[int] = []
        self._lock = threading.Lock()

    def started_event(self, mapping_id: int) -> threading.Event:
        with self._lock:
            return self.started.setdefault(mapping_id, threading.Event())

    def run(self, mapping_id: int) -> RunResult:
        with self._lock:
            self.calls.append(mapping_id)
        self.started_event(mapping_id).set()
        self.release.wait(timeout=5)
        return RunResult(mapping_id=mapping_id, success=True)


@pytest.fixture
def engine() -> BlockingEngine:
    return BlockingEngine()


@pytest.fixture
def scheduler(db: Database, engine: BlockingEngine) -> Iterator[SyncScheduler]:
    """Create a scheduler; released and stopped after the test."""
    scheduler = SyncScheduler(db, engine)
    yield scheduler
    engine.release.set()
    scheduler.stop(wait=True)


@pytest.fixture
def make_mapping(db: Database):
    """Factory for mappings, each with its own source."""
    device = db.create_device("Kitchen", "ABC123")

    def _make(schedule: str | None = None, is_active: bool = True):
        source = db.create_source(f"Photos {schedule}", SourceType.LOCAL_FOLDER, {"folder_path": "/p"})
        mapping = db.create_mapping(source.id, device.id, schedule=schedule)
        if not is_active:
            mapping = db.update_mapping(mapping.id, is_active=False)
        return mapping

    return _make


class TestParseSchedule:
    """Tests for parse_schedule."""

    def test_five_fields(self) -> None:
        """Should accept standard crontab expressions."""
        assert isinstance(parse_schedule("*/15 * * * *"), CronTrigger)

    def test_six_fields_with_seconds(self) -> None:
        """Should accept a leading seconds field."""
        trigger = parse_schedule("30 0 3 * * mon-fri", timezone="UTC")
        assert str(trigger.timezone) == "UTC"

    @pytest.mark.parametrize("expression", ["", "* * *", "every hour", "61 * * * *", "* * * * * * *"])
    def test_invalid(self, expression: str) -> None:
        """Should raise ValueError for invalid expressions."""
        with pytest.raises(ValueError, match="Invalid schedule"):
            parse_schedule(expression)


class TestSchedules:
    """Tests for cron registration."""

    def test_schedule_requires_start(self, scheduler: SyncScheduler, make_mapping) -> None:
        """Scheduling before start should raise RuntimeError."""
        with pytest.raises(RuntimeError):
            scheduler.schedule(make_mapping("0 * * * *"))

    def test_start_registers_active_scheduled_mappings(self, scheduler: SyncScheduler, make_mapping) -> None:
        """Only active mappings with a valid schedule should be registered."""
        hourly = make_mapping("0 * * * *")
        make_mapping(None)
        make_mapping("0 3 * * *", is_active=False)
        broken = make_mapping("not a cron")

        scheduler.start()

        tasks = scheduler.get_scheduled_tasks()
        assert [(t.mapping_id, t.schedule) for t in tasks] == [(hourly.id, "0 * * * *")]
        assert tasks[0].next_run_at is not None
        assert scheduler.state(hourly.id) is MappingState.SCHEDULED
        assert scheduler.state(broken.id) is MappingState.UNSCHEDULED

    def test_start_is_idempotent(self, scheduler: SyncScheduler, make_mapping) -> None:
        """Starting twice should keep one registration per mapping."""
        make_mapping("0 * * * *")
        scheduler.start()
        scheduler.start()
        assert len(scheduler.get_scheduled_tasks()) == 1

    def test_invalid_schedule_is_rejected(
        self, scheduler: SyncScheduler, make_mapping, db: Database, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An invalid expression should be logged and replace the old trigger."""
        mapping = make_mapping("0 * * * *")
        scheduler.start()

        updated = db.update_mapping(mapping.id, schedule="every hour")
        with caplog.at_level(logging.ERROR, logger="framesync.sync.scheduler"):
            assert scheduler.schedule(updated) is False

        assert "Not scheduling mapping" in caplog.text
        assert scheduler.get_scheduled_tasks() == []

    def test_reschedule_replaces(self, scheduler: SyncScheduler, make_mapping, db: Database) -> None:
        """Scheduling again should replace the expression."""
        mapping = make_mapping("0 * * * *")
        scheduler.start()

        scheduler.schedule(db.update_mapping(mapping.id, schedule="*/5 * * * *"))

        assert [t.schedule for t in scheduler.get_scheduled_tasks()] == ["*/5 * * * *"]

    def test_deactivated_mapping_unscheduled(self, scheduler: SyncScheduler, make_mapping, db: Database) -> None:
        """Scheduling an inactive mapping should remove its trigger."""
        mapping = make_mapping("0 * * * *")
        scheduler.start()

        assert scheduler.schedule(db.update_mapping(mapping.id, is_active=False)) is False
        assert scheduler.state(mapping.id) is MappingState.UNSCHEDULED

    def test_unschedule(self, scheduler: SyncScheduler, make_mapping) -> None:
        """Unscheduling should report whether a trigger existed."""
        mapping = make_mapping("0 * * * *")
        scheduler.start()

        assert scheduler.unschedule(mapping.id) is True
        assert scheduler.unschedule(mapping.id) is False

    def test_delete_mapping(self, scheduler: SyncScheduler, make_mapping, db: Database) -> None:
        """Deleting should unschedule and remove the mapping."""
        mapping = make_mapping("0 * * * *")
        scheduler.start()

        assert scheduler.delete_mapping(mapping.id) is True
        assert scheduler.get_scheduled_tasks() == []
        assert db.get_mapping(mapping.id) is None

    def test_stop_clears_schedules(self, scheduler: SyncScheduler, make_mapping) -> None:
        """Stopping should cancel all triggers."""
        make_mapping("0 * * * *")
        scheduler.start()
        assert scheduler.running is True

        scheduler.stop()

        assert scheduler.running is False
        assert scheduler.get_scheduled_tasks() == []

    def test_invalid_pool_size(self, db: Database, engine: BlockingEngine) -> None:
        """A non-positive run limit should be rejected."""
        with pytest.raises(ValueError):
            SyncScheduler(db, engine, max_concurrent_runs=0)


class TestTrigger:
    """Tests for single-flight runs."""

    def test_single_flight(self, scheduler: SyncScheduler, engine: BlockingEngine) -> None:
        """A second trigger should join the run in flight."""
        first = scheduler.trigger(1)
        assert engine.started_event(1).wait(timeout=5)

        second = scheduler.trigger(1)

        assert second is first
        assert scheduler.state(1) is MappingState.RUNNING
        engine.release.set()
        assert first.result(timeout=5).success is True
        assert engine.calls == [1]

    def test_runs_again_after_completion(self, scheduler: SyncScheduler, engine: BlockingEngine) -> None:
        """A trigger after a finished run should start a new run."""
        engine.release.set()
        first = scheduler.trigger(1)
        first.result(timeout=5)

        second = scheduler.trigger(1)
        second.result(timeout=5)

        assert second is not first
        assert engine.calls == [1, 1]
        assert scheduler.is_running(1) is False

    def test_different_mappings_run_concurrently(self, db: Database) -> None:
        """Runs of different mappings should overlap."""
        barrier = threading.Barrier(2, timeout=5)

        class MeetingEngine:
            def run(self, mapping_id: int) -> RunResult:
                barrier.wait()
                return RunResult(mapping_id=mapping_id, success=True)

        scheduler = SyncScheduler(db, MeetingEngine())
        first = scheduler.trigger(1)
        second = scheduler.trigger(2)

        assert first.result(timeout=5).mapping_id == 1
        assert second.result(timeout=5).mapping_id == 2

    def test_pool_limit(self, db: Database, engine: BlockingEngine) -> None:
        """With one slot a second mapping should wait for the first."""
        scheduler = SyncScheduler(db, engine, max_concurrent_runs=1)
        try:
            first = scheduler.trigger(1)
            assert engine.started_event(1).wait(timeout=5)
            second = scheduler.trigger(2)

            assert not engine.started_event(2).wait(timeout=0.2)
            assert engine.calls == [1]

            engine.release.set()
            first.result(timeout=5)
            second.result(timeout=5)
            assert engine.calls == [1, 2]
        finally:
            engine.release.set()
            scheduler.stop(wait=True)

    def test_engine_exception_sets_future(self, db: Database) -> None:
        """An engine crash should surface on the future and clear the run."""

        class CrashingEngine:
            def run(self, mapping_id: int) -> RunResult:
                raise RuntimeError("boom")

        scheduler = SyncScheduler(db, CrashingEngine())
        future = scheduler.trigger(7)

        with pytest.raises(RuntimeError, match="boom"):
            future.result(timeout=5)
        assert scheduler.is_running(7) is False

    def test_run_now(self, scheduler: SyncScheduler, engine: BlockingEngine) -> None:
        """run_now should return the result of the run."""
        engine.release.set()
        assert scheduler.run_now(3, timeout=5).mapping_id == 3

    def test_unschedule_does_not_preempt(
        self, scheduler: SyncScheduler, engine: BlockingEngine, make_mapping
    ) -> None:
        """A run in flight should finish after its mapping is unscheduled."""
        mapping = make_mapping("0 * * * *")
        scheduler.start()
        future = scheduler.trigger(mapping.id)
        assert engine.started_event(mapping.id).wait(timeout=5)

        scheduler.unschedule(mapping.id)
        assert scheduler.state(mapping.id) is MappingState.RUNNING

        engine.release.set()
        assert future.result(timeout=5).success is True
        assert scheduler.state(mapping.id) is MappingState.UNSCHEDULED

    def test_stop_waits_for_runs(self, scheduler: SyncScheduler, engine: BlockingEngine) -> None:
        """stop(wait=True) should return once runs in flight finished."""
        future = scheduler.trigger(1)
        assert engine.started_event(1).wait(timeout=5)

        threading.Timer(0.1, engine.release.set).start()
        started = time.monotonic()
        scheduler.stop(wait=True)

        assert future.done()
        assert time.monotonic() - started < 5

    def test_scheduled_run_triggers(self, scheduler: SyncScheduler, engine: BlockingEngine) -> None:
        """A cron firing should start a run of the mapping."""
        scheduler._scheduled_run(4)
        assert engine.started_event(4).wait(timeout=5)
        assert scheduler.is_running(4) is True

    def test_failed_scheduled_run_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """A scheduled run with errors should be logged as a warning."""
        future: Future[RunResult] = Future()
        future.set_result(RunResult(mapping_id=4, success=False, errors=["a.jpg: boom"]))

        with caplog.at_level(logging.WARNING, logger="framesync.sync.scheduler"):
            SyncScheduler._log_outcome(future)

        assert "finished with 1 errors" in caplog.text

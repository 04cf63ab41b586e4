"""Pytest tests for timers, the refresh task and the training view."""

from __future__ import annotations

import random
import threading
import time
from unittest.mock import MagicMock

import pytest
from apscheduler.jobstores.base import JobLookupError
from conftest import FakeRemote, make_exercise

from booktrainer.authoring import AuthoringPipeline
from booktrainer.dataset import DatasetStore
from booktrainer.merger import ExerciseMerger
from booktrainer.oracle import START_FEN
from booktrainer.scheduling import RefreshTask, Timers
from booktrainer.sequencer import ExerciseSequencer, TrainingSettings
from booktrainer.view import TrainingView


def _mock_scheduler(running: bool = False) -> MagicMock:
    scheduler = MagicMock()
    scheduler.running = running
    return scheduler


class TestTimers:

    def test_call_later_adds_date_job(self):
        scheduler = _mock_scheduler()
        timers = Timers(scheduler)
        callback = MagicMock()

        timers.call_later("reply", 0.5, callback)

        scheduler.start.assert_called_once()
        args, kwargs = scheduler.add_job.call_args
        assert args == (callback, "date")
        assert kwargs["id"] == "reply"
        assert kwargs["replace_existing"] is True

    def test_every_adds_interval_job(self):
        scheduler = _mock_scheduler(running=True)
        Timers(scheduler).every("refresh", 30, MagicMock())

        scheduler.start.assert_not_called()
        _, kwargs = scheduler.add_job.call_args
        assert kwargs["seconds"] == 30
        assert kwargs["max_instances"] == 1

    def test_cancel_missing_job(self):
        scheduler = _mock_scheduler(running=True)
        scheduler.remove_job.side_effect = JobLookupError("reply")
        Timers(scheduler).cancel("reply")

    def test_shutdown_leaves_borrowed_scheduler(self):
        scheduler = _mock_scheduler(running=True)
        timers = Timers(scheduler)
        timers.call_later("a", 1, MagicMock())
        timers.every("b", 1, MagicMock())

        timers.shutdown()
        removed = {c.args[0] for c in scheduler.remove_job.call_args_list}
        assert removed == {"a", "b"}
        scheduler.shutdown.assert_not_called()

    @pytest.mark.e2e
    def test_real_scheduler_fires(self):
        timers = Timers()
        fired = threading.Event()
        try:
            timers.call_later("ping", 0.05, fired.set)
            assert fired.wait(5)
        finally:
            timers.shutdown()


class TestRefreshTask:

    def test_start_tick_stop(self, manual_timers):
        refresh = MagicMock()
        task = RefreshTask(manual_timers, refresh, 30)

        task.start()
        task.start()
        assert task.running
        assert manual_timers.intervals["refresh"][0] == 30

        manual_timers.tick("refresh")
        refresh.assert_called_once()

        task.stop()
        assert not task.running
        assert "refresh" not in manual_timers.intervals

    def test_zero_interval_never_starts(self, manual_timers):
        task = RefreshTask(manual_timers, MagicMock(), 0)
        task.start()
        assert not task.running

    def test_failing_refresh_is_logged(self, manual_timers, caplog):
        task = RefreshTask(manual_timers, MagicMock(side_effect=RuntimeError("boom")), 5)
        task.start()
        manual_timers.tick("refresh")
        assert "Exercise refresh failed" in caplog.text
        assert task.running


@pytest.fixture()
def view(manual_timers, stats_store, local_store):
    dataset = DatasetStore(
        entries=[
            {"id": "A1", "name": "Ruy", "pgn": "1. e4 e5 2. Nf3 Nc6 3. Bb5", "initialFen": START_FEN},
            {"id": "A2", "name": "QG", "pgn": "1. d4 d5 2. c4", "initialFen": START_FEN},
            {
                "id": "B1",
                "name": "Caro",
                "pgn": "1. e4 c6 2. d4 d5",
                "initialFen": START_FEN,
                "color": "black",
            },
        ]
    )
    merger = ExerciseMerger(dataset, local_store, FakeRemote(public=[]))
    training_view = TrainingView(
        merger, stats_store, timers=manual_timers, refresh_seconds=30, rng=random.Random(3)
    )
    with training_view:
        yield training_view


class TestTrainingView:

    def test_open_merges_and_refreshes(self, view, manual_timers):
        assert [e.id for e in view.exercises] == ["A1", "A2", "B1"]
        assert view.refreshing
        assert "refresh" in manual_timers.intervals

    def test_close_stops_everything(self, manual_timers, stats_store, local_store):
        merger = ExerciseMerger(DatasetStore(entries=[]), local_store)
        view = TrainingView(merger, stats_store, timers=manual_timers, refresh_seconds=30)
        with view:
            pass
        assert not view.refreshing
        assert manual_timers.shut_down

    def test_refresh_picks_up_new_local_exercise(self, view, local_store, manual_timers):
        AuthoringPipeline(local_store).submit("1. c4 e5")
        manual_timers.tick("refresh")
        assert len(view.exercises) == 4

    def test_browse_and_counts(self, view):
        assert [e.id for e in view.browse(color="black")] == ["B1"]
        assert view.color_counts() == {"white": 2, "black": 1}

    def test_load_unknown(self, view):
        with pytest.raises(ValueError, match="not found"):
            view.load("Z9")

    def test_completion_records_stats(self, view, manual_timers, stats_store):
        view.load("A2")
        assert view.attempt_move("d2", "d4")
        manual_timers.fire("-reply")
        assert view.attempt_move("c2", "c4")
        assert stats_store.get("A2") == {"total": 1, "perfect": 1}
        assert [e.id for e in view.browse(sort="played-desc")][0] == "A2"

    def test_imperfect_run_recorded(self, view, manual_timers, stats_store):
        view.load("A2")
        view.attempt_move("e2", "e4")
        view.attempt_move("d2", "d4")
        manual_timers.fire("-reply")
        view.attempt_move("c2", "c4")
        assert stats_store.get("A2") == {"total": 1, "perfect": 0}

    def test_random_mode_moves_on_after_miss(self, manual_timers, stats_store, local_store):
        dataset = DatasetStore(
            entries=[
                {"id": "A1", "pgn": "1. e4 e5 2. Nf3", "initialFen": START_FEN},
                {"id": "A2", "pgn": "1. d4 d5 2. c4", "initialFen": START_FEN},
            ]
        )
        view = TrainingView(
            ExerciseMerger(dataset, local_store),
            stats_store,
            timers=manual_timers,
            settings=TrainingSettings(random_mode=True),
        )
        with view:
            view.load("A1")
            assert view.attempt_move("d2", "d4") is False
            assert view.sequencer.exercise.id == "A2"

            assert view.attempt_move("e2", "e5") is False
            assert view.sequencer.exercise.id == "A2"

    def test_load_random_respects_color(self, view):
        for _ in range(5):
            assert view.load_random("black").id == "B1"


@pytest.mark.e2e
def test_real_timers_deliver_opponent_reply():
    timers = Timers()
    sequencer = ExerciseSequencer(timers, TrainingSettings(reply_delay=0.05, highlight_delay=0.05))
    try:
        sequencer.load_exercise(make_exercise(line="1. e4 e5 2. Nf3"))
        assert sequencer.attempt_move("e2", "e4")
        deadline = time.monotonic() + 5
        while sequencer.current_move_index < 2 and time.monotonic() < deadline:
            time.sleep(0.02)
        assert sequencer.current_move_index == 2
    finally:
        sequencer.close()
        timers.shutdown()

"""Training view: one open exercise list plus the session being played.

Owns the merged collection and keeps it fresh on an interval while
open, records stats when a line is finished, and picks the next
exercise in random mode.

Usage:
    with TrainingView.from_config(TrainerConfig.from_env()) as view:
        view.load("KIA1")
        view.attempt_move("g1", "f3")
"""

from __future__ import annotations

import logging
import random
import threading

from booktrainer import catalog
from booktrainer.config import TrainerConfig
from booktrainer.dataset import DatasetStore
from booktrainer.local_store import ExerciseStatsStore, LocalExerciseStore, LocalStorage
from booktrainer.merger import ExerciseMerger
from booktrainer.models import Exercise
from booktrainer.remote import RemoteExerciseClient
from booktrainer.scheduling import RefreshTask, Timers
from booktrainer.sequencer import ExerciseSequencer, TrainingSettings

logger = logging.getLogger(__name__)


class TrainingView:
    """Exercise list and active sequencer sharing one timer scheduler."""

    def __init__(
        self,
        merger: ExerciseMerger,
        stats: ExerciseStatsStore,
        timers: Timers | None = None,
        settings: TrainingSettings | None = None,
        refresh_seconds: float = 0,
        rng: random.Random | None = None,
    ) -> None:
        self._merger = merger
        self.stats = stats
        self._timers = timers or Timers()
        self._rng = rng
        self._lock = threading.Lock()
        self._exercises: list[Exercise] = []
        self._rejected = False
        self.sequencer = ExerciseSequencer(
            timers=self._timers, settings=settings, on_event=self._on_event
        )
        self._refresh_task = RefreshTask(self._timers, self.refresh, refresh_seconds)

    @classmethod
    def from_config(
        cls, config: TrainerConfig, settings: TrainingSettings | None = None
    ) -> TrainingView:
        storage = LocalStorage(config.local_storage_path)
        remote = RemoteExerciseClient(config.api_url, config.api_token)
        merger = ExerciseMerger(
            DatasetStore(config.dataset_path), LocalExerciseStore(storage), remote
        )
        return cls(
            merger,
            ExerciseStatsStore(storage),
            settings=settings,
            refresh_seconds=config.refresh_seconds,
        )

    # ── Lifecycle ───────────────────────────────────────────────────

    def open(self) -> TrainingView:
        self.refresh()
        self._refresh_task.start()
        return self

    def close(self) -> None:
        self._refresh_task.stop()
        self.sequencer.close()
        self._timers.shutdown()

    def __enter__(self) -> TrainingView:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def refreshing(self) -> bool:
        return self._refresh_task.running

    # ── Collection ──────────────────────────────────────────────────

    def refresh(self) -> list[Exercise]:
        """Re-run the merge and swap in the new collection."""
        exercises = self._merger.load_all()
        with self._lock:
            self._exercises = exercises
        return exercises

    @property
    def exercises(self) -> list[Exercise]:
        with self._lock:
            return list(self._exercises)

    def browse(self, query: str = "", color: str = "all", sort: str = "natural") -> list[Exercise]:
        return catalog.browse(self.exercises, query, color, sort, self.stats.all())

    def color_counts(self) -> dict[str, int]:
        return catalog.color_counts(self.exercises)

    # ── Session ─────────────────────────────────────────────────────

    def load(self, exercise_id: str) -> Exercise:
        """Load an exercise by id into the sequencer.

        Raises:
            ValueError: If no exercise has that id.
        """
        exercise = catalog.find(self.exercises, exercise_id)
        if exercise is None:
            raise ValueError(f"Exercise not found: {exercise_id}")
        self.sequencer.load_exercise(exercise)
        return exercise

    def load_random(self, color: str = "all") -> Exercise | None:
        current = self.sequencer.exercise
        pool = catalog.filter_by_color(self.exercises, color)
        exercise = catalog.pick_random(pool, current.id if current else None, self._rng)
        if exercise is not None:
            self.sequencer.load_exercise(exercise)
        return exercise

    def attempt_move(self, from_square: str, to_square: str, promotion: str | None = None) -> bool:
        """Forward an attempt; a miss in random mode moves on to another line."""
        self._rejected = False
        accepted = self.sequencer.attempt_move(from_square, to_square, promotion)
        if self._rejected and self.sequencer.settings.random_mode:
            self.load_random()
        return accepted

    def _on_event(self, event: str, payload: dict) -> None:
        if event == "rejected":
            self._rejected = True
        elif event == "completed":
            totals = self.stats.record(payload["exercise_id"], payload["perfect"])
            logger.info(
                "Finished %s with %d mistakes (%d/%d perfect)",
                payload["exercise_id"],
                len(payload["mistakes"]),
                totals["perfect"],
                totals["total"],
            )

"""Shared test fixtures with dual-mode support (manual vs real timers).

Usage:
    pytest tests/                  # Fast, timers fired by hand
    pytest tests/ --e2e            # Also run tests on the real scheduler

Fixtures:
    manual_timers      - Timers stand-in whose callbacks fire only when told.
    storage            - LocalStorage on a temporary JSON file.
    local_store        - LocalExerciseStore over that storage.
    stats_store        - ExerciseStatsStore over that storage.
    fake_remote        - In-memory remote exercise service.
    enable_validation  - Sets BOOK_TRAINER_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import os

import pytest

from booktrainer.local_store import ExerciseStatsStore, LocalExerciseStore, LocalStorage
from booktrainer.models import SOURCE_DATASET, Exercise, annotate
from booktrainer.notation import normalize
from booktrainer.oracle import START_FEN


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real scheduler tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run tests that wait on the real background scheduler.",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (waits on real timers)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_exercise(
    exercise_id: str = "T1",
    line: str = "1. e4 e5 2. Nf3 Nc6 3. Bb5 a6",
    color: str = "white",
    max_moves: int | None = None,
    initial_fen: str = START_FEN,
    name: str | None = None,
) -> Exercise:
    """Build an Exercise straight from notation."""
    return Exercise(
        id=exercise_id,
        name=name or exercise_id,
        initial_fen=initial_fen,
        analysis=annotate(normalize(line)),
        created_at="2024-01-01T00:00:00+00:00",
        max_moves=max_moves,
        color=color,
        source=SOURCE_DATASET,
        pgn=line,
    )


class ManualTimers:
    """Drop-in for booktrainer.scheduling.Timers that never fires on its own."""

    def __init__(self):
        self.jobs: dict[str, tuple[float, object]] = {}
        self.intervals: dict[str, tuple[float, object]] = {}
        self.shut_down = False

    def call_later(self, key, delay, callback):
        self.jobs[key] = (delay, callback)

    def every(self, key, seconds, callback):
        self.intervals[key] = (seconds, callback)

    def cancel(self, key):
        self.jobs.pop(key, None)
        self.intervals.pop(key, None)

    def cancel_all(self):
        self.jobs.clear()
        self.intervals.clear()

    def shutdown(self):
        self.cancel_all()
        self.shut_down = True

    def pending(self, suffix: str) -> bool:
        return any(key.endswith(suffix) for key in self.jobs)

    def fire(self, suffix: str) -> None:
        """Run and drop every one-shot job whose key ends with suffix."""
        for key in [k for k in self.jobs if k.endswith(suffix)]:
            _, callback = self.jobs.pop(key)
            callback()

    def tick(self, suffix: str) -> None:
        """Run interval jobs once, keeping them scheduled."""
        for key, (_, callback) in list(self.intervals.items()):
            if key.endswith(suffix):
                callback()


class FakeRemote:
    """In-memory stand-in for RemoteExerciseClient."""

    def __init__(self, authenticated=True, mine=None, public=None):
        self.enabled = True
        self.is_authenticated = authenticated
        self.mine = list(mine or [])
        self.public = list(public or [])
        self.created: list[dict] = []
        self.fail_create = False
        self._next_id = 100

    def create(self, exercise):
        if self.fail_create or not self.is_authenticated:
            return None
        self._next_id += 1
        stored = {**exercise, "id": self._next_id}
        self.created.append(stored)
        return stored

    def list_mine(self):
        return list(self.mine) if self.is_authenticated else []

    def list_public(self):
        return list(self.public)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def manual_timers():
    return ManualTimers()


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(tmp_path / "local_storage.json")


@pytest.fixture()
def local_store(storage):
    return LocalExerciseStore(storage)


@pytest.fixture()
def stats_store(storage):
    return ExerciseStatsStore(storage)


@pytest.fixture()
def fake_remote():
    return FakeRemote()


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set BOOK_TRAINER_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("BOOK_TRAINER_VALIDATE")
    os.environ["BOOK_TRAINER_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("BOOK_TRAINER_VALIDATE", None)
    else:
        os.environ["BOOK_TRAINER_VALIDATE"] = original

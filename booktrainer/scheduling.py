"""Delayed and periodic callbacks for a training view.

Wraps an APScheduler BackgroundScheduler so the sequencer can ask for
"run this in 0.5s" and the view can ask for "re-merge every 30s",
and both can be cancelled by key when the view goes away.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


class Timers:
    """Keyed one-shot and interval jobs on a background scheduler."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or BackgroundScheduler()
        self._keys: set[str] = set()

    def _ensure_started(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def call_later(self, key: str, delay: float, callback: Callable[[], None]) -> None:
        """Run callback once after delay seconds, replacing any job with that key."""
        self._ensure_started()
        self._scheduler.add_job(
            callback,
            "date",
            run_date=datetime.now(timezone.utc) + timedelta(seconds=delay),
            id=key,
            replace_existing=True,
        )
        self._keys.add(key)

    def every(self, key: str, seconds: float, callback: Callable[[], None]) -> None:
        """Run callback every `seconds` until cancelled."""
        self._ensure_started()
        self._scheduler.add_job(
            callback,
            "interval",
            seconds=seconds,
            id=key,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._keys.add(key)

    def cancel(self, key: str) -> None:
        self._keys.discard(key)
        try:
            self._scheduler.remove_job(key)
        except JobLookupError:
            pass

    def cancel_all(self) -> None:
        for key in list(self._keys):
            self.cancel(key)

    def shutdown(self) -> None:
        self.cancel_all()
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)


class RefreshTask:
    """Periodic re-run of a refresh callback, scoped to an open view."""

    def __init__(
        self,
        timers: Timers,
        refresh: Callable[[], None],
        interval_seconds: float,
        key: str = "refresh",
    ) -> None:
        self._timers = timers
        self._refresh = refresh
        self._interval = interval_seconds
        self._key = key
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _tick(self) -> None:
        try:
            self._refresh()
        except Exception:
            # a failed refresh must not kill the interval job
            logger.exception("Exercise refresh failed")

    def start(self) -> None:
        if self._running or self._interval <= 0:
            return
        self._timers.every(self._key, self._interval, self._tick)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self._timers.cancel(self._key)
        self._running = False

"""Bundled exercise dataset.

The dataset is a JSON array shipped with the package:
    [{"id": "KIA1", "name": "...", "pgn": "1. Nf3 ...",
      "initialFen": "...", "color": "white", "maxMoves": 20}, ...]

DatasetStore reads it once and hands out copies, so a merger can be
re-run on a refresh interval without touching disk again.
"""

import json
import logging
import os

from booktrainer.config import BUNDLED_DATASET

logger = logging.getLogger(__name__)


class DatasetStore:
    """Read-once cache of the bundled dataset entries."""

    def __init__(self, path=None, entries=None):
        self._path = str(path or BUNDLED_DATASET)
        self._entries = list(entries) if entries is not None else None

    def _load(self):
        """Load entries from JSON. Returns empty list if unavailable."""
        if not os.path.exists(self._path):
            logger.warning("Bundled dataset missing at %s", self._path)
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read bundled dataset %s: %s", self._path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Bundled dataset %s is not a JSON array", self._path)
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    @property
    def loaded(self):
        return self._entries is not None

    def entries(self):
        """Return the dataset entries in source order."""
        if self._entries is None:
            self._entries = self._load()
        return [dict(entry) for entry in self._entries]

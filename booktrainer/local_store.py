"""Device-local storage for authored exercises and exercise stats.

A single JSON object on disk plays the role of browser local storage:
each key holds one JSON value. Authored exercises live under
``customExercises`` as an array; per-exercise stats under
``exerciseStats``.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path

from booktrainer.models import MIRROR_MIRRORED, MIRROR_PENDING, LocalRecord

logger = logging.getLogger(__name__)

CUSTOM_EXERCISES_KEY = "customExercises"
EXERCISE_STATS_KEY = "exerciseStats"


class LocalStorage:
    """Key-value JSON file with atomic writes."""

    def __init__(self, path: str | Path) -> None:
        """Point the storage at a JSON file.

        The file is created on first write. If it is corrupted it is
        backed up as .bak and treated as empty.

        Args:
            path: Path to the JSON file.
        """
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("Local storage file must contain a JSON object")
            return data
        except (json.JSONDecodeError, ValueError):
            backup_path = self._path.with_suffix(".bak")
            shutil.copy2(self._path, backup_path)
            logger.warning("Corrupted local storage, backed up to %s", backup_path)
            return {}

    def get(self, key: str, default=None):
        return self._read_all().get(key, default)

    def set(self, key: str, value) -> None:
        """Write one key, keeping the others."""
        data = self._read_all()
        data[key] = value
        self.set_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self.set_all(data)

    def set_all(self, data: dict) -> None:
        """Replace the whole file atomically (temp file + os.replace)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, self._path)


class LocalExerciseStore:
    """Authored exercises kept under a single storage key."""

    def __init__(self, storage: LocalStorage, key: str = CUSTOM_EXERCISES_KEY) -> None:
        self._storage = storage
        self._key = key

    def _raw_records(self) -> list:
        value = self._storage.get(self._key, [])
        if not isinstance(value, list):
            logger.warning("Local key %s is not an array, ignoring it", self._key)
            return []
        return value

    def list_records(self) -> list[LocalRecord]:
        """Return every stored record, oldest first."""
        records = []
        for raw in self._raw_records():
            if isinstance(raw, dict):
                records.append(LocalRecord.from_dict(raw))
        return records

    def append(self, record: LocalRecord) -> LocalRecord:
        raw = self._raw_records()
        raw.append(record.to_dict())
        self._storage.set(self._key, raw)
        return record

    def get(self, record_id: str) -> LocalRecord:
        """Find a record by id.

        Raises:
            ValueError: If no record with that id exists.
        """
        for record in self.list_records():
            if record.id == record_id:
                return record
        raise ValueError(f"Local exercise not found: {record_id}")

    def mark_mirrored(self, record_id: str, backend_id: int) -> LocalRecord:
        """Second phase of mirroring: remember the remote-assigned id."""
        return self._update(record_id, backend_id=backend_id, mirror_state=MIRROR_MIRRORED)

    def mark_pending(self, record_id: str) -> LocalRecord:
        return self._update(record_id, mirror_state=MIRROR_PENDING)

    def pending(self) -> list[LocalRecord]:
        return [r for r in self.list_records() if r.mirror_state == MIRROR_PENDING]

    def delete(self, record_id: str) -> bool:
        raw = self._raw_records()
        kept = [r for r in raw if not (isinstance(r, dict) and r.get("id") == record_id)]
        if len(kept) == len(raw):
            return False
        self._storage.set(self._key, kept)
        return True

    def _update(self, record_id: str, **changes) -> LocalRecord:
        records = self.list_records()
        updated = None
        for i, record in enumerate(records):
            if record.id == record_id:
                for name, value in changes.items():
                    setattr(record, name, value)
                records[i] = updated = record
        if updated is None:
            raise ValueError(f"Local exercise not found: {record_id}")
        self._storage.set(self._key, [r.to_dict() for r in records])
        return updated


class ExerciseStatsStore:
    """Per-exercise play counters: {exercise_id: {total, perfect}}.

    Every call reads the storage file, so several stores on one file
    see each other's counts.
    """

    def __init__(self, storage: LocalStorage, key: str = EXERCISE_STATS_KEY) -> None:
        self._storage = storage
        self._key = key

    def _raw_stats(self) -> dict:
        value = self._storage.get(self._key, {})
        if not isinstance(value, dict):
            logger.warning("Local key %s is not an object, ignoring it", self._key)
            return {}
        return value

    @staticmethod
    def _counts(stats) -> dict:
        stats = stats if isinstance(stats, dict) else {}
        return {
            "total": int(stats.get("total", 0)),
            "perfect": int(stats.get("perfect", 0)),
        }

    def get(self, exercise_id: str) -> dict:
        return self._counts(self._raw_stats().get(exercise_id))

    def all(self) -> dict[str, dict]:
        return {
            exercise_id: self._counts(stats)
            for exercise_id, stats in self._raw_stats().items()
        }

    def record(self, exercise_id: str, perfect: bool) -> dict:
        """Count one finished run of an exercise."""
        stats = self._raw_stats()
        previous = self._counts(stats.get(exercise_id))
        updated = {
            "total": previous["total"] + 1,
            "perfect": previous["perfect"] + (1 if perfect else 0),
        }
        stats[exercise_id] = updated
        self._storage.set(self._key, stats)
        return updated

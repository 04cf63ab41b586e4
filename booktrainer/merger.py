"""Merge exercises from the bundled dataset, local storage and the
remote service into one de-duplicated, ordered collection.

Order is fixed: dataset entries (deduplicated among themselves by
dedup signature), then local records (appended as-is), then remote
records that are not already present either by remote id or by
exact line and color.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from booktrainer import oracle
from booktrainer.dataset import DatasetStore
from booktrainer.local_store import LocalExerciseStore
from booktrainer.models import (
    REMOTE_ID_PREFIX,
    SOURCE_DATASET,
    SOURCE_LOCAL,
    SOURCE_REMOTE,
    Exercise,
    LocalRecord,
    annotate,
)
from booktrainer.notation import dedup_signature, format_numbered, full_signature, normalize
from booktrainer.remote import RemoteExerciseClient

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _color(value) -> str:
    return "black" if str(value or "").lower() == "black" else "white"


def _max_moves(value) -> int | None:
    try:
        max_moves = int(value)
    except (TypeError, ValueError):
        return None
    return max_moves if max_moves > 0 else None


def _checked_fen(fen, exercise_id: str) -> str:
    if not oracle.is_valid_fen(fen):
        logger.warning(
            "Exercise %s has an invalid starting position, using the start position",
            exercise_id,
        )
        return oracle.START_FEN
    return fen


def _explicit_moves(analysis) -> list[str] | None:
    """Read an explicit move list given as a list or a JSON string."""
    if analysis is None or analysis == "":
        return None
    if isinstance(analysis, str):
        try:
            analysis = json.loads(analysis)
        except ValueError:
            return None
    if not isinstance(analysis, list):
        return None

    moves = []
    for item in analysis:
        if isinstance(item, str):
            moves.append(item)
        elif isinstance(item, dict) and item.get("move"):
            moves.append(str(item["move"]))
    return moves or None


def exercise_from_dataset(entry: dict) -> Exercise:
    exercise_id = str(entry.get("id", ""))
    pgn = str(entry.get("pgn") or "")
    moves = normalize(pgn)
    return Exercise(
        id=exercise_id,
        name=str(entry.get("name") or exercise_id),
        initial_fen=_checked_fen(entry.get("initialFen"), exercise_id),
        analysis=annotate(moves),
        created_at=_now_iso(),
        max_moves=_max_moves(entry.get("maxMoves")),
        color=_color(entry.get("color")),
        source=SOURCE_DATASET,
        pgn=format_numbered(moves),
    )


def exercise_from_local(record: LocalRecord) -> Exercise:
    moves = normalize(record.pgn)
    return Exercise(
        id=record.id,
        name=record.name or record.id,
        initial_fen=_checked_fen(record.initial_fen, record.id),
        analysis=annotate(moves),
        created_at=record.created_at or _now_iso(),
        color=_color(record.color),
        source=SOURCE_LOCAL,
        pgn=format_numbered(moves),
    )


def exercise_from_remote(item: dict) -> Exercise:
    exercise_id = f"{REMOTE_ID_PREFIX}{item.get('id')}"
    moves = _explicit_moves(item.get("analysis"))
    if moves is None:
        moves = normalize(str(item.get("pgn") or ""))
    return Exercise(
        id=exercise_id,
        name=str(item.get("name") or exercise_id),
        initial_fen=_checked_fen(item.get("initialFen"), exercise_id),
        analysis=annotate(moves),
        created_at=str(item.get("createdAt") or _now_iso()),
        color=_color(item.get("color")),
        source=SOURCE_REMOTE,
        pgn=format_numbered(moves),
    )


class ExerciseMerger:
    """Builds the trainee-facing exercise collection from all sources."""

    def __init__(
        self,
        dataset: DatasetStore,
        local_store: LocalExerciseStore | None = None,
        remote: RemoteExerciseClient | None = None,
    ) -> None:
        self._dataset = dataset
        self._local_store = local_store
        self._remote = remote

    def load_dataset(self) -> list[Exercise]:
        """Dataset entries in source order, first of each signature kept."""
        seen: set[str] = set()
        exercises = []
        for entry in self._dataset.entries():
            signature = dedup_signature(str(entry.get("pgn") or ""), _color(entry.get("color")))
            if signature in seen:
                logger.debug("Dropping duplicate dataset entry %s", entry.get("id"))
                continue
            seen.add(signature)
            exercises.append(exercise_from_dataset(entry))
        return exercises

    def load_local(self) -> tuple[list[Exercise], list[LocalRecord]]:
        if self._local_store is None:
            return [], []
        records = self._local_store.list_records()
        return [exercise_from_local(r) for r in records], records

    def load_remote(self) -> list[dict]:
        """Remote records, the trainee's own first, then public ones."""
        if self._remote is None or not self._remote.enabled:
            return []
        items = []
        if self._remote.is_authenticated:
            items.extend(self._remote.list_mine())
        items.extend(self._remote.list_public())
        return items

    def load_all(self) -> list[Exercise]:
        """Return the merged collection.

        Returns:
            Exercises from every source with duplicates removed.
        """
        exercises = self.load_dataset()

        local_exercises, records = self.load_local()
        exercises.extend(local_exercises)

        known_remote_ids = {r.backend_id for r in records if r.backend_id is not None}
        known_lines = {full_signature(e.moves, e.color) for e in exercises}

        added = 0
        for item in self.load_remote():
            remote_id = item.get("id")
            if remote_id is None or remote_id in known_remote_ids:
                continue
            exercise = exercise_from_remote(item)
            signature = full_signature(exercise.moves, exercise.color)
            if signature in known_lines:
                continue
            known_remote_ids.add(remote_id)
            known_lines.add(signature)
            exercises.append(exercise)
            added += 1

        logger.debug(
            "Merged %d exercises (%d local, %d remote)",
            len(exercises),
            len(local_exercises),
            added,
        )
        return exercises

"""Turn pasted notation into a stored, playable exercise.

Usage:
    pipeline = AuthoringPipeline(LocalExerciseStore(storage), remote)
    exercise = pipeline.submit("1. e4 e5 2. Nf3 Nc6 3. Bb5", color="white")
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from booktrainer import oracle
from booktrainer.local_store import LocalExerciseStore
from booktrainer.merger import exercise_from_local
from booktrainer.models import (
    LOCAL_ID_PREFIX,
    MIRROR_LOCAL,
    MIRROR_PENDING,
    Exercise,
    LocalRecord,
)
from booktrainer.notation import format_numbered, starts_with_move_number
from booktrainer.remote import RemoteExerciseClient

logger = logging.getLogger(__name__)

# Number of plies quoted in a synthesized exercise name
NAME_PLIES = 6


class AuthoringError(ValueError):
    """Submitted notation cannot become an exercise."""


class NotationFormatError(AuthoringError):
    """Notation does not start at move one."""


class InvalidNotationError(AuthoringError):
    """Notation could not be parsed into legal moves."""


def synthesize_name(moves: list[str], color: str) -> str:
    """'White: 1. e4 e5 2. Nf3 Nc6 3. Bb5 a6' from the opening plies."""
    label = "Black" if color == "black" else "White"
    name = f"{label}: {format_numbered(moves[:NAME_PLIES])}"
    if len(moves) > NAME_PLIES:
        name += " ..."
    return name


class AuthoringPipeline:
    """Validates authored lines, stores them locally, mirrors them remotely."""

    def __init__(
        self,
        local_store: LocalExerciseStore,
        remote: RemoteExerciseClient | None = None,
    ) -> None:
        self._local_store = local_store
        self._remote = remote

    @property
    def mirrors(self) -> bool:
        return self._remote is not None and self._remote.is_authenticated

    def submit(
        self,
        raw: str,
        name: str | None = None,
        color: str = "white",
        make_public: bool = False,
    ) -> Exercise:
        """Validate and store a new exercise.

        Args:
            raw: Pasted notation, starting with '1.'.
            name: Display name; synthesized from the first moves if empty.
            color: Side the trainee plays, 'white' or 'black'.
            make_public: Ask the remote service to list it publicly.

        Returns:
            The stored exercise, ready for the sequencer.

        Raises:
            NotationFormatError: If the text does not begin with '1.'.
            InvalidNotationError: If the moves are unreadable or illegal.
        """
        text = (raw or "").strip()
        if not starts_with_move_number(text):
            raise NotationFormatError("Notation must start with '1.'")

        try:
            board = oracle.load_notation_sequence(text)
        except ValueError as exc:
            raise InvalidNotationError(str(exc)) from exc

        moves = oracle.san_history(board)
        if not moves:
            raise InvalidNotationError("No moves found in notation")

        color = "black" if color == "black" else "white"
        record = LocalRecord(
            id=f"{LOCAL_ID_PREFIX}{uuid.uuid4()}",
            name=(name or "").strip() or synthesize_name(moves, color),
            initial_fen=oracle.START_FEN,
            pgn=format_numbered(moves),
            color=color,
            created_at=datetime.now(timezone.utc).isoformat(),
            is_public=make_public,
            mirror_state=MIRROR_PENDING if self.mirrors else MIRROR_LOCAL,
        )
        self._local_store.append(record)
        logger.info("Stored exercise %s (%d plies)", record.id, len(moves))

        if self.mirrors:
            record = self._mirror(record)
        return exercise_from_local(record)

    def promote_history(
        self,
        moves: list[str],
        name: str | None = None,
        color: str = "white",
        make_public: bool = False,
    ) -> Exercise:
        """Save a played or recorded SAN line as a new exercise."""
        return self.submit(format_numbered(moves), name=name, color=color, make_public=make_public)

    def retry_pending(self) -> list[LocalRecord]:
        """Re-send records whose remote mirror never completed.

        Returns:
            Records that are now mirrored.
        """
        if not self.mirrors:
            return []
        mirrored = []
        for record in self._local_store.pending():
            updated = self._mirror(record)
            if updated.backend_id is not None:
                mirrored.append(updated)
        return mirrored

    def _mirror(self, record: LocalRecord) -> LocalRecord:
        created = self._remote.create(
            {
                "name": record.name,
                "initialFen": record.initial_fen,
                "pgn": record.pgn,
                "color": record.color,
                "isPublic": record.is_public,
            }
        )
        if created is None:
            logger.info("Exercise %s stays pending, remote mirror failed", record.id)
            return record
        return self._local_store.mark_mirrored(record.id, created["id"])

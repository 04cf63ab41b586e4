"""Shared data models for the Book Move Trainer.

Exercise and MoveAnnotation are the shared contract between the
merger, the sequencer, the authoring pipeline and the MCP server.
LocalRecord is the on-disk shape of an authored exercise.
"""

from __future__ import annotations

from dataclasses import dataclass, field

SOURCE_DATASET = "dataset"
SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"

LOCAL_ID_PREFIX = "custom-"
REMOTE_ID_PREFIX = "backend-"

# Two-phase mirror states of a local record
MIRROR_LOCAL = "local"
MIRROR_PENDING = "pending"
MIRROR_MIRRORED = "mirrored"


@dataclass(frozen=True)
class MoveAnnotation:
    """One ply of an exercise line."""

    move: str
    evaluation: float = 0.0
    is_critical: bool = False


@dataclass(frozen=True)
class Exercise:
    """A line the trainee replays from a starting position."""

    id: str
    name: str
    initial_fen: str
    analysis: tuple[MoveAnnotation, ...] = ()
    created_at: str = ""
    max_moves: int | None = None
    color: str = "white"
    source: str = SOURCE_DATASET
    pgn: str = ""

    @property
    def moves(self) -> list[str]:
        return [a.move for a in self.analysis]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "initialFen": self.initial_fen,
            "analysis": [
                {
                    "move": a.move,
                    "evaluation": a.evaluation,
                    "isCritical": a.is_critical,
                }
                for a in self.analysis
            ],
            "createdAt": self.created_at,
            "maxMoves": self.max_moves,
            "color": self.color,
            "source": self.source,
            "pgn": self.pgn,
        }


def annotate(moves: list[str]) -> tuple[MoveAnnotation, ...]:
    """Wrap bare move tokens as neutral annotations."""
    return tuple(MoveAnnotation(move=m) for m in moves)


@dataclass
class LocalRecord:
    """An authored exercise as kept in local storage.

    mirror_state walks local/pending -> mirrored; backend_id is only
    set once the remote service has accepted the record.
    """

    id: str
    name: str
    initial_fen: str
    pgn: str
    color: str = "white"
    created_at: str = ""
    is_public: bool = False
    backend_id: int | None = None
    mirror_state: str = MIRROR_LOCAL

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "initialFen": self.initial_fen,
            "pgn": self.pgn,
            "color": self.color,
            "createdAt": self.created_at,
            "isPublic": self.is_public,
            "mirrorState": self.mirror_state,
        }
        if self.backend_id is not None:
            data["backendId"] = self.backend_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> LocalRecord:
        backend_id = data.get("backendId")
        mirror_state = data.get("mirrorState")
        if mirror_state is None:
            mirror_state = MIRROR_MIRRORED if backend_id is not None else MIRROR_LOCAL
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            initial_fen=str(data.get("initialFen", "")),
            pgn=str(data.get("pgn", "")),
            color=str(data.get("color") or "white"),
            created_at=str(data.get("createdAt", "")),
            is_public=bool(data.get("isPublic", False)),
            backend_id=backend_id,
            mirror_state=mirror_state,
        )


@dataclass
class SessionSummary:
    """What the trainee sees when a line is finished."""

    exercise_id: str
    mistakes: list[int] = field(default_factory=list)
    mistake_moves: list[str] = field(default_factory=list)
    total_plies: int = 0

    @property
    def perfect(self) -> bool:
        return not self.mistakes

"""Exercise sequencer: the training state machine.

Walks a trainee through an exercise line one ply at a time. Each
attempted move is checked for legality by the oracle and then against
the expected SAN; correct moves are answered by the recorded opponent
reply after a short delay, wrong moves are recorded and rolled back.

States:
    idle            no exercise loaded
    training        live play, history_index is None
    awaiting_reply  training, with the opponent reply scheduled
    scrubbing       history_index set, position frozen at that ply

The opponent reply runs on a timer thread. It carries a
(load_generation, ply) token and is discarded unless that token still
matches the live session, so a reply from an abandoned exercise can
never land on a newly loaded one.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable

import chess

from booktrainer import oracle
from booktrainer.config import HIGHLIGHT_SECONDS, REPLY_DELAY_SECONDS
from booktrainer.models import Exercise, SessionSummary
from booktrainer.notation import format_numbered, history_lines, is_result_marker
from booktrainer.scheduling import Timers

logger = logging.getLogger(__name__)

IDLE = "idle"
TRAINING = "training"
AWAITING_REPLY = "awaiting_reply"
SCRUBBING = "scrubbing"

HIGHLIGHT_MISTAKE = "red"

EventListener = Callable[[str, dict], None]

_sequencer_ids = itertools.count(1)


@dataclass
class TrainingSettings:
    """Trainee-adjustable playback options.

    auto_play_moves counts full moves: 3 means up to six plies are
    played automatically before the trainee's first move. max_moves is
    a ply cap; None or 0 means play to the end of the line.
    """

    auto_play: bool = False
    auto_play_moves: int = 3
    max_moves: int | None = None
    random_mode: bool = False
    reply_delay: float = REPLY_DELAY_SECONDS
    highlight_delay: float = HIGHLIGHT_SECONDS


def _same_move(played: str, expected: str) -> bool:
    # lines typed by hand often drop the check suffix
    return played.rstrip("+#") == expected.rstrip("+#")


class ExerciseSequencer:
    """Owns the position and pointers of one training session."""

    def __init__(
        self,
        timers: Timers | None = None,
        settings: TrainingSettings | None = None,
        on_event: EventListener | None = None,
    ) -> None:
        self.settings = settings or TrainingSettings()
        self._timers = timers
        self._on_event = on_event
        self._lock = threading.RLock()

        sequencer_id = next(_sequencer_ids)
        self._reply_key = f"sequencer-{sequencer_id}-reply"
        self._highlight_key = f"sequencer-{sequencer_id}-highlight"

        self._generation = 0
        self.exercise: Exercise | None = None
        self.position = chess.Board()
        self.current_move_index = 0
        self.history_index: int | None = None
        self._live_index: int | None = None
        self.mistakes: list[int] = []
        self.completed = False
        self.highlight: str | None = None
        self.orientation = "white"
        self._pending_reply: tuple[int, int] | None = None

    # ── Introspection ───────────────────────────────────────────────

    @property
    def state(self) -> str:
        if self.exercise is None:
            return IDLE
        if self.history_index is not None:
            return SCRUBBING
        if self._pending_reply is not None:
            return AWAITING_REPLY
        return TRAINING

    @property
    def moves(self) -> list[str]:
        return self.exercise.moves if self.exercise else []

    @property
    def fen(self) -> str:
        return oracle.board_to_notation(self.position)

    def played_moves(self) -> list[str]:
        """SAN of the plies played so far, result markers excluded."""
        return [m for m in self.moves[:self.current_move_index] if not is_result_marker(m)]

    def line_text(self) -> str:
        """Whole line as bare SAN, ready to paste elsewhere."""
        return " ".join(m for m in self.moves if not is_result_marker(m))

    def summary(self) -> SessionSummary | None:
        if self.exercise is None:
            return None
        moves = self.moves
        return SessionSummary(
            exercise_id=self.exercise.id,
            mistakes=list(self.mistakes),
            mistake_moves=[moves[i] for i in self.mistakes if i < len(moves)],
            total_plies=len(moves),
        )

    def snapshot(self) -> dict:
        """Plain-dict view of the session for surfaces."""
        with self._lock:
            moves = self.moves
            return {
                "exercise_id": self.exercise.id if self.exercise else None,
                "exercise_name": self.exercise.name if self.exercise else None,
                "state": self.state,
                "fen": self.fen,
                "orientation": self.orientation,
                "turn": oracle.side_to_move(self.position),
                "current_move_index": self.current_move_index,
                "history_index": self.history_index,
                "total_plies": len(moves),
                "played_moves": self.played_moves(),
                "history": history_lines(moves),
                "mistakes": list(self.mistakes),
                "completed": self.completed,
                "highlight": self.highlight,
            }

    # ── Loading ─────────────────────────────────────────────────────

    def load_exercise(self, exercise: Exercise) -> None:
        """Reset the session onto an exercise.

        A black exercise gets White's first recorded move played for
        it. With auto-play on, further opening plies are played until
        the configured full-move count, an unplayable ply or a result
        marker, and then one more if needed so the trainee is to move.
        """
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self.exercise = exercise
            self.position = oracle.parse_fen(exercise.initial_fen)
            self.current_move_index = 0
            self.history_index = None
            self._live_index = None
            self.mistakes = []
            self.completed = False
            self.highlight = None
            self.orientation = exercise.color
            self._pending_reply = None

            moves = exercise.moves
            if exercise.color == "black" and self.position.turn == chess.WHITE:
                self._advance_recorded()

            if self.settings.auto_play and self.settings.auto_play_moves > 0:
                limit = min(self.settings.auto_play_moves * 2, len(moves))
                while self.current_move_index < limit:
                    if not self._advance_recorded():
                        break
                if oracle.side_to_move(self.position) != exercise.color:
                    self._advance_recorded()

            logger.debug(
                "Loaded %s at ply %d", exercise.id, self.current_move_index
            )
            self._emit("loaded", {"exercise_id": exercise.id})
            if self._line_exhausted():
                self._complete()

    def _advance_recorded(self) -> bool:
        """Play the recorded ply at the pointer, if it is playable."""
        moves = self.moves
        if self.current_move_index >= len(moves):
            return False
        played = oracle.apply_san(self.position, moves[self.current_move_index])
        if played is None:
            return False
        self.position = played[0]
        self.current_move_index += 1
        return True

    # ── Training ────────────────────────────────────────────────────

    def _ply_cap(self) -> int | None:
        caps = [
            cap
            for cap in (self.settings.max_moves, self.exercise.max_moves if self.exercise else None)
            if cap
        ]
        return min(caps) if caps else None

    def attempt_move(
        self, from_square: str, to_square: str, promotion: str | None = None
    ) -> bool:
        """Validate a trainee move and advance on a match.

        Returns:
            True when the move was legal and matched the line.
        """
        with self._lock:
            if self.exercise is None:
                return False

            if self.history_index is not None:
                # any board interaction while scrubbing snaps back to live play
                self.resume_training()
                return False

            if self._pending_reply is not None:
                self._flush_reply()

            cap = self._ply_cap()
            if cap is not None and self.current_move_index >= cap:
                self._complete()
                return False

            if not oracle.is_legal(self.position, from_square, to_square, promotion):
                self._emit("illegal", {"from": from_square, "to": to_square})
                return False

            if self._line_exhausted():
                self._complete()
                return False

            moves = self.moves
            expected = moves[self.current_move_index]

            played = oracle.apply_move(self.position, from_square, to_square, promotion)
            if played is None:
                return False
            new_position, san = played

            if _same_move(san, expected):
                self.position = new_position
                self.current_move_index += 1
                self._clear_highlight()
                self._emit("accepted", {"san": san, "ply": self.current_move_index - 1})

                if self._line_exhausted():
                    self._complete()
                else:
                    self._schedule_reply()
                return True

            self._record_mistake(self.current_move_index)
            self.position = oracle.undo(new_position)
            self._emit(
                "rejected",
                {"san": san, "ply": self.current_move_index, "highlight": HIGHLIGHT_MISTAKE},
            )
            return False

    def _record_mistake(self, ply: int) -> None:
        if ply not in self.mistakes:
            self.mistakes.append(ply)
        self.highlight = HIGHLIGHT_MISTAKE
        if self._timers is not None:
            generation = self._generation
            self._timers.call_later(
                self._highlight_key,
                self.settings.highlight_delay,
                lambda: self._expire_highlight(generation),
            )

    def _expire_highlight(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self.highlight = None

    def _clear_highlight(self) -> None:
        self.highlight = None
        if self._timers is not None:
            self._timers.cancel(self._highlight_key)

    # ── Opponent reply ──────────────────────────────────────────────

    def _schedule_reply(self) -> None:
        token = (self._generation, self.current_move_index)
        self._pending_reply = token
        if self._timers is None or self.settings.reply_delay <= 0:
            self._apply_reply(token)
            return
        self._timers.call_later(
            self._reply_key,
            self.settings.reply_delay,
            lambda: self._apply_reply(token),
        )

    def _flush_reply(self) -> None:
        token = self._pending_reply
        if token is None:
            return
        if self._timers is not None:
            self._timers.cancel(self._reply_key)
        self._apply_reply(token)

    def _apply_reply(self, token: tuple[int, int]) -> None:
        """Play the recorded opponent ply if token still describes the session."""
        with self._lock:
            if self._pending_reply != token:
                logger.debug("Discarding stale opponent reply %s", token)
                return
            self._pending_reply = None

            generation, ply = token
            if generation != self._generation or ply != self.current_move_index:
                return
            if self.history_index is not None:
                return

            moves = self.moves
            played = oracle.apply_san(self.position, moves[ply]) if ply < len(moves) else None
            if played is None:
                logger.warning(
                    "Recorded reply %r at ply %d of %s is not playable",
                    moves[ply] if ply < len(moves) else None,
                    ply,
                    self.exercise.id if self.exercise else None,
                )
                self._complete()
                return

            self.position, san = played
            self.current_move_index += 1
            self._emit("replied", {"san": san, "ply": ply})

            if self._line_exhausted():
                self._complete()

    def _line_exhausted(self) -> bool:
        """True when no recorded ply is left to play at the pointer."""
        moves = self.moves
        index = self.current_move_index
        return index >= len(moves) or is_result_marker(moves[index])

    def _complete(self) -> None:
        if self.completed:
            return
        self.completed = True
        summary = self.summary()
        self._emit(
            "completed",
            {
                "exercise_id": summary.exercise_id,
                "mistakes": summary.mistakes,
                "mistake_moves": summary.mistake_moves,
                "perfect": summary.perfect,
            },
        )

    # ── Navigation ──────────────────────────────────────────────────

    def go_to_history_index(self, index: int) -> None:
        """Freeze the board at ply `index` without touching training state.

        Callers clamp `index` to [0, len(analysis)]; replay itself stops
        at the first missing, result-marker or unplayable token.
        """
        with self._lock:
            if self.exercise is None:
                return
            if self._pending_reply is not None:
                self._flush_reply()
            if self.history_index is None:
                self._live_index = self.current_move_index

            board, _ = oracle.replay(self.exercise.initial_fen, self.moves[:index])
            self.position = board
            self.history_index = index
            self.current_move_index = index
            self._emit("scrubbed", {"history_index": index})

    def resume_training(self) -> None:
        """Leave scrubbing and restore the saved live position."""
        with self._lock:
            if self.exercise is None or self.history_index is None:
                return
            index = self._live_index if self._live_index is not None else len(self.moves)
            board, _ = oracle.replay(self.exercise.initial_fen, self.moves[:index])
            self.position = board
            self.current_move_index = index
            self.history_index = None
            self._live_index = None
            self._emit("resumed", {"current_move_index": index})

    def step_history(self, direction: str) -> bool:
        """Arrow-key navigation. Returns True when the board moved.

        'left' from live play enters scrubbing one ply back; 'right'
        only moves while scrubbing. Indexes stay in [0, len(analysis)].
        """
        with self._lock:
            total = len(self.moves)
            if self.exercise is None or total == 0:
                return False

            if direction == "left":
                if self.history_index is None:
                    if self.current_move_index > 0:
                        self.go_to_history_index(min(self.current_move_index - 1, total))
                        return True
                    return False
                if self.history_index > 0:
                    self.go_to_history_index(self.history_index - 1)
                    return True
                return False

            if direction == "right":
                if self.history_index is not None and self.history_index < total:
                    self.go_to_history_index(self.history_index + 1)
                    return True
                return False

            raise ValueError(f"Unknown direction: {direction}. Expected 'left' or 'right'")

    # ── Review helpers ──────────────────────────────────────────────

    def hint(self) -> str | None:
        """Square of the piece the expected move starts from."""
        with self._lock:
            if self.exercise is None or self.history_index is not None:
                return None
            moves = self.moves
            if self.current_move_index >= len(moves):
                return None
            squares = oracle.move_squares(self.position, moves[self.current_move_index])
            return squares[0] if squares else None

    def retry_from_first_mistake(self) -> bool:
        """Rewind to the first missed ply and clear the mistake list."""
        with self._lock:
            if self.exercise is None or not self.mistakes:
                return False
            self._cancel_timers()
            first = self.mistakes[0]
            board, _ = oracle.replay(self.exercise.initial_fen, self.moves[:first])
            self.position = board
            self.current_move_index = first
            self.history_index = None
            self._live_index = None
            self.mistakes = []
            self.completed = False
            self.highlight = None
            self._emit("retry", {"current_move_index": first})
            return True

    def close(self) -> None:
        """Drop any scheduled callbacks owned by this sequencer."""
        with self._lock:
            self._cancel_timers()

    def _cancel_timers(self) -> None:
        self._pending_reply = None
        if self._timers is not None:
            self._timers.cancel(self._reply_key)
            self._timers.cancel(self._highlight_key)

    def _emit(self, event: str, payload: dict) -> None:
        if self._on_event is not None:
            self._on_event(event, payload)


class LineRecorder:
    """In-progress move list of a line being authored on the board."""

    def __init__(self, initial_fen: str | None = None) -> None:
        self.initial_fen = oracle.safe_fen(initial_fen)
        self.moves: list[str] = []
        self.position = oracle.parse_fen(self.initial_fen)

    def play_move(
        self, from_square: str, to_square: str, promotion: str | None = None
    ) -> str | None:
        """Append a legal move; returns its SAN, or None if illegal."""
        played = oracle.apply_move(self.position, from_square, to_square, promotion)
        if played is None:
            return None
        self.position, san = played
        self.moves.append(san)
        return san

    def play_san(self, san: str) -> bool:
        played = oracle.apply_san(self.position, san)
        if played is None:
            return False
        self.position, canonical = played
        self.moves.append(canonical)
        return True

    def clear_history(self) -> None:
        self.moves = []
        self.position = oracle.parse_fen(self.initial_fen)

    def remove_last_move(self) -> str | None:
        """Drop the last ply and rebuild the position from scratch."""
        if not self.moves:
            return None
        removed = self.moves.pop()
        self.position, _ = oracle.replay(self.initial_fen, self.moves)
        return removed

    def position_at(self, index: int) -> chess.Board:
        index = max(0, min(index, len(self.moves)))
        board, _ = oracle.replay(self.initial_fen, self.moves[:index])
        return board

    def numbered(self) -> str:
        board = oracle.parse_fen(self.initial_fen)
        return format_numbered(
            self.moves,
            start_fullmove=board.fullmove_number,
            white_first=board.turn == chess.WHITE,
        )

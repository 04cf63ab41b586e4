"""MCP server for the Book Move Trainer.

Exposes exercise training tools via FastMCP. Training sessions are
stored in memory keyed by UUID; each one wraps a TrainingView over
the merged exercise collection. Opponent replies are applied as soon
as the trainee's move is accepted, since a tool call has no board to
animate.
"""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

import chess
from mcp.server.fastmcp import FastMCP

from booktrainer.authoring import AuthoringError, AuthoringPipeline
from booktrainer.catalog import COLOR_FILTERS, SORT_MODES
from booktrainer.config import TrainerConfig
from booktrainer.local_store import LocalExerciseStore, LocalStorage
from booktrainer.notation import format_numbered, normalize
from booktrainer.remote import RemoteExerciseClient
from booktrainer.sequencer import TrainingSettings
from booktrainer.view import TrainingView

from response_schemas import minify_exercise, minify_session  # noqa: E402

logger = logging.getLogger(__name__)

mcp = FastMCP("book-move-trainer")

# In-memory session store: session_id -> TrainingView
_sessions: dict[str, TrainingView] = {}

_config = TrainerConfig.from_env()


def _new_view(settings: TrainingSettings | None = None) -> TrainingView:
    view = TrainingView.from_config(_config, settings=settings)
    view.refresh()
    return view


def _pipeline() -> AuthoringPipeline:
    storage = LocalStorage(_config.local_storage_path)
    remote = RemoteExerciseClient(_config.api_url, _config.api_token)
    return AuthoringPipeline(LocalExerciseStore(storage), remote)


def _get_session(session_id: str) -> TrainingView | None:
    """Retrieve a session by ID.

    Args:
        session_id: UUID of the session.

    Returns:
        TrainingView or None if not found.
    """
    return _sessions.get(session_id)


def _session_state(session_id: str, view: TrainingView) -> dict:
    return minify_session(view.sequencer.snapshot(), session_id)


def _parse_uci(move: str) -> tuple[str, str, str | None] | None:
    try:
        parsed = chess.Move.from_uci(move.strip())
    except ValueError:
        return None
    promotion = chess.piece_symbol(parsed.promotion) if parsed.promotion else None
    return (
        chess.square_name(parsed.from_square),
        chess.square_name(parsed.to_square),
        promotion,
    )


# ---------------------------------------------------------------------------
# Exercise catalog tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_exercises(query: str = "", color: str = "all", sort: str = "natural") -> dict:
    """List the merged exercise collection.

    Args:
        query: Case-insensitive substring of the exercise name.
        color: 'all', 'white' or 'black'.
        sort: One of natural, name-asc, name-desc, played-desc,
            played-asc, won-desc, won-asc.

    Returns:
        Dict with exercises, per-color counts and total.
    """
    if color not in COLOR_FILTERS:
        return {"error": f"Invalid color: {color}. Expected one of {list(COLOR_FILTERS)}"}
    if sort not in SORT_MODES:
        return {"error": f"Invalid sort: {sort}. Expected one of {list(SORT_MODES)}"}

    view = _new_view()
    try:
        stats = view.stats.all()
        exercises = view.browse(query, color, sort)
        return {
            "exercises": [minify_exercise(e.to_dict(), stats.get(e.id)) for e in exercises],
            "counts": view.color_counts(),
            "total": len(exercises),
        }
    finally:
        view.close()


@mcp.tool()
def add_exercise(
    notation: str,
    name: str | None = None,
    color: str = "white",
    make_public: bool = False,
) -> dict:
    """Author a new exercise from game notation.

    Args:
        notation: Moves starting with '1.', e.g. '1. e4 e5 2. Nf3'.
        name: Optional display name.
        color: Side the trainee plays, 'white' or 'black'.
        make_public: Share the exercise when mirrored remotely.

    Returns:
        Minified exercise dict of the stored exercise.
    """
    try:
        exercise = _pipeline().submit(notation, name=name, color=color, make_public=make_public)
    except AuthoringError as exc:
        return {"error": str(exc)}
    return minify_exercise(exercise.to_dict())


@mcp.tool()
def normalize_notation(notation: str) -> dict:
    """Strip tags, comments, variations and numbers from notation.

    Args:
        notation: Free-form game notation.

    Returns:
        Dict with bare SAN moves and their numbered rendering.
    """
    moves = normalize(notation)
    return {"moves": moves, "numbered": format_numbered(moves)}


# ---------------------------------------------------------------------------
# Training session tools
# ---------------------------------------------------------------------------


@mcp.tool()
def start_session(
    exercise_id: str | None = None,
    color: str = "all",
    auto_play: bool = False,
    auto_play_moves: int = 3,
    max_moves: int | None = None,
    random_mode: bool = False,
) -> dict:
    """Start training an exercise.

    Args:
        exercise_id: Exercise to load. A random one when omitted.
        color: Color filter for the random pick.
        auto_play: Play the opening moves automatically.
        auto_play_moves: Number of full moves auto-play covers.
        max_moves: Stop the line after this many plies.
        random_mode: Jump to a random exercise after a wrong move.

    Returns:
        Session state dict.
    """
    if auto_play_moves < 0:
        return {"error": f"auto_play_moves must be >= 0, got {auto_play_moves}"}
    if max_moves is not None and max_moves < 0:
        return {"error": f"max_moves must be >= 0, got {max_moves}"}

    settings = TrainingSettings(
        auto_play=auto_play,
        auto_play_moves=auto_play_moves,
        max_moves=max_moves or None,
        random_mode=random_mode,
        reply_delay=0,
    )
    view = _new_view(settings)

    if exercise_id:
        try:
            view.load(exercise_id)
        except ValueError as exc:
            view.close()
            return {"error": str(exc)}
    elif view.load_random(color) is None:
        view.close()
        return {"error": "No exercises available"}

    session_id = str(uuid.uuid4())
    _sessions[session_id] = view
    return _session_state(session_id, view)


@mcp.tool()
def get_session(session_id: str) -> dict:
    """Get the current state of a training session.

    Args:
        session_id: UUID of the session.

    Returns:
        Session state dict.
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}
    return _session_state(session_id, view)


@mcp.tool()
def attempt_move(session_id: str, move: str) -> dict:
    """Play the trainee's move in UCI notation.

    Args:
        session_id: UUID of the session.
        move: Move in UCI notation (e.g., 'g1f3', 'e7e8q').

    Returns:
        Session state dict with 'accepted' set.
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}

    parsed = _parse_uci(move)
    if parsed is None:
        return {"error": f"Invalid UCI move: {move}"}

    accepted = view.attempt_move(*parsed)
    result = _session_state(session_id, view)
    result["accepted"] = accepted
    return result


@mcp.tool()
def go_to_ply(session_id: str, index: int) -> dict:
    """Show the position after `index` plies of the line.

    Args:
        session_id: UUID of the session.
        index: Ply count, 0 for the starting position.

    Returns:
        Session state dict in scrubbing state.
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}

    total = view.sequencer.snapshot()["total_plies"]
    if index < 0 or index > total:
        return {"error": f"Ply index out of range: {index}. Expected 0..{total}"}

    view.sequencer.go_to_history_index(index)
    return _session_state(session_id, view)


@mcp.tool()
def step_history(session_id: str, direction: str) -> dict:
    """Step one ply back or forward through the line.

    Args:
        session_id: UUID of the session.
        direction: 'left' or 'right'.

    Returns:
        Session state dict.
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}
    try:
        view.sequencer.step_history(direction)
    except ValueError as exc:
        return {"error": str(exc)}
    return _session_state(session_id, view)


@mcp.tool()
def resume_training(session_id: str) -> dict:
    """Return from history browsing to live play."""
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}
    view.sequencer.resume_training()
    return _session_state(session_id, view)


@mcp.tool()
def get_hint(session_id: str) -> dict:
    """Get the square the expected move starts from.

    Args:
        session_id: UUID of the session.

    Returns:
        Dict with square (None when no move is expected).
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}
    return {"session_id": session_id, "square": view.sequencer.hint()}


@mcp.tool()
def retry_mistakes(session_id: str) -> dict:
    """Rewind the session to the first missed move."""
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}
    if not view.sequencer.retry_from_first_mistake():
        return {"error": "No mistakes to retry"}
    return _session_state(session_id, view)


@mcp.tool()
def get_summary(session_id: str) -> dict:
    """Get the mistake summary of a session.

    Args:
        session_id: UUID of the session.

    Returns:
        Dict with mistakes, the SAN expected at each and perfect flag.
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}

    summary = view.sequencer.summary()
    return {
        "exercise_id": summary.exercise_id,
        "completed": view.sequencer.completed,
        "mistakes": summary.mistakes,
        "mistake_moves": summary.mistake_moves,
        "perfect": summary.perfect,
        "line": view.sequencer.line_text(),
    }


@mcp.tool()
def save_played_line(
    session_id: str,
    name: str | None = None,
    make_public: bool = False,
) -> dict:
    """Save the moves played so far as a new exercise.

    Args:
        session_id: UUID of the session.
        name: Optional display name.
        make_public: Share the exercise when mirrored remotely.

    Returns:
        Minified exercise dict of the stored exercise.
    """
    view = _get_session(session_id)
    if view is None:
        return {"error": f"Session not found: {session_id}"}

    moves = view.sequencer.played_moves()
    try:
        exercise = _pipeline().promote_history(
            moves, name=name, color=view.sequencer.orientation, make_public=make_public
        )
    except AuthoringError as exc:
        return {"error": str(exc)}
    return minify_exercise(exercise.to_dict())


@mcp.tool()
def end_session(session_id: str) -> dict:
    """Close a training session and drop it from memory."""
    view = _sessions.pop(session_id, None)
    if view is None:
        return {"error": f"Session not found: {session_id}"}
    view.close()
    return {"session_id": session_id, "closed": True}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    mcp.run()

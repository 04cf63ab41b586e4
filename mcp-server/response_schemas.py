"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste.
The line the trainee is replaying is never revealed beyond the plies
already played; the agent has to ask for a hint like a human would.

Move lists are rendered as numbered notation (1. e4 e5 2. Nf3 ...)
which is natural for the LLM agent to read.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable

from booktrainer.models import SOURCE_DATASET, SOURCE_LOCAL, SOURCE_REMOTE
from booktrainer.notation import format_numbered
from booktrainer.sequencer import AWAITING_REPLY, IDLE, SCRUBBING, TRAINING


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_session(state: dict, session_id: str) -> dict:
    """Minify a sequencer snapshot for MCP response.

    Compacts played_moves to a numbered string, drops the history
    panel lines and replaces the mistakes list with the missed SAN.

    Args:
        state: Full snapshot (as produced by ExerciseSequencer.snapshot).
        session_id: UUID of the session.

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {"session_id": session_id}

    for key in (
        "exercise_id", "exercise_name", "state", "fen", "orientation",
        "turn", "current_move_index", "history_index", "total_plies",
        "completed",
    ):
        if key in state:
            result[key] = state[key]

    played = state.get("played_moves", [])
    if isinstance(played, list):
        result["played"] = format_numbered(played)
    else:
        result["played"] = played

    mistakes = state.get("mistakes", [])
    result["mistakes"] = len(mistakes) if isinstance(mistakes, list) else 0

    # Removed fields: history, highlight

    return result


def minify_exercise(exercise: dict, stats: dict | None = None) -> dict:
    """Minify an Exercise dict for a list response.

    Replaces the analysis array with a ply count and folds in the
    trainee's play counters when given.

    Args:
        exercise: Full Exercise dict (from Exercise.to_dict).
        stats: Optional {"total": n, "perfect": n} for this exercise.

    Returns:
        Minified dict.
    """
    result = {}

    for key in ("id", "name", "color", "source"):
        if key in exercise:
            result[key] = exercise[key]

    analysis = exercise.get("analysis", [])
    result["plies"] = len(analysis) if isinstance(analysis, list) else 0

    if exercise.get("maxMoves"):
        result["max_moves"] = exercise["maxMoves"]

    if stats is not None:
        result["played"] = stats.get("total", 0)
        result["perfect"] = stats.get("perfect", 0)

    # Removed fields: initialFen, createdAt, pgn

    return result


# ---------------------------------------------------------------------------
# Validation schemas
# ---------------------------------------------------------------------------

_COLORS = ("white", "black")
_STATES = (IDLE, TRAINING, AWAITING_REPLY, SCRUBBING)


@dataclass(frozen=True)
class Field:
    """Expected type of one response key, plus optional value limits."""

    types: type | tuple[type, ...]
    required: bool = True
    choices: tuple | None = None
    minimum: int | None = None


@dataclass(frozen=True)
class Schema:
    fields: dict[str, Field]
    checks: tuple[Callable[[dict], list[str]], ...] = ()

    def extend(self, **fields: Field) -> Schema:
        return Schema({**self.fields, **fields}, self.checks)


def _check_session_pointers(response: dict) -> list[str]:
    """Cross-field rules of a session: pointers inside the line."""
    errors = []
    total = response.get("total_plies")
    current = response.get("current_move_index")
    history = response.get("history_index")
    state = response.get("state")

    if isinstance(total, int) and isinstance(current, int) and current > total:
        errors.append(f"current_move_index {current} beyond total_plies {total}")
    if (history is not None) != (state == SCRUBBING):
        errors.append(f"history_index {history!r} does not match state '{state}'")
    if isinstance(history, int) and isinstance(total, int) and history > total:
        errors.append(f"history_index {history} beyond total_plies {total}")
    if state == IDLE and response.get("exercise_id") is not None:
        errors.append("idle session reports an exercise_id")
    return errors


SESSION_STATE_SCHEMA = Schema(
    {
        "session_id": Field(str),
        "exercise_id": Field((str, type(None))),
        "exercise_name": Field((str, type(None))),
        "state": Field(str, choices=_STATES),
        "fen": Field(str),
        "orientation": Field(str, choices=_COLORS),
        "turn": Field(str, choices=_COLORS),
        "current_move_index": Field(int, minimum=0),
        "history_index": Field((int, type(None)), minimum=0),
        "total_plies": Field(int, minimum=0),
        "completed": Field(bool),
        "played": Field(str),
        "mistakes": Field(int, minimum=0),
    },
    checks=(_check_session_pointers,),
)

ATTEMPT_SCHEMA = SESSION_STATE_SCHEMA.extend(accepted=Field(bool))

EXERCISE_SCHEMA = Schema(
    {
        "id": Field(str),
        "name": Field(str),
        "color": Field(str, choices=_COLORS),
        "source": Field(str, choices=(SOURCE_DATASET, SOURCE_LOCAL, SOURCE_REMOTE)),
        "plies": Field(int, minimum=0),
        "max_moves": Field(int, required=False, minimum=1),
        "played": Field(int, required=False, minimum=0),
        "perfect": Field(int, required=False, minimum=0),
    }
)

ERROR_SCHEMA = Schema({"error": Field(str)})


def _type_names(types: type | tuple[type, ...]) -> str:
    if isinstance(types, tuple):
        return "(" + ", ".join(t.__name__ for t in types) + ")"
    return types.__name__


def _check_field(key: str, value, field: Field) -> list[str]:
    # bool is an int subclass; a flag must not pass as a counter
    if isinstance(value, bool) and field.types is not bool and not (
        isinstance(field.types, tuple) and bool in field.types
    ):
        return [f"Key '{key}': expected {_type_names(field.types)}, got bool"]
    if not isinstance(value, field.types):
        return [
            f"Key '{key}': expected {_type_names(field.types)}, "
            f"got {type(value).__name__}"
        ]
    if field.choices is not None and value not in field.choices:
        return [f"Key '{key}': {value!r} not one of {list(field.choices)}"]
    if field.minimum is not None and value is not None and value < field.minimum:
        return [f"Key '{key}': {value} below {field.minimum}"]
    return []


def validate_response(response: dict, schema: Schema) -> list[str]:
    """Check a tool response against a schema.

    Only runs when BOOK_TRAINER_VALIDATE=1 is set; otherwise returns an
    empty list.

    Returns:
        Validation error strings (empty = valid).
    """
    if os.environ.get("BOOK_TRAINER_VALIDATE") != "1":
        return []

    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    errors = []
    for key, field in schema.fields.items():
        if key not in response:
            if field.required:
                errors.append(f"Missing key: {key}")
            continue
        errors.extend(_check_field(key, response[key], field))

    # cross-field rules only make sense on well-typed input
    if not errors:
        for check in schema.checks:
            errors.extend(check(response))
    return errors

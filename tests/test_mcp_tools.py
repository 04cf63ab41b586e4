"""Per-tool MCP integration tests verifying minified response shapes.

Runs every MCP server tool against the bundled dataset with local
storage redirected to tmp_path and no remote service configured.

Run:
    pytest tests/test_mcp_tools.py -v
"""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

import pytest

from booktrainer.config import TrainerConfig

# Add project root so imports resolve
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

# Import server module from hyphenated directory via importlib
_server_path = _PROJECT_ROOT / "mcp-server" / "server.py"
_spec = importlib.util.spec_from_file_location("mcp_server_tools_test", _server_path)
_server = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(_server)

_sessions = _server._sessions

# Server tool functions
list_exercises = _server.list_exercises
add_exercise = _server.add_exercise
normalize_notation = _server.normalize_notation
start_session = _server.start_session
get_session = _server.get_session
attempt_move = _server.attempt_move
go_to_ply = _server.go_to_ply
step_history = _server.step_history
resume_training = _server.resume_training
get_hint = _server.get_hint
retry_mistakes = _server.retry_mistakes
get_summary = _server.get_summary
save_played_line = _server.save_played_line
end_session = _server.end_session

# Import response schemas for validation
sys.path.insert(0, str(_PROJECT_ROOT / "mcp-server"))
from response_schemas import (  # noqa: E402
    ATTEMPT_SCHEMA,
    ERROR_SCHEMA,
    EXERCISE_SCHEMA,
    SESSION_STATE_SCHEMA,
    validate_response,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Fields that must NOT be in a minified session
_REMOVED_FIELDS = {"history", "highlight", "played_moves"}


def _assert_session(response: dict) -> None:
    """Assert a response is a properly minified session state."""
    assert "error" not in response, response
    assert validate_response(response, SESSION_STATE_SCHEMA) == []
    assert not _REMOVED_FIELDS & set(response)


def _assert_error(response: dict) -> None:
    assert validate_response(response, ERROR_SCHEMA) == []


@pytest.fixture(autouse=True)
def isolated_server(tmp_path, monkeypatch):
    """Point the server at tmp storage and drop sessions afterwards."""
    monkeypatch.setattr(_server, "_config", TrainerConfig(data_dir=tmp_path, refresh_seconds=0))
    yield
    for session_id in list(_sessions):
        end_session(session_id)


# ---------------------------------------------------------------------------
# Catalog tools
# ---------------------------------------------------------------------------


class TestListExercises:

    def test_bundled_exercises(self):
        response = list_exercises()
        ids = [e["id"] for e in response["exercises"]]
        assert "KIA1" in ids
        assert "KIA3" not in ids
        assert response["total"] == len(ids)
        assert response["counts"]["black"] >= 1
        for exercise in response["exercises"]:
            assert validate_response(exercise, EXERCISE_SCHEMA) == []
            assert "pgn" not in exercise

    def test_natural_order(self):
        ids = [e["id"] for e in list_exercises(sort="natural")["exercises"]]
        assert ids.index("QGD2") < ids.index("QGD10")

    def test_filters(self):
        response = list_exercises(query="najdorf", color="black")
        assert [e["id"] for e in response["exercises"]] == ["Sicilian-black1"]

    @pytest.mark.parametrize("kwargs", [{"sort": "elo"}, {"color": "red"}])
    def test_invalid_arguments(self, kwargs):
        _assert_error(list_exercises(**kwargs))

    def test_normalize_notation(self):
        response = normalize_notation('[Event "x"] 1. e4 {!} e5 (1... c5) 2. Nf3 1-0')
        assert response == {"moves": ["e4", "e5", "Nf3"], "numbered": "1. e4 e5 2. Nf3"}


class TestAddExercise:

    def test_add_and_list(self):
        response = add_exercise("1. c4 e5 2. Nc3 Nf6", name="English")
        assert validate_response(response, EXERCISE_SCHEMA) == []
        assert response["id"].startswith("custom-")
        assert response["plies"] == 4

        listed = list_exercises(query="English")["exercises"]
        assert [e["id"] for e in listed] == [response["id"]]

    @pytest.mark.parametrize("notation", ["c4 e5", "1. c4 e5 2. Ke3"])
    def test_rejected_notation(self, notation):
        _assert_error(add_exercise(notation))


# ---------------------------------------------------------------------------
# Session tools
# ---------------------------------------------------------------------------


class TestSession:

    def test_start_and_get(self):
        state = start_session("KIA1")
        _assert_session(state)
        assert state["exercise_id"] == "KIA1"
        assert state["current_move_index"] == 0
        assert get_session(state["session_id"]) == state

    def test_start_unknown_exercise(self):
        _assert_error(start_session("nope"))
        assert _sessions == {}

    def test_start_random_black(self):
        state = start_session(color="black")
        _assert_session(state)
        assert state["orientation"] == "black"
        assert state["current_move_index"] == 1

    def test_start_with_auto_play(self):
        state = start_session("KIA1", auto_play=True, auto_play_moves=2)
        assert state["current_move_index"] == 4
        assert state["played"] == "1. Nf3 Nf6 2. g3 c5"

    def test_invalid_settings(self):
        _assert_error(start_session("KIA1", auto_play_moves=-1))

    def test_correct_move_gets_reply(self):
        session_id = start_session("KIA1")["session_id"]
        response = attempt_move(session_id, "g1f3")
        _assert_session(response)
        assert validate_response(response, ATTEMPT_SCHEMA) == []
        assert response["accepted"] is True
        assert response["current_move_index"] == 2
        assert response["played"] == "1. Nf3 Nf6"

    def test_wrong_move(self):
        session_id = start_session("KIA1")["session_id"]
        response = attempt_move(session_id, "e2e4")
        assert response["accepted"] is False
        assert response["mistakes"] == 1
        assert response["current_move_index"] == 0

    def test_bad_uci(self):
        session_id = start_session("KIA1")["session_id"]
        _assert_error(attempt_move(session_id, "knight to f3"))

    def test_unknown_session(self):
        for response in (
            get_session("missing"),
            attempt_move("missing", "e2e4"),
            go_to_ply("missing", 0),
            step_history("missing", "left"),
            resume_training("missing"),
            get_hint("missing"),
            retry_mistakes("missing"),
            get_summary("missing"),
            save_played_line("missing"),
            end_session("missing"),
        ):
            _assert_error(response)

    def test_history_navigation(self):
        session_id = start_session("KIA1")["session_id"]
        attempt_move(session_id, "g1f3")

        state = go_to_ply(session_id, 1)
        assert state["state"] == "scrubbing"
        assert state["history_index"] == 1

        state = step_history(session_id, "left")
        assert state["history_index"] == 0

        state = resume_training(session_id)
        assert state["state"] == "training"
        assert state["current_move_index"] == 2

        _assert_error(go_to_ply(session_id, 999))
        _assert_error(step_history(session_id, "up"))

    def test_hint(self):
        session_id = start_session("KIA1")["session_id"]
        assert get_hint(session_id)["square"] == "g1"

    def test_retry_and_summary(self):
        session_id = start_session("KIA1")["session_id"]
        _assert_error(retry_mistakes(session_id))

        attempt_move(session_id, "e2e4")
        attempt_move(session_id, "g1f3")
        summary = get_summary(session_id)
        assert summary["mistakes"] == [0]
        assert summary["mistake_moves"] == ["Nf3"]
        assert summary["perfect"] is False
        assert summary["line"].startswith("Nf3 Nf6 g3 c5")

        state = retry_mistakes(session_id)
        assert state["current_move_index"] == 0
        assert state["mistakes"] == 0

    def test_save_played_line(self):
        session_id = start_session("QGD2")["session_id"]
        attempt_move(session_id, "d2d4")
        attempt_move(session_id, "c2c4")

        response = save_played_line(session_id, name="QGD start")
        assert validate_response(response, EXERCISE_SCHEMA) == []
        assert response["name"] == "QGD start"
        assert response["plies"] == 4

    def test_save_empty_line(self):
        session_id = start_session("KIA1")["session_id"]
        _assert_error(save_played_line(session_id))

    def test_end_session(self):
        session_id = start_session("KIA1")["session_id"]
        assert end_session(session_id) == {"session_id": session_id, "closed": True}
        assert session_id not in _sessions


# ---------------------------------------------------------------------------
# Response validation
# ---------------------------------------------------------------------------


class TestValidateResponse:

    def _state(self, **overrides) -> dict:
        state = {
            "session_id": "s1",
            "exercise_id": "KIA1",
            "exercise_name": "KIA",
            "state": "training",
            "fen": "8/8/8/8/8/8/8/8 w - - 0 1",
            "orientation": "white",
            "turn": "white",
            "current_move_index": 2,
            "history_index": None,
            "total_plies": 24,
            "completed": False,
            "played": "1. Nf3 Nf6",
            "mistakes": 0,
        }
        state.update(overrides)
        return state

    def test_valid_state(self):
        assert validate_response(self._state(), SESSION_STATE_SCHEMA) == []

    def test_accepted_flag_required_on_attempts(self):
        errors = validate_response(self._state(), ATTEMPT_SCHEMA)
        assert errors == ["Missing key: accepted"]
        assert validate_response(self._state(accepted=True), ATTEMPT_SCHEMA) == []

    def test_bool_is_not_a_counter(self):
        errors = validate_response(self._state(mistakes=True), SESSION_STATE_SCHEMA)
        assert errors == ["Key 'mistakes': expected int, got bool"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"state": "thinking"},
            {"orientation": "red"},
            {"current_move_index": -1},
            {"current_move_index": 25},
            {"history_index": 1},
            {"state": "scrubbing"},
            {"state": "scrubbing", "history_index": 30},
        ],
    )
    def test_inconsistent_state(self, overrides):
        assert validate_response(self._state(**overrides), SESSION_STATE_SCHEMA) != []

    def test_scrubbing_state(self):
        state = self._state(state="scrubbing", history_index=1, current_move_index=1)
        assert validate_response(state, SESSION_STATE_SCHEMA) == []

    def test_exercise_optional_fields(self):
        exercise = {"id": "A", "name": "A", "color": "white", "source": "dataset", "plies": 3}
        assert validate_response(exercise, EXERCISE_SCHEMA) == []
        assert validate_response({**exercise, "max_moves": "8"}, EXERCISE_SCHEMA) != []
        assert validate_response({**exercise, "source": "cloud"}, EXERCISE_SCHEMA) != []

    def test_disabled_without_env(self, monkeypatch):
        monkeypatch.delenv("BOOK_TRAINER_VALIDATE", raising=False)
        assert validate_response({"nothing": 1}, SESSION_STATE_SCHEMA) == []

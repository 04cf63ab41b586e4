"""Pure views over a merged exercise collection.

Nothing here mutates its input; every function returns a new list.
"""

from __future__ import annotations

import random
import re
from functools import cmp_to_key

from booktrainer.models import Exercise

SORT_MODES = (
    "natural",
    "name-asc",
    "name-desc",
    "played-desc",
    "played-asc",
    "won-desc",
    "won-asc",
)

COLOR_FILTERS = ("all", "white", "black")

_ID_PARTS_RE = re.compile(r"^([a-zA-Z_ \-]*?)(\d+)([a-zA-Z_ \-]*)$")


def compare_ids(a: str, b: str) -> int:
    """Order ids like 'KIA2' before 'KIA10'.

    Digits compare numerically when prefix and suffix match, anything
    else falls back to case-insensitive text order.
    """
    match_a = _ID_PARTS_RE.match(a)
    match_b = _ID_PARTS_RE.match(b)
    if match_a and match_b:
        prefix_a, num_a, suffix_a = match_a.groups()
        prefix_b, num_b, suffix_b = match_b.groups()
        if prefix_a == prefix_b and suffix_a == suffix_b:
            return int(num_a) - int(num_b)

    key_a, key_b = a.casefold(), b.casefold()
    if key_a == key_b:
        return (a > b) - (a < b)
    return (key_a > key_b) - (key_a < key_b)


natural_sort_key = cmp_to_key(compare_ids)


def search(exercises: list[Exercise], query: str) -> list[Exercise]:
    needle = (query or "").strip().casefold()
    if not needle:
        return list(exercises)
    return [e for e in exercises if needle in e.name.casefold()]


def filter_by_color(exercises: list[Exercise], color: str = "all") -> list[Exercise]:
    if color not in ("white", "black"):
        return list(exercises)
    return [e for e in exercises if e.color == color]


def sort_exercises(
    exercises: list[Exercise], mode: str = "natural", stats: dict | None = None
) -> list[Exercise]:
    """Return exercises ordered by one of SORT_MODES.

    Args:
        exercises: Collection to order.
        mode: Sort mode name.
        stats: {exercise_id: {"total": n, "perfect": n}} for the
            played/won modes.

    Raises:
        ValueError: If mode is unknown.
    """
    stats = stats or {}

    def played(e: Exercise) -> int:
        return int((stats.get(e.id) or {}).get("total", 0))

    def won(e: Exercise) -> int:
        return int((stats.get(e.id) or {}).get("perfect", 0))

    if mode == "natural":
        return sorted(exercises, key=lambda e: natural_sort_key(e.id))
    if mode == "name-asc":
        return sorted(exercises, key=lambda e: e.name.casefold())
    if mode == "name-desc":
        return sorted(exercises, key=lambda e: e.name.casefold(), reverse=True)
    if mode == "played-desc":
        return sorted(exercises, key=played, reverse=True)
    if mode == "played-asc":
        return sorted(exercises, key=played)
    if mode == "won-desc":
        return sorted(exercises, key=won, reverse=True)
    if mode == "won-asc":
        return sorted(exercises, key=won)
    raise ValueError(f"Unknown sort mode: {mode}. Expected one of {SORT_MODES}")


def browse(
    exercises: list[Exercise],
    query: str = "",
    color: str = "all",
    sort: str = "natural",
    stats: dict | None = None,
) -> list[Exercise]:
    """Search, filter and sort in the order the exercise list applies them."""
    view = search(exercises, query)
    view = filter_by_color(view, color)
    return sort_exercises(view, sort, stats)


def color_counts(exercises: list[Exercise]) -> dict[str, int]:
    return {
        "white": sum(1 for e in exercises if e.color == "white"),
        "black": sum(1 for e in exercises if e.color == "black"),
    }


def find(exercises: list[Exercise], exercise_id: str) -> Exercise | None:
    for exercise in exercises:
        if exercise.id == exercise_id:
            return exercise
    return None


def pick_random(
    exercises: list[Exercise], exclude_id: str | None = None, rng: random.Random | None = None
) -> Exercise | None:
    """Pick a random exercise, avoiding exclude_id when there is a choice."""
    if not exercises:
        return None
    rng = rng or random
    candidates = [e for e in exercises if e.id != exclude_id] or list(exercises)
    return rng.choice(candidates)

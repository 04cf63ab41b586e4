"""Game-notation normalization for exercise lines.

Turns free-form PGN-ish text (tags, comments, variations, move
numbers, results) into bare SAN tokens, and back into numbered
notation for storage and display.

Usage:
    from booktrainer.notation import normalize
    normalize("1. e4 {best by test} e5 2. Nf3 1-0")  # ['e4', 'e5', 'Nf3']
"""

from __future__ import annotations

import re

RESULT_MARKERS = frozenset({"1-0", "0-1", "1/2-1/2", "½-½", "*"})

_TAG_RE = re.compile(r"\[[^\]]*\]")
_BRACE_COMMENT_RE = re.compile(r"\{[^}]*\}")
_LINE_COMMENT_RE = re.compile(r";[^\n]*")
_INNER_VARIATION_RE = re.compile(r"\([^()]*\)")
_NAG_RE = re.compile(r"\$\d+")
_MOVE_NUMBER_RE = re.compile(r"\d+\.+")
_GLYPH_SUFFIX_RE = re.compile(r"[!?]+$")
_LEADING_MOVE_ONE_RE = re.compile(r"^1\.")


def is_result_marker(token: str | None) -> bool:
    """True for game-result tokens such as '1-0' or '*'."""
    return token in RESULT_MARKERS


def _strip_variations(text: str) -> str:
    # innermost first so nested variations disappear completely
    while True:
        stripped = _INNER_VARIATION_RE.sub(" ", text)
        if stripped == text:
            return stripped
        text = stripped


def normalize(raw: str, trim_trailing: int = 0) -> list[str]:
    """Reduce raw notation to its ordered move tokens.

    Args:
        raw: Notation text, possibly with PGN tags, comments,
            variations, move numbers and a result.
        trim_trailing: Number of tokens to drop from the end. Only
            applied when more tokens than that remain.

    Returns:
        List of SAN tokens in original order.
    """
    if not raw:
        return []

    text = _TAG_RE.sub(" ", raw)
    text = _BRACE_COMMENT_RE.sub(" ", text)
    text = _LINE_COMMENT_RE.sub(" ", text)
    text = _strip_variations(text)
    text = _NAG_RE.sub(" ", text)
    text = _MOVE_NUMBER_RE.sub(" ", text)

    tokens = []
    for token in text.split():
        if is_result_marker(token):
            continue
        token = _GLYPH_SUFFIX_RE.sub("", token)
        if token:
            tokens.append(token)

    if trim_trailing > 0 and len(tokens) > trim_trailing:
        tokens = tokens[:-trim_trailing]
    return tokens


def dedup_signature(raw: str, color: str) -> str:
    """Signature under which two dataset entries count as the same line.

    The last two plies are ignored so a trailing result or a one-move
    extension does not make a copy look new.
    """
    return " ".join(normalize(raw, 2)) + "|" + (color or "white")


def full_signature(tokens: list[str], color: str) -> str:
    """Exact-line signature used when reconciling remote records."""
    return " ".join(tokens) + "|" + (color or "white")


def starts_with_move_number(text: str) -> bool:
    return bool(_LEADING_MOVE_ONE_RE.match(text.strip()))


def format_numbered(
    tokens: list[str], start_fullmove: int = 1, white_first: bool = True
) -> str:
    """Serialize SAN tokens into numbered notation.

    ['e4', 'e5', 'Nf3'] -> '1. e4 e5 2. Nf3'
    A line that starts with Black gets an ellipsis: '1... e5 2. Nf3'
    """
    parts: list[str] = []
    move_number = start_fullmove
    white_to_move = white_first
    first = True

    for token in tokens:
        if is_result_marker(token):
            continue
        if white_to_move:
            parts.append(f"{move_number}. {token}")
        elif first:
            parts.append(f"{move_number}... {token}")
        else:
            parts.append(token)

        if not white_to_move:
            move_number += 1
        white_to_move = not white_to_move
        first = False

    return " ".join(parts)


def history_lines(tokens: list[str]) -> list[str]:
    """Numbered move pairs for a history panel.

    ['e4', 'e5', 'Nf3'] -> ['1. e4 e5', '2. Nf3']
    """
    moves = [t for t in tokens if not is_result_marker(t)]
    lines = []
    for i in range(0, len(moves), 2):
        pair = " ".join(moves[i:i + 2])
        lines.append(f"{i // 2 + 1}. {pair}")
    return lines

"""Move-rules oracle backed by python-chess.

The trainer never implements chess rules itself. Every legality check,
move application, SAN rendering and PGN parse goes through here, and
every function returns new boards rather than mutating the caller's.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

import chess
import chess.pgn

from booktrainer.notation import is_result_marker

logger = logging.getLogger(__name__)

START_FEN = chess.STARTING_FEN

_PROMOTION_PIECES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
}


@dataclass(frozen=True)
class LegalMove:
    """A legal move with its squares and SAN."""

    from_square: str
    to_square: str
    san: str
    promotion: str | None = None
    is_capture: bool = False
    is_castling: bool = False


def parse_fen(fen: str | None) -> chess.Board:
    """Parse a FEN, falling back to the standard start position.

    Malformed or illegal positions are never fatal; the trainee gets
    the exercise from the initial position instead.
    """
    if not fen:
        return chess.Board()
    try:
        board = chess.Board(fen)
    except ValueError:
        logger.warning("Unparseable FEN %r, using start position", fen)
        return chess.Board()
    if not board.is_valid():
        logger.warning("Illegal position %r, using start position", fen)
        return chess.Board()
    return board


def is_valid_fen(fen: str | None) -> bool:
    if not fen:
        return False
    try:
        return chess.Board(fen).is_valid()
    except ValueError:
        return False


def safe_fen(fen: str | None) -> str:
    """Return fen when it is legal, else the start position FEN."""
    return fen if is_valid_fen(fen) else START_FEN


def legal_moves(board: chess.Board) -> list[LegalMove]:
    """List every legal move in the position."""
    result = []
    for move in board.legal_moves:
        result.append(
            LegalMove(
                from_square=chess.square_name(move.from_square),
                to_square=chess.square_name(move.to_square),
                san=board.san(move),
                promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
                is_capture=board.is_capture(move),
                is_castling=board.is_castling(move),
            )
        )
    return result


def _build_move(
    board: chess.Board, from_square: str, to_square: str, promotion: str | None
) -> chess.Move | None:
    try:
        from_sq = chess.parse_square(from_square)
        to_sq = chess.parse_square(to_square)
    except ValueError:
        return None

    promotion_piece = None
    piece = board.piece_at(from_sq)
    if piece is not None and piece.piece_type == chess.PAWN:
        if chess.square_rank(to_sq) in (0, 7):
            # the board UI always asks for a queen unless told otherwise
            promotion_piece = _PROMOTION_PIECES.get((promotion or "q").lower())
            if promotion_piece is None:
                return None

    return chess.Move(from_sq, to_sq, promotion=promotion_piece)


def is_legal(
    board: chess.Board, from_square: str, to_square: str, promotion: str | None = None
) -> bool:
    move = _build_move(board, from_square, to_square, promotion)
    return move is not None and move in board.legal_moves


def apply_move(
    board: chess.Board, from_square: str, to_square: str, promotion: str | None = None
) -> tuple[chess.Board, str] | None:
    """Play a move given by squares.

    Returns:
        (new_board, san) or None when the move is not legal.
    """
    move = _build_move(board, from_square, to_square, promotion)
    if move is None or move not in board.legal_moves:
        return None
    san = board.san(move)
    new_board = board.copy()
    new_board.push(move)
    return new_board, san


def apply_san(board: chess.Board, san: str | None) -> tuple[chess.Board, str] | None:
    """Play a move given in SAN.

    Returns:
        (new_board, canonical_san) or None for result markers, blanks
        and moves that are not legal here.
    """
    if not san or is_result_marker(san):
        return None
    try:
        move = board.parse_san(san)
    except ValueError:
        return None
    canonical = board.san(move)
    new_board = board.copy()
    new_board.push(move)
    return new_board, canonical


def move_squares(board: chess.Board, san: str) -> tuple[str, str] | None:
    """Return (from, to) squares of a SAN move, or None if not legal."""
    if not san or is_result_marker(san):
        return None
    try:
        move = board.parse_san(san)
    except ValueError:
        return None
    return chess.square_name(move.from_square), chess.square_name(move.to_square)


def replay(fen: str | None, moves: list[str]) -> tuple[chess.Board, int]:
    """Replay SAN moves from a FEN, stopping at the first unplayable token.

    Returns:
        (board, plies_applied)
    """
    board = parse_fen(fen)
    applied = 0
    for san in moves:
        played = apply_san(board, san)
        if played is None:
            break
        board = played[0]
        applied += 1
    return board, applied


def load_notation_sequence(text: str) -> chess.Board:
    """Parse full game notation into a board carrying its move stack.

    Raises:
        ValueError: If no game can be read or any move is illegal.
    """
    game = chess.pgn.read_game(io.StringIO(text))
    if game is None:
        raise ValueError("No game found in notation")
    if game.errors:
        raise ValueError(f"Invalid notation: {game.errors[0]}")

    board = game.board()
    for move in game.mainline_moves():
        board.push(move)
    return board


def san_history(board: chess.Board) -> list[str]:
    """SAN of every move on the board's stack, from its root position."""
    replay_board = board.root()
    sans = []
    for move in board.move_stack:
        sans.append(replay_board.san(move))
        replay_board.push(move)
    return sans


def board_to_notation(board: chess.Board) -> str:
    return board.fen()


def undo(board: chess.Board) -> chess.Board:
    """Return the position before the last move (unchanged if none)."""
    previous = board.copy()
    if previous.move_stack:
        previous.pop()
    return previous


def side_to_move(board: chess.Board) -> str:
    return "white" if board.turn == chess.WHITE else "black"

"""
Referee: stateless rules adapter around python-chess.

- Every helper takes an explicit chess.Board; nothing here keeps a reference between calls.
- apply_move() validates a from/to(/promotion) proposal and returns a fresh Board plus a
  MoveRecord, leaving the input Board untouched.
- termination_reason()/checked_king_square() derive display data from a position.

Used by SessionController for both human and oracle moves, and by MoveLedger for replay.
"""
from __future__ import annotations
import chess
from dataclasses import dataclass
from typing import Optional

PROMOTION_PIECES = {"q": chess.QUEEN, "r": chess.ROOK, "b": chess.BISHOP, "n": chess.KNIGHT}
SIDES = {"white": chess.WHITE, "black": chess.BLACK}


@dataclass(frozen=True)
class MoveRecord:
    """One applied move, as produced by apply_move()."""
    from_square: str
    to_square: str
    promotion: Optional[str]  # 'q' | 'r' | 'b' | 'n'
    san: str
    uci: str
    side: str  # side that made the move
    fen_after: str

    def to_dict(self) -> dict:
        return {
            "from": self.from_square,
            "to": self.to_square,
            "promotion": self.promotion,
            "san": self.san,
            "uci": self.uci,
            "side": self.side,
            "fen_after": self.fen_after,
        }


# ---------------- Argument parsing -----------------
def parse_square(name) -> int:
    """Return the python-chess square index for a name like 'e2'. Raises ValueError."""
    try:
        return chess.parse_square(str(name).strip().lower())
    except ValueError:
        raise ValueError(f"Invalid square: {name!r}") from None


def parse_side(side) -> str:
    key = str(side or "").strip().lower()
    key = {"w": "white", "b": "black"}.get(key, key)
    if key not in SIDES:
        raise ValueError(f"Invalid side: {side!r} (expected 'white' or 'black')")
    return key


def start_board(fen=None) -> chess.Board:
    """Board for a new game; a FEN must describe a legal position. Raises ValueError."""
    board = chess.Board(fen) if fen else chess.Board()
    if not board.is_valid():
        raise ValueError(f"Invalid position: {fen!r}")
    return board


def parse_promotion(piece) -> Optional[int]:
    """Map 'q', 'queen' or chess.QUEEN to a promotion piece type; None for anything else."""
    if piece is None:
        return None
    if isinstance(piece, int):
        return piece if piece in PROMOTION_PIECES.values() else None
    key = str(piece).strip().lower()
    if key in PROMOTION_PIECES:
        return PROMOTION_PIECES[key]
    if key in chess.PIECE_NAMES:
        piece_type = chess.PIECE_NAMES.index(key)
        return piece_type if piece_type in PROMOTION_PIECES.values() else None
    return None


# ---------------- Position queries -----------------
def side_to_move(board: chess.Board) -> str:
    return "white" if board.turn == chess.WHITE else "black"


def owns_piece(board: chess.Board, square: str) -> bool:
    """True if the square holds a piece of the side to move."""
    piece = board.piece_at(parse_square(square))
    return piece is not None and piece.color == board.turn


def legal_moves_from(board: chess.Board, square: str) -> list[chess.Move]:
    sq = parse_square(square)
    return list(board.generate_legal_moves(from_mask=chess.BB_SQUARES[sq]))


def legal_targets(board: chess.Board, square: str) -> frozenset[str]:
    return frozenset(chess.square_name(m.to_square) for m in legal_moves_from(board, square))


def needs_promotion(board: chess.Board, from_square: str, to_square: str) -> bool:
    to_sq = parse_square(to_square)
    return any(m.to_square == to_sq and m.promotion for m in legal_moves_from(board, from_square))


def checked_king_square(board: chess.Board) -> Optional[str]:
    if not board.is_check():
        return None
    king = board.king(board.turn)
    return chess.square_name(king) if king is not None else None


def termination_reason(board: chess.Board) -> Optional[str]:
    """Readable reason for a finished position (checkmate, stalemate, ...); None while ongoing."""
    outcome = board.outcome()
    if outcome is None:
        return None
    return outcome.termination.name.lower()


# ---------------- Move application -----------------
def apply_move(board: chess.Board, from_square: str, to_square: str, promotion=None) -> Optional[tuple[chess.Board, MoveRecord]]:
    """Apply a proposed move to a copy of board.

    Returns (new_board, record), or None when python-chess rejects the proposal.
    """
    promo_type = parse_promotion(promotion)
    mv = chess.Move(parse_square(from_square), parse_square(to_square), promotion=promo_type)
    if mv not in board.legal_moves:
        return None
    san = board.san(mv)
    side = side_to_move(board)
    new_board = board.copy()
    new_board.push(mv)
    record = MoveRecord(
        from_square=chess.square_name(mv.from_square),
        to_square=chess.square_name(mv.to_square),
        promotion=chess.piece_symbol(promo_type) if promo_type else None,
        san=san,
        uci=mv.uci(),
        side=side,
        fen_after=new_board.fen(),
    )
    return new_board, record

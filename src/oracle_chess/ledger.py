"""
MoveLedger: append-only record of the moves applied in the current game.

- The last move (used for board highlighting) is always ledger[-1], never tracked separately.
- replay() rebuilds the position from the starting FEN to cross-check the live board.
- move_pairs()/pgn() feed the move list and the PGN export.
"""
from __future__ import annotations
import chess, chess.pgn, datetime
from typing import Iterator, Optional

from .referee import MoveRecord


class MoveLedger:
    def __init__(self, start_fen: str = chess.STARTING_FEN):
        self.start_fen = start_fen
        self._moves: list[MoveRecord] = []

    def __len__(self) -> int:
        return len(self._moves)

    def __iter__(self) -> Iterator[MoveRecord]:
        return iter(self._moves)

    def __getitem__(self, idx):
        return self._moves[idx]

    @property
    def last(self) -> Optional[MoveRecord]:
        return self._moves[-1] if self._moves else None

    def append(self, record: MoveRecord) -> None:
        self._moves.append(record)

    def reset(self, start_fen: str = chess.STARTING_FEN) -> None:
        self.start_fen = start_fen
        self._moves = []

    # ---------------- Views -----------------
    def sans(self) -> list[str]:
        return [m.san for m in self._moves]

    def move_pairs(self) -> list[tuple[int, str, Optional[str]]]:
        """Numbered (move_no, first_san, second_san) rows for a two-column move list.

        When the game starts with Black to move, the first row has an empty first slot.
        """
        board = chess.Board(self.start_fen)
        move_no = board.fullmove_number
        sans: list[Optional[str]] = [None] if board.turn == chess.BLACK else []
        sans.extend(self.sans())
        rows = []
        for i in range(0, len(sans), 2):
            pair = sans[i:i + 2]
            rows.append((move_no + i // 2, pair[0] or "", pair[1] if len(pair) > 1 else None))
        return rows

    def replay(self) -> chess.Board:
        """Rebuild the position by replaying every recorded move from start_fen.

        Raises ValueError if a recorded move is not legal in the replayed position.
        """
        board = chess.Board(self.start_fen)
        for rec in self._moves:
            mv = chess.Move.from_uci(rec.uci)
            if mv not in board.legal_moves:
                raise ValueError(f"illegal_sequence_at:{rec.uci}")
            board.push(mv)
        return board

    # ---------------- PGN / export -----------------
    def pgn(self, white: str = "?", black: str = "?", result: str = "*", event: str = "Oracle Chess") -> str:
        game = chess.pgn.Game()
        game.headers["Event"] = event
        game.headers["Date"] = datetime.date.today().strftime("%Y.%m.%d")
        game.headers["White"] = white
        game.headers["Black"] = black
        game.headers["Result"] = result
        if self.start_fen != chess.STARTING_FEN:
            game.setup(chess.Board(self.start_fen))
        node = game
        for rec in self._moves:
            node = node.add_variation(chess.Move.from_uci(rec.uci))
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
        return game.accept(exporter)

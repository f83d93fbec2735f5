"""
Interactive game session: one human against the move oracle.

- SessionConfig: oracle toggle, bounded search depth, and board orientation.
- SessionController: owns the single authoritative position (a python-chess Board that is
  replaced, never mutated), the selection state, the pending promotion and the MoveLedger.
  Every external event (square click, promotion choice, new game, config change, manual
  oracle request) goes through one of its commands.
  - Human and oracle moves share one application path (_apply) that validates through the
    Referee, swaps the board, appends to the ledger and asks the oracle to reply when it is
    the oracle's side to move.
  - Oracle queries are stamped with the game generation; replies for an earlier generation
    are dropped, current ones are re-validated against the live board before applying.

Commands that may reach the oracle must run on the asyncio event loop.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import chess

from . import referee
from .config import SETTINGS
from .coordinator import OracleCoordinator, OracleQuery
from .ledger import MoveLedger
from .move_validator import decode_uci
from .oracle_client import OracleClient, OracleReply, format_evaluation
from .referee import MoveRecord


@dataclass
class SessionConfig:
    oracle_enabled: bool = True
    search_depth: int = SETTINGS.default_depth
    orientation: str = "white"  # side drawn at the bottom of the board
    min_depth: int = SETTINGS.min_depth
    max_depth: int = SETTINGS.oracle_max_depth

    def clamp_depth(self, depth) -> int:
        try:
            depth = int(depth)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid search depth: {depth!r}") from None
        return max(self.min_depth, min(depth, self.max_depth))


@dataclass(frozen=True)
class SelectionState:
    selected: Optional[str] = None
    legal_targets: frozenset[str] = frozenset()


IDLE = SelectionState()


@dataclass(frozen=True)
class PendingPromotion:
    from_square: str
    to_square: str


def _square(name) -> str:
    return chess.square_name(referee.parse_square(name))


class SessionController:
    def __init__(self, oracle_client: OracleClient | None = None, cfg: SessionConfig | None = None,
                 human_side: str = "white", start_fen: str | None = None):
        self.log = logging.getLogger("SessionController")
        self.cfg = cfg or SessionConfig()
        self.cfg.search_depth = self.cfg.clamp_depth(self.cfg.search_depth)
        self._oracle = OracleCoordinator(oracle_client or OracleClient(), self._handle_reply, self._handle_failure)
        self._generation = 0
        self.ledger = MoveLedger()
        self._reset(referee.parse_side(human_side), referee.start_board(start_fen))

    def _reset(self, human_side: str, board: chess.Board) -> None:
        self._board = board
        self.human_side = human_side
        self.cfg.orientation = human_side
        self.ledger.reset(board.fen())
        self._selection = IDLE
        self._pending: Optional[PendingPromotion] = None
        self.evaluation: Optional[float] = None
        self.mate: Optional[int] = None
        self.last_error: Optional[str] = None

    # ---------------- Queries -----------------
    @property
    def board(self) -> chess.Board:
        """A copy of the current position; the live board is never handed out."""
        return self._board.copy()

    @property
    def fen(self) -> str:
        return self._board.fen()

    @property
    def turn(self) -> str:
        return referee.side_to_move(self._board)

    @property
    def in_check(self) -> bool:
        return self._board.is_check()

    @property
    def checked_king_square(self) -> Optional[str]:
        return referee.checked_king_square(self._board)

    @property
    def is_game_over(self) -> bool:
        return self._board.is_game_over()

    @property
    def result(self) -> str:
        return self._board.result()

    @property
    def termination_reason(self) -> Optional[str]:
        return referee.termination_reason(self._board)

    @property
    def selection(self) -> SelectionState:
        return self._selection

    @property
    def legal_targets(self) -> frozenset[str]:
        return self._selection.legal_targets

    @property
    def pending_promotion(self) -> Optional[PendingPromotion]:
        return self._pending

    @property
    def last_move(self) -> Optional[MoveRecord]:
        return self.ledger.last

    @property
    def evaluation_display(self) -> str:
        return format_evaluation(self.evaluation, self.mate)

    @property
    def busy(self) -> bool:
        return self._oracle.busy

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def oracle_side(self) -> str:
        return "black" if self.human_side == "white" else "white"

    # ---------------- Board input -----------------
    def _accepts_board_input(self) -> bool:
        return not (self.busy or self._pending is not None or self._board.is_game_over())

    def select_or_move(self, square) -> Optional[MoveRecord]:
        """Single board-click entry point: select an own piece, or move the selected one."""
        square = _square(square)
        if not self._accepts_board_input():
            self.log.debug("Ignoring click on %s (busy=%s pending=%s over=%s)", square, self.busy, self._pending, self.is_game_over)
            return None
        if referee.owns_piece(self._board, square):
            self.select_square(square)
            return None
        if self._selection.selected is None:
            return None
        return self.attempt_move_to(square)

    def select_square(self, square) -> bool:
        square = _square(square)
        if not self._accepts_board_input() or not referee.owns_piece(self._board, square):
            return False
        self._selection = SelectionState(square, referee.legal_targets(self._board, square))
        return True

    def attempt_move_to(self, square) -> Optional[MoveRecord]:
        """Move the selected piece to square; enters the promotion gate when a choice is needed.

        An illegal target leaves the selection untouched.
        """
        square = _square(square)
        selected = self._selection.selected
        if not self._accepts_board_input() or selected is None:
            return None
        if square not in self._selection.legal_targets:
            self.log.debug("Ignoring illegal target %s for %s", square, selected)
            return None
        if referee.needs_promotion(self._board, selected, square):
            self._pending = PendingPromotion(selected, square)
            return None
        return self._apply(selected, square)

    def clear_selection(self) -> None:
        if self._pending is None:
            self._selection = IDLE

    def choose_promotion(self, piece) -> Optional[MoveRecord]:
        pending = self._pending
        if pending is None or referee.parse_promotion(piece) is None:
            self.log.debug("Ignoring promotion choice %r (pending=%s)", piece, pending)
            return None
        self._pending = None
        record = self._apply(pending.from_square, pending.to_square, piece)
        if record is None:
            self.log.warning("Promotion %s%s=%s rejected; selection reset", pending.from_square, pending.to_square, piece)
            self._selection = IDLE
        return record

    # ---------------- Move application -----------------
    def _apply(self, from_square: str, to_square: str, promotion=None) -> Optional[MoveRecord]:
        applied = referee.apply_move(self._board, from_square, to_square, promotion)
        if applied is None:
            return None
        self._board, record = applied
        self.ledger.append(record)
        self._selection = IDLE
        self.log.info("Ply %d %s: %s (%s)", len(self.ledger), record.side, record.san, record.uci)
        if self._board.is_game_over():
            self.log.info("Game finished result=%s reason=%s", self.result, self.termination_reason)
        self._maybe_request_reply()
        return record

    # ---------------- Oracle -----------------
    def _oracle_should_move(self) -> bool:
        return (
            self.cfg.oracle_enabled
            and self._pending is None
            and not self._board.is_game_over()
            and self.turn == self.oracle_side
        )

    def _maybe_request_reply(self) -> bool:
        if not self._oracle_should_move():
            return False
        return self._issue_query()

    def _issue_query(self) -> bool:
        query = OracleQuery(fen=self._board.fen(), depth=self.cfg.search_depth, generation=self.generation)
        if not self._oracle.request_reply(query):
            return False
        self.last_error = None
        return True

    def request_oracle_move_now(self) -> bool:
        """Ask the oracle to move for the side to move. No-op while busy or frozen."""
        if not self.cfg.oracle_enabled or self.busy or self._pending is not None or self._board.is_game_over():
            return False
        return self._issue_query()

    async def wait_for_oracle(self) -> None:
        await self._oracle.wait()

    def _handle_reply(self, query: OracleQuery, reply: OracleReply) -> None:
        if query.generation != self._generation:
            self.log.info("Discarding stale oracle reply %s (generation %d, current %d)", reply.best_uci, query.generation, self._generation)
            self._maybe_request_reply()
            return
        self.evaluation, self.mate = reply.evaluation, reply.mate
        if self._pending is not None:
            self.log.warning("Discarding oracle reply %s while a promotion is pending", reply.best_uci)
            return
        try:
            decoded = decode_uci(reply.best_uci or "")
        except ValueError:
            self._soft_fail(f"Oracle returned no valid move: {reply.raw}" if reply.raw else "Oracle returned no valid move")
            return
        record = self._apply(decoded["from_square"], decoded["to_square"], decoded["promotion"])
        if record is None:
            self._soft_fail(f"Oracle suggested an illegal move: {reply.best_uci}")

    def _handle_failure(self, query: OracleQuery, message: str) -> None:
        if query.generation != self._generation:
            self.log.info("Ignoring failure of stale oracle query (generation %d): %s", query.generation, message)
            self._maybe_request_reply()
            return
        self._soft_fail(message)

    def _soft_fail(self, message: str) -> None:
        self.last_error = message
        self.log.warning("Oracle soft failure: %s", message)

    # ---------------- Session commands -----------------
    def new_game(self, side: str = "white", start_fen: str | None = None) -> None:
        """Start over with the human playing side; the oracle opens if it moves first."""
        side = referee.parse_side(side)
        board = referee.start_board(start_fen)
        self._generation += 1
        self._reset(side, board)
        self.log.info("New game generation=%d human=%s fen=%s", self._generation, side, board.fen())
        if self.busy:
            self.log.info("Oracle still busy with generation %d; its reply will be discarded", self._oracle.in_flight.generation)
        self._maybe_request_reply()

    def set_oracle_enabled(self, enabled: bool) -> None:
        # An in-flight request is left to finish.
        self.cfg.oracle_enabled = bool(enabled)

    def set_search_depth(self, depth) -> int:
        self.cfg.search_depth = self.cfg.clamp_depth(depth)
        return self.cfg.search_depth

    def toggle_orientation(self) -> str:
        self.cfg.orientation = "black" if self.cfg.orientation == "white" else "white"
        return self.cfg.orientation

    def update_config(self, oracle_enabled: bool | None = None, search_depth=None) -> SessionConfig:
        if search_depth is not None:
            self.set_search_depth(search_depth)
        if oracle_enabled is not None:
            self.set_oracle_enabled(oracle_enabled)
        return self.cfg

    # ---------------- Export / Verification -----------------
    def verify_history(self) -> dict:
        """Replay the ledger from the starting position and compare with the live board."""
        try:
            replayed = self.ledger.replay().fen()
        except ValueError as exc:
            return {"error": str(exc), "mismatch": True}
        return {"replayed_fen": replayed, "live_fen": self.fen, "mismatch": replayed != self.fen}

    def pgn(self) -> str:
        white = "Human" if self.human_side == "white" else "Oracle"
        black = "Human" if self.human_side == "black" else "Oracle"
        return self.ledger.pgn(white=white, black=black, result=self.result)

    def state(self) -> dict:
        """JSON-friendly snapshot of everything the presentation layer draws."""
        last = self.ledger.last
        pending = self._pending
        return {
            "generation": self.generation,
            "fen": self.fen,
            "turn": self.turn,
            "in_check": self.in_check,
            "checked_king": self.checked_king_square,
            "game_over": self.is_game_over,
            "result": self.result,
            "termination_reason": self.termination_reason,
            "human_side": self.human_side,
            "orientation": self.cfg.orientation,
            "oracle_enabled": self.cfg.oracle_enabled,
            "search_depth": self.cfg.search_depth,
            "busy": self.busy,
            "selected": self._selection.selected,
            "legal_targets": sorted(self._selection.legal_targets),
            "pending_promotion": {"from": pending.from_square, "to": pending.to_square} if pending else None,
            "moves": self.ledger.sans(),
            "move_pairs": [list(row) for row in self.ledger.move_pairs()],
            "last_move": last.to_dict() if last else None,
            "evaluation": self.evaluation_display,
            "error": self.last_error,
        }

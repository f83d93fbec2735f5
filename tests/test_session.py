import unittest
from unittest.mock import patch

import chess

from src.oracle_chess import referee
from src.oracle_chess.oracle_client import OracleError
from src.oracle_chess.session import IDLE, PendingPromotion, SessionConfig, SessionController
from tests.oracle_fakes import ScriptedOracle, reply

PROMOTION_FEN = "7k/4P3/8/8/8/8/8/4K3 w - - 0 1"


def offline_session(start_fen=None):
    return SessionController(oracle_client=ScriptedOracle(), cfg=SessionConfig(oracle_enabled=False), start_fen=start_fen)


class SelectionTests(unittest.TestCase):
    def test_select_own_piece_computes_targets(self):
        s = offline_session()
        s.select_or_move("e2")
        self.assertEqual(s.selection.selected, "e2")
        self.assertEqual(s.legal_targets, {"e3", "e4"})

    def test_illegal_click_leaves_selection_unchanged(self):
        s = offline_session()
        s.select_or_move("e2")
        before = s.selection
        self.assertIsNone(s.select_or_move("e5"))
        self.assertEqual(s.selection, before)
        self.assertEqual(len(s.ledger), 0)
        self.assertEqual(s.fen, chess.STARTING_FEN)

    def test_selecting_another_own_piece_replaces_selection(self):
        s = offline_session()
        s.select_or_move("e2")
        s.select_or_move("g1")
        self.assertEqual(s.selection.selected, "g1")
        self.assertEqual(s.legal_targets, {"f3", "h3"})

    def test_click_without_selection_on_foreign_piece_is_ignored(self):
        s = offline_session()
        s.select_or_move("e7")
        self.assertEqual(s.selection, IDLE)

    def test_legal_move_resets_selection_and_appends(self):
        s = offline_session()
        s.select_or_move("e2")
        move = s.select_or_move("e4")
        self.assertEqual(move.san, "e4")
        self.assertEqual(s.selection, IDLE)
        self.assertEqual(s.last_move, move)
        self.assertEqual(s.turn, "black")

    def test_clear_selection(self):
        s = offline_session()
        s.select_or_move("b1")
        s.clear_selection()
        self.assertEqual(s.selection, IDLE)

    def test_invalid_square_name_raises(self):
        s = offline_session()
        with self.assertRaises(ValueError):
            s.select_or_move("z9")

    def test_without_oracle_human_moves_both_sides(self):
        s = offline_session()
        for sq in ("e2", "e4", "e7", "e5", "g1", "f3"):
            s.select_or_move(sq)
        self.assertEqual(s.ledger.sans(), ["e4", "e5", "Nf3"])
        self.assertFalse(s.verify_history()["mismatch"])


class PromotionTests(unittest.TestCase):
    def test_promotion_target_opens_gate_without_moving(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        self.assertIn("e8", s.legal_targets)
        self.assertIsNone(s.select_or_move("e8"))
        self.assertEqual(s.pending_promotion, PendingPromotion("e7", "e8"))
        self.assertEqual(s.fen, chess.Board(PROMOTION_FEN).fen())
        self.assertEqual(s.selection.selected, "e7")

    def test_other_clicks_ignored_while_pending(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        s.select_or_move("e1")
        s.select_or_move("d1")
        s.clear_selection()
        self.assertEqual(s.selection.selected, "e7")
        self.assertEqual(len(s.ledger), 0)

    def test_choose_queen_applies_promotion(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        move = s.choose_promotion("queen")
        self.assertEqual(move.promotion, "q")
        self.assertEqual(move.san, "e8=Q+")
        self.assertEqual(s.ledger[-1], move)
        self.assertEqual(s.board.piece_at(chess.E8), chess.Piece(chess.QUEEN, chess.WHITE))
        self.assertIsNone(s.pending_promotion)
        self.assertEqual(s.selection, IDLE)

    def test_underpromotion_to_knight(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        move = s.choose_promotion("n")
        self.assertEqual(move.uci, "e7e8n")

    def test_unknown_piece_keeps_gate_open(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        self.assertIsNone(s.choose_promotion("king"))
        self.assertIsNotNone(s.pending_promotion)

    def test_choice_without_pending_is_ignored(self):
        s = offline_session()
        self.assertIsNone(s.choose_promotion("q"))
        self.assertEqual(len(s.ledger), 0)

    def test_new_game_clears_pending_promotion(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        s.new_game("white")
        self.assertIsNone(s.pending_promotion)
        self.assertEqual(s.fen, chess.STARTING_FEN)

    def test_rejected_promotion_resets_to_idle(self):
        s = offline_session(PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        with patch.object(referee, "apply_move", return_value=None):
            self.assertIsNone(s.choose_promotion("q"))
        self.assertIsNone(s.pending_promotion)
        self.assertEqual(s.selection, IDLE)
        self.assertEqual(len(s.ledger), 0)
        self.assertEqual(s.fen, chess.Board(PROMOTION_FEN).fen())


class GameOverTests(unittest.TestCase):
    def test_checkmate_freezes_board(self):
        s = offline_session()
        for sq in ("f2", "f3", "e7", "e5", "g2", "g4", "d8", "h4"):
            s.select_or_move(sq)
        self.assertTrue(s.is_game_over)
        self.assertEqual(s.termination_reason, "checkmate")
        self.assertEqual(s.result, "0-1")
        self.assertEqual(s.checked_king_square, "e1")
        s.select_or_move("e2")
        self.assertEqual(s.selection, IDLE)
        s.set_oracle_enabled(True)
        self.assertFalse(s.request_oracle_move_now())


class ConfigTests(unittest.TestCase):
    def test_depth_is_clamped(self):
        s = SessionController(oracle_client=ScriptedOracle(), cfg=SessionConfig(min_depth=6, max_depth=15))
        self.assertEqual(s.set_search_depth(40), 15)
        self.assertEqual(s.set_search_depth(2), 6)
        self.assertEqual(s.set_search_depth("9"), 9)
        with self.assertRaises(ValueError):
            s.set_search_depth("deep")

    def test_toggle_orientation(self):
        s = offline_session()
        self.assertEqual(s.toggle_orientation(), "black")
        self.assertEqual(s.toggle_orientation(), "white")

    def test_bad_side_raises(self):
        s = offline_session()
        with self.assertRaises(ValueError):
            s.new_game("purple")

    def test_illegal_start_position_rejected(self):
        s = offline_session()
        s.select_or_move("e2")
        with self.assertRaises(ValueError):
            s.new_game("white", "4k3/8/8/8/8/8/8/4R1K1 w - - 0 1")
        self.assertEqual(s.fen, chess.STARTING_FEN)
        self.assertEqual(s.state()["generation"], 0)
        with self.assertRaises(ValueError):
            offline_session("8/8/8/8/8/8/8/4K3 w - - 0 1")

    def test_new_game_bumps_generation(self):
        s = offline_session()
        s.new_game("black")
        self.assertEqual(s.generation, 1)
        self.assertEqual(s.state()["generation"], 1)

    def test_state_snapshot(self):
        s = offline_session()
        s.select_or_move("e2")
        state = s.state()
        self.assertEqual(state["selected"], "e2")
        self.assertEqual(state["legal_targets"], ["e3", "e4"])
        self.assertEqual(state["evaluation"], "-")
        self.assertFalse(state["busy"])
        self.assertIsNone(state["pending_promotion"])


class OracleSessionTests(unittest.IsolatedAsyncioTestCase):
    def session(self, oracle, human_side="white"):
        return SessionController(oracle_client=oracle, cfg=SessionConfig(search_depth=10), human_side=human_side)

    async def test_human_move_gets_oracle_reply(self):
        oracle = ScriptedOracle(reply("e7e5", evaluation=0.3))
        s = self.session(oracle)
        s.select_or_move("e2")
        s.select_or_move("e4")
        self.assertTrue(s.busy)
        self.assertEqual(s._oracle.in_flight.depth, 10)
        await s.wait_for_oracle()
        self.assertEqual(oracle.calls[0][1], 10)
        self.assertFalse(s.busy)
        self.assertEqual(s.ledger.sans(), ["e4", "e5"])
        self.assertEqual(s.last_move.uci, "e7e5")
        self.assertEqual(s.evaluation_display, "+0.30")
        self.assertFalse(s.verify_history()["mismatch"])

    async def test_board_input_ignored_while_busy(self):
        oracle = ScriptedOracle(reply("e7e5"))
        gate = oracle.hold()
        s = self.session(oracle)
        s.select_or_move("e2")
        s.select_or_move("e4")
        s.select_or_move("e7")
        self.assertEqual(s.selection, IDLE)
        gate.set()
        await s.wait_for_oracle()
        self.assertEqual(len(s.ledger), 2)

    async def test_opening_reply_when_playing_black(self):
        oracle = ScriptedOracle(reply("d2d4"))
        s = self.session(oracle)
        s.new_game("black")
        self.assertEqual(s.cfg.orientation, "black")
        self.assertTrue(s.busy)
        s.select_or_move("d2")
        self.assertEqual(s.selection, IDLE)
        await s.wait_for_oracle()
        self.assertEqual(len(s.ledger), 1)
        self.assertEqual(s.ledger[0].side, "white")
        self.assertEqual(s.turn, "black")
        self.assertEqual(len(oracle.calls), 1)

    async def test_second_request_while_busy_is_rejected(self):
        oracle = ScriptedOracle(reply("e2e4"), reply("d2d4"))
        gate = oracle.hold()
        s = self.session(oracle, human_side="black")
        self.assertTrue(s.request_oracle_move_now())
        self.assertFalse(s.request_oracle_move_now())
        gate.set()
        await s.wait_for_oracle()
        self.assertEqual(len(oracle.calls), 1)
        self.assertEqual(s.ledger.sans(), ["e4"])

    async def test_stale_reply_is_not_applied_to_new_game(self):
        oracle = ScriptedOracle(reply("e2e4"), reply("d2d4"))
        gate = oracle.hold()
        s = self.session(oracle)
        s.select_or_move("g1")
        s.select_or_move("f3")
        self.assertTrue(s.busy)
        s.new_game("black")
        self.assertEqual(len(s.ledger), 0)
        gate.set()
        await s.wait_for_oracle()
        # e2e4 would be legal in the new game, but it answered the abandoned one
        self.assertEqual(s.ledger.sans(), ["d4"])
        self.assertEqual(oracle.calls[1][0], chess.STARTING_FEN)
        self.assertIsNone(s.last_error)

    async def test_stale_failure_is_not_surfaced(self):
        oracle = ScriptedOracle(OracleError("Oracle HTTP 500"))
        gate = oracle.hold()
        s = self.session(oracle)
        s.select_or_move("e2")
        s.select_or_move("e4")
        s.new_game("white")
        gate.set()
        await s.wait_for_oracle()
        self.assertIsNone(s.last_error)
        self.assertEqual(len(s.ledger), 0)

    async def test_forced_mate_display_wins_over_score(self):
        oracle = ScriptedOracle(reply("e2e4", evaluation=7.5, mate=2))
        s = self.session(oracle)
        s.new_game("black")
        await s.wait_for_oracle()
        self.assertEqual(s.evaluation_display, "#2")
        self.assertEqual(s.state()["evaluation"], "#2")

    async def test_illegal_suggestion_is_soft_failure(self):
        oracle = ScriptedOracle(reply("e2e5"))
        s = self.session(oracle)
        s.select_or_move("d2")
        s.select_or_move("d4")
        await s.wait_for_oracle()
        self.assertIn("illegal", s.last_error)
        self.assertEqual(s.ledger.sans(), ["d4"])
        self.assertFalse(s.busy)
        self.assertTrue(s.select_square("d7"))

    async def test_missing_move_token_is_soft_failure(self):
        oracle = ScriptedOracle(reply(None, evaluation=0.1))
        s = self.session(oracle)
        s.request_oracle_move_now()
        await s.wait_for_oracle()
        self.assertEqual(s.last_error, "Oracle returned no valid move: bestmove (none)")
        self.assertEqual(s.evaluation_display, "+0.10")
        self.assertEqual(len(s.ledger), 0)

    async def test_transport_failure_then_manual_retry(self):
        oracle = ScriptedOracle(OracleError("Oracle HTTP 502"), reply("c7c5"))
        s = self.session(oracle)
        s.select_or_move("e2")
        s.select_or_move("e4")
        await s.wait_for_oracle()
        self.assertEqual(s.last_error, "Oracle HTTP 502")
        self.assertTrue(s.request_oracle_move_now())
        self.assertIsNone(s.last_error)
        await s.wait_for_oracle()
        self.assertEqual(s.ledger.sans(), ["e4", "c5"])

    async def test_unexpected_exception_is_soft_failure(self):
        oracle = ScriptedOracle(RuntimeError("socket exploded"))
        s = self.session(oracle)
        s.request_oracle_move_now()
        await s.wait_for_oracle()
        self.assertIn("socket exploded", s.last_error)
        self.assertFalse(s.busy)

    async def test_disabling_oracle_keeps_in_flight_request(self):
        oracle = ScriptedOracle(reply("e7e5"))
        gate = oracle.hold()
        s = self.session(oracle)
        s.select_or_move("e2")
        s.select_or_move("e4")
        s.set_oracle_enabled(False)
        gate.set()
        await s.wait_for_oracle()
        self.assertEqual(s.ledger.sans(), ["e4", "e5"])
        s.select_or_move("d2")
        s.select_or_move("d4")
        self.assertFalse(s.busy)
        self.assertEqual(len(oracle.calls), 1)

    async def test_oracle_request_blocked_during_promotion(self):
        s = SessionController(oracle_client=ScriptedOracle(), start_fen=PROMOTION_FEN)
        s.select_or_move("e7")
        s.select_or_move("e8")
        self.assertFalse(s.request_oracle_move_now())

    async def test_oracle_promotion_token_applied(self):
        oracle = ScriptedOracle(reply("a2a1n"))
        s = self.session(oracle)
        s.new_game("white", "6k1/8/8/8/8/8/p7/4K2R w - - 0 1")
        s.select_or_move("h1")
        s.select_or_move("h2")
        await s.wait_for_oracle()
        self.assertEqual(s.last_move.promotion, "n")
        self.assertEqual(s.board.piece_at(chess.A1), chess.Piece(chess.KNIGHT, chess.BLACK))


if __name__ == "__main__":
    unittest.main()

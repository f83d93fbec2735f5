import unittest

from src.oracle_chess.move_validator import decode_uci, extract_bestmove


class ExtractBestmoveTests(unittest.TestCase):
    def test_token_after_keyword(self):
        self.assertEqual(extract_bestmove("bestmove e2e4 ponder e7e5"), "e2e4")
        self.assertEqual(extract_bestmove("  bestmove a7a8n"), "a7a8n")

    def test_bare_token(self):
        self.assertEqual(extract_bestmove("g1f3"), "g1f3")

    def test_rejects_malformed_tokens(self):
        for text in ("bestmove (none)", "bestmove", "bestmove e2e9", "bestmove e7e8k", "Nf3", "", None, 42):
            with self.subTest(text=text):
                self.assertIsNone(extract_bestmove(text))


class DecodeUciTests(unittest.TestCase):
    def test_plain_and_promotion(self):
        self.assertEqual(decode_uci("e2e4"), {"from_square": "e2", "to_square": "e4", "promotion": None})
        self.assertEqual(decode_uci("e7e8q")["promotion"], "q")

    def test_malformed_raises(self):
        with self.assertRaises(ValueError):
            decode_uci("e2")


if __name__ == "__main__":
    unittest.main()

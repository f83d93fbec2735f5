"""
Best-move token helpers for oracle replies.

The oracle returns engine protocol output such as "bestmove e2e4 ponder e7e5". We pull the
token after "bestmove" (or the first token when the keyword is missing), check it against a
strict coordinate pattern, and decode it into from/to/promotion parts.
Legality is not checked here; that is the Referee's job against the live position.
"""
from __future__ import annotations

import re
from typing import Optional, TypedDict

UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")


class DecodedMove(TypedDict):
    from_square: str
    to_square: str
    promotion: Optional[str]


def _primary_token(text: str) -> str:
    tokens = text.strip().split()
    if not tokens:
        return ""
    lowered = [t.lower() for t in tokens]
    if "bestmove" in lowered:
        idx = lowered.index("bestmove")
        return tokens[idx + 1] if idx + 1 < len(tokens) else ""
    return tokens[0]


def extract_bestmove(text: Optional[str]) -> Optional[str]:
    """Return a well-formed coordinate move token from engine output, or None."""
    if not text or not isinstance(text, str):
        return None
    token = _primary_token(text)
    return token if UCI_RE.fullmatch(token) else None


def decode_uci(token: str) -> DecodedMove:
    """Split a validated token into its parts. Raises ValueError on a malformed token."""
    if not UCI_RE.fullmatch(token or ""):
        raise ValueError(f"Malformed move token: {token!r}")
    return {
        "from_square": token[0:2],
        "to_square": token[2:4],
        "promotion": token[4] if len(token) == 5 else None,
    }


__all__ = [
    "UCI_RE",
    "DecodedMove",
    "extract_bestmove",
    "decode_uci",
]

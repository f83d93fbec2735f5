from __future__ import annotations
"""
Move oracle client over HTTP (stockfish.online compatible JSON API).

The rest of the code should not care how the oracle is reached. This module sends
`fen` + `depth` and returns an OracleReply; every transport or protocol problem is raised
as OracleError with a message fit to show the user.
"""
from dataclasses import dataclass
from typing import Optional
import asyncio
import logging
import random

import httpx

from .config import SETTINGS
from .move_validator import extract_bestmove

log = logging.getLogger("oracle_client")


class OracleError(Exception):
    """The oracle could not produce a usable reply for this request."""


@dataclass(frozen=True)
class OracleReply:
    evaluation: Optional[float]  # pawns, from White's point of view
    mate: Optional[int]  # forced mate in N, when the oracle reports one
    best_uci: Optional[str]  # validated coordinate token, None when absent or malformed
    raw: Optional[str] = None


def format_evaluation(evaluation: Optional[float], mate: Optional[int]) -> str:
    """Display string for an evaluation: '#N' wins over the numeric score."""
    if mate is not None:
        return f"#{mate}"
    if evaluation is None:
        return "-"
    return f"{evaluation:+.2f}"


def _number(val) -> Optional[float]:
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        return None
    return float(val)


def parse_payload(data) -> OracleReply:
    """Turn a decoded JSON body into an OracleReply. Raises OracleError on a rejected request."""
    if not isinstance(data, dict):
        raise OracleError("Oracle returned a malformed payload")
    if data.get("success") is False:
        raise OracleError(f"Oracle error: {data.get('data') or 'request rejected'}")
    mate = _number(data.get("mate"))
    bestmove = data.get("bestmove")
    raw = bestmove if isinstance(bestmove, str) else None
    return OracleReply(
        evaluation=_number(data.get("evaluation")),
        mate=int(mate) if mate is not None else None,
        best_uci=extract_bestmove(raw),
        raw=raw,
    )


class OracleClient:
    def __init__(
        self,
        url: str | None = None,
        timeout_s: float | None = None,
        retries: int | None = None,
        max_depth: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or SETTINGS.oracle_url
        self.timeout_s = timeout_s if timeout_s is not None else SETTINGS.oracle_timeout_s
        self.retries = retries if retries is not None else SETTINGS.oracle_retries
        self.max_depth = max_depth if max_depth is not None else SETTINGS.oracle_max_depth
        self._transport = transport

    def clamp_depth(self, depth: int) -> int:
        return max(1, min(int(depth), self.max_depth))

    async def fetch_best_move(self, fen: str, depth: int) -> OracleReply:
        """Ask the oracle for its best move in the given position."""
        params = {"fen": fen, "depth": str(self.clamp_depth(depth))}
        delay = 0.5
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            for attempt in range(self.retries + 1):
                try:
                    rsp = await client.get(self.url, params=params)
                    break
                except httpx.TransportError as exc:
                    if attempt >= self.retries:
                        log.warning("Oracle request failed after %d attempts: %s", attempt + 1, type(exc).__name__)
                        raise OracleError(f"Oracle unreachable ({type(exc).__name__})") from exc
                    sleep_s = delay * (2 ** attempt) * (0.8 + 0.4 * random.random())
                    await asyncio.sleep(min(sleep_s, 10.0))
        if not rsp.is_success:
            raise OracleError(f"Oracle HTTP {rsp.status_code}")
        try:
            data = rsp.json()
        except ValueError as exc:
            raise OracleError("Oracle returned malformed JSON") from exc
        reply = parse_payload(data)
        log.debug("Oracle reply depth=%s eval=%s mate=%s best=%s", params["depth"], reply.evaluation, reply.mate, reply.best_uci)
        return reply

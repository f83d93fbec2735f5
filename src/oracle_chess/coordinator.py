"""
Oracle request coordinator.

- request_reply(): schedules at most one oracle query at a time as a task on the running loop.
- busy is True from the moment a query is issued until its result is handed back.
- Results are delivered through the on_reply/on_failure callbacks with the originating
  OracleQuery, so the owner can compare its generation and drop stale replies.

"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .oracle_client import OracleClient, OracleError, OracleReply

log = logging.getLogger("coordinator")


@dataclass(frozen=True)
class OracleQuery:
    fen: str
    depth: int
    generation: int


class OracleCoordinator:
    def __init__(
        self,
        client: OracleClient,
        on_reply: Callable[[OracleQuery, OracleReply], None],
        on_failure: Callable[[OracleQuery, str], None],
    ):
        self.client = client
        self._on_reply = on_reply
        self._on_failure = on_failure
        self._in_flight: Optional[OracleQuery] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    @property
    def in_flight(self) -> Optional[OracleQuery]:
        return self._in_flight

    def request_reply(self, query: OracleQuery) -> bool:
        """Issue query unless another one is outstanding. Must be called from the event loop."""
        if self._in_flight is not None:
            log.debug("Oracle busy with generation %d; request for generation %d rejected", self._in_flight.generation, query.generation)
            return False
        loop = asyncio.get_running_loop()
        self._in_flight = query
        self._task = loop.create_task(self._run(query))
        log.info("Oracle query issued generation=%d depth=%d", query.generation, query.depth)
        return True

    async def _run(self, query: OracleQuery) -> None:
        reply: Optional[OracleReply] = None
        error: Optional[str] = None
        try:
            reply = await self.client.fetch_best_move(query.fen, query.depth)
        except OracleError as exc:
            error = str(exc)
        except Exception as exc:  # noqa: BLE001
            log.exception("Oracle request raised unexpectedly")
            error = f"Oracle call failed: {exc}"
        finally:
            self._in_flight = None
        if error is not None:
            self._on_failure(query, error)
        else:
            self._on_reply(query, reply)

    async def wait(self) -> None:
        """Wait until no query is in flight, including any follow-up issued by a callback."""
        while self._task is not None and not self._task.done():
            await self._task

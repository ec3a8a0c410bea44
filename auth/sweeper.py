"""
auth/sweeper.py -- Background deletion of expired refresh and verification tokens.

The sweeper runs as an asyncio task started in the API lifespan. Each tick
runs TokenStore.sweep_expired() in a worker thread so the event loop keeps
serving requests, bounded by a per-sweep timeout. A failed or timed-out
sweep is logged and simply retried on the next tick; it never stops the loop.

CancelledError from task.cancel() during shutdown propagates out of
asyncio.sleep() and unwinds the loop cleanly.
"""

from __future__ import annotations

import asyncio
import logging

from auth.errors import AuthError
from auth.interfaces import TokenRepository
from core.clock import Clock, utc_now

logger = logging.getLogger("sessionkeeper.sweeper")


class TokenSweeper:
    def __init__(
        self,
        tokens: TokenRepository,
        interval_seconds: float = 300,
        timeout_seconds: float = 10.0,
        clock: Clock = utc_now,
    ) -> None:
        self.tokens = tokens
        self.interval = interval_seconds
        self.timeout = timeout_seconds
        self.clock = clock

    async def sweep_once(self) -> int | None:
        """Run one sweep. Returns rows removed, or None if the sweep failed."""
        now = self.clock()
        try:
            removed = await asyncio.wait_for(asyncio.to_thread(self.tokens.sweep_expired, now), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Token sweep timed out after %.1fs; retrying next tick", self.timeout)
            return None
        except AuthError as exc:
            logger.warning("Token sweep failed (%s); retrying next tick", exc.code)
            return None
        except Exception:
            logger.exception("Token sweep failed unexpectedly; retrying next tick")
            return None
        if removed:
            logger.info("Token sweep removed %d expired tokens", removed)
        return removed

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep_once()

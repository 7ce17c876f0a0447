"""Two periodic polls on one asyncio event loop.

    latest  every ``latest_interval_s``  → DashboardSession.ingest_latest
    bulk    every ``bulk_interval_s``    → DashboardSession.ingest_bulk

Both loops share the session; since they run on a single event loop, state
is only touched between ``await`` points and needs no locking.  A fetch
failure skips that tick.  Any other error stops both loops and is re-raised
from :meth:`PollScheduler.run`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from lora_dashboard.session import DashboardSession
from lora_dashboard.sources import PollSource, SourceError

logger = logging.getLogger(__name__)


class PollScheduler:
    """Drives the latest-reading and bulk-alert polls for a session.

    Parameters
    ----------
    session:
        Dashboard state the polls feed.
    latest:
        Source of the single latest reading.
    bulk:
        Source of the newline-delimited batch of recent readings.
    latest_interval_s, bulk_interval_s:
        Delay between the start of consecutive ticks of each poll.
    """

    def __init__(
        self,
        session: DashboardSession,
        latest: PollSource,
        bulk: PollSource,
        latest_interval_s: float = 1.0,
        bulk_interval_s: float = 5.0,
    ) -> None:
        self._session = session
        self._latest = latest
        self._bulk = bulk
        self._latest_interval = latest_interval_s
        self._bulk_interval = bulk_interval_s
        self._shutdown = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def request_shutdown(self) -> None:
        """Stop both polls at their next tick boundary."""
        logger.info("Scheduler shutdown requested")
        self._shutdown.set()

    def cancel(self) -> None:
        """Cancel both polls immediately."""
        for task in self._tasks:
            task.cancel()

    async def poll_latest(self) -> bool:
        """One tick of the latest-reading poll; ``True`` if a device was redrawn."""
        try:
            raw = await self._latest.fetch()
        except SourceError as exc:
            logger.debug("Latest poll skipped: %s", exc)
            return False
        return self._session.ingest_latest(raw)

    async def poll_bulk(self) -> bool:
        """One tick of the bulk-alert poll; ``True`` if the log changed."""
        try:
            raw = await self._bulk.fetch()
        except SourceError as exc:
            logger.debug("Bulk poll skipped: %s", exc)
            return False
        return bool(self._session.ingest_bulk(raw))

    async def run(self) -> None:
        """Run both polls until shutdown, cancellation or a fatal error."""
        self._tasks = [
            asyncio.create_task(
                self._repeat("latest", self.poll_latest, self._latest_interval),
                name="poll-latest",
            ),
            asyncio.create_task(
                self._repeat("bulk", self.poll_bulk, self._bulk_interval),
                name="poll-bulk",
            ),
        ]
        logger.info(
            "Polling %s every %.1fs and %s every %.1fs",
            self._latest.location,
            self._latest_interval,
            self._bulk.location,
            self._bulk_interval,
        )

        try:
            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error("Poll %s failed", task.get_name())
                    raise task.exception()
        finally:
            self._shutdown.set()
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("Scheduler stopped")

    # ── internal ────────────────────────────────────────────────────

    async def _repeat(
        self,
        name: str,
        tick: Callable[[], Awaitable[bool]],
        interval: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        while not self._shutdown.is_set():
            started = loop.time()
            await tick()
            delay = max(0.0, interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass  # interval elapsed normally
        logger.debug("Poll %s stopped", name)

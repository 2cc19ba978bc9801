"""
Randomness relay for local deployments.

Registers for 'RequestedLotteryWinner' events and, after a configurable
confirmation delay, asks the local VRF coordinator to fulfil the request.
On a live network the oracle does this itself and the relay is not started.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from typing import Any, Dict, Optional, Set

from vrf_lottery.blockchain.vrf import CoordinatorError, VRFCoordinatorV2Mock
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.errors import LotteryError
from vrf_lottery.lottery.event_manager import REQUESTED_LOTTERY_WINNER, EventLog
from vrf_lottery.lottery.models import LotteryEvent
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class RandomnessRelay:
    """Delivers coordinator callbacks some time after each request."""

    def __init__(
        self,
        coordinator: VRFCoordinatorV2Mock,
        lottery: Lottery,
        events: Optional[EventLog] = None,
        *,
        delay: float = 2.0,
    ) -> None:
        self._coordinator = coordinator
        self._lottery = lottery
        self._events = events if events is not None else lottery.events
        self._delay = delay
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._registered = False
        self._tasks: Set[concurrent.futures.Future] = set()
        self.fulfilled = 0
        self.failed = 0

    async def initialize(self) -> None:
        """Register for RequestedLotteryWinner events."""
        self._loop = asyncio.get_running_loop()
        if not self._registered:
            self._events.add_listener(REQUESTED_LOTTERY_WINNER, self._on_request)
            self._registered = True
        logger.info("Randomness relay registered for %s events", REQUESTED_LOTTERY_WINNER)

    async def start(self) -> None:
        if self._running:
            logger.warning("Randomness relay already running")
            return
        if self._loop is None:
            await self.initialize()
        self._running = True
        logger.info("Randomness relay started (delay %.1fs)", self._delay)

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping randomness relay")
        self._running = False
        if self._registered:
            self._events.remove_listener(REQUESTED_LOTTERY_WINNER, self._on_request)
            self._registered = False
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        logger.info("Randomness relay stopped")

    async def wait_idle(self) -> None:
        """Wait until every scheduled fulfilment has run."""
        while self._tasks:
            pending = [asyncio.wrap_future(task) for task in list(self._tasks)]
            await asyncio.gather(*pending, return_exceptions=True)

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._running else "stopped",
            "delay": self._delay,
            "in_flight": len(self._tasks),
            "fulfilled": self.fulfilled,
            "failed": self.failed,
        }

    def _on_request(self, event: LotteryEvent) -> None:
        """Called by EventLog, possibly from a worker thread."""
        if not self._running or self._loop is None:
            return
        request_id = event.args.get("requestId")
        if request_id is None:
            return
        try:
            future = asyncio.run_coroutine_threadsafe(self._fulfill_later(int(request_id)), self._loop)
        except RuntimeError:  # loop already closing
            logger.debug("Could not schedule fulfilment for request %s", request_id)
            return
        self._tasks.add(future)
        future.add_done_callback(self._tasks.discard)

    async def _fulfill_later(self, request_id: int) -> None:
        await asyncio.sleep(self._delay)
        try:
            words = self._coordinator.fulfill_random_words(request_id, self._lottery)
            self.fulfilled += 1
            logger.info(f"Fulfilled request {request_id} with word {words[0]}")
        except (LotteryError, CoordinatorError) as exc:
            self.failed += 1
            logger.error(f"Fulfilment of request {request_id} failed: {exc}")

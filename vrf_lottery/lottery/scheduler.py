"""
Upkeep Scheduler - periodically probes the lottery and triggers draws
"""

import asyncio
import inspect
from typing import Any, Optional

from .errors import TriggerNotEligible
from .models import SchedulerStatus
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class UpkeepScheduler:
    """Plays the automation network: check_upkeep, then perform_upkeep when needed.

    ``target`` is either the in-process :class:`~vrf_lottery.lottery.engine.Lottery`
    or a :class:`~vrf_lottery.blockchain.client.LotteryContractClient` whose
    methods are coroutines. The probe and the action are separate calls, so
    another caller may win the race in between; the lottery re-validates and
    the resulting TriggerNotEligible is only logged.
    """

    def __init__(self, target, check_interval: float = 10.0, error_backoff: float = 30.0):
        self.target = target
        self.check_interval = check_interval
        self.error_backoff = error_backoff
        self.status = SchedulerStatus()
        self.scheduler_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.status.is_running

    async def start(self):
        """Start the upkeep scheduler loop and wait on it"""
        self.status.is_running = True
        logger.info("Starting upkeep scheduler (every %ss)", self.check_interval)
        self.scheduler_task = asyncio.create_task(self._scheduler_loop())
        try:
            await self.scheduler_task
        except asyncio.CancelledError:
            pass

    async def stop(self):
        """Stop the upkeep scheduler"""
        self.status.is_running = False
        if self.scheduler_task:
            self.scheduler_task.cancel()
            try:
                await self.scheduler_task
            except asyncio.CancelledError:
                pass
            self.scheduler_task = None
        logger.info("Upkeep scheduler stopped")

    async def _scheduler_loop(self):
        while self.status.is_running:
            try:
                await self.run_once()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.status.last_error = str(e)
                logger.error(f"Error in scheduler loop: {e}")
                await asyncio.sleep(self.error_backoff)

    async def run_once(self) -> Optional[Any]:
        """One probe/act cycle. Returns what perform_upkeep returned, or None."""
        self.status.record_check()
        upkeep_needed, perform_data = await _resolve(self.target.check_upkeep(b""))
        if not upkeep_needed:
            logger.debug("Upkeep not needed")
            return None
        return await self.perform(perform_data)

    async def perform(self, perform_data: bytes = b"") -> Optional[Any]:
        """Invoke perform_upkeep, tolerating a lost race against another trigger."""
        try:
            result = await _resolve(self.target.perform_upkeep(perform_data))
        except TriggerNotEligible as exc:
            self.status.record_rejection(str(exc))
            logger.warning(
                "Perform rejected: balance=%d players=%d state=%s",
                exc.balance,
                exc.num_players,
                exc.state.name,
            )
            return None

        self.status.record_perform(result)
        logger.info(f"Draw triggered: {result}")
        return result

    def get_status(self) -> dict:
        return {
            "status": "running" if self.status.is_running else "stopped",
            "check_interval": self.check_interval,
            "checks": self.status.checks,
            "performs": self.status.performs,
            "rejected_performs": self.status.rejected_performs,
            "last_result": self.status.last_result,
            "last_error": self.status.last_error,
        }

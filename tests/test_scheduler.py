import asyncio

from vrf_lottery.lottery.errors import TriggerNotEligible
from vrf_lottery.lottery.models import LotteryState, UpkeepCheck
from vrf_lottery.lottery.scheduler import UpkeepScheduler

from .conftest import ENTRANCE_FEE, INTERVAL, PLAYERS


class AsyncTarget:
    """Coroutine-based stand-in for the contract client."""

    def __init__(self, upkeep_needed=True, reject=False):
        self.upkeep_needed = upkeep_needed
        self.reject = reject
        self.performed = []

    async def check_upkeep(self, check_data=b""):
        return UpkeepCheck(self.upkeep_needed, b"")

    async def perform_upkeep(self, perform_data=b""):
        if self.reject:
            raise TriggerNotEligible(0, 0, LotteryState.RESOLVING)
        self.performed.append(perform_data)
        return "0xabc"


def test_run_once_does_nothing_when_upkeep_not_needed(lottery):
    scheduler = UpkeepScheduler(lottery)

    assert asyncio.run(scheduler.run_once()) is None
    assert scheduler.status.checks == 1
    assert scheduler.status.performs == 0
    assert lottery.get_lottery_state() == LotteryState.OPEN


def test_run_once_triggers_draw_when_eligible(ready_lottery):
    scheduler = UpkeepScheduler(ready_lottery)

    request_id = asyncio.run(scheduler.run_once())

    assert request_id == ready_lottery.get_pending_request_id()
    assert ready_lottery.get_lottery_state() == LotteryState.RESOLVING
    assert scheduler.get_status()["last_result"] == request_id

    # Already resolving: the next probe must not request again.
    assert asyncio.run(scheduler.run_once()) is None
    assert scheduler.status.performs == 1


def test_lost_race_is_recorded_not_raised(lottery):
    scheduler = UpkeepScheduler(lottery)

    assert asyncio.run(scheduler.perform(b"")) is None

    status = scheduler.get_status()
    assert status["rejected_performs"] == 1
    assert "UpkeepNotNeeded" in status["last_error"]


def test_async_target_is_awaited():
    target = AsyncTarget()
    scheduler = UpkeepScheduler(target)

    assert asyncio.run(scheduler.run_once()) == "0xabc"
    assert target.performed == [b""]


def test_async_rejection_is_tolerated():
    scheduler = UpkeepScheduler(AsyncTarget(reject=True))

    assert asyncio.run(scheduler.run_once()) is None
    assert scheduler.status.rejected_performs == 1


def test_loop_polls_until_stopped(lottery, clock):
    lottery.enter_lottery(PLAYERS[1], ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    scheduler = UpkeepScheduler(lottery, check_interval=0.01)

    async def scenario():
        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.05)
        assert scheduler.get_status()["status"] == "running"
        await scheduler.stop()
        await task

    asyncio.run(scenario())

    assert scheduler.get_status()["status"] == "stopped"
    assert scheduler.status.checks >= 2
    assert scheduler.status.performs == 1
    assert lottery.get_lottery_state() == LotteryState.RESOLVING

import pytest

from vrf_lottery.blockchain.ledger import InMemoryLedger
from vrf_lottery.blockchain.vrf import VRFCoordinatorV2Mock
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.event_manager import EventLog
from vrf_lottery.lottery.models import LotteryConfig

ENTRANCE_FEE = 10**16  # 0.01 ETH
INTERVAL = 30
COORDINATOR = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"
GAS_LANE = "0xd89b2bf150e3b9e13446986e571fb9cab24b13cea0a43ea20a6049a85cc807cc"

DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
PLAYERS = [
    DEPLOYER,
    "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
    "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",
    "0x90F79bf6EB2c4f870365E785982E1f101E93b906",
]
STARTING_BALANCE = 10**18


class FakeClock:
    """Deterministic stand-in for time.time()."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    ledger = InMemoryLedger()
    for player in PLAYERS:
        ledger.mint(player, STARTING_BALANCE)
    return ledger


@pytest.fixture
def coordinator():
    return VRFCoordinatorV2Mock(address=COORDINATOR)


def make_config(entrance_fee: int = ENTRANCE_FEE, interval: int = INTERVAL) -> LotteryConfig:
    return LotteryConfig(
        entrance_fee=entrance_fee,
        interval=interval,
        vrf_coordinator=COORDINATOR,
        gas_lane=GAS_LANE,
        subscription_id=1,
        callback_gas_limit=500000,
    )


@pytest.fixture
def make_lottery(ledger, coordinator, clock):
    def _make(**config_overrides) -> Lottery:
        return Lottery(
            make_config(**config_overrides),
            ledger,
            coordinator,
            address="lottery",
            events=EventLog(clock=clock),
            clock=clock,
        )

    return _make


@pytest.fixture
def lottery(make_lottery):
    return make_lottery()


@pytest.fixture
def ready_lottery(lottery, clock):
    """A lottery with one entry whose interval has elapsed."""
    lottery.enter_lottery(DEPLOYER, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    return lottery

"""Core data models for the automated lottery."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, NamedTuple, Optional


class LotteryState(IntEnum):
    """Lottery phases, numbered as the on-chain contract reports them."""

    OPEN = 0
    RESOLVING = 1


@dataclass(frozen=True)
class LotteryConfig:
    """Construction-time parameters; never mutated afterwards."""

    entrance_fee: int
    interval: int
    vrf_coordinator: str
    gas_lane: str
    subscription_id: int
    callback_gas_limit: int
    request_confirmations: int = 3
    num_words: int = 1

    def __post_init__(self) -> None:
        if self.entrance_fee < 0:
            raise ValueError("entrance_fee must not be negative")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        if self.num_words < 1:
            raise ValueError("num_words must be at least 1")


@dataclass(frozen=True)
class PendingRequest:
    """A randomness request that has been issued and not yet fulfilled."""

    request_id: int
    requested_at: int
    num_players: int
    balance: int


@dataclass(frozen=True)
class RoundOutcome:
    """Result of the most recently completed round."""

    winner: str
    prize: int
    request_id: int
    random_word: int
    winner_index: int
    num_players: int
    completed_at: int


class UpkeepCheck(NamedTuple):
    """Answer to the automation network's "is action needed?" probe."""

    upkeep_needed: bool
    perform_data: bytes = b""


@dataclass
class LotteryEvent:
    """Entry in the append-only notification log."""

    name: str
    args: Dict[str, Any]
    sequence: int
    timestamp: int

    def get_item_id(self) -> str:
        return f"{self.sequence}-{self.timestamp}-{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.get_item_id(),
            "event": self.name,
            "args": dict(self.args),
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }


@dataclass
class SchedulerStatus:
    """Operational counters for the upkeep polling loop."""

    is_running: bool = False
    checks: int = 0
    performs: int = 0
    rejected_performs: int = 0
    last_result: Optional[Any] = None
    last_error: Optional[str] = None

    def record_check(self) -> None:
        self.checks += 1

    def record_perform(self, result: Any) -> None:
        self.performs += 1
        self.last_result = result

    def record_rejection(self, message: str) -> None:
        self.rejected_performs += 1
        self.last_error = message

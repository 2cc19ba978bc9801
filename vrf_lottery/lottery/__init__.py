from .engine import Lottery
from .errors import (
    IndexOutOfRange,
    InsufficientPayment,
    LotteryError,
    NotOpen,
    TransferFailed,
    TriggerNotEligible,
    UnauthorizedCallback,
    UnknownRequest,
)
from .event_manager import EventLog
from .models import LotteryConfig, LotteryState, RoundOutcome, UpkeepCheck

__all__ = [
    "Lottery",
    "LotteryConfig",
    "LotteryState",
    "RoundOutcome",
    "UpkeepCheck",
    "EventLog",
    "LotteryError",
    "InsufficientPayment",
    "NotOpen",
    "TransferFailed",
    "TriggerNotEligible",
    "IndexOutOfRange",
    "UnknownRequest",
    "UnauthorizedCallback",
]

"""Named failures raised by the lottery state machine."""

from __future__ import annotations

from typing import Any, Dict

from .models import LotteryState


class LotteryError(Exception):
    """Base class for every lottery rejection."""

    def details(self) -> Dict[str, Any]:
        return {}


class InsufficientPayment(LotteryError):
    def __init__(self, value: int, required: int) -> None:
        self.value = value
        self.required = required
        super().__init__(f"Lottery__NotEnoughETHEntered: sent {value}, entrance fee is {required}")

    def details(self) -> Dict[str, Any]:
        return {"value": self.value, "required": self.required}


class NotOpen(LotteryError):
    def __init__(self, state: LotteryState) -> None:
        self.state = state
        super().__init__(f"Lottery__NotOpen: lottery is {state.name}")

    def details(self) -> Dict[str, Any]:
        return {"state": self.state.name}


class TransferFailed(LotteryError):
    """The ledger refused the winner payout; the round was rolled back."""

    def __init__(self, recipient: str, amount: int, reason: str = "") -> None:
        self.recipient = recipient
        self.amount = amount
        self.reason = reason
        message = f"Lottery__TransferFailed: payout of {amount} to {recipient}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {"recipient": self.recipient, "amount": self.amount, "reason": self.reason}


class TriggerNotEligible(LotteryError):
    """perform_upkeep was called while the eligibility predicate is false.

    The counters are the ones an automation operator needs to tell a
    premature trigger (time, players, balance) from a stuck round (state).
    """

    def __init__(self, balance: int, num_players: int, state: LotteryState) -> None:
        self.balance = balance
        self.num_players = num_players
        self.state = state
        super().__init__(
            f"Lottery__UpkeepNotNeeded(balance={balance}, players={num_players}, state={state.name})"
        )

    def details(self) -> Dict[str, Any]:
        return {"balance": self.balance, "num_players": self.num_players, "state": self.state.name}


class IndexOutOfRange(LotteryError, IndexError):
    def __init__(self, index: int, size: int) -> None:
        self.index = index
        self.size = size
        super().__init__(f"player index {index} out of range for {size} players")

    def details(self) -> Dict[str, Any]:
        return {"index": self.index, "size": self.size}


class UnknownRequest(LotteryError):
    """Callback for a request id that is not outstanding (stale, foreign or consumed)."""

    def __init__(self, request_id: int) -> None:
        self.request_id = request_id
        super().__init__(f"no pending randomness request with id {request_id}")

    def details(self) -> Dict[str, Any]:
        return {"request_id": self.request_id}


class UnauthorizedCallback(LotteryError):
    def __init__(self, caller: str, coordinator: str) -> None:
        self.caller = caller
        self.coordinator = coordinator
        super().__init__(f"OnlyCoordinatorCanFulfill: have {caller}, want {coordinator}")

    def details(self) -> Dict[str, Any]:
        return {"caller": self.caller, "coordinator": self.coordinator}

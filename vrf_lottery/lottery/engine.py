"""
Lottery Engine - the automated lottery state machine.

Players enter while the lottery is OPEN by paying at least the entrance fee.
Once the interval has elapsed and the pool holds players and funds, anyone
(normally the automation poller) may trigger the draw: the lottery moves to
RESOLVING and asks the randomness coordinator for one random word. When the
coordinator calls back with the word for the outstanding request, the winner
is picked as ``word % number_of_players``, paid the whole pool, and the
lottery reopens for the next round.

Every public operation runs under a single lock, so operations coming from
the web server, the scheduler and the randomness relay never interleave.
Events are recorded under the lock and delivered to listeners after it is
released.
"""

from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from vrf_lottery.blockchain.ledger import Ledger, LedgerError
from vrf_lottery.blockchain.vrf import RandomnessCoordinator
from vrf_lottery.lottery.errors import (
    IndexOutOfRange,
    InsufficientPayment,
    NotOpen,
    TransferFailed,
    TriggerNotEligible,
    UnauthorizedCallback,
    UnknownRequest,
)
from vrf_lottery.lottery.event_manager import (
    LOTTERY_ENTER,
    REQUESTED_LOTTERY_WINNER,
    WINNER_PICKED,
    EventLog,
)
from vrf_lottery.lottery.models import (
    LotteryConfig,
    LotteryState,
    PendingRequest,
    RoundOutcome,
    UpkeepCheck,
)
from vrf_lottery.utils.common import shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LOTTERY_ADDRESS = "lottery"


class Lottery:
    """Single-pool lottery driven by an automation poller and a VRF coordinator."""

    def __init__(
        self,
        config: LotteryConfig,
        ledger: Ledger,
        coordinator: RandomnessCoordinator,
        *,
        address: str = DEFAULT_LOTTERY_ADDRESS,
        events: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.address = address
        self._config = config
        self._ledger = ledger
        self._coordinator = coordinator
        self._clock = clock or (lambda: int(time.time()))
        self._events = events if events is not None else EventLog(clock=self._clock)
        self._lock = Lock()

        # Round state
        self._players: List[str] = []
        self._state = LotteryState.OPEN
        self._latest_timestamp = self._clock()
        self._pending: Dict[int, PendingRequest] = {}

        # Last round only
        self._recent_winner: Optional[str] = None
        self._last_outcome: Optional[RoundOutcome] = None

        logger.info(
            "Lottery %s initialized: fee=%d wei, interval=%ds, coordinator=%s",
            self.address,
            config.entrance_fee,
            config.interval,
            config.vrf_coordinator,
        )

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def config(self) -> LotteryConfig:
        return self._config

    # =============== ENTRIES ===============

    def enter_lottery(self, player: str, value: int) -> int:
        """Record one entry for ``player`` paying ``value`` wei.

        Returns the slot index the entry occupies. Raises
        :class:`InsufficientPayment` when ``value`` is below the entrance fee
        and :class:`NotOpen` while a draw is in flight. A ledger error on the
        incoming payment propagates unchanged and nothing is recorded.
        """
        with self._lock:
            if value < self._config.entrance_fee:
                raise InsufficientPayment(value, self._config.entrance_fee)
            if self._state != LotteryState.OPEN:
                raise NotOpen(self._state)

            self._ledger.transfer(player, self.address, value)
            self._players.append(player)
            slot = len(self._players) - 1
            event = self._events.record(LOTTERY_ENTER, {"player": player})

        logger.info("Player %s entered with %d wei (slot %d)", shorten_eth_address(player), value, slot)
        self._events.notify(event)
        return slot

    # =============== UPKEEP ===============

    def check_upkeep(self, check_data: bytes = b"") -> UpkeepCheck:
        """Return whether a draw should be triggered now.

        True only when the lottery is open, strictly more than ``interval``
        seconds have passed since the round started, there is at least one
        player, and the pool holds a positive balance. ``check_data`` is
        accepted for compatibility and ignored.
        """
        with self._lock:
            upkeep_needed, _, _ = self._evaluate_upkeep()
        return UpkeepCheck(upkeep_needed, b"")

    def perform_upkeep(self, perform_data: bytes = b"") -> int:
        """Close the round and request a random word; returns the request id.

        Eligibility is re-derived here rather than trusted from an earlier
        :meth:`check_upkeep`, so speculative or duplicated calls are safe.
        """
        with self._lock:
            upkeep_needed, balance, num_players = self._evaluate_upkeep()
            if not upkeep_needed:
                logger.warning(
                    "Upkeep not needed: balance=%d, players=%d, state=%s",
                    balance,
                    num_players,
                    self._state.name,
                )
                raise TriggerNotEligible(balance, num_players, self._state)

            # Close entries before the request leaves, never after.
            self._state = LotteryState.RESOLVING
            try:
                request_id = self._coordinator.request_random_words(
                    self._config.gas_lane,
                    self._config.subscription_id,
                    self._config.request_confirmations,
                    self._config.callback_gas_limit,
                    self._config.num_words,
                    consumer=self,
                )
            except Exception:
                self._state = LotteryState.OPEN
                raise

            self._pending[request_id] = PendingRequest(
                request_id=request_id,
                requested_at=self._clock(),
                num_players=num_players,
                balance=balance,
            )
            event = self._events.record(REQUESTED_LOTTERY_WINNER, {"requestId": request_id})

        logger.info("Requested lottery winner: request %d for %d players", request_id, num_players)
        self._events.notify(event)
        return request_id

    def _evaluate_upkeep(self) -> Tuple[bool, int, int]:
        balance = self._ledger.balance_of(self.address)
        num_players = len(self._players)
        is_open = self._state == LotteryState.OPEN
        time_passed = (self._clock() - self._latest_timestamp) > self._config.interval
        has_players = num_players > 0
        has_balance = balance > 0
        return is_open and time_passed and has_players and has_balance, balance, num_players

    # =============== RANDOMNESS CALLBACK ===============

    def raw_fulfill_random_words(self, caller: str, request_id: int, random_words: Sequence[int]) -> str:
        """Entry point for the coordinator; every other caller is refused."""
        if caller != self._config.vrf_coordinator:
            raise UnauthorizedCallback(caller, self._config.vrf_coordinator)
        return self._fulfill_random_words(request_id, random_words)

    def _fulfill_random_words(self, request_id: int, random_words: Sequence[int]) -> str:
        with self._lock:
            pending = self._pending.get(request_id)
            if pending is None:
                logger.warning("Ignoring randomness for unknown request %s", request_id)
                raise UnknownRequest(request_id)
            if not random_words:
                raise ValueError("random_words must contain at least one word")

            random_word = int(random_words[0])
            num_players = len(self._players)
            winner_index = random_word % num_players
            winner = self._players[winner_index]
            prize = self._ledger.balance_of(self.address)
            now = self._clock()

            saved = self._save_round()
            self._recent_winner = winner
            self._state = LotteryState.OPEN
            self._players = []
            self._latest_timestamp = now
            del self._pending[request_id]

            try:
                self._ledger.transfer(self.address, winner, prize)
            except LedgerError as exc:
                self._restore_round(saved)
                logger.error("Payout of %d to %s failed: %s", prize, shorten_eth_address(winner), exc)
                raise TransferFailed(winner, prize, str(exc)) from exc

            self._last_outcome = RoundOutcome(
                winner=winner,
                prize=prize,
                request_id=request_id,
                random_word=random_word,
                winner_index=winner_index,
                num_players=num_players,
                completed_at=now,
            )
            event = self._events.record(WINNER_PICKED, {"winner": winner})

        logger.info(
            "Winner picked for request %d: %s (slot %d of %d) wins %d wei",
            request_id,
            shorten_eth_address(winner),
            winner_index,
            num_players,
            prize,
        )
        self._events.notify(event)
        return winner

    def _save_round(self) -> Tuple[Any, ...]:
        return (
            list(self._players),
            self._state,
            self._latest_timestamp,
            self._recent_winner,
            dict(self._pending),
        )

    def _restore_round(self, saved: Tuple[Any, ...]) -> None:
        (
            self._players,
            self._state,
            self._latest_timestamp,
            self._recent_winner,
            self._pending,
        ) = saved

    # =============== ACCESSORS ===============

    def get_entrance_fee(self) -> int:
        return self._config.entrance_fee

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._players):
                raise IndexOutOfRange(index, len(self._players))
            return self._players[index]

    def get_players(self) -> List[str]:
        with self._lock:
            return list(self._players)

    def get_recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._recent_winner

    def get_lottery_state(self) -> LotteryState:
        with self._lock:
            return self._state

    def get_number_of_players(self) -> int:
        with self._lock:
            return len(self._players)

    def get_latest_timestamp(self) -> int:
        with self._lock:
            return self._latest_timestamp

    def get_interval(self) -> int:
        return self._config.interval

    def get_request_confirmations(self) -> int:
        return self._config.request_confirmations

    def get_num_words(self) -> int:
        return self._config.num_words

    def get_balance(self) -> int:
        return self._ledger.balance_of(self.address)

    def get_pending_request_id(self) -> Optional[int]:
        with self._lock:
            return next(iter(self._pending), None)

    def get_last_outcome(self) -> Optional[RoundOutcome]:
        with self._lock:
            return self._last_outcome

    def snapshot(self) -> Dict[str, Any]:
        """Consistent view of all public state, taken under the lock."""
        with self._lock:
            upkeep_needed, balance, num_players = self._evaluate_upkeep()
            outcome = self._last_outcome
            return {
                "address": self.address,
                "state": self._state.value,
                "state_label": self._state.name,
                "entrance_fee": self._config.entrance_fee,
                "interval": self._config.interval,
                "latest_timestamp": self._latest_timestamp,
                "balance": balance,
                "num_players": num_players,
                "players": list(self._players),
                "recent_winner": self._recent_winner,
                "pending_request_id": next(iter(self._pending), None),
                "upkeep_needed": upkeep_needed,
                "last_outcome": {
                    "winner": outcome.winner,
                    "prize": outcome.prize,
                    "request_id": outcome.request_id,
                    "winner_index": outcome.winner_index,
                    "num_players": outcome.num_players,
                    "completed_at": outcome.completed_at,
                }
                if outcome
                else None,
            }

"""In-memory notification log for the lottery.

Every state change of the lottery is published here as a named event
(``LotteryEnter``, ``RequestedLotteryWinner``, ``WinnerPicked``). The log is
append-only; listeners registered per event name are invoked after the event
has been recorded.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Deque, Dict, List, Optional

from vrf_lottery.lottery.models import LotteryEvent
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

LOTTERY_ENTER = "LotteryEnter"
REQUESTED_LOTTERY_WINNER = "RequestedLotteryWinner"
WINNER_PICKED = "WinnerPicked"

EVENT_NAMES = (LOTTERY_ENTER, REQUESTED_LOTTERY_WINNER, WINNER_PICKED)

Listener = Callable[[LotteryEvent], None]


class EventLog:
    """Volatile, append-only storage for lottery notifications."""

    def __init__(self, *, capacity: Optional[int] = None, clock: Optional[Callable[[], int]] = None) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._events: Deque[LotteryEvent] = deque(maxlen=capacity)
        self._sequence = 0
        self._clock = clock or (lambda: int(time.time()))

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_name: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_name].append(callback)
        logger.debug("[EventLog] Adding listener for event=%s, callback=%s", event_name, callback)

    def remove_listener(self, event_name: str, callback: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event_name, [])
            if callback in listeners:
                listeners.remove(callback)

    def notify(self, event: LotteryEvent) -> None:
        """Deliver an already recorded event to its listeners.

        A failing listener is logged and skipped; it never undoes the state
        change the event describes.
        """
        with self._lock:
            listeners = list(self._listeners.get(event.name, []))
        for callback in listeners:
            try:
                callback(event)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event.name, exc)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def record(self, name: str, args: Dict[str, Any]) -> LotteryEvent:
        """Append an event to the log without notifying listeners."""
        with self._lock:
            self._sequence += 1
            event = LotteryEvent(
                name=name,
                args=dict(args),
                sequence=self._sequence,
                timestamp=self._clock(),
            )
            self._events.append(event)
        logger.info("[EventLog] %s #%d %s", name, event.sequence, event.args)
        return event

    def publish(self, name: str, args: Dict[str, Any]) -> LotteryEvent:
        event = self.record(name, args)
        self.notify(event)
        return event

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_events(self, name: Optional[str] = None, limit: Optional[int] = None) -> List[LotteryEvent]:
        with self._lock:
            items = list(self._events)
        if name is not None:
            items = [item for item in items if item.name == name]
        if limit is not None:
            return items[-limit:] if limit > 0 else []
        return items

    def latest(self, name: str) -> Optional[LotteryEvent]:
        matches = self.get_events(name=name, limit=1)
        return matches[0] if matches else None

    def count(self, name: Optional[str] = None) -> int:
        return len(self.get_events(name=name))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._listeners.clear()

"""Value-transfer ledger used by the lottery to hold and pay out the pool."""

from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, Protocol, Set

from vrf_lottery.utils.common import shorten_eth_address
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class LedgerError(Exception):
    """A transfer could not be executed."""


class InsufficientFunds(LedgerError):
    def __init__(self, account: str, balance: int, amount: int) -> None:
        self.account = account
        self.balance = balance
        self.amount = amount
        super().__init__(f"{account} holds {balance}, cannot send {amount}")


class TransferRejected(LedgerError):
    def __init__(self, recipient: str) -> None:
        self.recipient = recipient
        super().__init__(f"{recipient} rejected the incoming transfer")


class Ledger(Protocol):
    """Minimal accounting surface the lottery depends on."""

    def balance_of(self, address: str) -> int:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        ...


class InMemoryLedger:
    """Volatile balances keyed by address.

    Transfers are all-or-nothing: a failed transfer leaves both balances
    untouched.
    """

    def __init__(self, balances: Dict[str, int] | None = None) -> None:
        self._lock = Lock()
        self._balances: Dict[str, int] = dict(balances or {})
        self._rejecting: Set[str] = set()

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address, 0)

    def mint(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot mint a negative amount")
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount
        logger.debug("Minted %d to %s", amount, shorten_eth_address(address))

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot send a negative amount")
        with self._lock:
            if recipient in self._rejecting:
                raise TransferRejected(recipient)
            balance = self._balances.get(sender, 0)
            if balance < amount:
                raise InsufficientFunds(sender, balance, amount)
            self._balances[sender] = balance - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
        logger.debug(
            "Transferred %d from %s to %s",
            amount,
            shorten_eth_address(sender),
            shorten_eth_address(recipient),
        )

    def reject_payments_to(self, address: str) -> None:
        """Make every future transfer to ``address`` fail, as a reverting receiver would."""
        with self._lock:
            self._rejecting.add(address)

    def accept_payments_to(self, address: str) -> None:
        with self._lock:
            self._rejecting.discard(address)

    def accounts(self) -> Iterable[str]:
        with self._lock:
            return list(self._balances)

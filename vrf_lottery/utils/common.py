"""Common utility functions for the lottery backend."""

from decimal import Decimal
from typing import Union

from web3 import Web3


def shorten_eth_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.
    Returns the first 6 and last 4 characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"  # too short to shorten, but ensure 0x
    return f"0x{addr[:6]}...{addr[-4:]}"


def normalize_address(address: str) -> str:
    """Return the checksum form of a hex address, or the input unchanged for plain labels.

    Local deployments identify accounts by short labels ("alice"); those pass
    through untouched so that they can still be used as ledger keys.
    """
    if isinstance(address, str) and address.startswith("0x") and len(address) == 42:
        return Web3.to_checksum_address(address)
    return address


def eth_to_wei(amount: Union[str, int, float, Decimal]) -> int:
    return int(Web3.to_wei(Decimal(str(amount)), "ether"))


def wei_to_eth(amount: int) -> Decimal:
    return Decimal(Web3.from_wei(int(amount), "ether"))

"""Blockchain client for a Lottery contract deployed on an EVM network."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_abi import decode
from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractCustomError

from vrf_lottery.lottery.event_manager import EVENT_NAMES
from vrf_lottery.lottery.errors import LotteryError, NotOpen, TriggerNotEligible
from vrf_lottery.lottery.models import LotteryState, UpkeepCheck
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ABI_PATH = Path(__file__).parent / "abi" / "Lottery.abi"

UPKEEP_NOT_NEEDED = "Lottery__UpkeepNotNeeded"
NOT_OPEN = "Lottery__NotOpen"


@dataclass
class BlockchainEvent:
    """A decoded Lottery log entry."""

    name: str
    args: Dict[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int = 0


class LotteryContractClient:
    """Async-friendly wrapper around web3.py for a deployed Lottery."""

    def __init__(self, config: Dict[str, Any]):
        self._config = config

        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://127.0.0.1:8545")
        try:
            self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        except (TypeError, ValueError):
            self.rpc_timeout = 10.0
        self.chain_id: int = int(blockchain_cfg.get("chain_id", 31337))
        self.contract_address: Optional[str] = blockchain_cfg.get("contract_address")
        if self.contract_address:
            self.contract_address = Web3.to_checksum_address(self.contract_address)

        self._w3: Optional[Web3] = None
        self._contract: Optional[Contract] = None
        self.contract_abi: Optional[List[Dict[str, Any]]] = None
        self._event_names_by_topic: Dict[str, str] = {}
        self._errors_by_selector = self.build_error_map(self.load_abi())

        private_key = blockchain_cfg.get("private_key")
        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            logger.info("Signer account loaded: %s", self.account.address)

        gas_price_setting = blockchain_cfg.get("gas_price")
        self._gas_price_override: Optional[int] = None
        if gas_price_setting:
            self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")

        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))

    async def initialize(self) -> None:
        """Connect to the RPC endpoint and bind the Lottery contract."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        if not self._w3.is_connected():  # pragma: no cover - depends on live RPC
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")

        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)
        actual_chain_id = self._w3.eth.chain_id
        if actual_chain_id != self.chain_id:
            logger.warning(f"Chain ID mismatch: expected {self.chain_id}, got {actual_chain_id}")

        await self._load_contract()

    async def close(self) -> None:
        """Drop the provider and contract handles."""
        self._contract = None
        self._w3 = None

    async def _load_contract(self) -> None:
        if not self.contract_address:
            raise ValueError("No contract address configured (blockchain.contract_address)")

        self.contract_abi = self.load_abi()
        w3 = self._ensure_web3()

        def _build_contract() -> Contract:
            return w3.eth.contract(address=self.contract_address, abi=self.contract_abi)

        self._contract = await asyncio.to_thread(_build_contract)
        self._event_names_by_topic = self.build_topic_map(self.contract_abi)
        logger.info("Contract bound at %s with %d known events", self.contract_address, len(self._event_names_by_topic))

        code = w3.eth.get_code(self.contract_address)
        if len(code) == 0:
            raise ValueError(f"No contract deployed at {self.contract_address}")

    @staticmethod
    def load_abi(path: Path = ABI_PATH) -> List[Dict[str, Any]]:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    @staticmethod
    def build_topic_map(abi: List[Dict[str, Any]]) -> Dict[str, str]:
        """Map ``topic0`` hex strings to the lottery event names they identify."""
        topics: Dict[str, str] = {}
        for item in abi:
            if item.get("type") != "event" or item.get("name") not in EVENT_NAMES:
                continue
            signature = f"{item['name']}({','.join(i['type'] for i in item['inputs'])})"
            topics[Web3.to_hex(Web3.keccak(text=signature))] = item["name"]
        return topics

    @staticmethod
    def build_error_map(abi: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Map 4-byte custom error selectors (hex, no prefix) to their ABI entries."""
        errors: Dict[str, Dict[str, Any]] = {}
        for item in abi:
            if item.get("type") != "error":
                continue
            signature = f"{item['name']}({','.join(i['type'] for i in item.get('inputs', []))})"
            errors[bytes(Web3.keccak(text=signature)[:4]).hex()] = item
        return errors

    def _translate_revert(self, exc: ContractCustomError) -> Optional[LotteryError]:
        """Turn a Lottery custom error revert into the matching LotteryError, if there is one."""
        data = getattr(exc, "data", None) or (exc.args[0] if exc.args else "")
        if isinstance(data, (bytes, bytearray)):
            data = Web3.to_hex(data)
        if not isinstance(data, str):
            return None
        payload = data[2:] if data.startswith("0x") else data
        item = self._errors_by_selector.get(payload[:8].lower())
        if item is None:
            return None

        if item["name"] == UPKEEP_NOT_NEEDED:
            types = [i["type"] for i in item["inputs"]]
            balance, num_players, state = decode(types, bytes.fromhex(payload[8:]))
            return TriggerNotEligible(balance, num_players, LotteryState(state))
        if item["name"] == NOT_OPEN:
            return NotOpen(LotteryState.RESOLVING)
        return None

    def _ensure_contract(self) -> Contract:
        if not self._contract:
            raise RuntimeError("Contract not initialised")
        return self._contract

    def _ensure_web3(self) -> Web3:
        if not self._w3:
            raise RuntimeError("Web3 provider not initialised")
        return self._w3

    async def _call_view(self, function_name: str, *args) -> Any:
        contract = self._ensure_contract()

        def _call():
            return getattr(contract.functions, function_name)(*args).call()

        return await asyncio.to_thread(_call)

    async def _send_transaction(self, function_name: str, *args, value: int = 0) -> str:
        if not self.account:
            raise ValueError("Signer account not configured (blockchain.private_key)")

        contract = self._ensure_contract()
        w3 = self._ensure_web3()

        def _send() -> str:
            tx_function = getattr(contract.functions, function_name)(*args)
            gas_estimate = tx_function.estimate_gas({"from": self.account.address, "value": value})
            gas_price = self._gas_price_override or w3.eth.gas_price
            txn = tx_function.build_transaction(
                {
                    "from": self.account.address,
                    "value": value,
                    "gas": int(gas_estimate * self._gas_multiplier),
                    "gasPrice": gas_price,
                    "nonce": w3.eth.get_transaction_count(self.account.address),
                    "chainId": self.chain_id,
                }
            )
            signed = self.account.sign_transaction(txn)
            raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
            tx_hash = w3.eth.send_raw_transaction(raw)
            return Web3.to_hex(tx_hash)

        try:
            tx_hash = await asyncio.to_thread(_send)
        except ContractCustomError as exc:
            error = self._translate_revert(exc)
            if error is None:
                raise
            logger.warning("%s reverted: %s", function_name, error)
            raise error from exc
        logger.info("Sent transaction %s for %s", tx_hash, function_name)
        return tx_hash

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_entrance_fee(self) -> int:
        return int(await self._call_view("getEntranceFee"))

    async def get_lottery_state(self) -> LotteryState:
        return LotteryState(int(await self._call_view("getLotteryState")))

    async def get_number_of_players(self) -> int:
        return int(await self._call_view("getNumberOfPlayers"))

    async def get_player(self, index: int) -> str:
        return await self._call_view("getPlayer", index)

    async def get_recent_winner(self) -> Optional[str]:
        winner = await self._call_view("getRecentWinner")
        if not winner or winner.lower() == ZERO_ADDRESS:
            return None
        return winner

    async def get_latest_timestamp(self) -> int:
        return int(await self._call_view("getLatestTimestamp"))

    async def get_interval(self) -> int:
        return int(await self._call_view("getInterval"))

    async def get_request_confirmations(self) -> int:
        return int(await self._call_view("getRequestConfirmations"))

    async def get_num_words(self) -> int:
        return int(await self._call_view("getNumWords"))

    async def check_upkeep(self, check_data: bytes = b"") -> UpkeepCheck:
        upkeep_needed, perform_data = await self._call_view("checkUpkeep", check_data)
        return UpkeepCheck(bool(upkeep_needed), bytes(perform_data))

    async def get_balance(self) -> int:
        w3 = self._ensure_web3()
        return int(await asyncio.to_thread(w3.eth.get_balance, self.contract_address))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def enter_lottery(self, value: int) -> str:
        return await self._send_transaction("enterLottery", value=value)

    async def perform_upkeep(self, perform_data: bytes = b"") -> str:
        return await self._send_transaction("performUpkeep", perform_data)

    async def wait_for_transaction(self, tx_hash: str, timeout: int = 180) -> Dict[str, Any]:
        w3 = self._ensure_web3()

        def _wait():
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
            return {
                "status": int(receipt["status"]),
                "blockNumber": int(receipt["blockNumber"]),
                "transactionHash": Web3.to_hex(receipt["transactionHash"]),
                "gasUsed": int(receipt["gasUsed"]),
            }

        return await asyncio.to_thread(_wait)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    async def get_events(self, from_block: int, to_block: Optional[int] = None) -> List[BlockchainEvent]:
        """Decode LotteryEnter / RequestedLotteryWinner / WinnerPicked logs in a block range."""
        w3 = self._ensure_web3()
        contract = self._ensure_contract()

        def _fetch() -> List[BlockchainEvent]:
            latest = int(w3.eth.block_number) if to_block is None else to_block
            if from_block > latest:
                return []
            raw_logs = w3.eth.get_logs(
                {"fromBlock": from_block, "toBlock": latest, "address": self.contract_address}
            )
            collected: List[BlockchainEvent] = []
            for raw in raw_logs:
                topics = raw.get("topics") or []
                if not topics:
                    continue
                name = self._event_names_by_topic.get(Web3.to_hex(topics[0]))
                if name is None:
                    logger.debug("Skipping log with unknown topic %s", Web3.to_hex(topics[0]))
                    continue
                decoded = getattr(contract.events, name)().process_log(raw)
                collected.append(
                    BlockchainEvent(
                        name=name,
                        args=dict(decoded["args"]),
                        block_number=int(decoded["blockNumber"]),
                        transaction_hash=Web3.to_hex(decoded["transactionHash"]),
                        log_index=int(decoded.get("logIndex", 0)),
                    )
                )
            collected.sort(key=lambda evt: (evt.block_number, evt.log_index))
            logger.info("Decoded %d events from block %s to %s", len(collected), from_block, latest)
            return collected

        return await asyncio.to_thread(_fetch)

    async def health_check(self) -> Dict[str, Any]:
        try:
            w3 = self._ensure_web3()
            latest_block = int(await asyncio.to_thread(lambda: w3.eth.block_number))
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:  # pragma: no cover - reported, not raised
            logger.exception("Blockchain health check failed")
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "contract": self.contract_address,
            "signer": self.account.address if self.account else None,
        }

import asyncio
from unittest.mock import MagicMock

import pytest
from eth_abi import encode
from web3 import Web3
from web3.exceptions import ContractCustomError

from vrf_lottery.blockchain.client import ZERO_ADDRESS, LotteryContractClient
from vrf_lottery.lottery.errors import NotOpen, TriggerNotEligible
from vrf_lottery.lottery.models import LotteryState, UpkeepCheck
from vrf_lottery.lottery.scheduler import UpkeepScheduler

from .conftest import PLAYERS

CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
HARDHAT_KEY_0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def _topic(signature):
    return Web3.keccak(text=signature)


@pytest.fixture
def client():
    client = LotteryContractClient({"blockchain": {"contract_address": CONTRACT_ADDRESS, "chain_id": 31337}})
    client._w3 = MagicMock()
    client._contract = MagicMock()
    client._event_names_by_topic = LotteryContractClient.build_topic_map(LotteryContractClient.load_abi())
    return client


def _view_returns(client, function_name, value):
    getattr(client._contract.functions, function_name).return_value.call.return_value = value


def test_contract_address_is_checksummed(client):
    assert client.contract_address == Web3.to_checksum_address(CONTRACT_ADDRESS)
    assert client.get_client_status()["signer"] is None


def test_private_key_loads_signer():
    client = LotteryContractClient({"blockchain": {"private_key": HARDHAT_KEY_0}})

    assert client.account.address == PLAYERS[0]


def test_topic_map_covers_lottery_events():
    topics = LotteryContractClient.build_topic_map(LotteryContractClient.load_abi())

    assert topics == {
        Web3.to_hex(_topic("LotteryEnter(address)")): "LotteryEnter",
        Web3.to_hex(_topic("RequestedLotteryWinner(uint256)")): "RequestedLotteryWinner",
        Web3.to_hex(_topic("WinnerPicked(address)")): "WinnerPicked",
    }


def test_views_are_converted(client):
    _view_returns(client, "getLotteryState", 1)
    _view_returns(client, "getEntranceFee", 10**16)
    _view_returns(client, "getRecentWinner", ZERO_ADDRESS)

    assert asyncio.run(client.get_lottery_state()) == LotteryState.RESOLVING
    assert asyncio.run(client.get_entrance_fee()) == 10**16
    assert asyncio.run(client.get_recent_winner()) is None


def test_player_lookup_passes_index(client):
    _view_returns(client, "getPlayer", PLAYERS[1])

    assert asyncio.run(client.get_player(3)) == PLAYERS[1]
    client._contract.functions.getPlayer.assert_called_with(3)


def test_check_upkeep_returns_named_tuple(client):
    _view_returns(client, "checkUpkeep", (True, b""))

    result = asyncio.run(client.check_upkeep(b""))

    assert result == UpkeepCheck(True, b"")
    assert result.upkeep_needed is True


def test_uninitialised_client_refuses_calls():
    client = LotteryContractClient({})

    with pytest.raises(RuntimeError):
        asyncio.run(client.get_interval())


def test_writes_require_signer(client):
    with pytest.raises(ValueError):
        asyncio.run(client.perform_upkeep(b""))


def test_enter_lottery_signs_and_sends(client):
    client.account = MagicMock(address=PLAYERS[0])
    client.account.sign_transaction.return_value = MagicMock(raw_transaction=b"\x01\x02")
    tx_function = client._contract.functions.enterLottery.return_value
    tx_function.estimate_gas.return_value = 100000
    tx_function.build_transaction.side_effect = lambda params: dict(params)
    client._w3.eth.gas_price = 10**9
    client._w3.eth.get_transaction_count.return_value = 4
    client._w3.eth.send_raw_transaction.return_value = b"\x11" * 32

    tx_hash = asyncio.run(client.enter_lottery(10**16))

    assert tx_hash == "0x" + "11" * 32
    tx_function.estimate_gas.assert_called_once_with({"from": PLAYERS[0], "value": 10**16})
    txn = client.account.sign_transaction.call_args[0][0]
    assert txn["value"] == 10**16
    assert txn["nonce"] == 4
    assert txn["gas"] == int(100000 * 1.15)
    assert txn["chainId"] == 31337
    client._w3.eth.send_raw_transaction.assert_called_once_with(b"\x01\x02")


def test_get_events_decodes_known_topics(client):
    client._w3.eth.block_number = 20
    enter_log = {"topics": [_topic("LotteryEnter(address)")]}
    picked_log = {"topics": [_topic("WinnerPicked(address)")]}
    foreign_log = {"topics": [_topic("Transfer(address,address,uint256)")]}
    client._w3.eth.get_logs.return_value = [picked_log, foreign_log, enter_log]
    client._contract.events.LotteryEnter.return_value.process_log.return_value = {
        "args": {"player": PLAYERS[1]},
        "blockNumber": 5,
        "transactionHash": b"\x22" * 32,
    }
    client._contract.events.WinnerPicked.return_value.process_log.return_value = {
        "args": {"winner": PLAYERS[1]},
        "blockNumber": 9,
        "transactionHash": b"\x33" * 32,
    }

    events = asyncio.run(client.get_events(0))

    assert [event.name for event in events] == ["LotteryEnter", "WinnerPicked"]
    assert events[0].args == {"player": PLAYERS[1]}
    assert events[0].transaction_hash == "0x" + "22" * 32
    query = client._w3.eth.get_logs.call_args[0][0]
    assert query["toBlock"] == 20
    assert query["address"] == client.contract_address


def test_get_events_empty_range(client):
    assert asyncio.run(client.get_events(10, 5)) == []
    client._w3.eth.get_logs.assert_not_called()


def _revert_data(signature, types=(), values=()):
    return Web3.to_hex(Web3.keccak(text=signature)[:4]) + encode(list(types), list(values)).hex()


def _signing_client(client):
    client.account = MagicMock(address=PLAYERS[0])
    return client


def test_upkeep_not_needed_revert_becomes_trigger_not_eligible(client):
    _signing_client(client)
    data = _revert_data(
        "Lottery__UpkeepNotNeeded(uint256,uint256,uint256)",
        ["uint256", "uint256", "uint256"],
        [10**16, 1, 1],
    )
    client._contract.functions.performUpkeep.return_value.estimate_gas.side_effect = ContractCustomError(data)

    with pytest.raises(TriggerNotEligible) as excinfo:
        asyncio.run(client.perform_upkeep(b""))

    assert excinfo.value.balance == 10**16
    assert excinfo.value.num_players == 1
    assert excinfo.value.state == LotteryState.RESOLVING
    client._w3.eth.send_raw_transaction.assert_not_called()


def test_scheduler_counts_on_chain_lost_race(client):
    _signing_client(client)
    data = _revert_data(
        "Lottery__UpkeepNotNeeded(uint256,uint256,uint256)",
        ["uint256", "uint256", "uint256"],
        [0, 0, 0],
    )
    client._contract.functions.performUpkeep.return_value.estimate_gas.side_effect = ContractCustomError(data)
    scheduler = UpkeepScheduler(client)

    assert asyncio.run(scheduler.perform(b"")) is None

    status = scheduler.get_status()
    assert status["rejected_performs"] == 1
    assert status["performs"] == 0
    assert "players=0" in status["last_error"]


def test_not_open_revert_on_entry(client):
    _signing_client(client)
    data = _revert_data("Lottery__NotOpen()")
    client._contract.functions.enterLottery.return_value.estimate_gas.side_effect = ContractCustomError(data)

    with pytest.raises(NotOpen):
        asyncio.run(client.enter_lottery(10**16))


def test_unknown_revert_is_passed_through(client):
    _signing_client(client)
    data = _revert_data("SomethingElse(uint256)", ["uint256"], [1])
    client._contract.functions.performUpkeep.return_value.estimate_gas.side_effect = ContractCustomError(data)

    with pytest.raises(ContractCustomError):
        asyncio.run(client.perform_upkeep(b""))


def test_same_block_events_keep_chain_order(client):
    client._w3.eth.block_number = 5
    enter_topic = _topic("LotteryEnter(address)")
    first, second = {"topics": [enter_topic], "n": 0}, {"topics": [enter_topic], "n": 1}
    client._w3.eth.get_logs.return_value = [first, second]
    decoded = {
        0: {"args": {"player": PLAYERS[0]}, "blockNumber": 5, "transactionHash": b"\xff" * 32, "logIndex": 0},
        1: {"args": {"player": PLAYERS[1]}, "blockNumber": 5, "transactionHash": b"\x01" * 32, "logIndex": 1},
    }
    client._contract.events.LotteryEnter.return_value.process_log.side_effect = lambda raw: decoded[raw["n"]]

    events = asyncio.run(client.get_events(0))

    assert [event.args["player"] for event in events] == [PLAYERS[0], PLAYERS[1]]
    assert [event.log_index for event in events] == [0, 1]

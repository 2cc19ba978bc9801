import pytest

from vrf_lottery.blockchain.ledger import InMemoryLedger, InsufficientFunds, LedgerError, TransferRejected


def test_transfer_moves_funds():
    ledger = InMemoryLedger({"alice": 100})

    ledger.transfer("alice", "bob", 40)

    assert ledger.balance_of("alice") == 60
    assert ledger.balance_of("bob") == 40
    assert sorted(ledger.accounts()) == ["alice", "bob"]


def test_unknown_account_has_zero_balance():
    assert InMemoryLedger().balance_of("nobody") == 0


def test_overdraft_leaves_balances_untouched():
    ledger = InMemoryLedger({"alice": 10})

    with pytest.raises(InsufficientFunds) as excinfo:
        ledger.transfer("alice", "bob", 11)

    assert excinfo.value.balance == 10
    assert excinfo.value.amount == 11
    assert ledger.balance_of("alice") == 10
    assert ledger.balance_of("bob") == 0


def test_rejecting_recipient_fails_transfer():
    ledger = InMemoryLedger({"alice": 10})
    ledger.reject_payments_to("bob")

    with pytest.raises(TransferRejected):
        ledger.transfer("alice", "bob", 5)
    assert ledger.balance_of("alice") == 10

    ledger.accept_payments_to("bob")
    ledger.transfer("alice", "bob", 5)
    assert ledger.balance_of("bob") == 5


def test_ledger_errors_share_a_base_class():
    assert issubclass(InsufficientFunds, LedgerError)
    assert issubclass(TransferRejected, LedgerError)


def test_negative_amounts_are_refused():
    ledger = InMemoryLedger({"alice": 10})

    with pytest.raises(ValueError):
        ledger.mint("alice", -1)
    with pytest.raises(ValueError):
        ledger.transfer("alice", "bob", -1)


def test_zero_transfer_is_allowed():
    ledger = InMemoryLedger()

    ledger.transfer("alice", "bob", 0)

    assert ledger.balance_of("bob") == 0

"""
Test suite for the transfer engine

Tests deposits, withdrawals and transfers: conservation, non-negativity,
append-only history and rollback of transfers interrupted by store faults.
"""

import threading

import pytest

from pin_ledger.directory import InMemoryOwnerDirectory
from pin_ledger.errors import (
    AccountNotFoundError, InsufficientBalanceError, StorageFailureError, ValidationError
)
from pin_ledger.models import Account, TransactionKind
from pin_ledger.storage import InMemoryLedgerStore
from pin_ledger.transfers import TransferEngine


class FaultyStore(InMemoryLedgerStore):
    """In-memory store that fails a chosen call"""
    
    def __init__(self):
        super().__init__()
        self.fail_credit_to = None
        self.fail_finalize = False
        self.fail_discard = False
    
    def apply_ledger_entry(self, account_number, balance_delta, record, pending=False):
        if account_number == self.fail_credit_to and balance_delta > 0:
            raise StorageFailureError("simulated fault while crediting")
        return super().apply_ledger_entry(account_number, balance_delta, record, pending)
    
    def finalize_entry(self, account_number, record_id):
        if self.fail_finalize:
            raise StorageFailureError("simulated fault while finalizing")
        return super().finalize_entry(account_number, record_id)
    
    def discard_entry(self, account_number, record_id):
        if self.fail_discard:
            raise StorageFailureError("simulated fault while compensating")
        return super().discard_entry(account_number, record_id)


def open_account(store, number, owner):
    store.insert(Account(account_number=number, owner_id=owner, pin_hash="scrypt$x"))


class TestDepositWithdraw:
    """Single-account operations"""
    
    def setup_method(self):
        self.store = InMemoryLedgerStore()
        self.engine = TransferEngine(self.store)
        open_account(self.store, "9010000001", "alice")
    
    def test_deposit(self):
        account = self.engine.deposit("9010000001", 100)
        
        assert account.balance == 100
        assert len(account.history) == 1
        record = account.history[0]
        assert record.kind == TransactionKind.DEPOSIT
        assert record.amount == 100
        assert record.counterpart_name is None
        assert record.timestamp.tzinfo is not None
    
    def test_withdraw(self):
        self.engine.deposit("9010000001", 100)
        account = self.engine.withdraw("9010000001", 30)
        
        assert account.balance == 70
        assert [r.kind for r in account.history] == [TransactionKind.DEPOSIT, TransactionKind.WITHDRAW]
    
    def test_withdraw_entire_balance(self):
        self.engine.deposit("9010000001", 100)
        assert self.engine.withdraw("9010000001", 100).balance == 0
    
    def test_withdraw_more_than_balance(self):
        """Overdraw fails and leaves balance and history unchanged"""
        self.engine.deposit("9010000001", 50)
        
        with pytest.raises(InsufficientBalanceError):
            self.engine.withdraw("9010000001", 51)
        
        account = self.store.find_by_account_number("9010000001")
        assert account.balance == 50
        assert len(account.history) == 1
    
    @pytest.mark.parametrize("amount", [0, -5, 1.5, "10", None, True])
    def test_invalid_amount(self, amount):
        with pytest.raises(ValidationError):
            self.engine.deposit("9010000001", amount)
        with pytest.raises(ValidationError):
            self.engine.withdraw("9010000001", amount)
        assert self.store.find_by_account_number("9010000001").history == ()
    
    def test_missing_account(self):
        with pytest.raises(AccountNotFoundError):
            self.engine.deposit("9019999999", 10)
        with pytest.raises(AccountNotFoundError):
            self.engine.withdraw("9019999999", 10)
    
    def test_concurrent_deposits_do_not_lose_updates(self):
        threads = [
            threading.Thread(target=lambda: [self.engine.deposit("9010000001", 1) for _ in range(50)])
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        
        account = self.store.find_by_account_number("9010000001")
        assert account.balance == 400
        assert len(account.history) == 400


class TestTransfer:
    """Two-account transfers"""
    
    def setup_method(self):
        self.store = FaultyStore()
        self.directory = InMemoryOwnerDirectory({"alice": "Alice Smith", "bob": "Bob Jones"})
        self.engine = TransferEngine(self.store, directory=self.directory)
        open_account(self.store, "9010000001", "alice")
        open_account(self.store, "9010000002", "bob")
        self.engine.deposit("9010000001", 100)
    
    def balances(self):
        return (
            self.store.find_by_account_number("9010000001").balance,
            self.store.find_by_account_number("9010000002").balance
        )
    
    def history_lengths(self):
        return (
            len(self.store.find_by_account_number("9010000001").history),
            len(self.store.find_by_account_number("9010000002").history)
        )
    
    def test_transfer(self):
        receipt = self.engine.transfer("9010000001", "9010000002", 40)
        
        assert receipt.sender.balance == 60
        assert receipt.recipient.balance == 40
        assert receipt.amount == 40
        
        out_record = receipt.sender.history[-1]
        in_record = receipt.recipient.history[-1]
        assert out_record.kind == TransactionKind.TRANSFER_OUT
        assert out_record.counterpart_name == "Bob Jones"
        assert out_record.id == receipt.sender_record_id
        assert in_record.kind == TransactionKind.TRANSFER_IN
        assert in_record.counterpart_name == "Alice Smith"
        assert in_record.id == receipt.recipient_record_id
        assert out_record.amount == in_record.amount == 40
    
    def test_conservation(self):
        before = self.balances()
        self.engine.transfer("9010000001", "9010000002", 35)
        after = self.balances()
        
        assert sum(after) == sum(before)
        assert after[0] == before[0] - 35
    
    def test_counterpart_falls_back_to_owner_id(self):
        engine = TransferEngine(self.store)
        receipt = engine.transfer("9010000001", "9010000002", 10)
        
        assert receipt.sender.history[-1].counterpart_name == "bob"
        assert receipt.recipient.history[-1].counterpart_name == "alice"
    
    def test_insufficient_balance(self):
        with pytest.raises(InsufficientBalanceError):
            self.engine.transfer("9010000001", "9010000002", 101)
        
        assert self.balances() == (100, 0)
        assert self.history_lengths() == (1, 0)
    
    def test_missing_accounts(self):
        with pytest.raises(AccountNotFoundError):
            self.engine.transfer("9019999999", "9010000002", 10)
        with pytest.raises(AccountNotFoundError):
            self.engine.transfer("9010000001", "9019999999", 10)
        assert self.balances() == (100, 0)
    
    def test_transfer_to_self_rejected(self):
        with pytest.raises(ValidationError):
            self.engine.transfer("9010000001", "9010000001", 10)
    
    def test_invalid_amount(self):
        with pytest.raises(ValidationError):
            self.engine.transfer("9010000001", "9010000002", 0)
    
    def test_fault_while_crediting_rolls_back(self):
        """Sender debited, recipient credit fails: nothing changes"""
        self.store.fail_credit_to = "9010000002"
        
        with pytest.raises(StorageFailureError):
            self.engine.transfer("9010000001", "9010000002", 40)
        
        assert self.balances() == (100, 0)
        assert self.history_lengths() == (1, 0)
    
    def test_fault_while_finalizing_rolls_back(self):
        self.store.fail_finalize = True
        
        with pytest.raises(StorageFailureError):
            self.engine.transfer("9010000001", "9010000002", 40)
        
        assert self.balances() == (100, 0)
        assert self.history_lengths() == (1, 0)
    
    def test_failed_compensation_keeps_first_error(self):
        """The first fault is raised and the stranded debit stays pending until repaired"""
        self.store.fail_credit_to = "9010000002"
        self.store.fail_discard = True
        
        with pytest.raises(StorageFailureError, match="crediting"):
            self.engine.transfer("9010000001", "9010000002", 40)
        
        assert self.history_lengths() == (1, 0)
        assert self.balances() == (60, 0)
        
        stranded = self.store.pending_entries("9010000001")
        assert len(stranded) == 1
        assert stranded[0].kind is TransactionKind.TRANSFER_OUT
        assert stranded[0].amount == 40
        
        self.store.fail_discard = False
        self.store.discard_entry("9010000001", stranded[0].id)
        assert self.balances() == (100, 0)
        assert self.store.pending_entries("9010000001") == ()
    
    def test_history_counts(self):
        """Every operation appends exactly one record per affected account"""
        self.engine.deposit("9010000002", 20)
        self.engine.withdraw("9010000001", 10)
        self.engine.transfer("9010000001", "9010000002", 30)
        self.engine.transfer("9010000002", "9010000001", 5)
        
        # alice: deposit, withdraw, transfer out, transfer in
        # bob: deposit, transfer in, transfer out
        assert self.history_lengths() == (4, 3)
        assert self.balances() == (65, 45)
    
    def test_opposite_transfers_do_not_deadlock(self):
        self.engine.deposit("9010000002", 100)
        
        def run(sender, recipient):
            for _ in range(50):
                self.engine.transfer(sender, recipient, 1)
        
        threads = [
            threading.Thread(target=run, args=("9010000001", "9010000002")),
            threading.Thread(target=run, args=("9010000002", "9010000001"))
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        
        assert not any(thread.is_alive() for thread in threads)
        assert self.balances() == (100, 100)
        assert self.history_lengths() == (101, 101)

"""
Test suite for integration scenarios

Tests end-to-end ledger scenarios through the service facade, on both the
in-memory and the SQLite store.
"""

import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from pin_ledger.config import LedgerConfig
from pin_ledger.directory import InMemoryOwnerDirectory
from pin_ledger.errors import (
    AccountNotFoundError, DuplicateAccountError, EmptyPageError,
    InsufficientBalanceError, InvalidPinError, ValidationError
)
from pin_ledger.history import HistoryFilter, HistoryFilterField, HistorySort, SortField, SortOrder
from pin_ledger.query_params import parse_search, parse_sort
from pin_ledger.schemas import HistoryPageResponse
from pin_ledger.service import create_ledger_service, create_store
from pin_ledger.storage import InMemoryLedgerStore, SQLiteLedgerStore


FAST_HASHING = dict(pin_hash_n=1024)


class TestLedgerServiceScenario:
    """End-to-end scenario from the account lifecycle to paged history"""
    
    def setup_method(self):
        """Set up a ledger with two owners"""
        directory = InMemoryOwnerDirectory({"alice": "Alice Smith", "bob": "Bob Jones"})
        self.service = create_ledger_service(LedgerConfig(**FAST_HASHING), directory=directory)
        self.a = self.service.create_account("alice", "123456").account_number
        self.b = self.service.create_account("bob", "654321").account_number
    
    def kinds(self, account_number):
        page = self.service.query_history(
            account_number, sort=HistorySort(SortField.TIMESTAMP, SortOrder.ASC)
        )
        return [(entry.kind, entry.amount) for entry in page.data]
    
    def test_deposit_withdraw_transfer(self):
        assert self.service.get_account_info(self.a).balance == 0
        
        assert self.service.deposit(self.a, 100, "123456").balance == 100
        assert self.kinds(self.a) == [("Deposit", 100)]
        
        assert self.service.withdraw(self.a, 30, "123456").balance == 70
        assert self.kinds(self.a) == [("Deposit", 100), ("Withdraw", 30)]
        
        assert self.service.transfer(self.a, self.b, 50, "123456").balance == 20
        assert self.service.get_account_info(self.b).balance == 50
        assert self.kinds(self.a) == [("Deposit", 100), ("Withdraw", 30), ("Transfer Out", 50)]
        assert self.kinds(self.b) == [("Transfer In", 50)]
    
    def test_counterpart_names_in_history(self):
        self.service.deposit(self.a, 100, "123456")
        self.service.transfer(self.a, self.b, 50, "123456")
        
        sent = self.service.query_history(self.a, search=HistoryFilter(HistoryFilterField.RECIPIENT_NAME, "Bob"))
        received = self.service.query_history(self.b, search=HistoryFilter(HistoryFilterField.SENDER_NAME, "Alice"))
        
        assert sent.data[0].counterpart_name == "Bob Jones"
        assert received.data[0].counterpart_name == "Alice Smith"
    
    def test_wrong_pin_blocks_mutations(self):
        self.service.deposit(self.a, 100, "123456")
        
        with pytest.raises(InvalidPinError):
            self.service.deposit(self.a, 10, "111111")
        with pytest.raises(InvalidPinError):
            self.service.withdraw(self.a, 10, "111111")
        with pytest.raises(InvalidPinError):
            self.service.transfer(self.a, self.b, 10, "654321")
        
        assert self.service.get_account_info(self.a).balance == 100
        assert self.service.query_history(self.a).count == 1
    
    def test_missing_account_checked_before_pin(self):
        with pytest.raises(AccountNotFoundError):
            self.service.deposit("9019999999", 10, "123456")
        with pytest.raises(AccountNotFoundError):
            self.service.transfer(self.a, "9019999999", 10, "111111")
    
    def test_insufficient_balance(self):
        with pytest.raises(InsufficientBalanceError):
            self.service.transfer(self.a, self.b, 1, "123456")
    
    def test_change_pin_scenario(self):
        with pytest.raises(InvalidPinError):
            self.service.change_pin(self.a, "111111", "222222")
        self.service.deposit(self.a, 10, "123456")
        
        response = self.service.change_pin(self.a, "123456", "222222")
        
        assert response.account_number == self.a
        with pytest.raises(InvalidPinError):
            self.service.deposit(self.a, 10, "123456")
        assert self.service.deposit(self.a, 10, "222222").balance == 20
    
    def test_duplicate_account(self):
        with pytest.raises(DuplicateAccountError):
            self.service.create_account("alice", "111111")
    
    def test_account_info_by_owner(self):
        info = self.service.get_account_info_by_owner("bob")
        assert info.account_number == self.b
        with pytest.raises(AccountNotFoundError):
            self.service.get_account_info_by_owner("carol")
    
    def test_history_pages(self):
        for amount in (10, 20, 30, 40, 50):
            self.service.deposit(self.a, amount, "123456")
        
        page = self.service.query_history(self.a, page_number=3, page_size=2)
        
        assert isinstance(page, HistoryPageResponse)
        assert page.total_pages == 3
        assert page.count == 5
        assert len(page.data) == 1
        assert page.has_previous_page is True
        assert page.has_next_page is False
        # Default order is newest first, so the last page holds the oldest record
        assert page.data[0].amount == 10
        assert isinstance(page.data[0].timestamp, datetime)
        
        with pytest.raises(EmptyPageError):
            self.service.query_history(self.a, page_number=4, page_size=2)
        with pytest.raises(ValidationError):
            self.service.query_history(self.a, page_number=0)
    
    def test_history_with_parsed_query_strings(self):
        for amount in (10, 20, 30):
            self.service.deposit(self.a, amount, "123456")
        self.service.withdraw(self.a, 5, "123456")
        
        page = self.service.query_history(
            self.a, search=parse_search("kind:Deposit"), sort=parse_sort("amount:desc")
        )
        assert [entry.amount for entry in page.data] == [30, 20, 10]
        
        # Malformed strings fall back to no filter and newest first
        page = self.service.query_history(
            self.a, search=parse_search("kind"), sort=parse_sort("amount:sideways")
        )
        assert [entry.amount for entry in page.data] == [5, 30, 20, 10]
    
    def test_raw_strings_rejected_by_core(self):
        with pytest.raises(ValidationError):
            self.service.query_history(self.a, search="kind:Deposit")
        with pytest.raises(ValidationError):
            self.service.query_history(self.a, sort="amount:asc")
    
    def test_history_of_missing_account(self):
        with pytest.raises(AccountNotFoundError):
            self.service.query_history("9019999999")
    
    def test_empty_history_is_empty_page(self):
        with pytest.raises(EmptyPageError):
            self.service.query_history(self.b)
    
    def test_delete_account(self):
        self.service.deposit(self.a, 100, "123456")
        
        assert self.service.delete_account(self.a).account_number == self.a
        
        with pytest.raises(AccountNotFoundError):
            self.service.get_account_info(self.a)
        with pytest.raises(AccountNotFoundError):
            self.service.delete_account(self.a)


class TestSQLiteScenario:
    """The same flow against the SQLite store"""
    
    def test_scenario_on_sqlite(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config = LedgerConfig(database_url=f"sqlite:///{Path(temp_dir) / 'ledger.db'}", **FAST_HASHING)
            service = create_ledger_service(config)
            a = service.create_account("alice", "123456").account_number
            b = service.create_account("bob", "654321").account_number
            
            service.deposit(a, 100, "123456")
            service.withdraw(a, 30, "123456")
            service.transfer(a, b, 50, "123456")
            
            assert service.get_account_info(a).balance == 20
            assert service.get_account_info(b).balance == 50
            assert service.query_history(a).count == 3
            assert service.query_history(b).data[0].kind == "Transfer In"
            
            service.accounts.store.close()


class TestCreateStore:
    
    def test_memory_url(self):
        assert isinstance(create_store("memory://"), InMemoryLedgerStore)
    
    def test_sqlite_url(self):
        store = create_store("sqlite:///")
        assert isinstance(store, SQLiteLedgerStore)
        store.close()
    
    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_store("postgresql://localhost/ledger")

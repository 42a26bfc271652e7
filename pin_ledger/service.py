"""
Ledger Service Module

Method contracts offered to the transport layer. Each call checks account
existence, then the PIN, then delegates to the account service, the transfer
engine or the history pipeline, and returns a pydantic response model.
"""

from typing import Optional, Union

from .accounts import AccountService
from .config import LedgerConfig, get_config
from .directory import OwnerDirectory
from .errors import AccountNotFoundError, InvalidPinError, ValidationError
from .history import HistoryFilter, HistorySort, PageRequest, query_history
from .locking import AccountLocks
from .logging_config import configure_logging, get_logger, log_action
from .pin_vault import PinVault
from .schemas import (
    AccountInfoResponse, AccountNumberResponse, BalanceResponse, HistoryPageResponse
)
from .storage import InMemoryLedgerStore, LedgerStore, SQLiteLedgerStore
from .transfers import TransferEngine


Pin = Union[str, int]


class LedgerService:
    """
    Facade over account lifecycle, balance mutations and history queries
    """

    def __init__(self, accounts: AccountService, engine: TransferEngine):
        self.accounts = accounts
        self.engine = engine
        self.logger = get_logger("pin_ledger.service")

    def create_account(self, owner_id: str, pin: Pin) -> AccountNumberResponse:
        account = self.accounts.create_account(owner_id, pin)
        return AccountNumberResponse(account_number=account.account_number)

    def deposit(self, account_number: str, amount: int, pin: Pin) -> BalanceResponse:
        self._authorize(account_number, pin, "deposit")
        account = self.engine.deposit(account_number, amount)
        return BalanceResponse(balance=account.balance)

    def withdraw(self, account_number: str, amount: int, pin: Pin) -> BalanceResponse:
        self._authorize(account_number, pin, "withdraw")
        account = self.engine.withdraw(account_number, amount)
        return BalanceResponse(balance=account.balance)

    def transfer(self, sender_number: str, recipient_number: str,
                 amount: int, pin: Pin) -> BalanceResponse:
        """Transfer from sender to recipient; returns the sender's new balance"""
        self.accounts.require_account(sender_number)
        self.accounts.require_account(recipient_number)
        self._authorize(sender_number, pin, "transfer")
        receipt = self.engine.transfer(sender_number, recipient_number, amount)
        return BalanceResponse(balance=receipt.sender.balance)

    def change_pin(self, account_number: str, old_pin: Pin, new_pin: Pin) -> AccountNumberResponse:
        account = self.accounts.change_pin(account_number, old_pin, new_pin)
        return AccountNumberResponse(account_number=account.account_number)

    def get_account_info(self, account_number: str) -> AccountInfoResponse:
        account = self.accounts.require_account(account_number)
        return AccountInfoResponse(account_number=account.account_number, balance=account.balance)

    def get_account_info_by_owner(self, owner_id: str) -> AccountInfoResponse:
        account = self.accounts.get_account_by_owner(owner_id)
        if account is None:
            raise AccountNotFoundError(f"Owner {owner_id} has no account")
        return AccountInfoResponse(account_number=account.account_number, balance=account.balance)

    def query_history(self, account_number: str,
                      search: Optional[HistoryFilter] = None,
                      sort: Optional[HistorySort] = None,
                      page_number: Optional[int] = None,
                      page_size: Optional[int] = None) -> HistoryPageResponse:
        """
        Read one page of an account's history

        Raises:
            AccountNotFoundError: If the account does not exist
            ValidationError: If a page parameter is not a positive integer,
                or search/sort are not typed values
            EmptyPageError: If the page is beyond the last page
        """
        if search is not None and not isinstance(search, HistoryFilter):
            raise ValidationError("search must be a HistoryFilter")
        if sort is not None and not isinstance(sort, HistorySort):
            raise ValidationError("sort must be a HistorySort")

        account = self.accounts.require_account(account_number)
        page = query_history(
            account.history, search, sort,
            PageRequest(page_number=page_number, page_size=page_size)
        )
        return HistoryPageResponse.from_page(page)

    def delete_account(self, account_number: str) -> AccountNumberResponse:
        self.accounts.delete_account(account_number)
        return AccountNumberResponse(account_number=account_number)

    def _authorize(self, account_number: str, pin: Pin, action: str) -> None:
        if not self.accounts.verify_pin(account_number, pin):
            log_action(
                self.logger, "warning", "Wrong PIN",
                action=action, resource=f"account:{account_number}"
            )
            raise InvalidPinError("Wrong PIN")


def create_store(database_url: str) -> LedgerStore:
    """Build a store from a database URL (memory:// or sqlite:///path)"""
    if database_url == "memory://":
        return InMemoryLedgerStore()
    if database_url.startswith("sqlite:///"):
        return SQLiteLedgerStore(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")


def create_ledger_service(
    config: Optional[LedgerConfig] = None,
    store: Optional[LedgerStore] = None,
    directory: Optional[OwnerDirectory] = None
) -> LedgerService:
    """Wire the ledger components from configuration and apply its log settings"""
    config = config or get_config()
    configure_logging(config)
    store = store or create_store(config.database_url)
    locks = AccountLocks()
    pin_vault = PinVault.from_config(config)

    accounts = AccountService(store, pin_vault, locks=locks, config=config)
    engine = TransferEngine(store, locks=locks, directory=directory)
    return LedgerService(accounts, engine)

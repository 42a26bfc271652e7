"""
Account Management Module

Manages the account/PIN lifecycle: creating an account when an owner first
sets a PIN, PIN verification and rotation, and account deletion.
"""

from datetime import datetime, timezone
from typing import Optional, Union
import secrets

from .config import LedgerConfig, get_config
from .errors import (
    AccountNotFoundError, DuplicateAccountError, DuplicateKeyError,
    ExhaustedRetriesError, InvalidPinError
)
from .locking import AccountLocks
from .logging_config import get_logger, log_action
from .models import Account
from .pin_vault import PinVault
from .storage import LedgerStore


ACCOUNT_NUMBER_RANDOM_DIGITS = 7


class AccountService:
    """
    Manages account lifecycle and PIN checks
    """

    def __init__(
        self,
        store: LedgerStore,
        pin_vault: PinVault,
        locks: Optional[AccountLocks] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.store = store
        self.pin_vault = pin_vault
        self.locks = locks or AccountLocks()
        self.config = config or get_config()
        self.logger = get_logger("pin_ledger.accounts")

    def create_account(self, owner_id: str, pin: Union[str, int]) -> Account:
        """
        Create the account of an owner

        Args:
            owner_id: ID of the owning user
            pin: 6-digit PIN protecting the account

        Returns:
            Created Account with a zero balance and empty history

        Raises:
            DuplicateAccountError: If the owner already has an account
            MalformedPinError: If the PIN is not a 6-digit number
            ExhaustedRetriesError: If no free account number could be found
        """
        if self.store.find_by_owner_id(owner_id) is not None:
            log_action(
                self.logger, "warning", "Owner already has an account",
                user_id=owner_id, action="create_account"
            )
            raise DuplicateAccountError(f"Owner {owner_id} already has an account")

        pin_hash = self.pin_vault.hash(pin)
        max_attempts = self.config.account_number_max_attempts

        for attempt in range(1, max_attempts + 1):
            account_number = self._generate_account_number()
            if self.store.account_number_exists(account_number):
                continue

            now = datetime.now(timezone.utc)
            account = Account(
                account_number=account_number,
                owner_id=owner_id,
                pin_hash=pin_hash,
                created_at=now,
                updated_at=now
            )

            try:
                self.store.insert(account)
            except DuplicateKeyError:
                # Either the owner or the number was taken concurrently
                if self.store.find_by_owner_id(owner_id) is not None:
                    raise DuplicateAccountError(f"Owner {owner_id} already has an account")
                continue

            log_action(
                self.logger, "info", "Account created",
                user_id=owner_id, action="create_account",
                resource=f"account:{account_number}",
                extra={"attempts": attempt}
            )
            return account

        log_action(
            self.logger, "error", "Account number space exhausted",
            user_id=owner_id, action="create_account",
            extra={"attempts": max_attempts}
        )
        raise ExhaustedRetriesError(
            f"No free account number found after {max_attempts} attempts"
        )

    def get_account(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        return self.store.find_by_account_number(account_number)

    def get_account_by_owner(self, owner_id: str) -> Optional[Account]:
        """Get the account of an owner"""
        return self.store.find_by_owner_id(owner_id)

    def require_account(self, account_number: str) -> Account:
        """Get account by number or raise AccountNotFoundError"""
        account = self.store.find_by_account_number(account_number)
        if account is None:
            raise AccountNotFoundError(f"Account {account_number} not found")
        return account

    def verify_pin(self, account_number: str, pin: Union[str, int]) -> bool:
        """Check a PIN against the account's stored hash"""
        account = self.require_account(account_number)
        return self.pin_vault.verify(pin, account.pin_hash)

    def change_pin(self, account_number: str, old_pin: Union[str, int],
                   new_pin: Union[str, int]) -> Account:
        """
        Replace the PIN of an account

        Raises:
            AccountNotFoundError: If the account does not exist
            InvalidPinError: If old_pin does not verify
            MalformedPinError: If either PIN is not a 6-digit number
        """
        with self.locks.hold(account_number):
            account = self.require_account(account_number)
            if not self.pin_vault.verify(old_pin, account.pin_hash):
                log_action(
                    self.logger, "warning", "PIN change rejected: wrong PIN",
                    user_id=account.owner_id, action="change_pin",
                    resource=f"account:{account_number}"
                )
                raise InvalidPinError("Wrong PIN")

            self.store.set_pin_hash(account_number, self.pin_vault.hash(new_pin))

        log_action(
            self.logger, "info", "PIN changed",
            user_id=account.owner_id, action="change_pin",
            resource=f"account:{account_number}"
        )
        return self.require_account(account_number)

    def delete_account(self, account_number: str) -> None:
        """Delete an account and its entire history"""
        with self.locks.hold(account_number):
            account = self.require_account(account_number)
            if not self.store.remove(account_number):
                raise AccountNotFoundError(f"Account {account_number} not found")

        log_action(
            self.logger, "info", "Account deleted",
            user_id=account.owner_id, action="delete_account",
            resource=f"account:{account_number}",
            extra={"balance": account.balance, "history_length": len(account.history)}
        )

    def _generate_account_number(self) -> str:
        """Fixed prefix followed by random decimal digits"""
        digits = "".join(
            str(secrets.randbelow(10)) for _ in range(ACCOUNT_NUMBER_RANDOM_DIGITS)
        )
        return f"{self.config.account_number_prefix}{digits}"

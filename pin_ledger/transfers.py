"""
Transfer Engine Module

Balance-mutating operations: deposits, withdrawals and transfers. Each
operation writes the balance delta and its history record in one store call
per account, serialized per account. Transfers run as a saga over two
accounts: reserve the sender's debit as a pending entry, credit the
recipient, then finalize the debit; any failure compensates the completed
steps so no partial transfer is ever visible.
"""

from dataclasses import dataclass
from typing import Optional

from .directory import OwnerDirectory
from .errors import (
    AccountNotFoundError, InsufficientBalanceError, LedgerError, ValidationError
)
from .locking import AccountLocks
from .logging_config import get_logger, log_action
from .models import Account, TransactionKind, TransactionRecord
from .storage import LedgerStore


@dataclass(frozen=True)
class TransferReceipt:
    """Outcome of a completed transfer"""
    sender: Account
    recipient: Account
    amount: int
    sender_record_id: str
    recipient_record_id: str


class TransferEngine:
    """
    Applies deposits, withdrawals and transfers to the ledger
    """

    def __init__(
        self,
        store: LedgerStore,
        locks: Optional[AccountLocks] = None,
        directory: Optional[OwnerDirectory] = None
    ):
        self.store = store
        self.locks = locks or AccountLocks()
        self.directory = directory
        self.logger = get_logger("pin_ledger.transfers")

    def deposit(self, account_number: str, amount: int) -> Account:
        """
        Credit an account

        Raises:
            ValidationError: If amount is not a positive integer
            AccountNotFoundError: If the account does not exist
        """
        self._validate_amount(amount)
        record = TransactionRecord.create(TransactionKind.DEPOSIT, amount)

        with self.locks.hold(account_number):
            self._require(account_number)
            account = self.store.apply_ledger_entry(account_number, amount, record)

        log_action(
            self.logger, "info", "Deposit posted",
            action="deposit", resource=f"account:{account_number}",
            extra={"record_id": record.id, "amount": amount, "balance": account.balance}
        )
        return account

    def withdraw(self, account_number: str, amount: int) -> Account:
        """
        Debit an account

        Raises:
            ValidationError: If amount is not a positive integer
            AccountNotFoundError: If the account does not exist
            InsufficientBalanceError: If the balance is lower than amount
        """
        self._validate_amount(amount)
        record = TransactionRecord.create(TransactionKind.WITHDRAW, amount)

        with self.locks.hold(account_number):
            account = self._require(account_number)
            self._check_funds(account, amount, "withdraw")
            account = self.store.apply_ledger_entry(account_number, -amount, record)

        log_action(
            self.logger, "info", "Withdrawal posted",
            action="withdraw", resource=f"account:{account_number}",
            extra={"record_id": record.id, "amount": amount, "balance": account.balance}
        )
        return account

    def transfer(self, sender_number: str, recipient_number: str, amount: int) -> TransferReceipt:
        """
        Move amount from sender to recipient

        Args:
            sender_number: Account to debit
            recipient_number: Account to credit
            amount: Positive integer amount

        Returns:
            TransferReceipt with both post-transfer snapshots

        Raises:
            ValidationError: If amount is invalid or both accounts are the same
            AccountNotFoundError: If either account does not exist
            InsufficientBalanceError: If the sender's balance is lower than amount
            StorageFailureError: If the store fails; the transfer is rolled back
        """
        self._validate_amount(amount)
        if sender_number == recipient_number:
            raise ValidationError("Cannot transfer to the same account")

        with self.locks.hold(sender_number, recipient_number):
            sender = self._require(sender_number)
            recipient = self._require(recipient_number)
            self._check_funds(sender, amount, "transfer")

            out_record = TransactionRecord.create(
                TransactionKind.TRANSFER_OUT, amount,
                counterpart_name=self._display_name(recipient)
            )
            in_record = TransactionRecord.create(
                TransactionKind.TRANSFER_IN, amount,
                counterpart_name=self._display_name(sender)
            )

            sender, recipient = self._run_transfer_saga(
                sender_number, recipient_number, amount, out_record, in_record
            )

        log_action(
            self.logger, "info", "Transfer posted",
            action="transfer", resource=f"account:{sender_number}",
            extra={
                "recipient": recipient_number,
                "amount": amount,
                "sender_record_id": out_record.id,
                "recipient_record_id": in_record.id
            }
        )
        return TransferReceipt(
            sender=sender,
            recipient=recipient,
            amount=amount,
            sender_record_id=out_record.id,
            recipient_record_id=in_record.id
        )

    def _run_transfer_saga(self, sender_number: str, recipient_number: str, amount: int,
                           out_record: TransactionRecord, in_record: TransactionRecord):
        # Step 1: reserve the debit; invisible until finalized
        self.store.apply_ledger_entry(sender_number, -amount, out_record, pending=True)

        # Step 2: credit the recipient
        try:
            self.store.apply_ledger_entry(recipient_number, amount, in_record)
        except Exception as e:
            self._compensate(sender_number, out_record.id, e)
            raise

        # Step 3: finalize the debit
        try:
            sender = self.store.finalize_entry(sender_number, out_record.id)
        except Exception as e:
            self._compensate(recipient_number, in_record.id, e)
            self._compensate(sender_number, out_record.id, e)
            raise

        recipient = self.store.find_by_account_number(recipient_number)
        return sender, recipient

    def _compensate(self, account_number: str, record_id: str, cause: Exception) -> None:
        """Undo one saga step; a failed undo is logged and the triggering error wins"""
        try:
            self.store.discard_entry(account_number, record_id)
        except LedgerError as e:
            log_action(
                self.logger, "error", "Transfer compensation failed; entry left pending",
                action="transfer_compensation", resource=f"account:{account_number}",
                extra={"record_id": record_id, "cause": str(cause), "error": str(e)}
            )
            return

        log_action(
            self.logger, "warning", "Transfer step compensated",
            action="transfer_compensation", resource=f"account:{account_number}",
            extra={"record_id": record_id, "cause": str(cause)}
        )

    def _require(self, account_number: str) -> Account:
        account = self.store.find_by_account_number(account_number)
        if account is None:
            raise AccountNotFoundError(f"Account {account_number} not found")
        return account

    def _check_funds(self, account: Account, amount: int, action: str) -> None:
        if account.balance < amount:
            log_action(
                self.logger, "warning", "Insufficient balance",
                user_id=account.owner_id, action=action,
                resource=f"account:{account.account_number}",
                extra={"amount": amount}
            )
            raise InsufficientBalanceError(
                f"Balance of {account.account_number} is insufficient for {amount}"
            )

    def _display_name(self, account: Account) -> str:
        if self.directory is None:
            return account.owner_id
        return self.directory.name_or_id(account.owner_id)

    @staticmethod
    def _validate_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Amount must be an integer")
        if amount <= 0:
            raise ValidationError("Amount must be positive")

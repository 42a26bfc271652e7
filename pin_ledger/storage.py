"""
Ledger Storage Module

Abstract store interface and implementations for in-memory (testing) and
SQLite (persistence). Every call is atomic for the account it touches; a
balance change and its history entry always land together.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from datetime import datetime, timezone
from pathlib import Path
import sqlite3
import json
import threading

from .errors import (
    AccountNotFoundError, DuplicateKeyError, InsufficientBalanceError,
    StorageFailureError, ValidationError
)
from .models import Account, TransactionRecord


class LedgerStore(ABC):
    """Abstract interface for ledger storage backends"""

    @abstractmethod
    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        """Load an account snapshot with its committed history"""
        pass

    @abstractmethod
    def find_by_owner_id(self, owner_id: str) -> Optional[Account]:
        """Load the account belonging to an owner"""
        pass

    @abstractmethod
    def insert(self, account: Account) -> None:
        """
        Insert a new account.

        Raises:
            DuplicateKeyError: If the account number or owner is already present
        """
        pass

    @abstractmethod
    def apply_ledger_entry(self, account_number: str, balance_delta: int,
                           record: TransactionRecord, pending: bool = False) -> Account:
        """
        Atomically add balance_delta to the balance and append record.

        A pending record is held back from snapshots until finalize_entry.

        Raises:
            AccountNotFoundError: If the account does not exist
            InsufficientBalanceError: If the new balance would be negative
        """
        pass

    @abstractmethod
    def finalize_entry(self, account_number: str, record_id: str) -> Account:
        """Make a pending record part of the visible history"""
        pass

    @abstractmethod
    def discard_entry(self, account_number: str, record_id: str) -> Account:
        """
        Remove a record and reverse its balance delta.

        Only used to compensate a step of an unfinished transfer.
        """
        pass

    @abstractmethod
    def pending_entries(self, account_number: str) -> Tuple[TransactionRecord, ...]:
        """
        Records reserved but neither finalized nor discarded, oldest first.

        Only a transfer whose compensation failed leaves one behind; its
        delta is already in the balance, so the account needs repair.
        """
        pass

    @abstractmethod
    def set_pin_hash(self, account_number: str, pin_hash: str) -> None:
        """Replace the stored PIN hash"""
        pass

    @abstractmethod
    def remove(self, account_number: str) -> bool:
        """Delete an account and its entire history"""
        pass

    def account_number_exists(self, account_number: str) -> bool:
        """Check if an account number is taken"""
        return self.find_by_account_number(account_number) is not None

    def close(self) -> None:
        """Close storage connection (default no-op)"""
        pass

    @staticmethod
    def _check_entry(balance: int, balance_delta: int, record: TransactionRecord) -> int:
        """Validate an entry against the current balance and return the new balance"""
        if balance_delta != record.balance_delta:
            raise ValidationError(
                f"Balance delta {balance_delta} does not match {record.kind.value} of {record.amount}"
            )
        new_balance = balance + balance_delta
        if new_balance < 0:
            raise InsufficientBalanceError(
                f"Balance {balance} is insufficient for {record.amount}"
            )
        return new_balance


class InMemoryLedgerStore(LedgerStore):
    """In-memory store implementation for testing"""

    def __init__(self):
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._history: Dict[str, List[Dict[str, Any]]] = {}
        self._owners: Dict[str, str] = {}
        self._lock = threading.RLock()

    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        with self._lock:
            if account_number not in self._accounts:
                return None
            return self._snapshot(account_number)

    def find_by_owner_id(self, owner_id: str) -> Optional[Account]:
        with self._lock:
            account_number = self._owners.get(owner_id)
            if account_number is None:
                return None
            return self._snapshot(account_number)

    def insert(self, account: Account) -> None:
        with self._lock:
            if account.account_number in self._accounts:
                raise DuplicateKeyError(f"Account number {account.account_number} already exists")
            if account.owner_id in self._owners:
                raise DuplicateKeyError(f"Owner {account.owner_id} already has an account")

            # Deep copy to prevent external mutation
            self._accounts[account.account_number] = json.loads(json.dumps(account.to_dict()))
            self._history[account.account_number] = [
                record.to_dict() for record in account.history
            ]
            self._owners[account.owner_id] = account.account_number

    def apply_ledger_entry(self, account_number: str, balance_delta: int,
                           record: TransactionRecord, pending: bool = False) -> Account:
        with self._lock:
            data = self._require(account_number)
            new_balance = self._check_entry(data["balance"], balance_delta, record)

            history = self._history[account_number]
            if any(entry["id"] == record.id for entry in history):
                raise DuplicateKeyError(f"Record {record.id} already in history of {account_number}")

            stored = record.as_pending() if pending else record.as_committed()
            history.append(stored.to_dict())
            data["balance"] = new_balance
            data["updated_at"] = datetime.now(timezone.utc).isoformat()
            return self._snapshot(account_number)

    def finalize_entry(self, account_number: str, record_id: str) -> Account:
        with self._lock:
            self._require(account_number)
            entry = self._find_entry(account_number, record_id)
            entry["pending"] = False
            return self._snapshot(account_number)

    def discard_entry(self, account_number: str, record_id: str) -> Account:
        with self._lock:
            data = self._require(account_number)
            entry = self._find_entry(account_number, record_id)
            record = TransactionRecord.from_dict(entry)

            # Reversing a credit may not overdraw the account
            restored = data["balance"] - record.balance_delta
            if restored < 0:
                raise StorageFailureError(
                    f"Cannot discard {record_id}: balance would become negative"
                )

            self._history[account_number].remove(entry)
            data["balance"] = restored
            data["updated_at"] = datetime.now(timezone.utc).isoformat()
            return self._snapshot(account_number)

    def pending_entries(self, account_number: str) -> Tuple[TransactionRecord, ...]:
        with self._lock:
            self._require(account_number)
            return tuple(
                TransactionRecord.from_dict(entry)
                for entry in self._history[account_number]
                if entry["pending"]
            )

    def set_pin_hash(self, account_number: str, pin_hash: str) -> None:
        with self._lock:
            data = self._require(account_number)
            data["pin_hash"] = pin_hash
            data["updated_at"] = datetime.now(timezone.utc).isoformat()

    def remove(self, account_number: str) -> bool:
        with self._lock:
            data = self._accounts.pop(account_number, None)
            if data is None:
                return False
            self._history.pop(account_number, None)
            self._owners.pop(data["owner_id"], None)
            return True

    def _require(self, account_number: str) -> Dict[str, Any]:
        data = self._accounts.get(account_number)
        if data is None:
            raise AccountNotFoundError(f"Account {account_number} not found")
        return data

    def _find_entry(self, account_number: str, record_id: str) -> Dict[str, Any]:
        for entry in self._history[account_number]:
            if entry["id"] == record_id:
                return entry
        raise StorageFailureError(f"Record {record_id} not found in history of {account_number}")

    def _snapshot(self, account_number: str) -> Account:
        history = tuple(
            TransactionRecord.from_dict(entry)
            for entry in self._history[account_number]
            if not entry["pending"]
        )
        return Account.from_dict(dict(self._accounts[account_number]), history)


class SQLiteLedgerStore(LedgerStore):
    """SQLite store implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema()
        except sqlite3.Error as e:
            raise StorageFailureError(f"Cannot open ledger database {self.db_path}: {e}") from e

    def _ensure_schema(self) -> None:
        """Ensure tables exist with proper schema"""
        with self._connection:
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_number TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL UNIQUE,
                    data TEXT NOT NULL,
                    balance INTEGER NOT NULL CHECK (balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS transaction_records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    account_number TEXT NOT NULL
                        REFERENCES accounts(account_number) ON DELETE CASCADE,
                    data TEXT NOT NULL,
                    pending INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (account_number, id)
                )
            """)
            self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_transaction_records_account
                ON transaction_records(account_number, seq)
            """)

    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        with self._lock:
            try:
                return self._snapshot(account_number)
            except sqlite3.Error as e:
                raise StorageFailureError(f"Failed to load account {account_number}: {e}") from e

    def find_by_owner_id(self, owner_id: str) -> Optional[Account]:
        with self._lock:
            try:
                row = self._connection.execute(
                    "SELECT account_number FROM accounts WHERE owner_id = ?", (owner_id,)
                ).fetchone()
                if row is None:
                    return None
                return self._snapshot(row["account_number"])
            except sqlite3.Error as e:
                raise StorageFailureError(f"Failed to load account of owner {owner_id}: {e}") from e

    def insert(self, account: Account) -> None:
        data = account.to_dict()
        with self._lock:
            try:
                with self._connection:
                    self._connection.execute("""
                        INSERT INTO accounts (account_number, owner_id, data, balance, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (account.account_number, account.owner_id, json.dumps(data),
                          account.balance, data["created_at"], data["updated_at"]))
                    for record in account.history:
                        self._insert_record(account.account_number, record)
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(f"Account {account.account_number} conflicts with an existing key: {e}") from e
            except (sqlite3.Error, OverflowError) as e:
                raise StorageFailureError(f"Failed to insert account {account.account_number}: {e}") from e

    def apply_ledger_entry(self, account_number: str, balance_delta: int,
                           record: TransactionRecord, pending: bool = False) -> Account:
        stored = record.as_pending() if pending else record.as_committed()
        with self._lock:
            try:
                with self._connection:
                    balance = self._require_balance(account_number)
                    new_balance = self._check_entry(balance, balance_delta, record)
                    self._insert_record(account_number, stored)
                    self._write_balance(account_number, new_balance)
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(f"Record {record.id} already in history of {account_number}") from e
            except (sqlite3.Error, OverflowError) as e:
                raise StorageFailureError(f"Failed to apply entry to {account_number}: {e}") from e
            return self.find_by_account_number(account_number)

    def finalize_entry(self, account_number: str, record_id: str) -> Account:
        with self._lock:
            try:
                with self._connection:
                    self._require_balance(account_number)
                    entry = self._load_entry(account_number, record_id)
                    committed = entry.as_committed()
                    self._connection.execute("""
                        UPDATE transaction_records SET data = ?, pending = 0
                        WHERE account_number = ? AND id = ?
                    """, (json.dumps(committed.to_dict()), account_number, record_id))
            except sqlite3.Error as e:
                raise StorageFailureError(f"Failed to finalize {record_id}: {e}") from e
            return self.find_by_account_number(account_number)

    def discard_entry(self, account_number: str, record_id: str) -> Account:
        with self._lock:
            try:
                with self._connection:
                    balance = self._require_balance(account_number)
                    entry = self._load_entry(account_number, record_id)
                    restored = balance - entry.balance_delta
                    if restored < 0:
                        raise StorageFailureError(
                            f"Cannot discard {record_id}: balance would become negative"
                        )
                    self._connection.execute(
                        "DELETE FROM transaction_records WHERE account_number = ? AND id = ?",
                        (account_number, record_id)
                    )
                    self._write_balance(account_number, restored)
            except (sqlite3.Error, OverflowError) as e:
                raise StorageFailureError(f"Failed to discard {record_id}: {e}") from e
            return self.find_by_account_number(account_number)

    def pending_entries(self, account_number: str) -> Tuple[TransactionRecord, ...]:
        with self._lock:
            try:
                self._require_balance(account_number)
                cursor = self._connection.execute("""
                    SELECT data FROM transaction_records
                    WHERE account_number = ? AND pending = 1
                    ORDER BY seq
                """, (account_number,))
                return tuple(TransactionRecord.from_dict(json.loads(r["data"])) for r in cursor.fetchall())
            except sqlite3.Error as e:
                raise StorageFailureError(f"Failed to load pending entries of {account_number}: {e}") from e

    def set_pin_hash(self, account_number: str, pin_hash: str) -> None:
        with self._lock:
            try:
                with self._connection:
                    data = self._load_data(account_number)
                    data["pin_hash"] = pin_hash
                    data["updated_at"] = datetime.now(timezone.utc).isoformat()
                    self._connection.execute(
                        "UPDATE accounts SET data = ?, updated_at = ? WHERE account_number = ?",
                        (json.dumps(data), data["updated_at"], account_number)
                    )
            except sqlite3.Error as e:
                raise StorageFailureError(f"Failed to update PIN of {account_number}: {e}") from e

    def remove(self, account_number: str) -> bool:
        with self._lock:
            try:
                with self._connection:
                    self._connection.execute(
                        "DELETE FROM transaction_records WHERE account_number = ?", (account_number,)
                    )
                    cursor = self._connection.execute(
                        "DELETE FROM accounts WHERE account_number = ?", (account_number,)
                    )
                    return cursor.rowcount > 0
            except sqlite3.Error as e:
                raise StorageFailureError(f"Failed to remove account {account_number}: {e}") from e

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    def _load_data(self, account_number: str) -> Dict[str, Any]:
        row = self._connection.execute(
            "SELECT data, balance FROM accounts WHERE account_number = ?", (account_number,)
        ).fetchone()
        if row is None:
            raise AccountNotFoundError(f"Account {account_number} not found")
        data = json.loads(row["data"])
        data["balance"] = row["balance"]
        return data

    def _require_balance(self, account_number: str) -> int:
        return self._load_data(account_number)["balance"]

    def _write_balance(self, account_number: str, balance: int) -> None:
        now = datetime.now(timezone.utc).isoformat()
        data = self._load_data(account_number)
        data["balance"] = balance
        data["updated_at"] = now
        self._connection.execute(
            "UPDATE accounts SET data = ?, balance = ?, updated_at = ? WHERE account_number = ?",
            (json.dumps(data), balance, now, account_number)
        )

    def _insert_record(self, account_number: str, record: TransactionRecord) -> None:
        self._connection.execute("""
            INSERT INTO transaction_records (id, account_number, data, pending)
            VALUES (?, ?, ?, ?)
        """, (record.id, account_number, json.dumps(record.to_dict()), int(record.pending)))

    def _load_entry(self, account_number: str, record_id: str) -> TransactionRecord:
        row = self._connection.execute(
            "SELECT data, pending FROM transaction_records WHERE account_number = ? AND id = ?",
            (account_number, record_id)
        ).fetchone()
        if row is None:
            raise StorageFailureError(f"Record {record_id} not found in history of {account_number}")
        return TransactionRecord.from_dict(json.loads(row["data"]))

    def _snapshot(self, account_number: str) -> Optional[Account]:
        row = self._connection.execute(
            "SELECT data, balance FROM accounts WHERE account_number = ?", (account_number,)
        ).fetchone()
        if row is None:
            return None

        data = json.loads(row["data"])
        data["balance"] = row["balance"]
        cursor = self._connection.execute("""
            SELECT data FROM transaction_records
            WHERE account_number = ? AND pending = 0
            ORDER BY seq
        """, (account_number,))
        history = tuple(TransactionRecord.from_dict(json.loads(r["data"])) for r in cursor.fetchall())
        return Account.from_dict(data, history)

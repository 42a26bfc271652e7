"""
Ledger Data Model

Accounts and their append-only transaction records. Balances and amounts are
integers in the minor currency unit; timestamps are UTC instants.
"""

from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import uuid


class TransactionKind(Enum):
    """Kinds of balance-affecting events"""
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    TRANSFER_OUT = "Transfer Out"
    TRANSFER_IN = "Transfer In"
    
    @property
    def sign(self) -> int:
        """Direction of the balance delta this kind produces"""
        if self in (TransactionKind.DEPOSIT, TransactionKind.TRANSFER_IN):
            return 1
        return -1


@dataclass(frozen=True)
class TransactionRecord:
    """
    One immutable history entry.
    
    counterpart_name is the recipient's name on a Transfer Out and the
    sender's name on a Transfer In; it is None for deposits and withdrawals.
    """
    id: str
    kind: TransactionKind
    amount: int
    timestamp: datetime
    counterpart_name: Optional[str] = None
    pending: bool = False
    
    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("Transaction amount must be an integer")
        if self.amount <= 0:
            raise ValueError("Transaction amount must be positive")
        
        is_transfer = self.kind in (TransactionKind.TRANSFER_OUT, TransactionKind.TRANSFER_IN)
        if not is_transfer and self.counterpart_name is not None:
            raise ValueError(f"{self.kind.value} records carry no counterpart name")
    
    @classmethod
    def create(cls, kind: TransactionKind, amount: int,
               counterpart_name: Optional[str] = None) -> 'TransactionRecord':
        """Build a new record stamped with a fresh id and the current time"""
        return cls(
            id=str(uuid.uuid4()),
            kind=kind,
            amount=amount,
            timestamp=datetime.now(timezone.utc),
            counterpart_name=counterpart_name
        )
    
    @property
    def balance_delta(self) -> int:
        return self.kind.sign * self.amount
    
    def as_pending(self) -> 'TransactionRecord':
        return replace(self, pending=True)
    
    def as_committed(self) -> 'TransactionRecord':
        return replace(self, pending=False)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat(),
            "counterpart_name": self.counterpart_name,
            "pending": self.pending
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRecord':
        """Create instance from dictionary"""
        return cls(
            id=data["id"],
            kind=TransactionKind(data["kind"]),
            amount=int(data["amount"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            counterpart_name=data.get("counterpart_name"),
            pending=bool(data.get("pending", False))
        )


@dataclass(frozen=True)
class Account:
    """
    Snapshot of a PIN-protected account.
    
    Snapshots are read-only; every mutation goes through the store, which
    hands back a fresh snapshot. history never contains pending records.
    """
    account_number: str
    owner_id: str
    pin_hash: str
    balance: int = 0
    history: Tuple[TransactionRecord, ...] = field(default_factory=tuple)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    
    def __post_init__(self):
        if self.balance < 0:
            raise ValueError("Account balance cannot be negative")
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage (history excluded)"""
        result = asdict(self)
        result.pop("history")
        result["created_at"] = self.created_at.isoformat()
        result["updated_at"] = self.updated_at.isoformat()
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  history: Tuple[TransactionRecord, ...] = ()) -> 'Account':
        """Create instance from dictionary plus its committed history"""
        return cls(
            account_number=data["account_number"],
            owner_id=data["owner_id"],
            pin_hash=data["pin_hash"],
            balance=int(data["balance"]),
            history=tuple(history),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"])
        )

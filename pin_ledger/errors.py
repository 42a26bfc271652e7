"""Typed error taxonomy for ledger operations."""


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class AccountNotFoundError(LedgerError):
    """Raised when an account number does not exist in the store."""


class DuplicateAccountError(LedgerError):
    """Raised when an owner tries to establish a second account."""


class InvalidPinError(LedgerError):
    """Raised when a PIN does not verify against the stored hash."""


class InsufficientBalanceError(LedgerError):
    """Raised when a withdrawal or transfer would drop the balance below zero."""


class ValidationError(LedgerError):
    """Raised for malformed amounts, page parameters, sort or search values."""


class MalformedPinError(ValidationError):
    """Raised when a PIN is not a 6-digit number in 100000-999999."""


class EmptyPageError(LedgerError):
    """Raised when the requested page lies beyond the last page."""


class ExhaustedRetriesError(LedgerError):
    """Raised when no free account number was found within the allowed attempts."""


class StorageFailureError(LedgerError):
    """Opaque failure surfaced from the storage backend."""


class DuplicateKeyError(StorageFailureError):
    """Raised by a store when an insert collides with an existing key."""

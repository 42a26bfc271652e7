"""
Per-account write locks.

One re-entrant lock per account number, held for the whole
read-modify-write. Multi-account acquisition always goes in ascending
account-number order so opposite-direction transfers cannot deadlock.

A lock only lives in the registry while some thread holds or waits for it,
so calls against unknown account numbers leave nothing behind.
"""

import threading
from contextlib import contextmanager, ExitStack
from typing import Dict, Iterator


class _LockEntry:
    """A lock and the number of threads holding or waiting for it"""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class AccountLocks:
    """Registry of per-account locks"""

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)

    @contextmanager
    def hold(self, *account_numbers: str) -> Iterator[None]:
        """Hold the locks of all given accounts for the duration of the block"""
        with ExitStack() as stack:
            for account_number in sorted(set(account_numbers)):
                lock = self._check_out(account_number)
                stack.callback(self._check_in, account_number)
                stack.enter_context(lock)
            yield

    def _check_out(self, account_number: str) -> threading.RLock:
        with self._registry_lock:
            entry = self._entries.get(account_number)
            if entry is None:
                entry = self._entries[account_number] = _LockEntry()
            entry.users += 1
            return entry.lock

    def _check_in(self, account_number: str) -> None:
        with self._registry_lock:
            entry = self._entries[account_number]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[account_number]

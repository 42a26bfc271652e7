"""
PIN Ledger

A personal-banking ledger: PIN-protected accounts with an integer balance,
append-only transaction history, atomic transfers and paged history queries.
"""

__version__ = "1.0.0"

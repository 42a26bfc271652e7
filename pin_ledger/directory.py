"""
Owner directory

Read-only lookup from owner id to display name, used to stamp counterpart
names on transfer records. Profile management lives outside the ledger.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class OwnerDirectory(ABC):
    """Abstract owner-name lookup"""
    
    @abstractmethod
    def display_name(self, owner_id: str) -> Optional[str]:
        """Return the owner's display name, or None if unknown"""
        pass
    
    def name_or_id(self, owner_id: str) -> str:
        return self.display_name(owner_id) or owner_id


class InMemoryOwnerDirectory(OwnerDirectory):
    """Dictionary-backed directory for tests and embedding"""
    
    def __init__(self, names: Optional[Dict[str, str]] = None):
        self._names: Dict[str, str] = dict(names or {})
    
    def register(self, owner_id: str, name: str) -> None:
        self._names[owner_id] = name
    
    def display_name(self, owner_id: str) -> Optional[str]:
        return self._names.get(owner_id)

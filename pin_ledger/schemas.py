"""
Pydantic schemas for ledger service responses
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from .history import HistoryEntryView, HistoryPage


class AccountNumberResponse(BaseModel):
    account_number: str


class BalanceResponse(BaseModel):
    balance: int = Field(..., ge=0, description="Balance in minor currency units")


class AccountInfoResponse(BaseModel):
    account_number: str
    balance: int = Field(..., ge=0)


class HistoryEntryModel(BaseModel):
    id: str
    kind: str = Field(..., description="Deposit, Withdraw, Transfer Out or Transfer In")
    amount: int = Field(..., gt=0)
    counterpart_name: Optional[str] = None
    timestamp: datetime

    @classmethod
    def from_view(cls, view: HistoryEntryView) -> 'HistoryEntryModel':
        return cls(
            id=view.id,
            kind=view.kind.value,
            amount=view.amount,
            counterpart_name=view.counterpart_name,
            timestamp=view.timestamp
        )


class HistoryPageResponse(BaseModel):
    page_number: int
    page_size: int
    total_pages: int
    count: int
    has_previous_page: bool
    has_next_page: bool
    data: List[HistoryEntryModel]

    @classmethod
    def from_page(cls, page: HistoryPage) -> 'HistoryPageResponse':
        return cls(
            page_number=page.page_number,
            page_size=page.page_size,
            total_pages=page.total_pages,
            count=page.count,
            has_previous_page=page.has_previous_page,
            has_next_page=page.has_next_page,
            data=[HistoryEntryModel.from_view(view) for view in page.data]
        )

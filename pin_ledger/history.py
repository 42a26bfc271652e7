"""
Transaction History Query Module

Stateless pipeline over a copy of an account's history:
filter -> sort -> paginate -> project. Every stage is a pure function.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import math
from typing import List, Optional, Sequence, Tuple, Type, TypeVar, Union

from .errors import EmptyPageError, ValidationError
from .models import TransactionKind, TransactionRecord


class HistoryFilterField(Enum):
    """Fields a history search may target"""
    KIND = "kind"
    SENDER_NAME = "senderName"
    RECIPIENT_NAME = "recipientName"


class SortField(Enum):
    """Fields history can be sorted by"""
    TIMESTAMP = "timestamp"
    AMOUNT = "amount"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


E = TypeVar("E", bound=Enum)


def _coerce(enum_type: Type[E], value: Union[E, str], label: str) -> E:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {label} {value!r}; expected one of: {allowed}")


@dataclass(frozen=True)
class HistoryFilter:
    """Search on one field; kind matches exactly, names by substring"""
    field: HistoryFilterField
    key: str

    def __post_init__(self):
        object.__setattr__(self, "field", _coerce(HistoryFilterField, self.field, "search field"))
        if self.key is not None and not isinstance(self.key, str):
            raise ValidationError("Search key must be a string")

    @property
    def is_effective(self) -> bool:
        """An empty key does not filter anything"""
        return bool(self.key)

    def matches(self, record: TransactionRecord) -> bool:
        if self.field is HistoryFilterField.KIND:
            return record.kind.value == self.key
        if self.field is HistoryFilterField.SENDER_NAME:
            return (record.kind is TransactionKind.TRANSFER_IN
                    and record.counterpart_name is not None
                    and self.key in record.counterpart_name)
        return (record.kind is TransactionKind.TRANSFER_OUT
                and record.counterpart_name is not None
                and self.key in record.counterpart_name)


@dataclass(frozen=True)
class HistorySort:
    field: SortField = SortField.TIMESTAMP
    order: SortOrder = SortOrder.DESC

    def __post_init__(self):
        object.__setattr__(self, "field", _coerce(SortField, self.field, "sort field"))
        object.__setattr__(self, "order", _coerce(SortOrder, self.order, "sort order"))


DEFAULT_SORT = HistorySort(SortField.TIMESTAMP, SortOrder.DESC)


@dataclass(frozen=True)
class PageRequest:
    """1-indexed page request; None means the default"""
    page_number: Optional[int] = None
    page_size: Optional[int] = None


@dataclass(frozen=True)
class HistoryEntryView:
    """Display shape of one history record; timestamp stays a raw instant"""
    id: str
    kind: TransactionKind
    amount: int
    counterpart_name: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class HistoryPage:
    page_number: int
    page_size: int
    total_pages: int
    count: int
    has_previous_page: bool
    has_next_page: bool
    data: Tuple[HistoryEntryView, ...]


def filter_history(history: Sequence[TransactionRecord],
                   search: Optional[HistoryFilter] = None) -> List[TransactionRecord]:
    """Keep matching records, preserving their relative order"""
    if search is None or not search.is_effective:
        return list(history)
    return [record for record in history if search.matches(record)]


def sort_history(history: Sequence[TransactionRecord],
                 sort: Optional[HistorySort] = None) -> List[TransactionRecord]:
    """
    Stable sort by timestamp or amount.

    Descending order is the exact reverse of ascending order, ties included.
    """
    sort = sort or DEFAULT_SORT
    if sort.field is SortField.AMOUNT:
        ordered = sorted(history, key=lambda record: record.amount)
    else:
        ordered = sorted(history, key=lambda record: record.timestamp)

    if sort.order is SortOrder.DESC:
        ordered.reverse()
    return ordered


def _check_page_param(value: Optional[int], label: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if value < 1:
        raise ValidationError(f"{label} must be at least 1")


def paginate_history(history: Sequence[TransactionRecord],
                     page: Optional[PageRequest] = None) -> Tuple[List[TransactionRecord], dict]:
    """
    Slice one page out of history.

    Returns:
        The page's records and its metadata (page_number, page_size,
        total_pages, count, has_previous_page, has_next_page)

    Raises:
        ValidationError: If page_number or page_size is not a positive integer
        EmptyPageError: If page_number is beyond the last page
    """
    page = page or PageRequest()
    _check_page_param(page.page_number, "Page number")
    _check_page_param(page.page_size, "Page size")

    count = len(history)
    page_number = page.page_number if page.page_number is not None else 1
    page_size = page.page_size if page.page_size is not None else count

    total_pages = math.ceil(count / page_size) if count else 0
    if page_number > total_pages:
        raise EmptyPageError(f"Page {page_number} is empty ({total_pages} pages)")

    start = (page_number - 1) * page_size
    end = min(page_number * page_size, count)

    meta = {
        "page_number": page_number,
        "page_size": page_size,
        "total_pages": total_pages,
        "count": count,
        "has_previous_page": page_number > 1,
        "has_next_page": page_number < total_pages
    }
    return list(history[start:end]), meta


def project_history(history: Sequence[TransactionRecord]) -> Tuple[HistoryEntryView, ...]:
    return tuple(
        HistoryEntryView(
            id=record.id,
            kind=record.kind,
            amount=record.amount,
            counterpart_name=record.counterpart_name,
            timestamp=record.timestamp
        )
        for record in history
    )


def query_history(history: Sequence[TransactionRecord],
                  search: Optional[HistoryFilter] = None,
                  sort: Optional[HistorySort] = None,
                  page: Optional[PageRequest] = None) -> HistoryPage:
    """Run the full filter -> sort -> paginate -> project pipeline"""
    filtered = filter_history(history, search)
    ordered = sort_history(filtered, sort)
    records, meta = paginate_history(ordered, page)
    return HistoryPage(data=project_history(records), **meta)

"""
Query-parameter helpers for the transport layer.

Turn "field:key" search strings and "field:order" sort strings into the typed
values the history pipeline accepts. Malformed input yields None, which the
pipeline treats as "no filter" or "default sort".
"""

from typing import Optional, Sequence, Union

from .history import HistoryFilter, HistoryFilterField, HistorySort, SortField, SortOrder


# Field names older clients send: "type" for kind searches, "date" for timestamp sorting
SEARCH_FIELD_ALIASES = {"type": HistoryFilterField.KIND.value}
SORT_FIELD_ALIASES = {"date": SortField.TIMESTAMP.value}


def _first(value: Union[str, Sequence[str], None]) -> Optional[str]:
    """Repeated query parameters arrive as a list; only the first one counts"""
    if value is None or isinstance(value, str):
        return value
    return value[0] if value else None


def parse_search(value: Union[str, Sequence[str], None]) -> Optional[HistoryFilter]:
    """Parse ``field:key``; None when absent or malformed"""
    raw = _first(value)
    if not raw or ":" not in raw:
        return None

    field_name, key = raw.split(":", 1)
    field_name = SEARCH_FIELD_ALIASES.get(field_name, field_name)
    if not key:
        return None

    try:
        field = HistoryFilterField(field_name)
    except ValueError:
        return None
    return HistoryFilter(field, key)


def parse_sort(value: Union[str, Sequence[str], None]) -> Optional[HistorySort]:
    """Parse ``field:order``; None when absent or malformed"""
    raw = _first(value)
    if not raw or ":" not in raw:
        return None

    field_name, order = raw.split(":", 1)
    field_name = SORT_FIELD_ALIASES.get(field_name, field_name)
    try:
        return HistorySort(SortField(field_name), SortOrder(order))
    except ValueError:
        return None

"""
Table view over an in-memory record set.

Filtering, sorting and pagination are pure functions of (records, query) and
are recomputed on every call, so the view always reflects the current set.

Filter semantics:
- free text columns: case-insensitive substring
- supervision: exact match
- age, date: inclusive range, either bound optional
- search: substring of any text column
All active predicates must hold (AND).
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from core.exceptions import ValidationError

SORTABLE_FIELDS = (
    "mrn",
    "date",
    "age",
    "procedure",
    "supervision",
    "hospital",
    "complication_notes",
    "operation_notes",
    "created_at",
    "updated_at",
)

TEXT_FILTER_FIELDS = ("mrn", "procedure", "hospital", "complication_notes", "operation_notes")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Missing values sort as the empty value of the column's type.
_EMPTY_BY_FIELD: dict[str, Any] = {
    "date": date.min,
    "age": 0,
    "created_at": _EPOCH,
    "updated_at": _EPOCH,
}


@dataclass
class RecordFilters:
    text: dict[str, str] = field(default_factory=dict)
    supervision: Optional[str] = None
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None or self.date_to is not None


@dataclass
class RecordSort:
    key: str = "date"
    direction: str = "desc"

    def __post_init__(self) -> None:
        if self.key not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{self.key}'", field="sort_key")
        if self.direction not in ("asc", "desc"):
            raise ValidationError("Sort direction must be 'asc' or 'desc'", field="sort_dir")


@dataclass
class PageWindow:
    items: list
    total: int
    page: int
    page_size: int
    pages: int


def _contains(value: Any, needle: str) -> bool:
    return needle.lower() in str(value if value is not None else "").lower()


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


def build_predicates(filters: RecordFilters) -> list[Callable[[Any], bool]]:
    preds: list[Callable[[Any], bool]] = []

    for key, needle in filters.text.items():
        if key not in TEXT_FILTER_FIELDS:
            raise ValidationError(f"Cannot filter by '{key}'", field=key)
        if needle:
            preds.append(lambda r, k=key, n=needle: _contains(getattr(r, k, None), n))

    if filters.supervision:
        preds.append(lambda r, s=filters.supervision: r.supervision == s)

    if filters.age_min is not None:
        preds.append(lambda r, lo=filters.age_min: (r.age or 0) >= lo)
    if filters.age_max is not None:
        preds.append(lambda r, hi=filters.age_max: (r.age or 0) <= hi)

    if filters.date_from is not None:
        preds.append(lambda r, lo=filters.date_from: r.date is not None and _as_date(r.date) >= lo)
    if filters.date_to is not None:
        preds.append(lambda r, hi=filters.date_to: r.date is not None and _as_date(r.date) <= hi)

    if filters.search:
        needle = filters.search
        preds.append(lambda r: any(_contains(getattr(r, k, None), needle) for k in TEXT_FILTER_FIELDS + ("supervision",)))

    return preds


def filter_records(records: Iterable[Any], filters: RecordFilters) -> list:
    preds = build_predicates(filters)
    return [r for r in records if all(p(r) for p in preds)]


def _sort_value(record: Any, key: str) -> Any:
    value = getattr(record, key, None)
    if value is None:
        return _EMPTY_BY_FIELD.get(key, "")
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        return value.lower()
    return value


def sort_records(records: Iterable[Any], sort: RecordSort) -> list:
    """Stable sort; equal keys keep their incoming order in both directions."""
    return sorted(records, key=lambda r: _sort_value(r, sort.key), reverse=sort.direction == "desc")


def paginate(records: Sequence[Any], *, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> PageWindow:
    if page < 1:
        raise ValidationError("page must be >= 1", field="page")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}", field="page_size")
    total = len(records)
    pages = max(1, math.ceil(total / page_size))
    start = (page - 1) * page_size
    return PageWindow(
        items=list(records[start:start + page_size]),
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


def apply_view(records: Iterable[Any], filters: RecordFilters, sort: RecordSort) -> list:
    """Filtered and sorted rows; what the table, the exports and the counts all read."""
    return sort_records(filter_records(records, filters), sort)

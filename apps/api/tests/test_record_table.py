"""
Table view: filtering, sorting and pagination over an in-memory record set.
"""
from datetime import date
from types import SimpleNamespace

import pytest

from core.exceptions import ValidationError
from services.record_table import (
    RecordFilters,
    RecordSort,
    apply_view,
    filter_records,
    paginate,
    sort_records,
)


def _rec(i, *, mrn=None, day=None, age=30, procedure="Egg Collection", supervision="Direct", hospital="General Hospital", notes=""):
    return SimpleNamespace(
        id=i,
        mrn=mrn or f"MRN{i:03d}",
        date=day if day is not None else date(2026, 1, 1 + (i % 28)),
        age=age,
        procedure=procedure,
        supervision=supervision,
        hospital=hospital,
        complication_notes=notes,
        operation_notes="",
        created_at=None,
        updated_at=None,
    )


@pytest.fixture
def records():
    return [
        _rec(1, age=25, procedure="Egg Collection", hospital="General Hospital", day=date(2026, 1, 5)),
        _rec(2, age=41, procedure="Embryo Transfer", supervision="Indirect", hospital="Private Clinic", day=date(2026, 2, 10)),
        _rec(3, age=33, procedure="Embryo Transfer", hospital="University Hospital", day=date(2026, 3, 15), notes="Mild bleeding"),
        _rec(4, age=29, procedure="Consultation", supervision="Teaching", hospital="General Hospital", day=date(2026, 1, 20)),
        _rec(5, age=38, procedure="egg collection", hospital="Private Clinic", day=date(2025, 12, 1)),
    ]


def test_text_filter_is_case_insensitive_substring(records):
    out = filter_records(records, RecordFilters(text={"procedure": "EGG"}))
    assert [r.id for r in out] == [1, 5]


def test_supervision_is_exact_match(records):
    out = filter_records(records, RecordFilters(supervision="Indirect"))
    assert [r.id for r in out] == [2]


def test_age_and_date_ranges_are_inclusive(records):
    out = filter_records(records, RecordFilters(age_min=29, age_max=38))
    assert [r.id for r in out] == [3, 4, 5]

    out = filter_records(records, RecordFilters(date_from=date(2026, 1, 5), date_to=date(2026, 2, 10)))
    assert [r.id for r in out] == [1, 2, 4]


def test_predicates_combine_with_and(records):
    out = filter_records(records, RecordFilters(text={"hospital": "clinic"}, age_min=40))
    assert [r.id for r in out] == [2]


def test_search_matches_any_text_column(records):
    out = filter_records(records, RecordFilters(search="bleeding"))
    assert [r.id for r in out] == [3]


def test_unknown_filter_field_is_rejected(records):
    with pytest.raises(ValidationError):
        filter_records(records, RecordFilters(text={"password": "x"}))


def test_filter_and_sort_commute(records):
    filters = RecordFilters(text={"hospital": "o"}, age_max=40)
    sort = RecordSort(key="age", direction="asc")

    a = filter_records(sort_records(records, sort), filters)
    b = sort_records(filter_records(records, filters), sort)
    assert [r.id for r in a] == [r.id for r in b]


def test_sort_is_stable_in_both_directions():
    rows = [_rec(i, procedure="Same") for i in range(6)]
    for direction in ("asc", "desc"):
        out = sort_records(rows, RecordSort(key="procedure", direction=direction))
        assert [r.id for r in out] == list(range(6))


def test_sort_strings_ignore_case(records):
    out = sort_records(records, RecordSort(key="procedure", direction="asc"))
    assert [r.procedure.lower() for r in out] == sorted(r.procedure.lower() for r in records)


def test_missing_values_sort_as_empty():
    rows = [_rec(1, day=date(2026, 1, 1)), SimpleNamespace(**{**vars(_rec(2)), "date": None})]
    out = sort_records(rows, RecordSort(key="date", direction="asc"))
    assert [r.id for r in out] == [2, 1]


def test_default_view_is_date_descending(records):
    out = apply_view(records, RecordFilters(), RecordSort())
    assert [r.id for r in out] == [3, 2, 4, 1, 5]


def test_unknown_sort_key_or_direction_rejected():
    with pytest.raises(ValidationError):
        RecordSort(key="patient_name")
    with pytest.raises(ValidationError):
        RecordSort(key="date", direction="sideways")


def test_pagination_window():
    rows = list(range(23))
    first = paginate(rows, page=1, page_size=10)
    assert first.items == list(range(10))
    assert first.total == 23
    assert first.pages == 3

    last = paginate(rows, page=3, page_size=10)
    assert last.items == [20, 21, 22]

    beyond = paginate(rows, page=4, page_size=10)
    assert beyond.items == []
    assert beyond.total == 23


def test_pagination_of_empty_set_has_one_page():
    window = paginate([], page=1, page_size=10)
    assert window.items == []
    assert window.pages == 1


@pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (1, 101)])
def test_pagination_bounds(page, page_size):
    with pytest.raises(ValidationError):
        paginate([1, 2, 3], page=page, page_size=page_size)

"""
Spreadsheet import: column mapping, defaults, all-or-nothing writes.
"""
import io
from datetime import date

import pandas as pd
import pytest

from core.exceptions import ValidationError
from models import CustomLabel, ProcedureRecord
from services.record_import import import_records, parse_records, read_frame

CSV = (
    "mrn,date,age,procedure,supervision,hospital,complicationNotes,operationNotes\n"
    "MRN1,2026-02-01,31,Egg Collection,Direct,General Hospital,,Routine\n"
    "MRN2,,,Embryo Transfer,Indirect,Fertility Center,Mild cramping,\n"
)


def _xlsx(rows):
    buffer = io.BytesIO()
    pd.DataFrame(rows).to_excel(buffer, index=False)
    return buffer.getvalue()


def test_csv_rows_map_with_defaults():
    frame = read_frame(CSV.encode(), "records.csv")
    first, second = parse_records(frame, default_date=date(2026, 5, 1))

    assert first.mrn == "MRN1"
    assert first.date == date(2026, 2, 1)
    assert first.age == 31
    assert first.operation_notes == "Routine"
    assert first.complication_notes == ""

    assert second.date == date(2026, 5, 1)
    assert second.age == 0
    assert second.complication_notes == "Mild cramping"
    assert second.supervision.value == "Indirect"


def test_snake_case_note_headers_are_accepted():
    csv = "mrn,procedure,supervision,hospital,complication_notes\nA1,Consultation,Teaching,Private Clinic,None\n"
    [row] = parse_records(read_frame(csv.encode(), "x.csv"), default_date=date(2026, 1, 1))
    assert row.complication_notes == "None"


def test_unparseable_age_becomes_zero():
    csv = "mrn,age,procedure,supervision,hospital\nA1,unknown,Consultation,Direct,Private Clinic\n"
    [row] = parse_records(read_frame(csv.encode(), "x.csv"))
    assert row.age == 0


def test_invalid_row_reports_its_line():
    csv = "mrn,procedure,supervision,hospital\nA1,Consultation,Direct,Clinic\nA2,Consultation,Sometimes,Clinic\n"
    with pytest.raises(ValidationError) as exc:
        parse_records(read_frame(csv.encode(), "x.csv"))
    assert exc.value.detail.startswith("Row 3:")


def test_unsupported_extension_rejected():
    with pytest.raises(ValidationError) as exc:
        read_frame(b"whatever", "records.txt")
    assert exc.value.error_code == "VALIDATION_ERROR_FILE"


def test_xlsx_import_writes_records_and_labels(db_session, make_user):
    user = make_user()
    content = _xlsx(
        [
            {"mrn": 1001, "date": "2026-01-15", "age": 36, "procedure": "Hysteroscopy", "supervision": "Independent", "hospital": "General Hospital"},
            {"mrn": 1002, "date": "2026-01-16", "age": 29, "procedure": "Egg Collection", "supervision": "Direct", "hospital": "General Hospital"},
        ]
    )

    assert import_records(db_session, user=user, content=content, filename="logbook.xlsx") == 2

    rows = db_session.query(ProcedureRecord).filter(ProcedureRecord.user_id == user.id).order_by(ProcedureRecord.mrn).all()
    assert [r.mrn for r in rows] == ["1001", "1002"]
    assert rows[0].date == date(2026, 1, 15)
    assert [l.value for l in db_session.query(CustomLabel).filter(CustomLabel.user_id == user.id)] == ["Hysteroscopy"]


def test_one_bad_row_writes_nothing(db_session, make_user):
    user = make_user()
    csv = (
        "mrn,procedure,supervision,hospital\n"
        "A1,New Procedure,Direct,Clinic A\n"
        "A2,Consultation,Unsupervised,Clinic A\n"
    )
    with pytest.raises(ValidationError):
        import_records(db_session, user=user, content=csv.encode(), filename="bad.csv")

    assert db_session.query(ProcedureRecord).count() == 0
    assert db_session.query(CustomLabel).count() == 0


def test_import_api(client, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)

    resp = client.post(
        "/v1/records/import",
        files={"file": ("records.csv", CSV.encode(), "text/csv")},
        data={"default_date": "2026-04-30"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["imported"] == 2

    items = client.get("/v1/records", params={"sort_key": "mrn", "sort_dir": "asc"}, headers=headers).json()["items"]
    assert [r["date"] for r in items] == ["2026-02-01", "2026-04-30"]


def test_import_api_rejects_other_file_types(client, make_user, auth_headers):
    user = make_user()
    resp = client.post(
        "/v1/records/import",
        files={"file": ("records.json", b"[]", "application/json")},
        headers=auth_headers(user),
    )
    assert resp.status_code == 422
    assert client.get("/v1/records", headers=auth_headers(user)).json()["total"] == 0


def test_import_requires_write_access(client, make_user, auth_headers):
    user = make_user(trial_days=-3)
    resp = client.post(
        "/v1/records/import",
        files={"file": ("records.csv", CSV.encode(), "text/csv")},
        headers=auth_headers(user),
    )
    assert resp.status_code == 403

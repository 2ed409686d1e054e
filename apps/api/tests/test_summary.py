"""
Summary analytics and the summary PDF.
"""
from datetime import date
from types import SimpleNamespace

from services.summary_service import summarize_records


def _rec(procedure, supervision="Direct", hospital="General Hospital", day=date(2026, 1, 1)):
    return SimpleNamespace(procedure=procedure, supervision=supervision, hospital=hospital, date=day)


def test_empty_summary():
    summary = summarize_records([])
    assert summary.total_records == 0
    assert summary.procedures == []
    assert summary.hospitals == []
    assert summary.timeline == []


def test_breakdown_covers_every_supervision_level():
    summary = summarize_records([_rec("Consultation", "Teaching")])
    [proc] = summary.procedures
    assert proc.supervision_breakdown == {"Direct": 0, "Indirect": 0, "Independent": 0, "Teaching": 1}


def test_procedures_and_hospitals_sorted_by_count_then_name():
    summary = summarize_records(
        [
            _rec("Embryo Transfer", hospital="Private Clinic"),
            _rec("Egg Collection", "Indirect"),
            _rec("Egg Collection"),
            _rec("Consultation", hospital="Private Clinic"),
            _rec("Embryo Transfer", hospital="University Hospital"),
        ]
    )
    assert summary.total_records == 5
    assert [(p.procedure, p.count) for p in summary.procedures] == [
        ("Egg Collection", 2),
        ("Embryo Transfer", 2),
        ("Consultation", 1),
    ]
    assert summary.procedures[0].supervision_breakdown["Indirect"] == 1
    assert [(b.name, b.count) for b in summary.hospitals] == [
        ("General Hospital", 2),
        ("Private Clinic", 2),
        ("University Hospital", 1),
    ]


def test_timeline_is_monthly_and_chronological():
    summary = summarize_records(
        [
            _rec("Consultation", day=date(2026, 3, 4)),
            _rec("Consultation", day=date(2025, 12, 30)),
            _rec("Consultation", day=date(2026, 3, 28)),
        ]
    )
    assert [(b.name, b.count) for b in summary.timeline] == [("2025-12", 1), ("2026-03", 2)]


def test_summary_api_honours_date_range(client, make_user, auth_headers, add_records):
    user = make_user()
    add_records(user, "Egg Collection", 3, day=date(2026, 1, 15))
    add_records(user, "Embryo Transfer", 2, supervision="Independent", day=date(2026, 2, 15))
    headers = auth_headers(user)

    body = client.get("/v1/summary", headers=headers).json()
    assert body["total_records"] == 5
    assert [t["name"] for t in body["timeline"]] == ["2026-01", "2026-02"]

    body = client.get("/v1/summary", params={"date_from": "2026-02-01"}, headers=headers).json()
    assert body["total_records"] == 2
    [proc] = body["procedures"]
    assert proc["procedure"] == "Embryo Transfer"
    assert proc["supervision_breakdown"]["Independent"] == 2


def test_summary_pdf_api(client, make_user, auth_headers, add_records):
    user = make_user()
    add_records(user, "Egg Collection", 2)

    resp = client.get("/v1/summary/export", headers=auth_headers(user))
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert "ivf_summary.pdf" in resp.headers["content-disposition"]
    assert resp.content.startswith(b"%PDF")

"""
Procedure summary analytics.

Pure aggregation over a record set: per-procedure counts with a supervision
breakdown, hospital distribution, and a monthly timeline.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from models import SUPERVISION_LEVELS, ProcedureRecord


@dataclass
class ProcedureSummary:
    procedure: str
    count: int = 0
    supervision_breakdown: dict[str, int] = field(default_factory=lambda: {s: 0 for s in SUPERVISION_LEVELS})


@dataclass
class Bucket:
    name: str
    count: int


@dataclass
class RecordSummary:
    total_records: int
    procedures: list[ProcedureSummary]
    hospitals: list[Bucket]
    timeline: list[Bucket]


def summarize_records(records: Iterable[ProcedureRecord]) -> RecordSummary:
    records = list(records)

    by_procedure: dict[str, ProcedureSummary] = {}
    hospitals: Counter = Counter()
    months: Counter = Counter()
    for r in records:
        summary = by_procedure.setdefault(r.procedure, ProcedureSummary(procedure=r.procedure))
        summary.count += 1
        summary.supervision_breakdown[r.supervision] = summary.supervision_breakdown.get(r.supervision, 0) + 1
        if r.hospital:
            hospitals[r.hospital] += 1
        if r.date is not None:
            months[r.date.strftime("%Y-%m")] += 1

    return RecordSummary(
        total_records=len(records),
        procedures=sorted(by_procedure.values(), key=lambda s: (-s.count, s.procedure)),
        hospitals=[Bucket(name, count) for name, count in sorted(hospitals.items(), key=lambda kv: (-kv[1], kv[0]))],
        timeline=[Bucket(month, months[month]) for month in sorted(months)],
    )

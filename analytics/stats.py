# analytics/stats.py
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from db.schemas import (
    PRIORITIES,
    RAWAT_INAP,
    RAWAT_JALAN,
    PatientRecord,
    is_recorded,
)

# Hours shown on the arrival trend chart (inclusive)
TREND_FIRST_HOUR = 6
TREND_LAST_HOUR = 22

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def count_where(records: Iterable[PatientRecord], field: str, value: str) -> int:
    return sum(1 for r in records if getattr(r, field) == value)


def priority_counts(records: Sequence[PatientRecord]) -> Dict[str, int]:
    """Every priority class appears, zero-filled, in P1..P5 order."""
    counts = {p: 0 for p in PRIORITIES}
    for r in records:
        if r.prioritas in counts:
            counts[r.prioritas] += 1
    return counts


def disposition_counts(records: Sequence[PatientRecord]) -> Dict[str, int]:
    """Only dispositions that actually occur, in first-seen order."""
    counts: Dict[str, int] = {}
    for r in records:
        counts[r.ket] = counts.get(r.ket, 0) + 1
    return counts


def parse_hour(value: Optional[str]) -> Optional[int]:
    if not is_recorded(value):
        return None
    m = _LEADING_INT.match(str(value).split(":")[0])
    if not m:
        return None
    hour = int(m.group(1))
    if 0 <= hour <= 23:
        return hour
    return None


def arrival_histogram(records: Iterable[PatientRecord], field: str = "jam_datang") -> List[int]:
    bins = [0] * 24
    for r in records:
        hour = parse_hour(getattr(r, field))
        if hour is not None:
            bins[hour] += 1
    return bins


def arrival_trend(
    records: Iterable[PatientRecord],
    first_hour: int = TREND_FIRST_HOUR,
    last_hour: int = TREND_LAST_HOUR,
) -> List[Tuple[str, int]]:
    bins = arrival_histogram(records)
    return [(f"{h}:00", bins[h]) for h in range(first_hour, last_hour + 1)]


def distinct_count(records: Iterable[PatientRecord], field: str) -> int:
    values = set()
    for r in records:
        v = getattr(r, field)
        if is_recorded(v):
            values.add(str(v).strip())
    return len(values)


def percentage(count: int, total: int) -> int:
    if not total:
        return 0
    # half-up, so 2.5 -> 3 like the dashboard cards always showed
    return int(math.floor(count / total * 100 + 0.5))


# ============================================================
# Timeline intervals
# ============================================================

def _minutes_of_day(value: Optional[str]) -> Optional[int]:
    hour = parse_hour(value)
    if hour is None:
        return None
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        return None
    m = _LEADING_INT.match(parts[1])
    if not m:
        return None
    minute = int(m.group(1))
    if not 0 <= minute <= 59:
        return None
    return hour * 60 + minute


def minutes_between(start: Optional[str], end: Optional[str]) -> Optional[int]:
    """Minutes from start to end (HH:MM). An end before the start wraps past midnight."""
    a = _minutes_of_day(start)
    b = _minutes_of_day(end)
    if a is None or b is None:
        return None
    return (b - a) % (24 * 60)


def average_minutes(records: Iterable[PatientRecord], start_field: str, end_field: str) -> Optional[float]:
    gaps = [
        g for g in (minutes_between(getattr(r, start_field), getattr(r, end_field)) for r in records)
        if g is not None
    ]
    if not gaps:
        return None
    return sum(gaps) / len(gaps)


@dataclass(frozen=True)
class SummaryStats:
    total: int
    emergency: int
    inpatient: int
    outpatient: int
    waiting: int
    specialists: int

    @property
    def inpatient_percent(self) -> int:
        return percentage(self.inpatient, self.total)


def summarize(records: Sequence[PatientRecord]) -> SummaryStats:
    return SummaryStats(
        total=len(records),
        emergency=count_where(records, "prioritas", "P1"),
        inpatient=count_where(records, "ket", RAWAT_INAP),
        outpatient=count_where(records, "ket", RAWAT_JALAN),
        waiting=sum(1 for r in records if not is_recorded(r.jam_dokter)),
        specialists=distinct_count(records, "dokter_spesialis"),
    )

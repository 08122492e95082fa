# analytics/filters.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from db.schemas import PatientRecord

# Named sets of attributes the free-text search looks at.
# One of them is chosen in Settings and applied to every view.
SEARCH_FIELD_SETS: Dict[str, Tuple[str, ...]] = {
    "name_rm": ("nama_pasien", "no_kib"),
    "name_rm_dpjp": ("nama_pasien", "no_kib", "dpjp"),
}

SEARCH_FIELD_LABELS: Dict[str, str] = {
    "name_rm": "Patient name + RM number",
    "name_rm_dpjp": "Patient name + RM number + DPJP",
}

DEFAULT_SEARCH_FIELDS = "name_rm"


@dataclass(frozen=True)
class FilterCriteria:
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    query: str = ""
    search_fields: str = DEFAULT_SEARCH_FIELDS

    @property
    def is_empty(self) -> bool:
        return not (self.start_date or self.end_date or self.query)


def _fields_for(search_fields: str) -> Tuple[str, ...]:
    try:
        return SEARCH_FIELD_SETS[search_fields]
    except KeyError:
        raise ValueError(f"Unknown search field set: {search_fields!r}") from None


def matches_date(record: PatientRecord, start_date: Optional[str], end_date: Optional[str]) -> bool:
    # ISO dates: string order == chronological order
    if start_date and record.tanggal < start_date:
        return False
    if end_date and record.tanggal > end_date:
        return False
    return True


def matches_text(record: PatientRecord, query: str, fields: Iterable[str]) -> bool:
    if not query:
        return True
    needle = query.lower()
    return any(needle in str(getattr(record, f, "") or "").lower() for f in fields)


def filter_records(
    records: Iterable[PatientRecord],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    query: str = "",
    search_fields: str = DEFAULT_SEARCH_FIELDS,
) -> List[PatientRecord]:
    """
    Keep the records that satisfy every given criterion, in their original order.

    - start_date / end_date: inclusive ISO bounds, None or "" means unbounded.
      A start after the end simply matches nothing.
    - query: case-insensitive substring over the chosen search field set.
    """
    fields = _fields_for(search_fields)
    return [
        r for r in records
        if matches_date(r, start_date, end_date) and matches_text(r, query, fields)
    ]


def apply_criteria(records: Iterable[PatientRecord], criteria: FilterCriteria) -> List[PatientRecord]:
    return filter_records(
        records,
        start_date=criteria.start_date,
        end_date=criteria.end_date,
        query=criteria.query,
        search_fields=criteria.search_fields,
    )

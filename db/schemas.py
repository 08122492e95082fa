# db/schemas.py
from __future__ import annotations

import random
import string
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Mapping, Tuple


# ============================================================
# Enumerations (form dropdown values)
# ============================================================

PRIORITIES: Tuple[str, ...] = ("P1", "P2", "P3", "P4", "P5")

PRIORITY_LABELS: Dict[str, str] = {
    "P1": "P1 (Emergency)",
    "P2": "P2 (Urgent)",
    "P3": "P3 (Semi urgent)",
    "P4": "P4 (Non urgent)",
    "P5": "P5 (Routine / control)",
}

RAWAT_JALAN = "Rawat Jalan"
RAWAT_INAP = "Rawat Inap"
RUJUK = "Rujuk"
PULANG_PAKSA = "Pulang Paksa"
MENINGGAL = "Meninggal"

DISPOSITIONS: Tuple[str, ...] = (RAWAT_JALAN, RAWAT_INAP, RUJUK, PULANG_PAKSA, MENINGGAL)

ROOM_SUGGESTIONS: List[str] = sorted([
    "Anggrek", "Angsoka", "Aster", "Bougenville", "Cempaka", "Dahlia", "Edelweis",
    "Flamboyan", "HCU", "ICCU", "ICU", "ICU Sakura", "Kemoterapi", "Lily", "Mawar",
    "Melati", "NICU", "PICU", "Sakura", "Seroja", "Seruni", "Teratai", "Tulip",
])

# "-" or an empty cell means the time was not recorded
NOT_RECORDED = "-"

TIME_FIELDS: Tuple[str, ...] = (
    "jam_datang",
    "jam_respon",
    "jam_dokter",
    "jam_konsul",
    "jam_respon_spesialis",
)


# ============================================================
# Wire mapping (python attribute -> sheet header)
# ============================================================

WIRE_FIELDS: List[Tuple[str, str]] = [
    ("id", "id"),
    ("no", "no"),
    ("tanggal", "tanggal"),
    ("no_kib", "noKib"),
    ("nama_pasien", "namaPasien"),
    ("prioritas", "prioritas"),
    ("jam_datang", "jamDatang"),
    ("jam_dokter", "jamDokter"),
    ("dpjp", "dpjp"),
    ("dokter_spesialis", "dokterSpesialis"),
    ("jam_konsul", "jamKonsul"),
    ("jam_respon", "jamRespon"),
    ("jam_respon_spesialis", "jamResponSpesialis"),
    ("ket", "ket"),
    ("ruangan", "ruangan"),
    ("masalah", "masalah"),
]

CREATED_AT_HEADER = "createdAt"

# Column order of the backing sheet. The server owns the last column.
SHEET_COLUMNS: List[str] = [header for _, header in WIRE_FIELDS] + [CREATED_AT_HEADER]


def is_recorded(value: Any) -> bool:
    if value is None:
        return False
    v = str(value).strip()
    return v not in ("", NOT_RECORDED)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _to_int(value: Any) -> int:
    """Lenient int parsing for display-formatted sheet values ("12", "12.0", "")."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip().replace(",", "")))
    except ValueError:
        return 0


def new_record_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(9))


@dataclass(frozen=True)
class PatientRecord:
    """One ED / outpatient encounter."""

    id: str = ""
    no: int = 0
    tanggal: str = ""
    no_kib: str = ""
    nama_pasien: str = ""
    prioritas: str = "P3"
    jam_datang: str = ""
    jam_dokter: str = ""
    dpjp: str = ""
    dokter_spesialis: str = ""
    jam_konsul: str = ""
    jam_respon: str = ""
    jam_respon_spesialis: str = ""
    ket: str = RAWAT_JALAN
    ruangan: str = NOT_RECORDED
    masalah: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_wire(self) -> Dict[str, Any]:
        return {header: getattr(self, attr) for attr, header in WIRE_FIELDS}

    @classmethod
    def from_wire(cls, row: Mapping[str, Any]) -> "PatientRecord":
        """
        Build a record from a sheet row (keyed by header name).
        Unknown headers such as createdAt are ignored, missing ones become blank.
        """
        values: Dict[str, Any] = {}
        for attr, header in WIRE_FIELDS:
            raw = row.get(header)
            if attr == "no":
                values[attr] = _to_int(raw)
            elif attr == "id":
                values[attr] = _text(raw).strip()
            else:
                values[attr] = _text(raw)
        return cls(**values)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PatientRecord":
        """Accepts snake_case attributes (as produced by to_dict)."""
        names = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in names}
        if "no" in kwargs:
            kwargs["no"] = _to_int(kwargs["no"])
        return cls(**kwargs)

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
import requests

from db.record_store import LocalRecordStore, SheetRecordStore
from db.schemas import SHEET_COLUMNS, PatientRecord


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200, is_json: bool = True) -> None:
        self.payload = payload
        self.status_code = status_code
        self.is_json = is_json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if not self.is_json:
            raise ValueError("not JSON")
        return self.payload


class FakeSheet:
    """
    In-memory stand-in for the Apps Script web app: same actions, same answers.
    Pass it as the `session` of SheetRecordStore.
    """

    def __init__(self) -> None:
        self.rows: List[Dict[str, str]] = []
        self.calls: List[Dict[str, Any]] = []
        self.fail_create_for_rm: set = set()
        self.down = False

    def post(self, url: str, data: Optional[Dict[str, str]] = None, timeout: Any = None) -> FakeResponse:
        data = data or {}
        self.calls.append({"url": url, **data})
        if self.down:
            raise requests.ConnectionError("sheet unreachable")

        action = data.get("action")
        if action == "read":
            # display values: everything is a string
            return FakeResponse([{k: str(v) for k, v in row.items()} for row in self.rows])

        if action == "create":
            rec = json.loads(data["data"])
            if rec.get("noKib") in self.fail_create_for_rm:
                return FakeResponse({"result": "error", "error": "quota"})
            row = {col: rec.get(col, "") for col in SHEET_COLUMNS}
            row["no"] = rec.get("no") or 0
            row["createdAt"] = datetime(2024, 1, 1, 8, 0).isoformat()
            self.rows.append(row)
            return FakeResponse({"status": "success", "id": rec["id"]})

        if action == "update":
            rec = json.loads(data["data"])
            for row in self.rows:
                if str(row["id"]) == str(rec["id"]):
                    created = row["createdAt"]
                    old_no = row["no"]
                    row.update({col: rec.get(col, "") for col in SHEET_COLUMNS[:-1]})
                    row["no"] = rec.get("no") or old_no
                    row["createdAt"] = created
                    return FakeResponse({"status": "success"})
            return FakeResponse({"status": "warning"})

        if action == "delete":
            self.rows = [r for r in self.rows if str(r["id"]) != str(data["id"])]
            return FakeResponse({"status": "success"})

        return FakeResponse({"result": "error", "error": f"unknown action {action}"})

    def actions(self) -> List[str]:
        return [c["action"] for c in self.calls]


@pytest.fixture
def fake_sheet() -> FakeSheet:
    return FakeSheet()


@pytest.fixture
def sheet_store(fake_sheet) -> SheetRecordStore:
    return SheetRecordStore("https://script.example/exec", session=fake_sheet)


@pytest.fixture
def local_store(tmp_path) -> LocalRecordStore:
    return LocalRecordStore(f"sqlite:///{tmp_path / 'test.db'}")


def make_record(**kw) -> PatientRecord:
    base = dict(
        id="",
        no=0,
        tanggal="2024-01-08",
        no_kib="100001",
        nama_pasien="Siti Aminah",
        prioritas="P3",
        jam_datang="14:30",
        jam_respon="14:35",
        jam_dokter="14:50",
        dpjp="dr. Ali",
        dokter_spesialis="-",
        ket="Rawat Jalan",
        ruangan="-",
        masalah="Fever",
    )
    base.update(kw)
    return PatientRecord(**base)


@pytest.fixture
def five_patients() -> List[PatientRecord]:
    return [
        make_record(id="a1", no_kib="1001", nama_pasien="Siti Aminah", prioritas="P1", tanggal="2024-01-01",
                    dpjp="dr. Budi", ket="Rawat Inap", dokter_spesialis="dr. Eka, Sp.PD"),
        make_record(id="a2", no_kib="1002", nama_pasien="Budi Santoso", prioritas="P1", tanggal="2024-01-03",
                    jam_datang="07:10", dokter_spesialis="dr. Fajar, Sp.B"),
        make_record(id="a3", no_kib="1003", nama_pasien="Aminah Rahma", prioritas="P2", tanggal="2024-01-05",
                    jam_datang="-", jam_dokter="-", ket="Rujuk", dokter_spesialis="dr. Eka, Sp.PD"),
        make_record(id="a4", no_kib="2004", nama_pasien="Joko Susilo", prioritas="P3", tanggal="2024-01-07",
                    jam_datang="25:99", ket="Rawat Inap"),
        make_record(id="a5", no_kib="2005", nama_pasien="Dewi Lestari", prioritas="P5", tanggal="2024-01-10",
                    jam_datang="", jam_dokter="", dpjp="dr. Citra"),
    ]

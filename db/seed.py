"""
db/seed.py

Fill the local store with synthetic ED visits (not real patients!) so the dashboard has
something to show without a Google Sheet.

Run:
python -m db.seed
"""

import logging
import random
from datetime import date, timedelta
from typing import List

from db.record_store import RecordStore, make_record_store
from db.schemas import DISPOSITIONS, PRIORITIES, ROOM_SUGGESTIONS, RAWAT_INAP, PatientRecord

logger = logging.getLogger(__name__)

NAMES = [
    "Siti Aminah", "Budi Santoso", "Agus Salim", "Dewi Lestari", "Rina Marlina",
    "Joko Widodo", "Sri Wahyuni", "Andi Pratama", "Yusuf Hidayat", "Maria Ulfa",
    "Bambang Sutrisno", "Lina Kurnia", "Hendra Gunawan", "Nur Aisyah", "Teguh Prakoso",
]
DPJP = ["dr. Ali", "dr. Budi", "dr. Citra", "dr. Dimas"]
SPECIALISTS = ["dr. Eka, Sp.PD", "dr. Fajar, Sp.B", "dr. Gita, Sp.JP", "dr. Hadi, Sp.N", "-"]
PROBLEMS = ["Chest pain", "Dyspnea", "Fever", "Abdominal pain", "Head injury", "Hypertension", "Vomiting"]


def _hhmm(minutes: int) -> str:
    minutes %= 24 * 60
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def synthetic_records(count: int = 40, days: int = 7, seed: int = 7) -> List[PatientRecord]:
    rng = random.Random(seed)
    today = date.today()
    out: List[PatientRecord] = []
    for i in range(count):
        arrival = rng.randint(6 * 60, 22 * 60)
        response = arrival + rng.randint(1, 10)
        doctor = response + rng.randint(5, 45)
        consult = doctor + rng.randint(10, 60)
        specialist = rng.choice(SPECIALISTS)
        has_consult = specialist != "-"
        ket = rng.choice(DISPOSITIONS)

        out.append(PatientRecord(
            no=i + 1,
            tanggal=(today - timedelta(days=rng.randint(0, days - 1))).isoformat(),
            no_kib=f"{rng.randint(100000, 999999)}",
            nama_pasien=rng.choice(NAMES),
            prioritas=rng.choice(PRIORITIES),
            jam_datang=_hhmm(arrival),
            jam_respon=_hhmm(response),
            jam_dokter=_hhmm(doctor) if rng.random() > 0.1 else "-",
            dpjp=rng.choice(DPJP),
            dokter_spesialis=specialist,
            jam_konsul=_hhmm(consult) if has_consult else "-",
            jam_respon_spesialis=_hhmm(consult + rng.randint(5, 90)) if has_consult else "-",
            ket=ket,
            ruangan=rng.choice(ROOM_SUGGESTIONS) if ket == RAWAT_INAP else "-",
            masalah=rng.choice(PROBLEMS),
        ))
    return out


def seed_if_empty(store: RecordStore, count: int = 40) -> int:
    """
    Insert synthetic visits only when the store has none.
    Returns how many records were inserted.
    """
    existing = store.list_records()
    if existing:
        logger.info("Store already has %d records, skipping seed", len(existing))
        return 0

    for record in synthetic_records(count):
        store.create_record(record)
    return count


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    # always the local store: never write demo data into a real sheet
    inserted = seed_if_empty(make_record_store(""))
    if inserted:
        print(f"✅ Seed completed: inserted {inserted} synthetic visits.")
    else:
        print("✅ Local store already has data. Skipping seed.")

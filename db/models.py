"""
db/models.py

Table layout of the local fallback store.
The columns mirror the Google Sheet so both stores read and write the same rows.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PatientRow(Base):
    """
    One ED visit.

    Why both pk and id?
    - pk: internal autoincrement key of the DB.
    - id: the client-generated identity that update/delete match on (same as the sheet).
    """
    __tablename__ = "patients"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, index=True, nullable=False)

    no = Column(Integer, nullable=False, default=0)
    tanggal = Column(String(10), index=True, nullable=False, default="")
    no_kib = Column(String(64), index=True, nullable=False, default="")
    nama_pasien = Column(String(200), nullable=False, default="")
    prioritas = Column(String(4), nullable=False, default="")

    # service timeline, HH:MM strings or "-"
    jam_datang = Column(String(8), nullable=False, default="")
    jam_dokter = Column(String(8), nullable=False, default="")
    dpjp = Column(String(200), nullable=False, default="")
    dokter_spesialis = Column(String(200), nullable=False, default="")
    jam_konsul = Column(String(8), nullable=False, default="")
    jam_respon = Column(String(8), nullable=False, default="")
    jam_respon_spesialis = Column(String(8), nullable=False, default="")

    ket = Column(String(40), nullable=False, default="")
    ruangan = Column(String(100), nullable=False, default="")
    masalah = Column(Text, nullable=False, default="")

    # set once on insert, never overwritten by update
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

# db/record_store.py
from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import requests
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import PatientRow
from db.relational import DATABASE_URL, init_db, make_engine, make_session_factory
from db.schemas import WIRE_FIELDS, PatientRecord, new_record_id

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class RecordStoreError(RuntimeError):
    """The store was unreachable or answered with something we cannot use."""


class UpdateStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not-found"


class RecordStore:
    """
    CRUD contract shared by the Google Sheet client and the local fallback.
    Every call is one round trip; nothing is retried.
    """

    def list_records(self) -> List[PatientRecord]:
        raise NotImplementedError

    def create_record(self, record: PatientRecord) -> str:
        raise NotImplementedError

    def update_record(self, record: PatientRecord) -> UpdateStatus:
        raise NotImplementedError

    def delete_record(self, record_id: str) -> None:
        raise NotImplementedError

    @staticmethod
    def _with_identity(record: PatientRecord) -> PatientRecord:
        # identity and sequence number are assigned on the client before insert
        changes: Dict[str, Any] = {}
        if not record.id:
            changes["id"] = new_record_id()
        if not record.no:
            changes["no"] = int(time.time() * 1000)
        if not changes:
            return record
        return PatientRecord(**{**record.to_dict(), **changes})


# ============================================================
# Google Sheet (Apps Script web app)
# ============================================================

class SheetRecordStore(RecordStore):
    """
    Talks to the Apps Script web app bound to the 'Data' sheet.

    Every action is a form-encoded POST with an `action` parameter
    (create / read / update / delete). The script answers JSON.
    """

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None) -> None:
        if not url:
            raise ValueError("SheetRecordStore needs an endpoint URL")
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, action: str, **params: str) -> Any:
        logger.debug("sheet %s -> %s", action, self.url)
        try:
            resp = self.session.post(self.url, data={"action": action, **params}, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except ValueError as e:
            raise RecordStoreError(f"Sheet '{action}' returned a non-JSON response") from e
        except requests.RequestException as e:
            raise RecordStoreError(f"Sheet '{action}' request failed: {e}") from e

        if isinstance(payload, dict) and payload.get("result") == "error":
            raise RecordStoreError(f"Sheet '{action}' failed: {payload.get('error', 'unknown error')}")
        return payload

    def list_records(self) -> List[PatientRecord]:
        payload = self._call("read")
        if not isinstance(payload, list):
            raise RecordStoreError("Sheet 'read' did not return a list of rows")

        out: List[PatientRecord] = []
        for row in payload:
            if not isinstance(row, dict):
                raise RecordStoreError("Sheet 'read' returned a row that is not an object")
            # blank spreadsheet rows come back as all-empty strings
            if all(str(v).strip() == "" for v in row.values()):
                continue
            out.append(PatientRecord.from_wire(row))
        logger.info("Loaded %d records from sheet", len(out))
        return out

    def create_record(self, record: PatientRecord) -> str:
        record = self._with_identity(record)
        payload = self._call("create", data=json.dumps(record.to_wire(), ensure_ascii=False))
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise RecordStoreError(f"Sheet 'create' was not confirmed: {payload!r}")
        confirmed = str(payload.get("id") or record.id)
        logger.info("Created record %s", confirmed)
        return confirmed

    def update_record(self, record: PatientRecord) -> UpdateStatus:
        if not record.id:
            raise ValueError("update_record needs a record with an id")
        payload = self._call("update", data=json.dumps(record.to_wire(), ensure_ascii=False))
        status = payload.get("status") if isinstance(payload, dict) else None
        if status == "success":
            return UpdateStatus.SUCCESS
        if status == "warning":
            logger.warning("Update target %s not found in sheet", record.id)
            return UpdateStatus.NOT_FOUND
        raise RecordStoreError(f"Sheet 'update' returned unexpected status: {payload!r}")

    def delete_record(self, record_id: str) -> None:
        payload = self._call("delete", id=str(record_id))
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise RecordStoreError(f"Sheet 'delete' was not confirmed: {payload!r}")
        logger.info("Deleted record %s", record_id)


# ============================================================
# Local fallback (SQLite via SQLAlchemy)
# ============================================================

class LocalRecordStore(RecordStore):
    """
    Same contract as the sheet, persisted in a local database.
    Used when no sheet URL is configured.
    """

    def __init__(self, database_url: str = DATABASE_URL) -> None:
        self.database_url = database_url
        self.engine = make_engine(database_url)
        init_db(self.engine)
        self.SessionLocal = make_session_factory(self.engine)

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        with self.SessionLocal() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                session.rollback()
                raise RecordStoreError(f"Local '{action}' failed: {e}") from e

    @staticmethod
    def _row_to_record(row: PatientRow) -> PatientRecord:
        return PatientRecord(**{attr: getattr(row, attr) for attr, _ in WIRE_FIELDS})

    def list_records(self) -> List[PatientRecord]:
        with self._session("read") as session:
            rows = session.scalars(select(PatientRow).order_by(PatientRow.pk)).all()
            return [self._row_to_record(r) for r in rows]

    def create_record(self, record: PatientRecord) -> str:
        record = self._with_identity(record)
        with self._session("create") as session:
            session.add(PatientRow(**record.to_dict()))
            session.commit()
        logger.info("Created local record %s", record.id)
        return record.id

    def update_record(self, record: PatientRecord) -> UpdateStatus:
        if not record.id:
            raise ValueError("update_record needs a record with an id")
        with self._session("update") as session:
            row = session.scalars(select(PatientRow).where(PatientRow.id == str(record.id))).first()
            if row is None:
                logger.warning("Update target %s not found locally", record.id)
                return UpdateStatus.NOT_FOUND
            for attr, value in record.to_dict().items():
                if attr == "no" and not value:
                    continue
                setattr(row, attr, value)
            session.commit()
        return UpdateStatus.SUCCESS

    def delete_record(self, record_id: str) -> None:
        with self._session("delete") as session:
            row = session.scalars(select(PatientRow).where(PatientRow.id == str(record_id))).first()
            if row is not None:
                session.delete(row)
                session.commit()
        logger.info("Deleted local record %s", record_id)


def make_record_store(sheet_url: str, database_url: str = DATABASE_URL) -> RecordStore:
    if sheet_url:
        logger.info("Using Google Sheet store")
        return SheetRecordStore(sheet_url)
    logger.info("No sheet URL configured, using local store at %s", database_url)
    return LocalRecordStore(database_url)

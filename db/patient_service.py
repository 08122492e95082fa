# db/patient_service.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Set, Tuple, Union

from db.record_store import RecordStore, RecordStoreError, UpdateStatus
from db.schemas import PatientRecord
from reports.exporters import MalformedImportError, parse_backup

logger = logging.getLogger(__name__)

# Rows typed straight into the sheet have no id; update/delete cannot target them
MISSING_ID_MESSAGE = "This record has no id in the store. Fill in its id column in the sheet first."


# ============================================================
# Small value types handed back to the UI
# ============================================================

@dataclass(frozen=True)
class Notification:
    message: str
    level: str = "info"  # info | success | warning | error


@dataclass(frozen=True)
class ImportReport:
    submitted: int
    imported: int
    failed: int
    skipped_duplicates: int
    cancelled: bool
    notification: Notification


class OperationInProgress(RuntimeError):
    """Raised when the same kind of operation is triggered again before the first one finished."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"'{kind}' is already running")
        self.kind = kind


class CancelToken:
    """
    Lets the caller abandon an operation before its next request is sent.
    A request that is already on the wire is never aborted.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _is_cancelled(token: Optional[CancelToken]) -> bool:
    return token is not None and token.cancelled


# ============================================================
# Orchestrator
# ============================================================

class PatientService:
    """
    Owns the in-memory patient collection.

    Views read `patients` (an immutable tuple) and go through the methods below to change
    anything. Local state only changes after the store confirms, on every path.
    """

    OPERATIONS = ("refresh", "save", "delete", "import")

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self._patients: Tuple[PatientRecord, ...] = ()
        self._in_flight: Set[str] = set()
        self.loaded = False

    @property
    def patients(self) -> Tuple[PatientRecord, ...]:
        return self._patients

    def is_busy(self, kind: Optional[str] = None) -> bool:
        if kind is None:
            return bool(self._in_flight)
        return kind in self._in_flight

    @contextmanager
    def _operation(self, kind: str) -> Iterator[None]:
        if kind in self._in_flight:
            raise OperationInProgress(kind)
        self._in_flight.add(kind)
        try:
            yield
        finally:
            self._in_flight.discard(kind)

    # -------------------------
    # Read
    # -------------------------
    def refresh(self, manual: bool = False) -> Optional[Notification]:
        with self._operation("refresh"):
            try:
                records = self.store.list_records()
            except RecordStoreError:
                logger.exception("Loading records failed")
                return Notification("Could not reach the record store. Check the connection.", "error")
            self._patients = tuple(records)
            self.loaded = True

        if manual:
            return Notification("Data synchronised with the record store.", "success")
        return None

    # -------------------------
    # Create / update
    # -------------------------
    def save(self, record: PatientRecord, editing: bool, cancel_token: Optional[CancelToken] = None) -> Notification:
        if editing and not record.id:
            return Notification(MISSING_ID_MESSAGE, "warning")

        with self._operation("save"):
            if _is_cancelled(cancel_token):
                return Notification("Save cancelled.", "warning")
            try:
                if editing:
                    return self._update(record)
                return self._create(record)
            except RecordStoreError:
                logger.exception("Saving record failed")
                return Notification("Failed to save the record to the database.", "error")

    def _create(self, record: PatientRecord) -> Notification:
        new_id = self.store.create_record(record)
        created = replace(record, id=new_id)
        self._patients = (created,) + self._patients
        return Notification("New patient record added.", "success")

    def _update(self, record: PatientRecord) -> Notification:
        status = self.store.update_record(record)
        if status is UpdateStatus.NOT_FOUND:
            return Notification("Record not found in the store; nothing was changed.", "warning")
        self._patients = tuple(record if p.id == record.id else p for p in self._patients)
        return Notification("Changes saved.", "success")

    # -------------------------
    # Delete
    # -------------------------
    def delete(self, record_id: str, confirmed: bool = False, cancel_token: Optional[CancelToken] = None) -> Notification:
        if not confirmed:
            return Notification("Deletion not confirmed.", "warning")
        if not record_id:
            return Notification(MISSING_ID_MESSAGE, "warning")

        with self._operation("delete"):
            if _is_cancelled(cancel_token):
                return Notification("Delete cancelled.", "warning")
            try:
                self.store.delete_record(record_id)
            except RecordStoreError:
                logger.exception("Deleting record %s failed", record_id)
                return Notification("Failed to delete the record.", "error")
            self._patients = tuple(p for p in self._patients if p.id != record_id)
        return Notification("Patient record deleted.", "success")

    # -------------------------
    # Bulk import (JSON backup)
    # -------------------------
    def bulk_import(self, payload: Union[str, bytes], cancel_token: Optional[CancelToken] = None) -> ImportReport:
        with self._operation("import"):
            try:
                items = parse_backup(payload)
            except MalformedImportError as e:
                logger.warning("Import rejected: %s", e)
                return ImportReport(0, 0, 0, 0, False, Notification("Could not read the import file.", "error"))

            existing_rm = {p.no_kib for p in self._patients}
            existing_ids = {p.id for p in self._patients}
            new_items = [it for it in items if it.no_kib not in existing_rm]
            skipped = len(items) - len(new_items)

            if not new_items:
                return ImportReport(
                    0, 0, 0, skipped, False,
                    Notification("All records already exist in the database.", "info"),
                )

            added: List[PatientRecord] = []
            failed = 0
            cancelled = False
            for item in new_items:
                if _is_cancelled(cancel_token):
                    cancelled = True
                    break
                if item.id in existing_ids:
                    # a colliding identity would break update/delete matching
                    item = replace(item, id="")
                try:
                    new_id = self.store.create_record(item)
                except RecordStoreError:
                    logger.exception("Import of RM %s failed", item.no_kib)
                    failed += 1
                    continue
                added.append(replace(item, id=new_id))
                existing_ids.add(new_id)

            self._patients = tuple(added) + self._patients

        message = f"{len(added)} imported."
        if failed:
            message = f"{len(added)} imported, {failed} failed."
        if cancelled:
            message += " Import cancelled."
        if not failed and not cancelled:
            level = "success"
        elif added or not failed:
            level = "warning"
        else:
            level = "error"
        submitted = len(added) + failed
        logger.info("Bulk import: %d submitted, %d imported, %d failed", submitted, len(added), failed)
        return ImportReport(
            submitted=submitted,
            imported=len(added),
            failed=failed,
            skipped_duplicates=skipped,
            cancelled=cancelled,
            notification=Notification(message, level),
        )

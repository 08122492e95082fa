from dataclasses import replace

import pytest

from conftest import make_record
from db.patient_service import CancelToken, OperationInProgress, PatientService
from reports.exporters import backup_json


@pytest.fixture
def service(sheet_store):
    return PatientService(sheet_store)


def _seeded(service, *records):
    for r in records:
        service.store.create_record(r)
    service.refresh()
    return service


def test_refresh_loads_records(service):
    _seeded(service, make_record(no_kib="1"), make_record(no_kib="2"))
    assert service.loaded
    assert [p.no_kib for p in service.patients] == ["1", "2"]


def test_manual_refresh_reports_success(service):
    note = service.refresh(manual=True)
    assert note.level == "success"
    assert service.refresh() is None


def test_refresh_failure_keeps_previous_state(service, fake_sheet):
    _seeded(service, make_record(no_kib="1"))
    fake_sheet.down = True
    note = service.refresh(manual=True)
    assert note.level == "error"
    assert [p.no_kib for p in service.patients] == ["1"]


def test_create_prepends_with_store_id(service, fake_sheet):
    _seeded(service, make_record(no_kib="1"))
    note = service.save(make_record(no_kib="2"), editing=False)
    assert note.level == "success"
    assert [p.no_kib for p in service.patients] == ["2", "1"]
    assert service.patients[0].id == fake_sheet.rows[-1]["id"]


def test_update_replaces_in_place(service):
    _seeded(service, make_record(no_kib="1"), make_record(no_kib="2"))
    target = service.patients[1]
    note = service.save(replace(target, ket="Rawat Inap", ruangan="ICU"), editing=True)
    assert note.message == "Changes saved."
    assert service.patients[1].ruangan == "ICU"
    assert service.patients[0].no_kib == "1"


def test_update_not_found_leaves_state_alone(service):
    _seeded(service, make_record(no_kib="1"))
    before = service.patients
    note = service.save(make_record(id="ghost0000", no_kib="1"), editing=True)
    assert note.level == "warning"
    assert service.patients == before


def test_save_failure_leaves_state_alone(service, fake_sheet):
    _seeded(service, make_record(no_kib="1"))
    before = service.patients
    fake_sheet.down = True
    note = service.save(make_record(no_kib="9"), editing=False)
    assert note.level == "error"
    assert service.patients == before


def test_unconfirmed_delete_never_reaches_the_store(service, fake_sheet):
    _seeded(service, make_record(no_kib="1"))
    calls_before = len(fake_sheet.calls)
    note = service.delete(service.patients[0].id)
    assert note.message == "Deletion not confirmed."
    assert len(fake_sheet.calls) == calls_before
    assert len(service.patients) == 1


def test_confirmed_delete_removes_record(service, fake_sheet):
    _seeded(service, make_record(no_kib="1"), make_record(no_kib="2"))
    note = service.delete(service.patients[0].id, confirmed=True)
    assert note.level == "success"
    assert [p.no_kib for p in service.patients] == ["2"]
    assert fake_sheet.actions()[-1] == "delete"


def test_failed_delete_keeps_record(service, fake_sheet):
    _seeded(service, make_record(no_kib="1"))
    fake_sheet.down = True
    note = service.delete(service.patients[0].id, confirmed=True)
    assert note.level == "error"
    assert len(service.patients) == 1


# -------------------------
# Bulk import
# -------------------------

def test_import_skips_known_rm_numbers(service, fake_sheet):
    _seeded(service, make_record(no_kib="1001"))
    payload = backup_json([
        make_record(no_kib="1001"),
        make_record(no_kib="3001", nama_pasien="Rina"),
        make_record(no_kib="3002", nama_pasien="Yusuf"),
    ])
    report = service.bulk_import(payload)

    assert report.submitted == 2
    assert report.imported == 2
    assert report.skipped_duplicates == 1
    assert report.notification.message == "2 imported."
    assert report.notification.level == "success"
    assert [p.no_kib for p in service.patients] == ["3001", "3002", "1001"]
    assert fake_sheet.actions().count("create") == 3


def test_import_partial_failure(service, fake_sheet):
    fake_sheet.fail_create_for_rm = {"3002"}
    report = service.bulk_import(backup_json([make_record(no_kib="3001"), make_record(no_kib="3002")]))
    assert (report.submitted, report.imported, report.failed) == (2, 1, 1)
    assert report.notification.message == "1 imported, 1 failed."
    assert report.notification.level == "warning"
    assert [p.no_kib for p in service.patients] == ["3001"]


def test_import_all_failed_is_an_error(service, fake_sheet):
    fake_sheet.fail_create_for_rm = {"3001"}
    report = service.bulk_import(backup_json([make_record(no_kib="3001")]))
    assert report.notification.level == "error"
    assert service.patients == ()


def test_import_of_only_duplicates(service, fake_sheet):
    _seeded(service, make_record(no_kib="1001"))
    calls_before = len(fake_sheet.calls)
    report = service.bulk_import(backup_json([make_record(no_kib="1001")]))
    assert report.notification.message == "All records already exist in the database."
    assert report.submitted == 0
    assert len(fake_sheet.calls) == calls_before


def test_import_rejects_malformed_file(service, fake_sheet):
    report = service.bulk_import(b'{"not": "a list"}')
    assert report.notification.level == "error"
    assert fake_sheet.calls == []


def test_import_gives_colliding_ids_a_fresh_identity(service):
    _seeded(service, make_record(no_kib="1001"))
    existing_id = service.patients[0].id
    report = service.bulk_import(backup_json([make_record(id=existing_id, no_kib="4001")]))
    assert report.imported == 1
    assert service.patients[0].no_kib == "4001"
    assert service.patients[0].id != existing_id


def test_import_can_be_cancelled_between_requests(service, sheet_store, monkeypatch):
    token = CancelToken()
    create = sheet_store.create_record

    def create_then_cancel(record):
        rid = create(record)
        token.cancel()
        return rid

    monkeypatch.setattr(sheet_store, "create_record", create_then_cancel)
    payload = backup_json([make_record(no_kib=str(n)) for n in (1, 2, 3)])
    report = service.bulk_import(payload, cancel_token=token)

    assert report.cancelled
    assert report.imported == 1
    assert report.notification.message == "1 imported. Import cancelled."
    assert report.notification.level == "warning"
    assert len(service.patients) == 1


# -------------------------
# In-flight guard
# -------------------------

def test_same_operation_cannot_run_twice(service):
    with service._operation("import"):
        assert service.is_busy("import")
        with pytest.raises(OperationInProgress) as exc:
            service.bulk_import("[]")
        assert exc.value.kind == "import"
    assert not service.is_busy()


def test_different_operations_may_overlap(service):
    with service._operation("import"):
        note = service.save(make_record(no_kib="7"), editing=False)
    assert note.level == "success"


def test_cancelled_save_sends_nothing(service, fake_sheet):
    token = CancelToken()
    token.cancel()
    note = service.save(make_record(), editing=False, cancel_token=token)
    assert note.level == "warning"
    assert fake_sheet.calls == []


# -------------------------
# Failures of the local database
# -------------------------

def test_import_counts_database_conflicts_as_failures(local_store):
    local_store.create_record(make_record(id="dup000000", no_kib="1"))
    service = PatientService(local_store)

    report = service.bulk_import(backup_json([
        make_record(id="dup000000", no_kib="2"),
        make_record(no_kib="3"),
    ]))

    assert (report.submitted, report.imported, report.failed) == (2, 1, 1)
    assert report.notification.message == "1 imported, 1 failed."
    assert [p.no_kib for p in service.patients] == ["3"]
    assert sorted(r.no_kib for r in local_store.list_records()) == ["1", "3"]


# -------------------------
# Rows added by hand in the sheet (blank id)
# -------------------------

def _sheet_row_without_id(fake_sheet, no_kib):
    fake_sheet.rows.append({"id": "", "no": "", "tanggal": "2024-01-08", "noKib": no_kib,
                            "namaPasien": "Typed In", "createdAt": ""})


def test_editing_a_row_without_id_is_refused(service, fake_sheet):
    _sheet_row_without_id(fake_sheet, "9001")
    service.refresh()
    [rec] = service.patients
    assert rec.id == ""

    note = service.save(replace(rec, ruangan="ICU"), editing=True)

    assert note.level == "warning"
    assert "no id" in note.message
    assert "update" not in fake_sheet.actions()
    assert service.patients == (rec,)


def test_deleting_a_row_without_id_is_refused(service, fake_sheet):
    _sheet_row_without_id(fake_sheet, "9001")
    _sheet_row_without_id(fake_sheet, "9002")
    service.refresh()

    note = service.delete("", confirmed=True)

    assert note.level == "warning"
    assert "delete" not in fake_sheet.actions()
    assert [p.no_kib for p in service.patients] == ["9001", "9002"]

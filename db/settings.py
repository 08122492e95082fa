# db/settings.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Tuple

from analytics.filters import SEARCH_FIELD_SETS, DEFAULT_SEARCH_FIELDS

logger = logging.getLogger(__name__)

PROJECT_DIR = Path(__file__).resolve().parents[1]
DB_DIR = PROJECT_DIR / "db_store"
SETTINGS_JSON = DB_DIR / "settings.json"

# Built-in endpoint used when the user has not saved one. Empty -> local store.
DEFAULT_SHEET_URL = os.getenv("MUTU_IGD_SHEET_URL", "").strip()

# Web app backend pasted into the spreadsheet (Extensions -> Apps Script).
# Actions and answers must stay in step with db/record_store.SheetRecordStore.
APPS_SCRIPT_CODE = r"""
// Mutu IGD record store. Deploy as a web app (execute as me, access: anyone).
// read uses getDisplayValues() so times such as 14:30 come back as text, not dates.

var SHEET_NAME = 'Data';
var HEADERS = ["id", "no", "tanggal", "noKib", "namaPasien", "prioritas", "jamDatang", "jamDokter", "dpjp", "dokterSpesialis", "jamKonsul", "jamRespon", "jamResponSpesialis", "ket", "ruangan", "masalah", "createdAt"];

function json_(obj) {
  return ContentService.createTextOutput(JSON.stringify(obj)).setMimeType(ContentService.MimeType.JSON);
}

function rowFrom_(data, no) {
  // every column except createdAt, in header order
  return HEADERS.slice(0, HEADERS.length - 1).map(function (h) {
    if (h === 'no') return data.no || no || 0;
    return data[h] === undefined ? '' : data[h];
  });
}

function doPost(e) {
  var lock = LockService.getScriptLock();
  lock.tryLock(10000);
  try {
    var doc = SpreadsheetApp.getActiveSpreadsheet();
    var sheet = doc.getSheetByName(SHEET_NAME);
    if (!sheet) {
      sheet = doc.insertSheet(SHEET_NAME);
      sheet.appendRow(HEADERS);
    }

    var params = e.parameter;
    var action = params.action;

    if (action == 'create') {
      var data = JSON.parse(params.data);
      sheet.appendRow(rowFrom_(data, 0).concat([new Date()]));
      return json_({ status: 'success', id: data.id });
    }

    if (action == 'read') {
      var rows = sheet.getDataRange().getDisplayValues();
      var out = [];
      for (var i = 1; i < rows.length; i++) {
        var obj = {};
        for (var j = 0; j < rows[0].length; j++) obj[rows[0][j]] = rows[i][j];
        out.push(obj);
      }
      return json_(out);
    }

    if (action == 'update') {
      var data = JSON.parse(params.data);
      var rows = sheet.getDataRange().getValues();
      for (var i = 1; i < rows.length; i++) {
        if (String(rows[i][0]) === String(data.id)) {
          // createdAt (last column) is left untouched
          sheet.getRange(i + 1, 1, 1, HEADERS.length - 1).setValues([rowFrom_(data, rows[i][1])]);
          return json_({ status: 'success' });
        }
      }
      return json_({ status: 'warning' });
    }

    if (action == 'delete') {
      var rows = sheet.getDataRange().getValues();
      for (var i = 1; i < rows.length; i++) {
        if (String(rows[i][0]) === String(params.id)) {
          sheet.deleteRow(i + 1);
          break;
        }
      }
      return json_({ status: 'success' });
    }

    return json_({ result: 'error', error: 'Unknown action: ' + action });
  } catch (err) {
    return json_({ result: 'error', error: err.toString() });
  } finally {
    lock.releaseLock();
  }
}
""".strip()


# ============================================================
# Helpers: IO
# ============================================================

def _load_json(path: Path, default):
    if not path.exists():
        return default
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _save_json(path: Path, obj) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)


@dataclass
class AppSettings:
    sheet_url: str = ""
    search_fields: str = DEFAULT_SEARCH_FIELDS

    @property
    def effective_sheet_url(self) -> str:
        return self.sheet_url.strip() or DEFAULT_SHEET_URL


def load_settings(path: Path = SETTINGS_JSON) -> AppSettings:
    try:
        raw = _load_json(path, {})
    except json.JSONDecodeError:
        logger.warning("Settings file %s is corrupt, using defaults", path)
        raw = {}
    if not isinstance(raw, dict):
        raw = {}

    search_fields = str(raw.get("search_fields", DEFAULT_SEARCH_FIELDS))
    if search_fields not in SEARCH_FIELD_SETS:
        search_fields = DEFAULT_SEARCH_FIELDS
    return AppSettings(sheet_url=str(raw.get("sheet_url", "")).strip(), search_fields=search_fields)


def save_settings(settings: AppSettings, path: Path = SETTINGS_JSON) -> None:
    if settings.search_fields not in SEARCH_FIELD_SETS:
        raise ValueError(f"Unknown search field set: {settings.search_fields}")
    settings.sheet_url = settings.sheet_url.strip()
    _save_json(path, asdict(settings))
    logger.info("Settings saved to %s", path)


def clear_sheet_url(path: Path = SETTINGS_JSON) -> AppSettings:
    """Forget the saved URL so the built-in default (or the local store) applies again."""
    settings = load_settings(path)
    settings.sheet_url = ""
    save_settings(settings, path)
    return settings


def sheet_url_field(settings: AppSettings) -> Tuple[str, str]:
    """
    (value, placeholder) for the URL text box. Only the saved URL is editable;
    the built-in one is shown as a hint so saving never copies it into settings.
    """
    placeholder = DEFAULT_SHEET_URL or "https://script.google.com/macros/s/..."
    return settings.sheet_url, placeholder

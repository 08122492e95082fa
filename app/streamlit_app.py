import streamlit as st
import pandas as pd
import plotly.express as px

import logging
import os
import sys
from datetime import date
from typing import List, Optional

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from agent.gemini_analyst import SUGGESTED_QUESTIONS, analyze_data
from analytics.filters import SEARCH_FIELD_LABELS, SEARCH_FIELD_SETS, FilterCriteria, apply_criteria
from analytics.stats import arrival_trend, disposition_counts, priority_counts, summarize
from db.patient_service import Notification, OperationInProgress, PatientService
from db.record_store import make_record_store
from db.schemas import (
    DISPOSITIONS,
    PRIORITIES,
    PRIORITY_LABELS,
    ROOM_SUGGESTIONS,
    SHEET_COLUMNS,
    PatientRecord,
)
from db.settings import (
    APPS_SCRIPT_CODE,
    DEFAULT_SHEET_URL,
    AppSettings,
    clear_sheet_url,
    load_settings,
    save_settings,
    sheet_url_field,
)
from reports import exporters

logging.basicConfig(
    level=os.getenv("MUTU_IGD_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# --------------------
# Page config
# --------------------
st.set_page_config(
    page_title="Mutu - IGD",
    page_icon="🏥",
    layout="wide",
)

st.markdown(
    """
<style>
.block-container {
    padding-top: 2rem;
    padding-bottom: 3rem;
}
h1, h2, h3 { letter-spacing: -0.2px; }
div[data-testid="stVerticalBlock"] { gap: 0.6rem; }
</style>
""",
    unsafe_allow_html=True,
)

PRIORITY_COLORS = {"P1": "#ef4444", "P2": "#f59e0b", "P3": "#10b981", "P4": "#3b82f6", "P5": "#64748b"}
STATUS_COLORS = ["#6366f1", "#ec4899", "#10b981", "#f59e0b", "#8b5cf6"]
NOTICE_ICONS = {"success": "✅", "error": "❌", "warning": "⚠️", "info": "ℹ️"}


# =========================
# Session state
# =========================
def _build_service(settings: AppSettings) -> PatientService:
    service = PatientService(make_record_store(settings.effective_sheet_url))
    service.refresh()
    return service


def get_settings() -> AppSettings:
    if "settings" not in st.session_state:
        st.session_state["settings"] = load_settings()
    return st.session_state["settings"]


def get_service() -> PatientService:
    if "service" not in st.session_state:
        with st.spinner("Loading patient data..."):
            st.session_state["service"] = _build_service(get_settings())
        if not st.session_state["service"].loaded:
            notify(Notification("Could not reach the record store. Check the connection.", "error"))
    return st.session_state["service"]


def notify(notification: Optional[Notification]) -> None:
    """Queue a toast; it survives the st.rerun() that usually follows a change."""
    if notification is not None:
        st.session_state.setdefault("notices", []).append(notification)


def flush_notices() -> None:
    for n in st.session_state.pop("notices", []):
        st.toast(n.message, icon=NOTICE_ICONS.get(n.level, "ℹ️"))


def run_guarded(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except OperationInProgress as e:
        notify(Notification(f"Please wait, {e.kind} is still running.", "warning"))
        return None


# =========================
# Shared widgets
# =========================
def filter_bar(key: str, settings: AppSettings) -> FilterCriteria:
    c1, c2, c3, c4 = st.columns([1, 1, 2, 0.6])
    if c4.button("Reset filter", key=f"{key}_reset"):
        for suffix in ("start", "end", "query"):
            st.session_state.pop(f"{key}_{suffix}", None)
    start = c1.date_input("From", value=None, key=f"{key}_start")
    end = c2.date_input("To", value=None, key=f"{key}_end")
    query = c3.text_input(
        "Search",
        key=f"{key}_query",
        placeholder=f"Search: {SEARCH_FIELD_LABELS[settings.search_fields].lower()}",
    )
    return FilterCriteria(
        start_date=start.isoformat() if start else None,
        end_date=end.isoformat() if end else None,
        query=query,
        search_fields=settings.search_fields,
    )


def records_table(records, columns) -> pd.DataFrame:
    return exporters.records_frame(records, columns, blank="-")


def priority_chart(records):
    counts = priority_counts(records)
    df = pd.DataFrame({"Priority": list(counts), "Patients": list(counts.values())})
    fig = px.bar(df, x="Priority", y="Patients", color="Priority", color_discrete_map=PRIORITY_COLORS)
    fig.update_layout(showlegend=False, height=300, margin=dict(l=10, r=10, t=10, b=10))
    return fig


def status_chart(records):
    counts = disposition_counts(records)
    df = pd.DataFrame({"Status": list(counts), "Patients": list(counts.values())})
    fig = px.pie(df, names="Status", values="Patients", hole=0.5, color_discrete_sequence=STATUS_COLORS)
    fig.update_layout(height=300, margin=dict(l=10, r=10, t=10, b=10))
    return fig


def arrival_chart(records):
    df = pd.DataFrame(arrival_trend(records), columns=["Hour", "Patients"])
    fig = px.area(df, x="Hour", y="Patients", color_discrete_sequence=["#10b981"])
    fig.update_layout(height=300, margin=dict(l=10, r=10, t=10, b=10))
    return fig


def stat_cards(records) -> None:
    stats = summarize(records)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total patients", stats.total)
    c2.metric("Emergency (P1)", stats.emergency, help="Needs immediate handling")
    c3.metric("Inpatient", stats.inpatient, help=f"{stats.inpatient_percent}% of total")
    c4.metric("Specialist types", stats.specialists, help="Active specialist services")


def patient_form(initial: Optional[PatientRecord], key: str) -> Optional[PatientRecord]:
    """Returns the record on submit, None otherwise."""
    rec = initial or PatientRecord(tanggal=date.today().isoformat())
    with st.form(key=key, clear_on_submit=initial is None):
        st.markdown("**Identity & triage**")
        c1, c2, c3 = st.columns(3)
        try:
            visit_date = date.fromisoformat(rec.tanggal) if rec.tanggal else date.today()
        except ValueError:
            visit_date = date.today()
        tanggal = c1.date_input("Date", value=visit_date)
        no_kib = c2.text_input("RM number", value=rec.no_kib)
        prioritas = c3.selectbox(
            "Priority", PRIORITIES,
            index=PRIORITIES.index(rec.prioritas) if rec.prioritas in PRIORITIES else 2,
            format_func=lambda p: PRIORITY_LABELS[p],
        )
        nama = st.text_input("Patient name", value=rec.nama_pasien)
        c1, c2 = st.columns(2)
        dpjp = c1.text_input("DPJP (attending physician)", value=rec.dpjp)
        spesialis = c2.text_input("Specialist", value=rec.dokter_spesialis)

        st.markdown("**Service timeline** (HH:MM, `-` if not recorded)")
        t = st.columns(5)
        jam_datang = t[0].text_input("Arrival", value=rec.jam_datang)
        jam_respon = t[1].text_input("Response", value=rec.jam_respon)
        jam_dokter = t[2].text_input("Doctor", value=rec.jam_dokter)
        jam_konsul = t[3].text_input("Consult", value=rec.jam_konsul)
        jam_respon_sp = t[4].text_input("Specialist response", value=rec.jam_respon_spesialis)

        st.markdown("**Final status & placement**")
        c1, c2 = st.columns(2)
        ket = c1.selectbox(
            "Status", DISPOSITIONS,
            index=DISPOSITIONS.index(rec.ket) if rec.ket in DISPOSITIONS else 0,
        )
        ruangan = c2.text_input("Room", value=rec.ruangan, help="Suggestions: " + ", ".join(ROOM_SUGGESTIONS))
        masalah = st.text_area("Problem / notes", value=rec.masalah)

        if not st.form_submit_button("Save", type="primary"):
            return None

    return PatientRecord(
        id=rec.id,
        no=rec.no,
        tanggal=tanggal.isoformat(),
        no_kib=no_kib.strip(),
        nama_pasien=nama.strip(),
        prioritas=prioritas,
        jam_datang=jam_datang.strip(),
        jam_dokter=jam_dokter.strip(),
        dpjp=dpjp.strip(),
        dokter_spesialis=spesialis.strip(),
        jam_konsul=jam_konsul.strip(),
        jam_respon=jam_respon.strip(),
        jam_respon_spesialis=jam_respon_sp.strip(),
        ket=ket,
        ruangan=ruangan.strip(),
        masalah=masalah.strip(),
    )


# =========================
# Views
# =========================
def dashboard_view(service: PatientService) -> None:
    patients = service.patients
    head, btn = st.columns([4, 1])
    head.subheader("ED dashboard")
    if btn.button("Sync data", disabled=service.is_busy("refresh")):
        with st.spinner("Synchronising..."):
            notify(run_guarded(service.refresh, manual=True))
        st.rerun()

    stat_cards(patients)

    c1, c2 = st.columns(2)
    with c1:
        st.markdown("##### Patient priority distribution")
        st.plotly_chart(priority_chart(patients), use_container_width=True)
    with c2:
        st.markdown("##### Final service status")
        st.plotly_chart(status_chart(patients), use_container_width=True)
    st.markdown("##### Patient arrivals per hour")
    st.plotly_chart(arrival_chart(patients), use_container_width=True)


def data_view(service: PatientService, settings: AppSettings) -> None:
    st.subheader("Patient service data")
    st.caption("Synchronised with the record store." if settings.effective_sheet_url else "Stored locally (no Google Sheet configured).")

    criteria = filter_bar("data", settings)
    filtered = apply_criteria(service.patients, criteria)
    stats = summarize(filtered)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total patients", stats.total)
    c2.metric("Emergency (P1)", stats.emergency)
    c3.metric("Inpatient", stats.inpatient)
    c4.metric("Waiting for doctor", stats.waiting)

    mode = st.radio("View", ["Table", "Cards"], horizontal=True, label_visibility="collapsed")

    selected: List[PatientRecord] = []
    if mode == "Table":
        df = records_table(filtered, exporters.TABLE_COLUMNS)
        df.insert(0, "Select", False)
        edited = st.data_editor(
            df,
            hide_index=True,
            use_container_width=True,
            disabled=[c for c in df.columns if c != "Select"],
            key="data_table",
        )
        selected = [r for r, flag in zip(filtered, edited["Select"].tolist()) if flag]
    else:
        cols = st.columns(3)
        for i, r in enumerate(filtered):
            with cols[i % 3].container(border=True):
                st.markdown(f"**{r.nama_pasien or '-'}** · {r.prioritas}")
                st.caption(f"RM {r.no_kib or '-'} · {r.tanggal} · {r.ket}")
                with st.expander("Details"):
                    st.write(f"DPJP: {r.dpjp or '-'} · Specialist: {r.dokter_spesialis or '-'}")
                    st.write(
                        f"Arrival {r.jam_datang or '-'} · Response {r.jam_respon or '-'} · "
                        f"Doctor {r.jam_dokter or '-'} · Consult {r.jam_konsul or '-'} · "
                        f"Specialist response {r.jam_respon_spesialis or '-'}"
                    )
                    st.write(f"Room: {r.ruangan or '-'}")
                    st.write(r.masalah or "-")

    # ---- exports
    to_export = selected or filtered
    c1, c2, c3 = st.columns(3)
    c1.download_button(
        f"Export Excel ({len(to_export)} rows)",
        data=exporters.table_export(to_export),
        file_name=exporters.table_export_filename(),
        mime=exporters.EXCEL_MIME,
        disabled=not to_export,
    )
    c2.download_button(
        "Backup JSON (all data)",
        data=exporters.backup_json(service.patients),
        file_name=exporters.backup_filename(),
        mime=exporters.JSON_MIME,
    )

    with c3.popover("Import JSON"):
        upload = st.file_uploader("Backup file", type=["json"], key="import_file")
        if upload is not None and st.button("Import into database", disabled=service.is_busy("import")):
            with st.spinner("Importing records one by one..."):
                report = run_guarded(service.bulk_import, upload.getvalue())
            if report is not None:
                notify(report.notification)
            st.rerun()

    st.markdown("---")
    tab_add, tab_edit = st.tabs(["Add patient", "Edit / delete"])

    with tab_add:
        new_record = patient_form(None, key="form_add")
        if new_record is not None:
            with st.spinner("Saving..."):
                notify(run_guarded(service.save, new_record, editing=False))
            st.rerun()

    with tab_edit:
        if not filtered:
            st.info("No patient matches the current filter.")
            return
        # by position: rows added by hand in the sheet may share a blank id
        pos = st.selectbox(
            "Patient",
            range(len(filtered)),
            format_func=lambda i: f"{filtered[i].tanggal} · {filtered[i].no_kib} · {filtered[i].nama_pasien}",
        )
        current = filtered[pos]
        record_id = current.id
        if not record_id:
            st.warning("This row has no id in the sheet, so it cannot be edited or deleted here.")

        edited_record = patient_form(current, key=f"form_edit_{pos}_{record_id}")
        if edited_record is not None:
            with st.spinner("Saving..."):
                notify(run_guarded(service.save, edited_record, editing=True))
            st.rerun()

        confirm = st.checkbox(f"Permanently delete {current.nama_pasien or current.no_kib}", key=f"confirm_{pos}_{record_id}")
        if st.button("Delete", type="secondary", disabled=not confirm or not record_id or service.is_busy("delete")):
            with st.spinner("Deleting..."):
                notify(run_guarded(service.delete, record_id, confirmed=confirm))
            st.rerun()


def reports_view(service: PatientService, settings: AppSettings) -> None:
    st.subheader("Full report")
    criteria = filter_bar("report", settings)
    filtered = apply_criteria(service.patients, criteria)
    mode = st.radio("Report view", ["Data table", "Dashboard visualisation"], horizontal=True)

    if mode == "Data table":
        st.download_button(
            "Export Excel (table)",
            data=exporters.full_report_export(filtered, criteria.start_date, criteria.end_date),
            file_name=exporters.full_report_filename(criteria.start_date, criteria.end_date),
            mime=exporters.EXCEL_MIME,
            disabled=not filtered,
        )
        if filtered:
            st.dataframe(records_table(filtered, exporters.REPORT_COLUMNS), use_container_width=True, hide_index=True)
        else:
            st.info("No data for this filter.")
        return

    st.caption(f"Period: {exporters.period_label(criteria.start_date, criteria.end_date)}")
    if filtered:
        st.download_button(
            "Download PDF",
            data=exporters.dashboard_pdf(filtered, criteria.start_date, criteria.end_date),
            file_name=exporters.dashboard_pdf_filename(criteria.start_date, criteria.end_date),
            mime=exporters.PDF_MIME,
        )
    stats = summarize(filtered)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total patients", stats.total)
    c2.metric("Emergency (P1)", stats.emergency)
    c3.metric("Inpatient", stats.inpatient)
    c4.metric("Outpatient", stats.outpatient)
    c1, c2 = st.columns(2)
    c1.plotly_chart(priority_chart(filtered), use_container_width=True)
    c2.plotly_chart(status_chart(filtered), use_container_width=True)
    st.plotly_chart(arrival_chart(filtered), use_container_width=True)


def analysis_view(service: PatientService) -> None:
    st.subheader("Hospital performance analysis")
    st.caption("Ask about patient data, response times or operational bottlenecks.")

    cols = st.columns(2)
    for i, s in enumerate(SUGGESTED_QUESTIONS):
        if cols[i % 2].button(f'"{s}"', key=f"suggest_{i}"):
            st.session_state["analysis_question"] = s

    question = st.text_area(
        "Question",
        key="analysis_question",
        placeholder="Example: how do inpatient and outpatient numbers compare?",
    )
    if st.button("Analyse", type="primary", disabled=not question.strip()):
        with st.spinner("Analysing medical data..."):
            try:
                st.session_state["analysis_result"] = analyze_data(service.patients, question)
            except Exception as e:
                logger.exception("Analysis failed")
                st.error(f"Connection error, please try again. ({e})")
                return

    result = st.session_state.get("analysis_result")
    if result is None:
        return
    st.markdown("#### Analysis result")
    st.write(result.answer)
    if result.has_chart:
        df = pd.DataFrame([p.model_dump() for p in result.chart_data])
        title = result.chart_title or "Data visualisation"
        if result.chart_type == "line":
            fig = px.line(df, x="name", y="value", title=title, markers=True)
        elif result.chart_type == "pie":
            fig = px.pie(df, names="name", values="value", title=title)
        else:
            fig = px.bar(df, x="name", y="value", title=title)
        st.plotly_chart(fig, use_container_width=True)


def settings_view(settings: AppSettings) -> None:
    st.subheader("Settings")

    st.markdown("### Database integration")
    st.caption(
        "Connect a Google Apps Script web app bound to the sheet. "
        "Leave it empty to use the local database."
    )
    if DEFAULT_SHEET_URL:
        st.caption("✓ Default URL detected (MUTU_IGD_SHEET_URL)")

    value, placeholder = sheet_url_field(settings)
    url = st.text_input("Google Apps Script URL (web app)", value=value, placeholder=placeholder)
    c1, c2 = st.columns(2)
    if c1.button("Save", type="primary"):
        settings.sheet_url = url
        save_settings(settings)
        st.session_state["reload_pending"] = True
    if c2.button("Reset"):
        st.session_state["settings"] = clear_sheet_url()
        st.session_state["reload_pending"] = True

    if st.session_state.get("reload_pending"):
        st.warning("URL saved. The app needs a reload to use the new database connection.")
        if st.button("Reload now"):
            for k in ("service", "settings", "reload_pending"):
                st.session_state.pop(k, None)
            st.rerun()

    with st.expander("Sheet layout"):
        st.write("The 'Data' sheet must have these headers, in this order:")
        st.code(", ".join(SHEET_COLUMNS))

    with st.expander("Apps Script backend"):
        st.markdown(
            "1. Open the spreadsheet, then **Extensions → Apps Script**.\n"
            "2. Replace the editor contents with the code below and save.\n"
            "3. **Deploy → New deployment → Web app**, execute as *Me*, access *Anyone*.\n"
            "4. Paste the web app URL above."
        )
        st.code(APPS_SCRIPT_CODE, language="javascript")

    st.markdown("### Search")
    choice = st.radio(
        "Free-text search looks at",
        list(SEARCH_FIELD_SETS),
        index=list(SEARCH_FIELD_SETS).index(settings.search_fields),
        format_func=lambda k: SEARCH_FIELD_LABELS[k],
    )
    if choice != settings.search_fields:
        settings.search_fields = choice
        save_settings(settings)
        st.rerun()


# =========================
# Main
# =========================
st.title("Mutu - IGD")
st.caption("Hospital Management System · emergency department service quality")

settings = get_settings()
service = get_service()
flush_notices()

tab_dash, tab_data, tab_reports, tab_ai, tab_settings = st.tabs(
    ["Dashboard", "Patient data", "Reports", "AI Analytics", "Settings"]
)

with tab_dash:
    dashboard_view(service)

with tab_data:
    data_view(service, settings)

with tab_reports:
    reports_view(service, settings)

with tab_ai:
    analysis_view(service)

with tab_settings:
    settings_view(settings)

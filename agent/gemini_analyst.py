# agent/gemini_analyst.py
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

import google.generativeai as genai

from analytics.stats import (
    arrival_trend,
    average_minutes,
    disposition_counts,
    priority_counts,
    summarize,
)
from db.schemas import PatientRecord

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("MUTU_IGD_GEMINI_MODEL", "gemini-2.5-flash")

# Rows sent verbatim; beyond this only the aggregates go to the model
MAX_ROWS_IN_PROMPT = 300

SUGGESTED_QUESTIONS = [
    "How many patients are there per priority (P1, P2, P3)?",
    "Which attending physician (DPJP) handled the most patients?",
    "What problems come up most often today?",
    "Analyse the average waiting time before patients see a doctor.",
]


# -------------------------
# Output contract (LLM must follow)
# -------------------------
class ChartPoint(BaseModel):
    name: str
    value: float


class AnalysisResult(BaseModel):
    answer: str
    chart_type: Optional[str] = Field(None, description="bar | line | pie")
    chart_data: List[ChartPoint] = Field(default_factory=list)
    chart_title: Optional[str] = None
    x_axis_key: str = "name"
    data_key: str = "value"

    @field_validator("chart_data", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return [] if v is None else v

    @property
    def has_chart(self) -> bool:
        return self.chart_type in ("bar", "line", "pie") and bool(self.chart_data)


def _get_api_key() -> str:
    k = os.getenv("GEMINI_API_KEY")
    if not k:
        raise RuntimeError(
            "Missing GEMINI_API_KEY environment variable.\n"
            "Example: export GEMINI_API_KEY=YOUR_KEY"
        )
    return k


def build_data_summary(records: Sequence[PatientRecord]) -> Dict[str, Any]:
    """Aggregates plus a capped sample of rows; this is all the model gets to see."""
    stats = summarize(records)
    dpjp_counts: Dict[str, int] = {}
    for r in records:
        if r.dpjp:
            dpjp_counts[r.dpjp] = dpjp_counts.get(r.dpjp, 0) + 1

    door_to_doctor = average_minutes(records, "jam_datang", "jam_dokter")
    consult_response = average_minutes(records, "jam_konsul", "jam_respon_spesialis")

    rows = [
        {k: v for k, v in r.to_wire().items() if k not in ("id", "no")}
        for r in records[:MAX_ROWS_IN_PROMPT]
    ]
    return {
        "total_patients": stats.total,
        "priority_counts": priority_counts(records),
        "status_counts": disposition_counts(records),
        "patients_per_dpjp": dict(sorted(dpjp_counts.items(), key=lambda kv: kv[1], reverse=True)),
        "distinct_specialists": stats.specialists,
        "waiting_for_doctor": stats.waiting,
        "avg_minutes_arrival_to_doctor": None if door_to_doctor is None else round(door_to_doctor, 1),
        "avg_minutes_consult_to_specialist_response": None if consult_response is None else round(consult_response, 1),
        "arrivals_per_hour": dict(arrival_trend(records)),
        "rows_included": len(rows),
        "rows": rows,
    }


def _build_prompt(question: str, summary: Dict[str, Any]) -> str:
    return f"""
ROLE
You are a hospital quality analyst for an emergency department (IGD).

DATA
Field glossary: tanggal=visit date, noKib=medical record number, namaPasien=patient name,
prioritas=triage P1 (most urgent) .. P5, jamDatang=arrival, jamRespon=triage response,
jamDokter=seen by doctor, jamKonsul=consult requested, jamResponSpesialis=specialist response,
dpjp=attending physician, dokterSpesialis=specialist, ket=final status, ruangan=room, masalah=problem.
Times are HH:MM; "-" or empty means not recorded.

Data summary (JSON):
{json.dumps(summary, ensure_ascii=False)}

QUESTION
{question}

STRICT RULES
1) Use ONLY the data above. Do NOT invent numbers.
2) Answer in the language of the question.
3) Output MUST be STRICT JSON only: no markdown, no backticks, no surrounding text.

OUTPUT JSON SCHEMA (exact keys)
{{
  "answer": "clear explanation for hospital management",
  "chart_type": "bar" | "line" | "pie" | null,
  "chart_data": [{{"name": "string", "value": number}}],
  "chart_title": "string or null"
}}
Only include chart_data when a chart genuinely helps; otherwise use null and [].
""".strip()


def _extract_json_object(text: str) -> str:
    """
    If the model wraps JSON with extra text or ```json fences, pull out the first {...} block.
    """
    text = (text or "").strip()
    text = re.sub(r"^```(?:json)?\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\s*```$", "", text)
    if text.startswith("{") and text.endswith("}"):
        return text
    m = re.search(r"\{.*\}", text, flags=re.DOTALL)
    return m.group(0).strip() if m else text


def parse_analysis(raw: str) -> AnalysisResult:
    text = _extract_json_object(raw)
    try:
        return AnalysisResult.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("Gemini answer was not valid JSON, showing it as plain text")
        return AnalysisResult(answer=(raw or "").strip() or "No answer was returned; please retry.")


def analyze_data(
    records: Sequence[PatientRecord],
    question: str,
    model_name: str = DEFAULT_MODEL,
) -> AnalysisResult:
    if not question or not question.strip():
        raise ValueError("Question must not be empty")

    genai.configure(api_key=_get_api_key())

    generation_config = {
        "temperature": 0.2,
        "top_p": 0.9,
        "max_output_tokens": 1500,
    }
    model = genai.GenerativeModel(model_name, generation_config=generation_config)

    prompt = _build_prompt(question.strip(), build_data_summary(list(records)))
    logger.info("Asking %s about %d records", model_name, len(records))

    resp = model.generate_content(prompt)
    return parse_analysis(resp.text or "")

import json
from types import SimpleNamespace

import pytest

from agent import gemini_analyst
from agent.gemini_analyst import analyze_data, build_data_summary, parse_analysis


def test_parse_fenced_json():
    raw = "```json\n" + json.dumps({
        "answer": "Most patients are P1.",
        "chart_type": "bar",
        "chart_data": [{"name": "P1", "value": 2}, {"name": "P2", "value": 1}],
        "chart_title": "Patients per priority",
    }) + "\n```"
    result = parse_analysis(raw)
    assert result.answer == "Most patients are P1."
    assert result.has_chart
    assert [p.name for p in result.chart_data] == ["P1", "P2"]
    assert result.x_axis_key == "name"


def test_parse_json_with_surrounding_text():
    result = parse_analysis('Here you go: {"answer": "ok", "chart_type": null, "chart_data": null}')
    assert result.answer == "ok"
    assert result.chart_data == []
    assert not result.has_chart


def test_parse_plain_text_falls_back_to_answer():
    result = parse_analysis("Sorry, the data does not say.")
    assert result.answer == "Sorry, the data does not say."
    assert not result.has_chart


def test_parse_empty_answer():
    assert parse_analysis("").answer == "No answer was returned; please retry."


def test_summary_aggregates(five_patients):
    summary = build_data_summary(five_patients)
    assert summary["total_patients"] == 5
    assert summary["priority_counts"]["P1"] == 2
    assert summary["waiting_for_doctor"] == 2
    assert summary["rows_included"] == 5
    assert "id" not in summary["rows"][0]
    assert summary["rows"][0]["namaPasien"] == "Siti Aminah"


def test_summary_caps_rows(five_patients, monkeypatch):
    monkeypatch.setattr(gemini_analyst, "MAX_ROWS_IN_PROMPT", 2)
    summary = build_data_summary(five_patients)
    assert summary["rows_included"] == 2
    assert summary["total_patients"] == 5


def test_empty_question_is_rejected(five_patients):
    with pytest.raises(ValueError):
        analyze_data(five_patients, "   ")


def test_missing_api_key(five_patients, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="GEMINI_API_KEY"):
        analyze_data(five_patients, "How many P1?")


def test_analyze_data_calls_model(five_patients, monkeypatch):
    seen = {}

    class FakeModel:
        def __init__(self, name, generation_config=None):
            seen["model"] = name

        def generate_content(self, prompt):
            seen["prompt"] = prompt
            return SimpleNamespace(text='{"answer": "Two P1 patients.", "chart_type": "pie", '
                                        '"chart_data": [{"name": "P1", "value": 2}], "chart_title": "P1"}')

    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(gemini_analyst.genai, "configure", lambda **kw: seen.update(kw))
    monkeypatch.setattr(gemini_analyst.genai, "GenerativeModel", FakeModel)

    result = analyze_data(five_patients, "  How many P1?  ", model_name="gemini-test")

    assert result.answer == "Two P1 patients."
    assert result.chart_type == "pie"
    assert seen["api_key"] == "test-key"
    assert seen["model"] == "gemini-test"
    assert "How many P1?" in seen["prompt"]
    assert '"total_patients": 5' in seen["prompt"]

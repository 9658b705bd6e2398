"""Tests for prompt building."""

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from health_insights.graph.state import (
    CaseSnapshot,
    FinalReport,
    PatientHistory,
    ReportStatus,
    SpecialistAnalysis,
    SpecialistReport,
    Specialty,
)
from health_insights.prompts import prompts


def test_format_history_blank_uses_sentinel() -> None:
    assert prompts.format_history(PatientHistory()) == prompts.NO_HISTORY
    assert prompts.format_history(PatientHistory(allergies="   ")) == prompts.NO_HISTORY


def test_format_history_lists_every_field_with_na() -> None:
    text = prompts.format_history(PatientHistory(allergies="Penicillin"))
    lines = text.splitlines()
    assert len(lines) == 6
    assert lines[0] == "- **Past Diagnoses:** N/A"
    assert "- **Allergies:** Penicillin" in lines
    assert lines[-1] == "- **Lifestyle Factors:** N/A"


def test_specialist_prompt_names_specialty_and_json_keys() -> None:
    prompt = prompts.build_specialist_prompt(
        Specialty.CARDIOLOGIST,
        "BP 150/95, LDL 190 mg/dL",
        prompts.NO_HISTORY,
    )
    assert "world-class Cardiologist" in prompt
    assert "Focus ONLY on aspects relevant to Cardiologist." in prompt
    for key in ('"summary"', '"keyFindings"', '"potentialConditions"', '"recommendations"'):
        assert key in prompt
    assert "BP 150/95, LDL 190 mg/dL" in prompt
    assert prompts.NO_HISTORY in prompt
    # escaped template braces survive as literal JSON braces
    assert "{\n" in prompt


def test_every_specialty_has_a_focus() -> None:
    assert set(prompts.SPECIALIST_FOCUS) == set(Specialty)


def test_synthesis_prompt_only_embeds_given_analyses() -> None:
    analysis = SpecialistAnalysis(
        summary="Elevated cardiovascular risk.",
        key_findings=["LDL 190 mg/dL"],
        potential_conditions=["Hyperlipidemia"],
        recommendations=["Start statin therapy"],
    )
    prompt = prompts.build_synthesis_prompt(
        {"Cardiologist": analysis},
        "LDL 190 mg/dL",
        prompts.NO_HISTORY,
    )
    assert "**Cardiologist Report:**" in prompt
    assert "Pulmonologist Report" not in prompt
    assert json.dumps(analysis.model_dump(by_alias=True), indent=2) in prompt
    assert '"keyFindings"' in prompt
    assert "top 3 most critical health issues" in prompt


def test_synthesis_prompt_without_analyses() -> None:
    prompt = prompts.build_synthesis_prompt({}, "report", prompts.NO_HISTORY)
    assert prompts.NO_SPECIALIST_REPORTS in prompt


def test_chat_context_contains_case_material() -> None:
    analysis = SpecialistAnalysis(summary="Mild anemia.", key_findings=["Hb 10.9 g/dL"])
    snapshot = CaseSnapshot(session_id="s1", case_id="c1", report_text="CBC: Hb 10.9 g/dL")
    specialists = dict(snapshot.specialists)
    specialists["Hematologist"] = SpecialistReport(
        specialty=Specialty.HEMATOLOGIST,
        status=ReportStatus.COMPLETE,
        analysis=analysis,
    )
    snapshot = snapshot.model_copy(
        update={
            "specialists": specialists,
            "final_report": FinalReport(summary="## Final\nIron deficiency.", status=ReportStatus.COMPLETE),
        }
    )

    context = prompts.build_chat_context(snapshot)
    assert "CBC: Hb 10.9 g/dL" in context
    assert "Iron deficiency." in context
    assert "Hematologist:" in context
    assert "Cardiologist:" not in context

    instruction = prompts.build_chat_instruction(context)
    assert context in instruction
    assert "Health Insights assistant" in instruction

"""Prompt templates and the pure functions that fill them."""

import json
from typing import Mapping

from health_insights.graph.state import (
    CaseSnapshot,
    PatientHistory,
    ReportStatus,
    SpecialistAnalysis,
    Specialty,
)

NO_HISTORY = "No patient history provided."

_HISTORY_FIELDS: tuple[tuple[str, str], ...] = (
    ("past_diagnoses", "Past Diagnoses"),
    ("chronic_conditions", "Chronic Conditions"),
    ("allergies", "Allergies"),
    ("current_medications", "Current Medications"),
    ("family_history", "Family History"),
    ("lifestyle_factors", "Lifestyle Factors"),
)

SPECIALIST_FOCUS: dict[Specialty, str] = {
    Specialty.CARDIOLOGIST: "the heart and blood vessels: rhythm, blood pressure, lipids, cardiac markers and ischemic risk",
    Specialty.PULMONOLOGIST: "the lungs and airways: breathing symptoms, oxygenation, spirometry and chest findings",
    Specialty.NEUROLOGIST: "the brain, spinal cord and nerves: headaches, deficits, seizures and cognitive changes",
    Specialty.GASTROENTEROLOGIST: "the digestive tract, liver and pancreas: GI symptoms, liver enzymes and bowel findings",
    Specialty.ENDOCRINOLOGIST: "hormones and glands: glucose control, thyroid, adrenal and metabolic markers",
    Specialty.IMMUNOLOGIST: "the immune system: allergies, autoimmunity, inflammation and infection susceptibility",
    Specialty.NEPHROLOGIST: "the kidneys: creatinine, eGFR, electrolytes, urinalysis and fluid balance",
    Specialty.HEMATOLOGIST: "blood and blood-forming organs: blood counts, coagulation, anemia and iron studies",
    Specialty.ONCOLOGIST: "cancer and tumors: masses, tumor markers, suspicious lesions and cancer risk factors",
    Specialty.RADIOLOGIST: "medical imaging: describe what any attached image or imaging report shows",
    Specialty.PSYCHOLOGIST: "mental and emotional health: mood, stress, sleep, cognition and behavioral factors",
}

SPECIALIST_PROMPT = """You are a world-class {specialty}. Your task is to analyze the following medical data from your specific field of expertise, {focus}. Consider all available information, including the current report, attached images (if any), and the patient's history.

Focus ONLY on aspects relevant to {specialty}.

Provide your analysis as a single JSON object with exactly four keys: "summary", "keyFindings", "potentialConditions", and "recommendations". "summary" is a short string; each of the other keys has an array of strings as its value.

Example response format:
{{
  "summary": "One or two sentence overview from a {specialty} perspective.",
  "keyFindings": ["Finding 1", "Finding 2"],
  "potentialConditions": ["Condition 1", "Condition 2"],
  "recommendations": ["Recommendation 1", "Recommendation 2"]
}}

Do not include any other text or markdown formatting outside of the JSON object.

**Patient History:**
---
{history}
---

**Medical Report:**
---
{report}
---
"""

SYNTHESIS_PROMPT = """You are the lead physician of a Multidisciplinary Team (MDT). You have received analyses from various specialists regarding a patient's medical report and history. Your task is to synthesize these reports into a single, integrated final diagnosis.

**Instructions:**
1. **Review the patient's history and the original report.**
2. **Review all specialist reports** provided below. Note that they are in JSON format.
3. **Synthesize the findings** into a cohesive summary, taking the full patient context into account.
4. **Identify and prioritize the top 3 most critical health issues.** For each issue, provide supporting evidence from the specialist reports and patient history.
5. **Provide an overall assessment and a coordinated action plan.**

Format your response using markdown.

**Patient History:**
---
{history}
---

**Original Medical Report:**
---
{report}
---

**Specialist Analyses (JSON format):**
---
{specialist_reports}
---
"""

NO_SPECIALIST_REPORTS = "No specialist analyses are available for this case."

CHAT_INSTRUCTION = """You are the Health Insights assistant. A multidisciplinary team of AI specialists has already reviewed the case below. Answer the user's questions about this case clearly and concisely, grounded in the case context. Explain medical terms in plain language. You do not replace a physician: for urgent or worsening symptoms, advise the user to seek medical care.

**Case Context:**
{context}
"""

CHAT_CONTEXT = """**Patient History:**
{history}

**Original Report:**
{report}

**Final Diagnosis:**
{summary}

**Specialist Findings:**
{findings}
"""


def format_history(history: PatientHistory) -> str:
    if history.is_blank():
        return NO_HISTORY
    lines = []
    for field_name, label in _HISTORY_FIELDS:
        value = str(getattr(history, field_name, "") or "").strip()
        lines.append(f"- **{label}:** {value or 'N/A'}")
    return "\n".join(lines)


def build_specialist_prompt(specialty: Specialty, report_text: str, formatted_history: str) -> str:
    return SPECIALIST_PROMPT.format(
        specialty=specialty.value,
        focus=SPECIALIST_FOCUS[specialty],
        history=formatted_history,
        report=report_text,
    )


def _analysis_json(analysis: SpecialistAnalysis) -> str:
    return json.dumps(analysis.model_dump(by_alias=True), indent=2, ensure_ascii=False)


def build_synthesis_prompt(
    successful_analyses: Mapping[str, SpecialistAnalysis],
    report_text: str,
    formatted_history: str,
) -> str:
    blocks = [
        f"**{specialty} Report:**\n{_analysis_json(analysis)}"
        for specialty, analysis in successful_analyses.items()
    ]
    return SYNTHESIS_PROMPT.format(
        history=formatted_history,
        report=report_text,
        specialist_reports="\n\n".join(blocks) or NO_SPECIALIST_REPORTS,
    )


def build_chat_context(snapshot: CaseSnapshot) -> str:
    findings = [
        f"{name}: {json.dumps(report.analysis.model_dump(by_alias=True), ensure_ascii=False)}"
        for name, report in snapshot.specialists.items()
        if report.status == ReportStatus.COMPLETE and report.analysis is not None
    ]
    return CHAT_CONTEXT.format(
        history=json.dumps(snapshot.history.model_dump(), ensure_ascii=False),
        report=snapshot.report_text,
        summary=snapshot.final_report.summary,
        findings="\n".join(findings) or NO_SPECIALIST_REPORTS,
    ).strip()


def build_chat_instruction(context: str) -> str:
    return CHAT_INSTRUCTION.format(context=context)

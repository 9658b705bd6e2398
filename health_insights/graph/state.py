from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from health_insights.utils.uploads import normalize_image_base64


class Specialty(str, Enum):
    CARDIOLOGIST = "Cardiologist"
    PULMONOLOGIST = "Pulmonologist"
    NEUROLOGIST = "Neurologist"
    GASTROENTEROLOGIST = "Gastroenterologist"
    ENDOCRINOLOGIST = "Endocrinologist"
    IMMUNOLOGIST = "Immunologist"
    NEPHROLOGIST = "Nephrologist"
    HEMATOLOGIST = "Hematologist"
    ONCOLOGIST = "Oncologist"
    RADIOLOGIST = "Radiologist"
    PSYCHOLOGIST = "Psychologist"


# Fixed dispatch panel, in display order.
SPECIALIST_PANEL: tuple[tuple[Specialty, str], ...] = (
    (Specialty.CARDIOLOGIST, "Analyzes heart and blood vessel conditions."),
    (Specialty.PULMONOLOGIST, "Focuses on the respiratory system."),
    (Specialty.NEUROLOGIST, "Diagnoses and treats nervous system disorders."),
    (Specialty.GASTROENTEROLOGIST, "Specializes in the digestive system."),
    (Specialty.ENDOCRINOLOGIST, "Deals with hormones and glands."),
    (Specialty.IMMUNOLOGIST, "Manages immune system disorders."),
    (Specialty.NEPHROLOGIST, "Focuses on kidney health."),
    (Specialty.HEMATOLOGIST, "Studies blood, and blood-forming organs."),
    (Specialty.ONCOLOGIST, "Treats cancer and tumors."),
    (Specialty.RADIOLOGIST, "Interprets medical images."),
    (Specialty.PSYCHOLOGIST, "Assesses mental and emotional health."),
)
SPECIALTIES: tuple[Specialty, ...] = tuple(specialty for specialty, _ in SPECIALIST_PANEL)


class ReportStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def settled(self) -> bool:
        return self in (ReportStatus.COMPLETE, ReportStatus.ERROR)


class CasePhase(str, Enum):
    NOT_STARTED = "not_started"
    DISPATCHING = "dispatching"
    AWAITING_SPECIALISTS = "awaiting_specialists"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class PatientHistory(BaseModel):
    past_diagnoses: str = Field(default="", description="Previously diagnosed conditions.")
    chronic_conditions: str = Field(default="", description="Long-term conditions under management.")
    allergies: str = Field(default="", description="Known drug, food or environmental allergies.")
    current_medications: str = Field(default="", description="Medications currently taken, with dosage if known.")
    family_history: str = Field(default="", description="Relevant conditions in close relatives.")
    lifestyle_factors: str = Field(default="", description="Smoking, alcohol, exercise, diet, occupation.")

    def is_blank(self) -> bool:
        return all(not str(value).strip() for value in self.model_dump().values())


class ImageInput(BaseModel):
    base64: str
    mime_type: str = "image/jpeg"

    @field_validator("base64", mode="before")
    @classmethod
    def _strip_data_url(cls, value: Any) -> Any:
        return normalize_image_base64(value) if isinstance(value, str) else value

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


class SpecialistAnalysis(BaseModel):
    """Structured output of one specialist call (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    summary: str = Field(default="", description="One or two sentence overview from this specialty.")
    key_findings: list[str] = Field(default_factory=list)
    potential_conditions: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _coerce_summary(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, list):
            return " ".join(str(v).strip() for v in value if str(v).strip())
        return value

    @field_validator("key_findings", "potential_conditions", "recommendations", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value.strip()] if value.strip() else []
        return value


class SpecialistReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    specialty: Specialty
    status: ReportStatus = ReportStatus.PENDING
    analysis: Optional[SpecialistAnalysis] = None
    error: Optional[str] = None


class FinalReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str = ""
    status: ReportStatus = ReportStatus.PENDING


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "model"]
    text: str
    error: bool = False


def _initial_reports() -> dict[str, SpecialistReport]:
    return {specialty.value: SpecialistReport(specialty=specialty) for specialty in SPECIALTIES}


class CaseSnapshot(BaseModel):
    """Everything a client needs to render one session's current case."""

    session_id: str
    case_id: str = ""
    phase: CasePhase = CasePhase.NOT_STARTED
    report_text: str = ""
    image_mime_type: Optional[str] = None
    history: PatientHistory = Field(default_factory=PatientHistory)
    specialists: dict[str, SpecialistReport] = Field(default_factory=_initial_reports)
    final_report: FinalReport = Field(default_factory=FinalReport)
    chat: list[ChatMessage] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    def settled_count(self) -> int:
        return sum(1 for report in self.specialists.values() if report.status.settled)

    def all_settled(self) -> bool:
        return self.settled_count() == len(self.specialists)

    def completed_analyses(self) -> dict[str, SpecialistAnalysis]:
        return {
            name: report.analysis
            for name, report in self.specialists.items()
            if report.status == ReportStatus.COMPLETE and report.analysis is not None
        }


# ── LangGraph schemas ───────────────────────────────────────────────
def merge_analyses(left: dict[str, Any] | None, right: dict[str, Any] | None) -> dict[str, Any]:
    """Per-specialty merge so concurrent specialist writes never clobber each other."""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


class CaseGraphState(TypedDict, total=False):
    session_id: str
    case_id: str
    report_text: str
    history: dict
    image: dict | None
    specialties: list[str]

    # specialty value -> camelCase analysis dict, or the error string
    analyses: Annotated[dict[str, Any], merge_analyses]

    final_report: str
    final_status: str


class SpecialistTask(TypedDict):
    session_id: str
    case_id: str
    specialty: str
    report_text: str
    history: dict
    image: dict | None

"""Case data model and the specialist fan-out graph.

The graph itself lives in `health_insights.graph.builder`; import it from
there so that the data model stays importable without the node wiring.
"""

from health_insights.graph.state import (
    SPECIALIST_PANEL,
    SPECIALTIES,
    CaseGraphState,
    CasePhase,
    CaseSnapshot,
    ChatMessage,
    FinalReport,
    ImageInput,
    PatientHistory,
    ReportStatus,
    SpecialistAnalysis,
    SpecialistReport,
    SpecialistTask,
    Specialty,
)

__all__ = [
    "SPECIALIST_PANEL",
    "SPECIALTIES",
    "CaseGraphState",
    "CasePhase",
    "CaseSnapshot",
    "ChatMessage",
    "FinalReport",
    "ImageInput",
    "PatientHistory",
    "ReportStatus",
    "SpecialistAnalysis",
    "SpecialistReport",
    "SpecialistTask",
    "Specialty",
]

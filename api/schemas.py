from pydantic import BaseModel, Field

from health_insights.graph.state import CaseSnapshot


class SpecialistInfo(BaseModel):
    name: str
    description: str


class SpecialistPanelResponse(BaseModel):
    specialists: list[SpecialistInfo]


class CaseResponse(BaseModel):
    session_id: str
    case_id: str
    snapshot: CaseSnapshot
    report_download_url: str | None = None


class SessionResetResponse(BaseModel):
    session_id: str
    removed: bool = Field(description="False when the session had no case.")

"""Case submission: validation, store bookkeeping and the graph run."""

from __future__ import annotations

import uuid
from typing import Optional

from health_insights.config.logger import get_logger
from health_insights.graph.builder import get_graph_app
from health_insights.graph.state import SPECIALTIES, CaseSnapshot, ImageInput, PatientHistory
from health_insights.runtime.progress import CaseFailed, CaseStarted, apply_event, begin_case, get_case

logger = get_logger(__name__)

EMPTY_SUBMISSION_MESSAGE = "Please provide a medical report by pasting text or uploading a file."


class SubmissionError(ValueError):
    """Rejected locally before any remote call."""


def validate_submission(report_text: str, image: Optional[ImageInput]) -> None:
    has_image = image is not None and bool(image.base64)
    if not (report_text or "").strip() and not has_image:
        raise SubmissionError(EMPTY_SUBMISSION_MESSAGE)


def new_case_id() -> str:
    return uuid.uuid4().hex[:8]


async def run_case(
    session_id: str,
    report_text: str,
    history: PatientHistory | None = None,
    image: ImageInput | None = None,
    case_id: str | None = None,
) -> CaseSnapshot | None:
    """Run one case end to end.

    Returns the session's final snapshot, or None when a newer case of the
    same session replaced this one before it finished.
    """
    validate_submission(report_text, image)
    history = history or PatientHistory()
    case_id = (case_id or "").strip() or new_case_id()

    await begin_case(
        session_id,
        CaseStarted(
            case_id=case_id,
            report_text=report_text,
            history=history,
            image_mime_type=image.mime_type if image else None,
        ),
    )
    logger.info(
        "[run_case] started session=%s case=%s text_len=%s has_image=%s",
        session_id,
        case_id,
        len(report_text or ""),
        image is not None,
    )

    initial_state = {
        "session_id": session_id,
        "case_id": case_id,
        "report_text": report_text,
        "history": history.model_dump(),
        "image": image.model_dump() if image else None,
        "specialties": [specialty.value for specialty in SPECIALTIES],
        "analyses": {},
        "final_report": "",
        "final_status": "",
    }
    try:
        await get_graph_app().ainvoke(initial_state)
    except Exception as exc:
        logger.exception("[run_case] graph failed case=%s", case_id)
        await apply_event(
            session_id,
            CaseFailed(case_id=case_id, error=str(exc).strip() or exc.__class__.__name__),
        )

    snapshot = await get_case(session_id)
    if snapshot is None or snapshot.case_id != case_id:
        logger.info("[run_case] case=%s superseded in session=%s", case_id, session_id)
        return None
    logger.info(
        "[run_case] finished case=%s final=%s",
        case_id,
        snapshot.final_report.status.value,
    )
    return snapshot

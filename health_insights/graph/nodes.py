from typing import Any, Literal

from langgraph.types import Command, Send

from health_insights.agents.specialists import run_specialist_analysis
from health_insights.agents.synthesis import SynthesisFailure, run_synthesis
from health_insights.config.logger import get_logger, log_stage
from health_insights.graph.state import (
    CaseGraphState,
    ImageInput,
    PatientHistory,
    SpecialistAnalysis,
    SpecialistTask,
    Specialty,
)
from health_insights.runtime.progress import (
    CaseStateError,
    DispatchCompleted,
    DispatchStarted,
    SpecialistSettled,
    SynthesisSettled,
    SynthesisStarted,
    apply_event,
    is_current,
)

logger = get_logger(__name__)


def successful_analyses(analyses: dict[str, Any]) -> dict[str, SpecialistAnalysis]:
    """Specialties whose call produced an analysis; error strings are left out."""
    return {
        specialty: SpecialistAnalysis.model_validate(payload)
        for specialty, payload in analyses.items()
        if isinstance(payload, dict)
    }


# ── Dispatch ────────────────────────────────────────────────────────
async def dispatch_node(state: CaseGraphState) -> Command[Literal["specialist", "synthesize"]]:
    """Mark every specialist loading and fan out one task per specialty."""
    session_id, case_id = state["session_id"], state["case_id"]
    specialties = [Specialty(value) for value in state.get("specialties", [])]
    logger.info("[dispatch] enter case=%s specialists=%s", case_id, len(specialties))

    await apply_event(session_id, DispatchStarted(case_id=case_id, specialties=specialties))
    sends = [
        Send(
            "specialist",
            SpecialistTask(
                session_id=session_id,
                case_id=case_id,
                specialty=specialty.value,
                report_text=state.get("report_text", ""),
                history=state.get("history", {}),
                image=state.get("image"),
            ),
        )
        for specialty in specialties
    ]
    await apply_event(session_id, DispatchCompleted(case_id=case_id))

    if not sends:
        return Command(goto="synthesize", update={"analyses": {}})
    return Command(goto=sends)


# ── Specialist ──────────────────────────────────────────────────────
async def specialist_node(task: SpecialistTask) -> dict:
    specialty = Specialty(task["specialty"])
    history = PatientHistory.model_validate(task.get("history") or {})
    image = ImageInput.model_validate(task["image"]) if task.get("image") else None

    result = await run_specialist_analysis(specialty, task["report_text"], history, image)
    log_stage(logger, f"specialist.{specialty.value}", result)

    if isinstance(result, SpecialistAnalysis):
        event = SpecialistSettled(case_id=task["case_id"], specialty=specialty, analysis=result)
        payload: Any = result.model_dump(by_alias=True)
    else:
        event = SpecialistSettled(case_id=task["case_id"], specialty=specialty, error=result)
        payload = result
    await apply_event(task["session_id"], event)
    return {"analyses": {specialty.value: payload}}


# ── Synthesize ──────────────────────────────────────────────────────
async def synthesize_node(state: CaseGraphState) -> dict:
    """Runs once every specialist task has settled."""
    session_id, case_id = state["session_id"], state["case_id"]
    analyses = state.get("analyses") or {}
    expected = len(state.get("specialties", []))
    if len(analyses) != expected:
        raise CaseStateError(f"synthesis reached with {len(analyses)}/{expected} specialists settled")

    if not await is_current(session_id, case_id):
        logger.info("[synthesize] skip superseded case=%s", case_id)
        return {"final_status": "superseded"}

    successful = successful_analyses(analyses)
    logger.info(
        "[synthesize] enter case=%s successful=%s failed=%s",
        case_id,
        len(successful),
        expected - len(successful),
    )
    await apply_event(session_id, SynthesisStarted(case_id=case_id))

    history = PatientHistory.model_validate(state.get("history") or {})
    summary = await run_synthesis(successful, state.get("report_text", ""), history)
    ok = not isinstance(summary, SynthesisFailure)
    log_stage(logger, "synthesize", summary)

    await apply_event(session_id, SynthesisSettled(case_id=case_id, summary=str(summary), ok=ok))
    logger.info("[synthesize] exit case=%s ok=%s", case_id, ok)
    return {"final_report": str(summary), "final_status": "complete" if ok else "error"}

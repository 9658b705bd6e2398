"""Per-session case state: events, the reducer, and the subscriber fan-out.

Every state change is a discrete event applied by `reduce`. Events carry the
case id they belong to; `apply_event` drops any event whose case is no longer
the session's current one, so late completions from a superseded case never
reach the newer case.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from health_insights.config.logger import get_logger
from health_insights.graph.state import (
    CasePhase,
    CaseSnapshot,
    ChatMessage,
    FinalReport,
    PatientHistory,
    ReportStatus,
    SpecialistAnalysis,
    SpecialistReport,
    Specialty,
)

logger = get_logger(__name__)


class CaseStateError(RuntimeError):
    """An event that would break the case lifecycle."""


# ── Events ──────────────────────────────────────────────────────────
class _Event(BaseModel):
    case_id: str


class CaseStarted(_Event):
    kind: Literal["case_started"] = "case_started"
    report_text: str = ""
    history: PatientHistory = Field(default_factory=PatientHistory)
    image_mime_type: Optional[str] = None


class DispatchStarted(_Event):
    kind: Literal["dispatch_started"] = "dispatch_started"
    specialties: list[Specialty]


class DispatchCompleted(_Event):
    kind: Literal["dispatch_completed"] = "dispatch_completed"


class SpecialistSettled(_Event):
    kind: Literal["specialist_settled"] = "specialist_settled"
    specialty: Specialty
    analysis: Optional[SpecialistAnalysis] = None
    error: Optional[str] = None


class SynthesisStarted(_Event):
    kind: Literal["synthesis_started"] = "synthesis_started"


class SynthesisSettled(_Event):
    kind: Literal["synthesis_settled"] = "synthesis_settled"
    summary: str
    ok: bool


class CaseFailed(_Event):
    kind: Literal["case_failed"] = "case_failed"
    error: str


class ChatOpened(_Event):
    kind: Literal["chat_opened"] = "chat_opened"
    greeting: str


class ChatUserMessage(_Event):
    kind: Literal["chat_user_message"] = "chat_user_message"
    text: str


class ChatChunk(_Event):
    kind: Literal["chat_chunk"] = "chat_chunk"
    text: str


class ChatFailed(_Event):
    kind: Literal["chat_failed"] = "chat_failed"
    text: str


# ── Reducer ─────────────────────────────────────────────────────────
def _replace_report(snapshot: CaseSnapshot, report: SpecialistReport) -> dict[str, SpecialistReport]:
    specialists = dict(snapshot.specialists)
    specialists[report.specialty.value] = report
    return specialists


def _start_case(snapshot: CaseSnapshot, event: CaseStarted) -> CaseSnapshot:
    return CaseSnapshot(
        session_id=snapshot.session_id,
        case_id=event.case_id,
        report_text=event.report_text,
        history=event.history,
        image_mime_type=event.image_mime_type,
    )


def _dispatch(snapshot: CaseSnapshot, event: DispatchStarted) -> CaseSnapshot:
    if snapshot.phase != CasePhase.NOT_STARTED:
        raise CaseStateError(f"case {event.case_id} already dispatched (phase={snapshot.phase.value})")
    specialists = dict(snapshot.specialists)
    for specialty in event.specialties:
        current = specialists.get(specialty.value)
        if current is not None and current.status != ReportStatus.PENDING:
            raise CaseStateError(f"{specialty.value} is {current.status.value}, expected pending")
        specialists[specialty.value] = SpecialistReport(specialty=specialty, status=ReportStatus.LOADING)
    return snapshot.model_copy(update={"phase": CasePhase.DISPATCHING, "specialists": specialists})


def _settle_specialist(snapshot: CaseSnapshot, event: SpecialistSettled) -> CaseSnapshot:
    current = snapshot.specialists.get(event.specialty.value)
    if current is None or current.status != ReportStatus.LOADING:
        status = current.status.value if current else "missing"
        raise CaseStateError(f"{event.specialty.value} is {status}, expected loading")
    if event.analysis is not None:
        report = SpecialistReport(
            specialty=event.specialty,
            status=ReportStatus.COMPLETE,
            analysis=event.analysis,
        )
    else:
        report = SpecialistReport(
            specialty=event.specialty,
            status=ReportStatus.ERROR,
            error=event.error or f"The {event.specialty.value} agent returned no analysis.",
        )
    return snapshot.model_copy(update={"specialists": _replace_report(snapshot, report)})


def _start_synthesis(snapshot: CaseSnapshot, event: SynthesisStarted) -> CaseSnapshot:
    if not snapshot.all_settled():
        raise CaseStateError(
            f"synthesis requested with {snapshot.settled_count()}/{len(snapshot.specialists)} "
            "specialists settled"
        )
    return snapshot.model_copy(
        update={
            "phase": CasePhase.SYNTHESIZING,
            "final_report": FinalReport(status=ReportStatus.LOADING),
        }
    )


def _settle_synthesis(snapshot: CaseSnapshot, event: SynthesisSettled) -> CaseSnapshot:
    if snapshot.final_report.status != ReportStatus.LOADING:
        raise CaseStateError(f"final report is {snapshot.final_report.status.value}, expected loading")
    status = ReportStatus.COMPLETE if event.ok else ReportStatus.ERROR
    return snapshot.model_copy(
        update={
            "phase": CasePhase.DONE,
            "final_report": FinalReport(summary=event.summary, status=status),
        }
    )


def _fail_case(snapshot: CaseSnapshot, event: CaseFailed) -> CaseSnapshot:
    specialists = {
        name: (
            SpecialistReport(specialty=report.specialty, status=ReportStatus.ERROR, error=event.error)
            if report.status == ReportStatus.LOADING
            else report
        )
        for name, report in snapshot.specialists.items()
    }
    return snapshot.model_copy(
        update={
            "phase": CasePhase.DONE,
            "specialists": specialists,
            "final_report": FinalReport(
                summary=f"Failed to generate final report: {event.error}",
                status=ReportStatus.ERROR,
            ),
        }
    )


def _append_chunk(snapshot: CaseSnapshot, event: ChatChunk) -> CaseSnapshot:
    chat = list(snapshot.chat)
    if chat and chat[-1].role == "model" and not chat[-1].error and len(chat) > 1 and chat[-2].role == "user":
        chat[-1] = ChatMessage(role="model", text=chat[-1].text + event.text)
    else:
        chat.append(ChatMessage(role="model", text=event.text))
    return snapshot.model_copy(update={"chat": chat})


def reduce(snapshot: CaseSnapshot, event: Any) -> CaseSnapshot:
    """Pure state transition: returns a new snapshot, never mutates the input."""
    if isinstance(event, CaseStarted):
        updated = _start_case(snapshot, event)
    elif event.case_id != snapshot.case_id:
        raise CaseStateError(f"event for case {event.case_id} applied to case {snapshot.case_id}")
    elif isinstance(event, DispatchStarted):
        updated = _dispatch(snapshot, event)
    elif isinstance(event, DispatchCompleted):
        updated = snapshot.model_copy(update={"phase": CasePhase.AWAITING_SPECIALISTS})
    elif isinstance(event, SpecialistSettled):
        updated = _settle_specialist(snapshot, event)
    elif isinstance(event, SynthesisStarted):
        updated = _start_synthesis(snapshot, event)
    elif isinstance(event, SynthesisSettled):
        updated = _settle_synthesis(snapshot, event)
    elif isinstance(event, CaseFailed):
        updated = _fail_case(snapshot, event)
    elif isinstance(event, ChatOpened):
        updated = snapshot.model_copy(
            update={"chat": [*snapshot.chat, ChatMessage(role="model", text=event.greeting)]}
        )
    elif isinstance(event, ChatUserMessage):
        updated = snapshot.model_copy(
            update={"chat": [*snapshot.chat, ChatMessage(role="user", text=event.text)]}
        )
    elif isinstance(event, ChatChunk):
        updated = _append_chunk(snapshot, event)
    elif isinstance(event, ChatFailed):
        updated = snapshot.model_copy(
            update={"chat": [*snapshot.chat, ChatMessage(role="model", text=event.text, error=True)]}
        )
    else:
        raise CaseStateError(f"unknown event {type(event).__name__}")
    return updated.model_copy(update={"updated_at": time.time()})


# ── Store ───────────────────────────────────────────────────────────
_SESSIONS: dict[str, CaseSnapshot] = {}
_SUBSCRIBERS: dict[str, set[asyncio.Queue]] = {}
_LOCK = asyncio.Lock()


def _event_payload(event: Any, snapshot: CaseSnapshot) -> dict[str, Any]:
    return {
        "event": event.model_dump(mode="json", by_alias=True),
        "snapshot": snapshot.model_dump(mode="json", by_alias=True),
    }


async def _broadcast(session_id: str, event: str, data: dict[str, Any]) -> None:
    async with _LOCK:
        queues = list(_SUBSCRIBERS.get(session_id, set()))
    if not queues:
        return
    packet = {"event": event, "data": data}
    for q in queues:
        q.put_nowait(packet)


async def begin_case(session_id: str, event: CaseStarted) -> CaseSnapshot:
    """Make `event.case_id` the session's current case, replacing any prior one."""
    async with _LOCK:
        previous = _SESSIONS.get(session_id) or CaseSnapshot(session_id=session_id)
        if previous.case_id == event.case_id:
            raise CaseStateError(f"case id {event.case_id} is already in use in session {session_id}")
        snapshot = reduce(previous, event)
        _SESSIONS[session_id] = snapshot
    if previous.case_id and previous.phase != CasePhase.DONE:
        logger.info(
            "[progress] session=%s case %s superseded by %s",
            session_id,
            previous.case_id,
            event.case_id,
        )
    await _broadcast(session_id, event.kind, _event_payload(event, snapshot))
    return snapshot


async def apply_event(session_id: str, event: Any) -> bool:
    """Apply an event to the session's current case; False when it is stale."""
    async with _LOCK:
        current = _SESSIONS.get(session_id)
        if current is None or current.case_id != event.case_id:
            stale = True
        else:
            stale = False
            snapshot = reduce(current, event)
            _SESSIONS[session_id] = snapshot
    if stale:
        logger.debug(
            "[progress] session=%s drop stale %s for case %s",
            session_id,
            event.kind,
            event.case_id,
        )
        return False
    await _broadcast(session_id, event.kind, _event_payload(event, snapshot))
    return True


async def get_case(session_id: str) -> CaseSnapshot | None:
    async with _LOCK:
        return _SESSIONS.get(session_id)


async def is_current(session_id: str, case_id: str) -> bool:
    async with _LOCK:
        snapshot = _SESSIONS.get(session_id)
        return snapshot is not None and snapshot.case_id == case_id


async def reset_session(session_id: str) -> bool:
    async with _LOCK:
        removed = _SESSIONS.pop(session_id, None)
    if removed is None:
        return False
    await _broadcast(session_id, "session_reset", {"session_id": session_id})
    return True


async def subscribe(session_id: str) -> asyncio.Queue:
    queue: asyncio.Queue = asyncio.Queue()
    async with _LOCK:
        _SUBSCRIBERS.setdefault(session_id, set()).add(queue)
    return queue


async def unsubscribe(session_id: str, queue: asyncio.Queue) -> None:
    async with _LOCK:
        queues = _SUBSCRIBERS.get(session_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            _SUBSCRIBERS.pop(session_id, None)


async def next_event(queue: asyncio.Queue, timeout: float = 15.0) -> dict[str, Any] | None:
    try:
        return await asyncio.wait_for(queue.get(), timeout=timeout)
    except asyncio.TimeoutError:
        return None


def to_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"

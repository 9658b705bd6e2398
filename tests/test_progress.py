import asyncio
import uuid

import pytest

from health_insights.graph.state import (
    SPECIALTIES,
    CasePhase,
    CaseSnapshot,
    ReportStatus,
    SpecialistAnalysis,
    Specialty,
)
from health_insights.runtime import progress
from health_insights.runtime.progress import (
    CaseFailed,
    CaseStarted,
    CaseStateError,
    ChatChunk,
    ChatOpened,
    ChatUserMessage,
    DispatchCompleted,
    DispatchStarted,
    SpecialistSettled,
    SynthesisSettled,
    SynthesisStarted,
)


def _run(coro):
    return asyncio.run(coro)


def _session() -> str:
    return f"session-{uuid.uuid4()}"


def _dispatched(case_id: str = "c1") -> CaseSnapshot:
    snapshot = progress.reduce(CaseSnapshot(session_id="s"), CaseStarted(case_id=case_id, report_text="r"))
    snapshot = progress.reduce(snapshot, DispatchStarted(case_id=case_id, specialties=list(SPECIALTIES)))
    return progress.reduce(snapshot, DispatchCompleted(case_id=case_id))


def _settle_all(snapshot: CaseSnapshot, case_id: str = "c1") -> CaseSnapshot:
    for specialty in SPECIALTIES:
        snapshot = progress.reduce(
            snapshot,
            SpecialistSettled(case_id=case_id, specialty=specialty, analysis=SpecialistAnalysis(summary="ok")),
        )
    return snapshot


def test_reduce_full_lifecycle() -> None:
    start = CaseSnapshot(session_id="s")
    snapshot = _dispatched()
    assert start.phase == CasePhase.NOT_STARTED
    assert snapshot.phase == CasePhase.AWAITING_SPECIALISTS
    assert all(r.status == ReportStatus.LOADING for r in snapshot.specialists.values())

    snapshot = _settle_all(snapshot)
    assert snapshot.all_settled()
    snapshot = progress.reduce(snapshot, SynthesisStarted(case_id="c1"))
    assert snapshot.phase == CasePhase.SYNTHESIZING
    assert snapshot.final_report.status == ReportStatus.LOADING

    snapshot = progress.reduce(snapshot, SynthesisSettled(case_id="c1", summary="## Report", ok=True))
    assert snapshot.phase == CasePhase.DONE
    assert snapshot.final_report.status == ReportStatus.COMPLETE
    assert snapshot.final_report.summary == "## Report"


def test_reduce_does_not_mutate_input() -> None:
    before = _dispatched()
    after = progress.reduce(
        before,
        SpecialistSettled(case_id="c1", specialty=Specialty.CARDIOLOGIST, error="boom"),
    )
    assert before.specialists["Cardiologist"].status == ReportStatus.LOADING
    assert after.specialists["Cardiologist"].status == ReportStatus.ERROR
    assert after.specialists["Cardiologist"].error == "boom"


def test_settling_twice_is_rejected() -> None:
    event = SpecialistSettled(case_id="c1", specialty=Specialty.ONCOLOGIST, error="x")
    snapshot = progress.reduce(_dispatched(), event)
    with pytest.raises(CaseStateError):
        progress.reduce(snapshot, event)


def test_synthesis_before_all_settled_is_rejected() -> None:
    snapshot = progress.reduce(
        _dispatched(),
        SpecialistSettled(case_id="c1", specialty=Specialty.CARDIOLOGIST, error="x"),
    )
    with pytest.raises(CaseStateError):
        progress.reduce(snapshot, SynthesisStarted(case_id="c1"))


def test_dispatch_twice_is_rejected() -> None:
    with pytest.raises(CaseStateError):
        progress.reduce(_dispatched(), DispatchStarted(case_id="c1", specialties=list(SPECIALTIES)))


def test_event_for_other_case_is_rejected_by_reducer() -> None:
    with pytest.raises(CaseStateError):
        progress.reduce(_dispatched("c1"), DispatchCompleted(case_id="c2"))


def test_synthesis_failure_status() -> None:
    snapshot = progress.reduce(_settle_all(_dispatched()), SynthesisStarted(case_id="c1"))
    snapshot = progress.reduce(
        snapshot,
        SynthesisSettled(case_id="c1", summary="An error occurred", ok=False),
    )
    assert snapshot.final_report.status == ReportStatus.ERROR
    assert snapshot.phase == CasePhase.DONE


def test_case_failed_settles_loading_specialists() -> None:
    snapshot = progress.reduce(_dispatched(), CaseFailed(case_id="c1", error="graph crashed"))
    assert snapshot.all_settled()
    assert snapshot.final_report.status == ReportStatus.ERROR
    assert snapshot.final_report.summary == "Failed to generate final report: graph crashed"


def test_chat_chunks_append_to_the_same_reply() -> None:
    snapshot = _dispatched()
    snapshot = progress.reduce(snapshot, ChatOpened(case_id="c1", greeting="Hello!"))
    snapshot = progress.reduce(snapshot, ChatUserMessage(case_id="c1", text="Why?"))
    snapshot = progress.reduce(snapshot, ChatChunk(case_id="c1", text="Because "))
    snapshot = progress.reduce(snapshot, ChatChunk(case_id="c1", text="of LDL."))
    assert [(m.role, m.text) for m in snapshot.chat] == [
        ("model", "Hello!"),
        ("user", "Why?"),
        ("model", "Because of LDL."),
    ]


def test_store_drops_stale_events() -> None:
    session_id = _session()

    async def scenario():
        await progress.begin_case(session_id, CaseStarted(case_id="old"))
        await progress.apply_event(session_id, DispatchStarted(case_id="old", specialties=list(SPECIALTIES)))
        await progress.begin_case(session_id, CaseStarted(case_id="new"))
        applied = await progress.apply_event(
            session_id,
            SpecialistSettled(case_id="old", specialty=Specialty.CARDIOLOGIST, error="late"),
        )
        return applied, await progress.get_case(session_id)

    applied, snapshot = _run(scenario())
    assert applied is False
    assert snapshot.case_id == "new"
    assert snapshot.phase == CasePhase.NOT_STARTED
    assert snapshot.specialists["Cardiologist"].status == ReportStatus.PENDING


def test_store_rejects_reused_case_id() -> None:
    session_id = _session()

    async def scenario():
        await progress.begin_case(session_id, CaseStarted(case_id="same"))
        await progress.begin_case(session_id, CaseStarted(case_id="same"))

    with pytest.raises(CaseStateError):
        _run(scenario())


def test_subscribers_receive_accepted_events() -> None:
    session_id = _session()

    async def scenario():
        queue = await progress.subscribe(session_id)
        await progress.begin_case(session_id, CaseStarted(case_id="c1"))
        await progress.apply_event(session_id, DispatchStarted(case_id="c1", specialties=list(SPECIALTIES)))
        await progress.apply_event(session_id, DispatchCompleted(case_id="stale"))
        first = await progress.next_event(queue, timeout=1)
        second = await progress.next_event(queue, timeout=1)
        third = await progress.next_event(queue, timeout=0.05)
        await progress.unsubscribe(session_id, queue)
        return first, second, third

    first, second, third = _run(scenario())
    assert first["event"] == "case_started"
    assert second["event"] == "dispatch_started"
    assert second["data"]["snapshot"]["phase"] == "dispatching"
    assert third is None


def test_reset_session() -> None:
    session_id = _session()

    async def scenario():
        await progress.begin_case(session_id, CaseStarted(case_id="c1"))
        removed = await progress.reset_session(session_id)
        return removed, await progress.get_case(session_id), await progress.reset_session(session_id)

    removed, snapshot, removed_again = _run(scenario())
    assert removed is True
    assert snapshot is None
    assert removed_again is False


def test_to_sse_format() -> None:
    assert progress.to_sse("ping", {"a": 1}) == 'event: ping\ndata: {"a": 1}\n\n'

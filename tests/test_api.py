import asyncio
from io import BytesIO

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

import api.main as main
from health_insights.agents.chat import ChatStreamEvent
from health_insights.config.settings import ConfigurationError
from health_insights.graph.state import CaseSnapshot, FinalReport, ReportStatus


def _run(coro):
    return asyncio.run(coro)


def _upload(content: bytes, filename: str, content_type: str) -> UploadFile:
    return UploadFile(
        file=BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


def _submit(**overrides):
    form = {
        "report_text": "",
        "past_diagnoses": "",
        "chronic_conditions": "",
        "allergies": "",
        "current_medications": "",
        "family_history": "",
        "lifestyle_factors": "",
        "session_id": "session-api",
        "report_file": None,
        "image": None,
    }
    form.update(overrides)
    return _run(main.submit_case(**form))


def _done_snapshot(status: ReportStatus = ReportStatus.COMPLETE) -> CaseSnapshot:
    return CaseSnapshot(
        session_id="session-api",
        case_id="ab12cd34",
        report_text="LDL 190",
        final_report=FinalReport(summary="## Final\nHyperlipidemia.", status=status),
    )


def _expect_status(coro, status_code: int) -> None:
    try:
        _run(coro)
    except Exception as exc:
        assert getattr(exc, "status_code", None) == status_code
    else:
        raise AssertionError(f"Expected HTTPException {status_code}")


def test_health() -> None:
    assert _run(main.health()) == {"ok": True}


def test_specialist_panel() -> None:
    panel = _run(main.list_specialists())
    names = [item.name for item in panel.specialists]
    assert len(names) == 11
    assert names[0] == "Cardiologist"
    assert "Radiologist" in names


def test_startup_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main.settings, "API_KEY", "")
    with pytest.raises(ConfigurationError):
        _run(main.startup())


def test_submit_case_appends_text_upload(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    async def _fake_run_case(session_id, report_text, history=None, image=None):
        captured.update(session_id=session_id, report_text=report_text, history=history, image=image)
        return _done_snapshot()

    monkeypatch.setattr(main, "run_case", _fake_run_case)
    response = _submit(
        report_text="Typed notes.",
        allergies="Penicillin",
        report_file=_upload("\ufeffLab: LDL 190".encode("utf-8"), "labs.txt", "text/plain"),
    )

    assert captured["report_text"] == "Typed notes.\n\nLab: LDL 190"
    assert captured["history"].allergies == "Penicillin"
    assert captured["image"] is None
    assert response.case_id == "ab12cd34"
    assert response.report_download_url == "/api/sessions/session-api/report.pdf"


def test_submit_case_image_upload(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    async def _fake_run_case(session_id, report_text, history=None, image=None):
        captured["image"] = image
        return _done_snapshot()

    monkeypatch.setattr(main, "run_case", _fake_run_case)
    _submit(report_file=_upload(b"\x89PNG fake", "scan.png", "image/png"))

    assert captured["image"].mime_type == "image/png"
    assert captured["image"].base64


def test_submit_case_empty_is_400(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fail(*_args, **_kwargs):
        raise AssertionError("run_case must not be called")

    monkeypatch.setattr(main, "run_case", _fail)
    _expect_status(main.submit_case(
        report_text="  ",
        past_diagnoses="",
        chronic_conditions="",
        allergies="",
        current_medications="",
        family_history="",
        lifestyle_factors="",
        session_id=None,
        report_file=None,
        image=None,
    ), 400)


def test_submit_case_unsupported_upload_is_400(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fail(*_args, **_kwargs):
        raise AssertionError("run_case must not be called")

    monkeypatch.setattr(main, "run_case", _fail)
    with pytest.raises(Exception) as exc:
        _submit(report_file=_upload(b"%PDF-1.7", "report.pdf", "application/pdf"))
    assert getattr(exc.value, "status_code", None) == 400


def test_submit_case_superseded_is_409(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _superseded(*_args, **_kwargs):
        return None

    monkeypatch.setattr(main, "run_case", _superseded)
    with pytest.raises(Exception) as exc:
        _submit(report_text="LDL 190")
    assert getattr(exc.value, "status_code", None) == 409


def test_get_session_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _none(_session_id):
        return None

    monkeypatch.setattr(main, "get_case", _none)
    _expect_status(main.get_session("missing"), 404)


def test_get_session_uses_camel_case_analysis(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _snapshot(_session_id):
        return _done_snapshot()

    monkeypatch.setattr(main, "get_case", _snapshot)
    payload = _run(main.get_session("session-api"))
    assert payload["case_id"] == "ab12cd34"
    assert payload["final_report"]["status"] == "complete"
    assert len(payload["specialists"]) == 11


def test_delete_session_drops_chat(monkeypatch: pytest.MonkeyPatch) -> None:
    dropped = []

    async def _reset(_session_id):
        return True

    monkeypatch.setattr(main, "drop_chat", dropped.append)
    monkeypatch.setattr(main, "reset_session", _reset)
    response = _run(main.delete_session("session-api"))
    assert response.removed is True
    assert dropped == ["session-api"]


def test_events_stream_starts_with_snapshot(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _snapshot(_session_id):
        return _done_snapshot()

    monkeypatch.setattr(main, "get_case", _snapshot)

    async def scenario():
        response = await main.stream_session_events("session-api-events")
        iterator = response.body_iterator
        first = await iterator.__anext__()
        await iterator.aclose()
        return response, first

    response, first = _run(scenario())
    assert response.media_type == "text/event-stream"
    assert first.startswith("event: snapshot\n")
    assert '"ab12cd34"' in first


def test_chat_errors_map_to_status(monkeypatch: pytest.MonkeyPatch) -> None:
    for exc, status in (
        (ValueError("message must not be empty"), 400),
        (main.CaseNotFoundError("no case"), 404),
        (main.ChatUnavailableError("not ready"), 409),
    ):
        async def _raise(_session_id, _message, exc=exc):
            raise exc

        monkeypatch.setattr(main, "send_chat_message", _raise)
        _expect_status(main.chat("session-api", "hi"), status)


def test_chat_streams_sse(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _send(_session_id, _message):
        async def _events():
            yield ChatStreamEvent(kind="chunk", text="Iron ")
            yield ChatStreamEvent(kind="done", text="Iron deficiency.")

        return _events()

    monkeypatch.setattr(main, "send_chat_message", _send)

    async def scenario():
        response = await main.chat("session-api", "Why?")
        return [part async for part in response.body_iterator]

    parts = _run(scenario())
    assert parts[0] == 'event: chunk\ndata: {"text": "Iron "}\n\n'
    assert parts[-1].startswith("event: done\n")


def test_download_report_pdf_success(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _snapshot(_session_id):
        return _done_snapshot()

    monkeypatch.setattr(main, "get_case", _snapshot)
    response = _run(main.download_report_pdf("session-api"))
    assert response.status_code == 200
    assert response.media_type == "application/pdf"
    disposition = response.headers.get("content-disposition", "")
    assert "attachment;" in disposition
    assert "Health_Insights_Report_ab12cd34.pdf" in disposition


def test_download_report_pdf_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _none(_session_id):
        return None

    monkeypatch.setattr(main, "get_case", _none)
    _expect_status(main.download_report_pdf("missing"), 404)


def test_download_report_pdf_not_done(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _pending(_session_id):
        return _done_snapshot(ReportStatus.LOADING)

    monkeypatch.setattr(main, "get_case", _pending)
    _expect_status(main.download_report_pdf("pending"), 409)

import os
import time
import uuid

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, File, Form, UploadFile
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from fastapi.staticfiles import StaticFiles

from api.schemas import CaseResponse, SessionResetResponse, SpecialistInfo, SpecialistPanelResponse
from health_insights.config.logger import configure_logging, get_logger
from health_insights.config.settings import settings
from health_insights.graph.state import SPECIALIST_PANEL, ImageInput, PatientHistory, ReportStatus
from health_insights.runtime.chat_sessions import (
    CaseNotFoundError,
    ChatUnavailableError,
    drop_chat,
    send_chat_message,
)
from health_insights.runtime.orchestrator import SubmissionError, run_case, validate_submission
from health_insights.runtime.progress import get_case, next_event, reset_session, subscribe, to_sse, unsubscribe
from health_insights.utils.report_pdf import build_report_pdf_bytes, report_filename
from health_insights.utils.uploads import (
    UnsupportedUploadError,
    decode_text_upload,
    image_bytes_to_base64,
    upload_kind,
)

app = FastAPI(title="Health Insights Multi-Specialist System")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

configure_logging()
logger = get_logger(__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@app.middleware("http")
async def log_requests(request, call_next):
    start = time.perf_counter()
    logger.info("[request.start] %s %s", request.method, request.url.path)
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "[request.end] %s %s status=%s elapsed=%.1fms",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


@app.on_event("startup")
async def startup():
    settings.require_api_key()


@app.get("/api/health")
async def health():
    return {"ok": True}


@app.get("/api/specialists", response_model=SpecialistPanelResponse)
async def list_specialists():
    return SpecialistPanelResponse(
        specialists=[
            SpecialistInfo(name=specialty.value, description=description)
            for specialty, description in SPECIALIST_PANEL
        ]
    )


async def _read_uploads(
    report_text: str,
    report_file: UploadFile | None,
    image: UploadFile | None,
) -> tuple[str, ImageInput | None]:
    text = report_text or ""
    image_input: ImageInput | None = None

    if report_file is not None and report_file.filename:
        content = await report_file.read()
        if upload_kind(report_file.filename, report_file.content_type) == "image":
            image_input = ImageInput(
                base64=image_bytes_to_base64(content),
                mime_type=report_file.content_type or "image/jpeg",
            )
        else:
            uploaded = decode_text_upload(content)
            text = f"{text}\n\n{uploaded}" if text.strip() else uploaded

    if image is not None and image.filename:
        if upload_kind(image.filename, image.content_type) != "image":
            raise UnsupportedUploadError("The image field only accepts image files.")
        content = await image.read()
        image_input = ImageInput(
            base64=image_bytes_to_base64(content),
            mime_type=image.content_type or "image/jpeg",
        )
    return text, image_input


@app.post("/api/cases", response_model=CaseResponse)
async def submit_case(
    report_text: str = Form(""),
    past_diagnoses: str = Form(""),
    chronic_conditions: str = Form(""),
    allergies: str = Form(""),
    current_medications: str = Form(""),
    family_history: str = Form(""),
    lifestyle_factors: str = Form(""),
    session_id: str | None = Form(None),
    report_file: UploadFile | None = File(None),
    image: UploadFile | None = File(None),
):
    session_id = (session_id or "").strip() or str(uuid.uuid4())
    try:
        text, image_input = await _read_uploads(report_text, report_file, image)
        validate_submission(text, image_input)
    except (SubmissionError, UnsupportedUploadError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    history = PatientHistory(
        past_diagnoses=past_diagnoses,
        chronic_conditions=chronic_conditions,
        allergies=allergies,
        current_medications=current_medications,
        family_history=family_history,
        lifestyle_factors=lifestyle_factors,
    )
    logger.info(
        "[submit_case] session=%s text_len=%s has_image=%s",
        session_id,
        len(text),
        image_input is not None,
    )
    snapshot = await run_case(session_id, text, history=history, image=image_input)
    if snapshot is None:
        raise HTTPException(status_code=409, detail="This case was replaced by a newer submission.")

    download_url = None
    if snapshot.final_report.status == ReportStatus.COMPLETE:
        download_url = f"/api/sessions/{session_id}/report.pdf"
    return CaseResponse(
        session_id=session_id,
        case_id=snapshot.case_id,
        snapshot=snapshot,
        report_download_url=download_url,
    )


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    snapshot = await get_case(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return snapshot.model_dump(mode="json", by_alias=True)


@app.delete("/api/sessions/{session_id}", response_model=SessionResetResponse)
async def delete_session(session_id: str):
    drop_chat(session_id)
    removed = await reset_session(session_id)
    logger.info("[session] reset session=%s removed=%s", session_id, removed)
    return SessionResetResponse(session_id=session_id, removed=removed)


@app.get("/api/sessions/{session_id}/events")
async def stream_session_events(session_id: str):
    queue = await subscribe(session_id)

    async def event_generator():
        try:
            snapshot = await get_case(session_id)
            if snapshot:
                yield to_sse("snapshot", snapshot.model_dump(mode="json", by_alias=True))
            while True:
                event = await next_event(queue, timeout=15.0)
                if event is None:
                    yield "event: ping\ndata: {}\n\n"
                    continue
                yield to_sse(event["event"], event["data"])
                if event["event"] == "session_reset":
                    break
        finally:
            await unsubscribe(session_id, queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=_SSE_HEADERS)


@app.post("/api/sessions/{session_id}/chat")
async def chat(session_id: str, message: str = Form("")):
    try:
        events = await send_chat_message(session_id, message)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CaseNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ChatUnavailableError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    async def event_generator():
        async for event in events:
            yield to_sse(event.kind, {"text": event.text})

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=_SSE_HEADERS)


@app.get("/api/sessions/{session_id}/report.pdf")
async def download_report_pdf(session_id: str):
    snapshot = await get_case(session_id)
    if snapshot is None or not snapshot.case_id:
        raise HTTPException(status_code=404, detail="Session not found")
    if snapshot.final_report.status != ReportStatus.COMPLETE:
        raise HTTPException(status_code=409, detail="Report is not ready")

    try:
        pdf_bytes = build_report_pdf_bytes(snapshot)
    except Exception as exc:
        logger.exception("[report_pdf] build failed session=%s", session_id)
        raise HTTPException(status_code=500, detail=f"Failed to build PDF: {exc}") from exc

    filename = report_filename(snapshot.case_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Serve frontend static files (mount last so API routes take priority)
if os.path.isdir("web"):
    app.mount("/", StaticFiles(directory="web", html=True), name="static")
else:
    logger.info("[static] skip mount: 'web/' directory not found (API-only mode)")

"""One chat session per finished case, streamed into the case transcript."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from health_insights.agents.chat import CHAT_GREETING, ChatSession, ChatStreamEvent, open_chat_session
from health_insights.config.logger import get_logger
from health_insights.graph.state import ReportStatus
from health_insights.prompts.prompts import build_chat_context
from health_insights.runtime.progress import (
    ChatChunk,
    ChatFailed,
    ChatOpened,
    ChatUserMessage,
    apply_event,
    get_case,
)

logger = get_logger(__name__)

# session_id -> (case_id, chat session, lock held while a reply streams)
_CHATS: dict[str, tuple[str, ChatSession, asyncio.Lock]] = {}


class CaseNotFoundError(LookupError):
    pass


class ChatUnavailableError(RuntimeError):
    pass


async def ensure_chat(session_id: str) -> tuple[str, ChatSession, asyncio.Lock]:
    snapshot = await get_case(session_id)
    if snapshot is None or not snapshot.case_id:
        raise CaseNotFoundError(f"No case for session {session_id}")
    if snapshot.final_report.status != ReportStatus.COMPLETE:
        raise ChatUnavailableError("Chat is available once the final report is complete.")

    cached = _CHATS.get(session_id)
    if cached is not None and cached[0] == snapshot.case_id:
        return cached

    opened = (snapshot.case_id, open_chat_session(build_chat_context(snapshot)), asyncio.Lock())
    _CHATS[session_id] = opened
    await apply_event(session_id, ChatOpened(case_id=snapshot.case_id, greeting=CHAT_GREETING))
    logger.info("[chat] opened session=%s case=%s", session_id, snapshot.case_id)
    return opened


async def send_chat_message(session_id: str, message: str) -> AsyncIterator[ChatStreamEvent]:
    """Stream one reply, mirroring every chunk into the case transcript.

    Replies within a session are serialized: a second message waits until the
    previous reply has finished streaming before it enters the transcript.
    """
    text = (message or "").strip()
    if not text:
        raise ValueError("message must not be empty")
    case_id, chat, lock = await ensure_chat(session_id)

    async def _events() -> AsyncIterator[ChatStreamEvent]:
        async with lock:
            await apply_event(session_id, ChatUserMessage(case_id=case_id, text=text))
            async for event in chat.stream(text):
                if event.kind == "chunk":
                    await apply_event(session_id, ChatChunk(case_id=case_id, text=event.text))
                elif event.kind == "error":
                    await apply_event(session_id, ChatFailed(case_id=case_id, text=event.text))
                yield event

    return _events()


def drop_chat(session_id: str) -> None:
    _CHATS.pop(session_id, None)

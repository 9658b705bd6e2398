"""Follow-up chat over a finished case."""

from __future__ import annotations

from typing import AsyncIterator, Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from health_insights.config.logger import get_logger
from health_insights.config.settings import settings
from health_insights.llm import LLMClient, get_llm
from health_insights.prompts.prompts import build_chat_instruction

_logger = get_logger(__name__)

CHAT_DEFAULT_MODEL = "qwen-plus"
CHAT_GREETING = (
    "Hello! I'm your Health Insights assistant. I've reviewed the case files. "
    "How can I help you understand the diagnosis?"
)
CHAT_ERROR_MESSAGE = (
    "I'm sorry, I encountered an error while processing your request. Please try again."
)


class ChatStreamEvent(BaseModel):
    kind: Literal["chunk", "done", "error"]
    text: str = ""


class ChatSession:
    """Stateful conversation seeded with the case context.

    `stream` yields `chunk` events followed by exactly one terminal `done`
    or `error` event. History only records completed exchanges.
    """

    def __init__(self, llm: LLMClient, system_instruction: str):
        self._llm = llm
        self.system_instruction = system_instruction
        self._history: list[BaseMessage] = []

    @property
    def history(self) -> list[BaseMessage]:
        return list(self._history)

    async def stream(self, message: str) -> AsyncIterator[ChatStreamEvent]:
        messages = [
            SystemMessage(content=self.system_instruction),
            *self._history,
            HumanMessage(content=message),
        ]
        received: list[str] = []
        try:
            async for chunk in self._llm.astream(messages):
                received.append(chunk)
                yield ChatStreamEvent(kind="chunk", text=chunk)
        except Exception as exc:
            _logger.warning(
                "[chat] stream failed after %s chunks: %s",
                len(received),
                str(exc).strip() or exc.__class__.__name__,
            )
            yield ChatStreamEvent(kind="error", text=CHAT_ERROR_MESSAGE)
            return

        reply = "".join(received)
        self._history.extend([HumanMessage(content=message), AIMessage(content=reply)])
        yield ChatStreamEvent(kind="done", text=reply)


def open_chat_session(context: str) -> ChatSession:
    llm = get_llm(
        "CHAT",
        model=CHAT_DEFAULT_MODEL,
        temperature=0.5,
        chunk_timeout=settings.CHAT_CHUNK_TIMEOUT_SECONDS,
    )
    return ChatSession(llm, build_chat_instruction(context))

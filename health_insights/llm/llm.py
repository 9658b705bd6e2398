"""Async chat-model wrapper with per-call timeouts."""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from health_insights.llm.model_factory import get_chat_model

MessageContent = Union[str, List[Dict[str, Any]]]


class _UnavailableLLM:
    def __init__(self, reason: str):
        self.reason = reason

    async def ainvoke(self, _messages):
        raise RuntimeError(self.reason)

    async def astream(self, _messages):
        raise RuntimeError(self.reason)
        yield  # pragma: no cover


def message_text(content: Any) -> str:
    """Flatten model message content into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    try:
        return json.dumps(content, ensure_ascii=False)
    except TypeError:
        return str(content)


class LLMClient:
    """One agent's chat model plus the timeout policy for calling it.

    `timeout` bounds a whole `ainvoke`; `chunk_timeout` bounds the wait for
    each streamed chunk. Neither retries.
    """

    def __init__(
        self,
        agent_key: str,
        model: str = "qwen-plus",
        temperature: float = 0.3,
        json_mode: bool = False,
        timeout: Optional[float] = None,
        chunk_timeout: Optional[float] = None,
        llm: Any = None,
    ):
        self.agent_key = agent_key
        self.model = model
        self.temperature = temperature
        self.json_mode = json_mode
        self.timeout = timeout
        self.chunk_timeout = chunk_timeout

        if llm is None:
            llm = get_chat_model(
                agent_key=agent_key,
                default_model=model,
                temperature=temperature,
                json_mode=json_mode,
            )
        if llm is None:
            llm = _UnavailableLLM(
                f"LLM initialization failed for agent '{agent_key}'. "
                "Please check provider/model env config."
            )
        self._llm = llm

    async def ainvoke(
        self, content: MessageContent, system_prompt: Optional[str] = None
    ) -> str:
        messages = self.build_messages(content, system_prompt)
        call = self._llm.ainvoke(messages)
        if self.timeout:
            response = await asyncio.wait_for(call, timeout=self.timeout)
        else:
            response = await call
        return message_text(response.content)

    async def astream(self, messages: List[BaseMessage]) -> AsyncIterator[str]:
        stream = self._llm.astream(messages).__aiter__()
        while True:
            try:
                if self.chunk_timeout:
                    chunk = await asyncio.wait_for(stream.__anext__(), timeout=self.chunk_timeout)
                else:
                    chunk = await stream.__anext__()
            except StopAsyncIteration:
                return
            text = message_text(getattr(chunk, "content", chunk))
            if text:
                yield text

    def build_messages(
        self, content: MessageContent, system_prompt: Optional[str] = None
    ) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=content))
        return messages


def get_llm(
    agent_key: str,
    model: str = "qwen-plus",
    temperature: float = 0.3,
    json_mode: bool = False,
    timeout: Optional[float] = None,
    chunk_timeout: Optional[float] = None,
) -> LLMClient:
    """Factory function to create the provider-agnostic client for an agent."""
    return LLMClient(
        agent_key=agent_key,
        model=model,
        temperature=temperature,
        json_mode=json_mode,
        timeout=timeout,
        chunk_timeout=chunk_timeout,
    )

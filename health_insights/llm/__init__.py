"""LLM module."""

from health_insights.llm.llm import LLMClient, get_llm, message_text
from health_insights.llm.model_factory import get_chat_model

__all__ = ["LLMClient", "get_chat_model", "get_llm", "message_text"]

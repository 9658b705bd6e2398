"""Remote analysis client: specialist, synthesis and chat calls."""

from health_insights.agents.chat import (
    CHAT_ERROR_MESSAGE,
    CHAT_GREETING,
    ChatSession,
    ChatStreamEvent,
    open_chat_session,
)
from health_insights.agents.specialists import run_specialist_analysis
from health_insights.agents.synthesis import SynthesisFailure, run_synthesis

__all__ = [
    "CHAT_ERROR_MESSAGE",
    "CHAT_GREETING",
    "ChatSession",
    "ChatStreamEvent",
    "SynthesisFailure",
    "open_chat_session",
    "run_specialist_analysis",
    "run_synthesis",
]

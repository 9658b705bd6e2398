from health_insights.prompts.prompts import (
    NO_HISTORY,
    build_chat_context,
    build_chat_instruction,
    build_specialist_prompt,
    build_synthesis_prompt,
    format_history,
)

__all__ = [
    "NO_HISTORY",
    "build_chat_context",
    "build_chat_instruction",
    "build_specialist_prompt",
    "build_synthesis_prompt",
    "format_history",
]

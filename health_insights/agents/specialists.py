"""Specialist analysis calls: one structured JSON request per specialty."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Union

from pydantic import ValidationError

from health_insights.config.logger import get_logger
from health_insights.config.settings import settings
from health_insights.graph.state import ImageInput, PatientHistory, SpecialistAnalysis, Specialty
from health_insights.llm import LLMClient, get_llm
from health_insights.prompts.prompts import build_specialist_prompt, format_history

_logger = get_logger(__name__)

SPECIALIST_DEFAULT_MODEL = "qwen-plus"
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

SpecialistResult = Union[SpecialistAnalysis, str]


def strip_code_fences(raw: str) -> str:
    return _CODE_FENCE.sub("", raw or "").strip()


def parse_analysis(specialty: Specialty, raw: str) -> SpecialistResult:
    """Parse model output into an analysis, or the parse-failure message."""
    cleaned = strip_code_fences(raw)
    try:
        payload: Any = json.loads(cleaned)
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        return SpecialistAnalysis.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        _logger.warning("[specialist.%s] unparseable output: %s", specialty.value, exc)
        _logger.debug("[specialist.%s] malformed output:\n%s", specialty.value, cleaned)
        return f"Failed to parse analysis from {specialty.value}. Raw output: {cleaned}"


def specialist_llm() -> LLMClient:
    return get_llm(
        "SPECIALIST",
        model=SPECIALIST_DEFAULT_MODEL,
        temperature=0.2,
        json_mode=True,
        timeout=settings.SPECIALIST_TIMEOUT_SECONDS,
    )


def _message_content(prompt: str, image: ImageInput | None) -> Any:
    if image is None or not image.base64:
        return prompt
    return [
        {"type": "image_url", "image_url": {"url": image.data_url()}},
        {"type": "text", "text": prompt},
    ]


async def run_specialist_analysis(
    specialty: Specialty,
    report_text: str,
    history: PatientHistory,
    image: ImageInput | None = None,
) -> SpecialistResult:
    """Run one specialist call.

    Never raises: resolves with either a `SpecialistAnalysis` or a
    human-readable error string (network failure, timeout, or unparseable
    output with the raw text embedded).
    """
    prompt = build_specialist_prompt(specialty, report_text, format_history(history))
    try:
        raw = await specialist_llm().ainvoke(_message_content(prompt, image))
    except asyncio.TimeoutError:
        timeout = settings.SPECIALIST_TIMEOUT_SECONDS
        _logger.warning("[specialist.%s] timed out after %.0fs", specialty.value, timeout)
        return f"The {specialty.value} agent timed out after {timeout:.0f} seconds."
    except Exception as exc:
        detail = str(exc).strip() or exc.__class__.__name__
        _logger.warning("[specialist.%s] call failed: %s", specialty.value, detail)
        return f"An error occurred while getting analysis from the {specialty.value} agent: {detail}"
    return parse_analysis(specialty, raw)

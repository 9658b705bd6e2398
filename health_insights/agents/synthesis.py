"""Final MDT synthesis over the successful specialist analyses."""

from __future__ import annotations

import asyncio
from typing import Mapping

from health_insights.config.logger import get_logger
from health_insights.config.settings import settings
from health_insights.graph.state import PatientHistory, SpecialistAnalysis
from health_insights.llm import get_llm
from health_insights.prompts.prompts import build_synthesis_prompt, format_history

_logger = get_logger(__name__)

SYNTHESIS_DEFAULT_MODEL = "qwen-max"


class SynthesisFailure(str):
    """Failure message returned in place of the synthesized report."""


async def run_synthesis(
    successful_analyses: Mapping[str, SpecialistAnalysis],
    report_text: str,
    history: PatientHistory,
) -> str:
    prompt = build_synthesis_prompt(successful_analyses, report_text, format_history(history))
    llm = get_llm(
        "SYNTHESIS",
        model=SYNTHESIS_DEFAULT_MODEL,
        temperature=0.3,
        timeout=settings.SYNTHESIS_TIMEOUT_SECONDS,
    )
    try:
        text = await llm.ainvoke(prompt)
        if not text.strip():
            raise ValueError("the model returned an empty response")
    except asyncio.TimeoutError:
        detail = f"timed out after {settings.SYNTHESIS_TIMEOUT_SECONDS:.0f} seconds"
        _logger.warning("[synthesis] %s", detail)
        return SynthesisFailure(
            f"An error occurred while generating the final integrated diagnosis: {detail}"
        )
    except Exception as exc:
        detail = str(exc).strip() or exc.__class__.__name__
        _logger.warning("[synthesis] call failed: %s", detail)
        return SynthesisFailure(
            f"An error occurred while generating the final integrated diagnosis: {detail}"
        )
    return text

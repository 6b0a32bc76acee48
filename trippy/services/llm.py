"""
LLM Service - itinerary generation through the OpenAI API.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog
from openai import AsyncOpenAI, OpenAIError

from trippy.core.errors import GenerationError
from trippy.core.settings import settings

logger = structlog.get_logger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")

# Initialize OpenAI client lazily to avoid startup errors without a key
_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """Get or initialize the OpenAI client."""
    global _client
    if _client is None:
        if not settings.OPENAI_API_KEY:
            raise RuntimeError(
                "OpenAI API key not found. Please set OPENAI_API_KEY environment variable."
            )
        _client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT_SEC
        )
    return _client


@dataclass(frozen=True)
class PlanRequest:
    destination: str
    people: str
    days: str
    occasion: str = ""
    other: str = ""


class PlanGenerator(Protocol):
    async def generate(self, request: PlanRequest) -> Any:
        """Return the decoded JSON plan payload; raise GenerationError on failure."""
        ...


def build_quick_plan_prompt(request: PlanRequest) -> str:
    lines = [
        "Generate a quick travel plan with the following details:",
        f"- Destination: {request.destination}",
        f"- Number of People: {request.people}",
        f"- Duration: {request.days} days",
        f"- Occasion: {request.occasion}",
    ]
    if request.other:
        lines.append(f"- Additional Notes: {request.other}")
    lines.append("")
    lines.append(
        "Please provide a detailed plan including accommodation, transportation, "
        "activities, and meals for each day. Make everything specific and include "
        "local recommendations. Format the response as a JSON array with the "
        "following structure for each day:"
    )
    lines.append(
        json.dumps(
            {
                "id": "1",
                "dayNumber": 1,
                "accommodation": "specific hotel/resort name and details",
                "transportation": "specific transportation details",
                "budget": "estimated daily budget",
                "activities": ["detailed activity 1", "detailed activity 2"],
                "meals": {
                    "breakfast": "specific restaurant/meal suggestion",
                    "lunch": "specific restaurant/meal suggestion",
                    "dinner": "specific restaurant/meal suggestion",
                },
            },
            indent=2,
        )
    )
    return "\n".join(lines)


def extract_json_block(text: str) -> str:
    """Strip a markdown code fence around the model's JSON, if any."""
    cleaned = text.strip()
    match = _FENCED_JSON.search(cleaned)
    return match.group(1).strip() if match else cleaned


def parse_plan_response(text: Optional[str]) -> Any:
    if not text:
        raise GenerationError("No response content received")
    try:
        return json.loads(extract_json_block(text))
    except json.JSONDecodeError as e:
        logger.warning("[LLM] Plan response is not valid JSON", error=str(e))
        raise GenerationError(f"Plan response is not valid JSON: {e}") from e


class OpenAIPlanGenerator:
    """PlanGenerator backed by a chat completion call."""

    def __init__(
        self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None
    ) -> None:
        self._client = client
        self._model = model or settings.OPENAI_MODEL

    async def generate(self, request: PlanRequest) -> Any:
        try:
            client = self._client or get_openai_client()
            response = await client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": build_quick_plan_prompt(request)}],
            )
        except (RuntimeError, OpenAIError) as e:
            logger.error("[LLM] Plan generation call failed", error=str(e), model=self._model)
            raise GenerationError(str(e)) from e

        content = response.choices[0].message.content
        logger.info("[LLM] Generated plan response", chars=len(content or ""), model=self._model)
        return parse_plan_response(content)

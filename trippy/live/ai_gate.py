"""
Owner-only AI plan generation.

The owner answers a short scripted dialogue in the group chat; on
confirmation the collected answers go to the plan generator and the decoded
plan replaces the session document.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Protocol

from trippy.core.auth.models import Role
from trippy.core.auth.roles import require_owner
from trippy.core.errors import GenerationError, LiveSessionError
from trippy.core.metrics import generation_total
from trippy.infra.store.schemas import SessionRecord
from trippy.itinerary.document import ItineraryDocument
from trippy.itinerary.plan_decoder import normalize_plan
from trippy.live.transcript import ChatTranscript
from trippy.services.llm import PlanGenerator, PlanRequest

logger = logging.getLogger(__name__)

NO_SESSION_MESSAGE = "Please start a live session first to chat with AI"
INTRO_PREFIX = "I'll help you plan your trip! "
GENERATING_MESSAGE = "Great! I'll generate your travel plan now..."
DECLINED_MESSAGE = "No problem! Let me know if you'd like to try again."
PLAN_PREFIX = "✨ Here's your generated plan:\n\n"
UPDATED_MESSAGE = (
    "✨ I've updated the itinerary with the generated plan. "
    "You can now view and edit it in the itinerary view!"
)
FAILED_MESSAGE = GenerationError.notice
SKIP_WORD = "skip"


class DialogueStep(str, Enum):
    DESTINATION = "destination"
    PEOPLE = "people"
    DAYS = "days"
    OCCASION = "occasion"
    OTHER = "other"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class Question:
    step: DialogueStep
    prompt: str
    optional: bool = False


PLAN_QUESTIONS = (
    Question(
        DialogueStep.DESTINATION,
        "Hi! I'll help you plan your trip. First, where would you like to go?",
    ),
    Question(DialogueStep.PEOPLE, "Great choice! How many people are traveling?"),
    Question(DialogueStep.DAYS, "And how many days are you planning to stay?"),
    Question(
        DialogueStep.OCCASION,
        "Is this trip for any special occasion? (Optional - type 'skip' to move on)",
        optional=True,
    ),
    Question(
        DialogueStep.OTHER,
        "Any other preferences or requirements? (Optional - type 'skip' to move on)",
        optional=True,
    ),
    Question(
        DialogueStep.CONFIRM,
        "Great! I'll generate a travel plan based on your preferences. "
        "Would you like me to proceed? (yes/no)",
    ),
)


class PlanDialogue:
    """Position in the question script plus the answers collected so far."""

    def __init__(self) -> None:
        self._index: Optional[int] = None
        self.answers: Dict[DialogueStep, str] = {}

    @property
    def active(self) -> bool:
        return self._index is not None

    @property
    def current(self) -> Question:
        if self._index is None:
            raise RuntimeError("Dialogue has not started")
        return PLAN_QUESTIONS[self._index]

    def begin(self) -> Question:
        self._index = 0
        self.answers = {}
        return PLAN_QUESTIONS[0]

    def answer(self, text: str) -> Question:
        """Record an answer to the current question and advance."""
        question = self.current
        value = text.strip()
        if question.optional and value.lower() == SKIP_WORD:
            value = ""
        self.answers[question.step] = value
        self._index += 1
        return PLAN_QUESTIONS[self._index]

    def reset(self) -> None:
        self._index = None
        self.answers = {}

    def to_request(self) -> PlanRequest:
        return PlanRequest(
            destination=self.answers.get(DialogueStep.DESTINATION, ""),
            people=self.answers.get(DialogueStep.PEOPLE, ""),
            days=self.answers.get(DialogueStep.DAYS, ""),
            occasion=self.answers.get(DialogueStep.OCCASION, ""),
            other=self.answers.get(DialogueStep.OTHER, ""),
        )


class PlanHost(Protocol):
    """What the gate needs from the live session client."""

    role: Role
    session: Optional[SessionRecord]

    def is_current_session(self, session_id: str) -> bool:
        ...

    async def install_document(self, session_id: str, document: ItineraryDocument) -> bool:
        ...


class AIPlanGate:
    def __init__(self, host: PlanHost, transcript: ChatTranscript, generator: PlanGenerator) -> None:
        self._host = host
        self._transcript = transcript
        self._generator = generator
        self.dialogue = PlanDialogue()

    def reset(self) -> None:
        self.dialogue.reset()

    async def ask(self, text: str) -> None:
        """
        Handle one owner chat turn addressed to the AI.

        Raises AuthorizationError for readers before anything is written.
        Transcript write failures propagate to the caller.
        """
        text = text.strip()
        if not text:
            raise LiveSessionError("Empty AI prompt", notice="Please type your question first")
        require_owner(self._host.role, "ai_chat", notice="Only the group owner can use AI chat")

        session = self._host.session
        if session is None or not session.is_active:
            await self._transcript.post(NO_SESSION_MESSAGE, is_ai=True)
            return

        await self._transcript.post(text)

        if not self.dialogue.active:
            first = self.dialogue.begin()
            await self._transcript.post(INTRO_PREFIX + first.prompt, is_ai=True)
            return

        if self.dialogue.current.step is DialogueStep.CONFIRM:
            request = self.dialogue.to_request()
            self.dialogue.reset()
            if "yes" not in text.lower():
                await self._transcript.post(DECLINED_MESSAGE, is_ai=True)
                return
            await self._transcript.post(GENERATING_MESSAGE, is_ai=True)
            await self.generate(session.id, request)
            return

        following = self.dialogue.answer(text)
        await self._transcript.post(following.prompt, is_ai=True)

    async def generate(self, session_id: str, request: PlanRequest) -> bool:
        """
        Generate a plan and install it into ``session_id``.

        A result that arrives after the session ended or changed is dropped.
        Failures leave the document untouched and post a failure message.
        """
        try:
            payload = await self._generator.generate(request)
            document = normalize_plan(payload)
        except GenerationError as e:
            return await self._fail(session_id, e)

        if not self._host.is_current_session(session_id):
            generation_total.labels(status="discarded").inc()
            logger.info("Discarding generated plan for ended session", extra={"session_id": session_id})
            return False

        try:
            installed = await self._host.install_document(session_id, document)
        except LiveSessionError as e:
            return await self._fail(session_id, e)
        if not installed:
            generation_total.labels(status="discarded").inc()
            return False

        generation_total.labels(status="ok").inc()
        await self._transcript.announce(
            PLAN_PREFIX + json.dumps(payload, indent=2, ensure_ascii=False), is_ai=True
        )
        await self._transcript.announce(UPDATED_MESSAGE, is_ai=True)
        return True

    async def _fail(self, session_id: str, error: Exception) -> bool:
        generation_total.labels(status="error").inc()
        logger.warning("Plan generation failed: %s", error, extra={"session_id": session_id})
        await self._transcript.announce(FAILED_MESSAGE, is_ai=True)
        return False

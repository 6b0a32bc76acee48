"""Group chat transcript: human messages, AI turns and session notices."""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from trippy.core.auth.models import User
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import ChatMessage

logger = logging.getLogger(__name__)

AI_SENDER_EMAIL = "ai@system"
SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_EMAIL = "system@trippy"

SESSION_STARTED_MESSAGE = "🟢 Live session started"
SESSION_ENDED_MESSAGE = "🔴 Live session ended"


class ChatTranscript:
    def __init__(self, store: SessionStore, group_id: str, user: User) -> None:
        self._store = store
        self._group_id = group_id
        self._user = user
        self.messages: List[ChatMessage] = []
        self._seen: Set[str] = set()

    async def load(self) -> List[ChatMessage]:
        messages = await self._store.list_messages(self._group_id)
        self.messages = list(messages)
        self._seen = {m.id for m in messages if m.id}
        return self.messages

    def receive(self, message: ChatMessage) -> bool:
        """Add a message seen on the change feed. Returns False for duplicates."""
        if message.group_id != self._group_id:
            return False
        if message.id and message.id in self._seen:
            return False
        if message.id:
            self._seen.add(message.id)
        self.messages.append(message)
        return True

    async def post(
        self, content: str, *, is_ai: bool = False, is_notification: bool = False
    ) -> ChatMessage:
        """Append a message as this user, the AI, or the system."""
        if is_notification:
            sender_id, sender_email = SYSTEM_SENDER_ID, SYSTEM_SENDER_EMAIL
        elif is_ai:
            sender_id, sender_email = self._user.user_id, AI_SENDER_EMAIL
        else:
            sender_id, sender_email = self._user.user_id, self._user.email
        saved = await self._store.append_message(
            ChatMessage(
                group_id=self._group_id,
                content=content,
                sender_id=sender_id,
                sender_email=sender_email,
                is_ai=is_ai,
                is_notification=is_notification,
            )
        )
        self.receive(saved)
        return saved

    async def announce(
        self, content: str, *, is_ai: bool = False, is_notification: bool = False
    ) -> Optional[ChatMessage]:
        """Like ``post`` but a failure is only logged."""
        try:
            return await self.post(content, is_ai=is_ai, is_notification=is_notification)
        except Exception as e:
            logger.warning("Failed to post transcript message: %s", e, extra={"group_id": self._group_id})
            return None

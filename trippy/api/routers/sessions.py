"""
Live Session API - store access for browser clients.

Owner-only operations are checked here as well as in the client engine, so
a reader cannot write through the service either.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from trippy.api.deps import get_current_user, get_store
from trippy.core.auth.models import Role, User
from trippy.core.auth.roles import resolve_role
from trippy.core.errors import (
    GroupNotFoundError,
    SessionConflictError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from trippy.core.realtime.channels import FEED_TABLES
from trippy.core.realtime.schemas import ChangeEvent
from trippy.core.security import sanitize_for_logging
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import (
    ChatMessage,
    GroupRecord,
    ParticipantRecord,
    SessionRecord,
)
from trippy.itinerary.document import ItineraryDocument

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["live-sessions"])

KEEPALIVE_SEC = 15.0


class StartSessionRequest(BaseModel):
    itinerary_data: Optional[List[Dict[str, Any]]] = None


class DocumentRequest(BaseModel):
    itinerary_data: List[Dict[str, Any]]


class MessageRequest(BaseModel):
    content: str = Field(..., min_length=1)


def format_sse_event(event_type: str, payload: dict, event_id: Optional[int] = None) -> str:
    """Format one Server-Sent Event frame."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}\n")
    lines.append(f"event: {event_type}\n")
    lines.append(f"data: {json.dumps({'type': event_type, 'payload': payload})}\n\n")
    return "".join(lines)


async def _group_or_404(store: SessionStore, group_id: str) -> GroupRecord:
    try:
        return await store.get_group(group_id)
    except GroupNotFoundError:
        raise HTTPException(status_code=404, detail="Group not found")


async def _session_or_404(store: SessionStore, session_id: str) -> SessionRecord:
    session = await store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _document_or_422(payload: List[Dict[str, Any]]) -> ItineraryDocument:
    try:
        return ItineraryDocument.from_payload(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))


def _require_owner(group: GroupRecord, user: User, action: str) -> None:
    if resolve_role(group, user.user_id) is not Role.OWNER:
        logger.info(
            "Rejected %s by non-owner %s",
            action,
            sanitize_for_logging(user.user_id),
            extra={"group_id": group.id},
        )
        raise HTTPException(status_code=403, detail="Only the group owner can do that")


@router.get("/groups/{group_id}/session", response_model=SessionRecord)
async def get_active_session(
    group_id: str,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    await _group_or_404(store, group_id)
    session = await store.get_active_session(group_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No active session")
    return session


@router.post("/groups/{group_id}/session", response_model=SessionRecord, status_code=201)
async def start_session(
    group_id: str,
    body: Optional[StartSessionRequest] = None,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    group = await _group_or_404(store, group_id)
    _require_owner(group, user, "start_session")

    document = (
        _document_or_422(body.itinerary_data)
        if body and body.itinerary_data
        else ItineraryDocument.default()
    )
    try:
        session = await store.create_session(group_id, user.user_id, document.to_payload())
    except SessionConflictError:
        raise HTTPException(status_code=409, detail="A live session is already active")

    members = await store.list_group_members(group_id)
    participants = {m.user_id: m.email for m in members}
    participants.setdefault(user.user_id, user.email)
    await store.add_participants(
        session.id,
        [
            ParticipantRecord(session_id=session.id, user_id=uid, user_email=email)
            for uid, email in participants.items()
        ],
    )
    logger.info("Session started via API", extra={"group_id": group_id, "session_id": session.id})
    return session


@router.post("/sessions/{session_id}/end", response_model=SessionRecord)
async def end_session(
    session_id: str,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    session = await _session_or_404(store, session_id)
    group = await _group_or_404(store, session.group_id)
    _require_owner(group, user, "end_session")
    if not session.is_active:
        raise HTTPException(status_code=409, detail="Session already ended")

    try:
        ended = await store.end_session(session_id)
    except SessionNotActiveError:
        raise HTTPException(status_code=409, detail="Session already ended")
    await store.delete_participants(session_id)
    return ended


@router.put("/sessions/{session_id}/document", response_model=SessionRecord)
async def write_document(
    session_id: str,
    body: DocumentRequest,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    session = await _session_or_404(store, session_id)
    group = await _group_or_404(store, session.group_id)
    _require_owner(group, user, "write_document")

    # Round-trip through the model so day numbers always match positions
    payload = _document_or_422(body.itinerary_data).to_payload()
    try:
        return await store.write_document(session_id, payload)
    except SessionNotActiveError:
        raise HTTPException(status_code=409, detail="Session is not active")
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("/sessions/{session_id}/heartbeat", response_model=ParticipantRecord)
async def heartbeat(
    session_id: str,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    session = await _session_or_404(store, session_id)
    if not session.is_active:
        raise HTTPException(status_code=409, detail="Session is not active")
    try:
        return await store.upsert_participant(session_id, user.user_id, user.email)
    except SessionNotActiveError:
        raise HTTPException(status_code=409, detail="Session is not active")


@router.get("/sessions/{session_id}/participants", response_model=List[ParticipantRecord])
async def list_participants(
    session_id: str,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    await _session_or_404(store, session_id)
    return await store.list_participants(session_id)


@router.get("/groups/{group_id}/messages", response_model=List[ChatMessage])
async def list_messages(
    group_id: str,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    await _group_or_404(store, group_id)
    return await store.list_messages(group_id)


@router.post("/groups/{group_id}/messages", response_model=ChatMessage, status_code=201)
async def post_message(
    group_id: str,
    body: MessageRequest,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    await _group_or_404(store, group_id)
    message = ChatMessage(
        group_id=group_id,
        content=body.content,
        sender_id=user.user_id,
        sender_email=user.email,
    )
    return await store.append_message(message)


@router.get("/groups/{group_id}/changes/stream")
async def stream_changes(
    group_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    store: SessionStore = Depends(get_store),
):
    """
    Server-Sent Events stream of the group's session, participant and
    message changes. A comment line is sent when the feed is idle.
    """
    await _group_or_404(store, group_id)

    async def event_generator():
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()

        async def pump(table: str) -> None:
            async for event in store.changes(table, group_id):
                await queue.put(event)

        tasks = [asyncio.create_task(pump(table)) for table in FEED_TABLES]
        try:
            yield format_sse_event("connected", {"group_id": group_id})
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SEC)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse_event(event.table, event.model_dump(mode="json"), event.ts)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(
                "Change stream closed for %s", sanitize_for_logging(group_id)
            )

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

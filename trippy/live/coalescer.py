"""
Owner-side write path for one live session.

Field edits are debounced: each one re-arms a single timer and only the
latest document is written when it fires. Structural edits cancel the timer
and write the full document at once, so they reach the store in the order
they were issued. Every write sends the document as it is at write time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from trippy.core.errors import WriteCoalesceError
from trippy.core.metrics import document_writes_total
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import ChangeType, SessionRecord
from trippy.itinerary.document import ItineraryDocument
from trippy.live.audit import ChangeAuditLog
from trippy.live.timers import Debouncer

logger = logging.getLogger(__name__)


class WriteCoalescer:
    def __init__(
        self,
        store: SessionStore,
        session_id: str,
        user_id: str,
        document: Callable[[], ItineraryDocument],
        *,
        delay: float,
        audit: ChangeAuditLog,
    ) -> None:
        self._store = store
        self._session_id = session_id
        self._user_id = user_id
        self._document = document
        self._audit = audit
        self._lock = asyncio.Lock()
        self._debouncer = Debouncer(delay, self._write_debounced, name=f"coalesce:{session_id}")
        self._closed = False
        # Set when the store may be behind the local document; cleared by the next good write
        self.unsynced = False
        self.last_version: Optional[int] = None

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def schedule(self) -> None:
        """Record a field edit; the write happens once edits pause."""
        if not self._closed:
            self._debouncer.trigger()

    async def persist_structural(
        self, change_type: ChangeType, data: Dict[str, Any]
    ) -> SessionRecord:
        """
        Write the full document now and log the structural edit.

        On failure the local document is kept, ``unsynced`` is set and a
        debounced retry is armed before WriteCoalesceError is raised.
        """
        if self._closed:
            raise WriteCoalesceError(f"Session {self._session_id} is closed")
        self._debouncer.cancel()
        self._audit.record(self._session_id, self._user_id, change_type, data)
        try:
            record = await self._write("structural")
        except Exception as e:
            self.unsynced = True
            self._debouncer.trigger()
            raise WriteCoalesceError(str(e)) from e
        if record is None:
            raise WriteCoalesceError(f"Session {self._session_id} closed during write")
        return record

    async def replace(self, document: ItineraryDocument) -> SessionRecord:
        """Write ``document`` in place of the current one, dropping any pending edit."""
        if self._closed:
            raise WriteCoalesceError(f"Session {self._session_id} is closed")
        self._debouncer.cancel()
        try:
            record = await self._write("generated", document.to_payload())
        except Exception as e:
            raise WriteCoalesceError(str(e)) from e
        if record is None:
            raise WriteCoalesceError(f"Session {self._session_id} closed during write")
        return record

    async def flush(self) -> None:
        """Write a pending debounced edit immediately."""
        await self._debouncer.flush()

    def close(self) -> None:
        """Cancel any pending write; nothing is written after this returns."""
        self._closed = True
        self._debouncer.close()

    async def _write_debounced(self) -> None:
        try:
            await self._write("debounced")
        except Exception as e:
            self.unsynced = True
            logger.warning(
                "Debounced itinerary write failed: %s",
                e,
                extra={"session_id": self._session_id},
            )

    async def _write(
        self, kind: str, payload: Optional[List[Dict[str, Any]]] = None
    ) -> Optional[SessionRecord]:
        async with self._lock:
            if self._closed:
                return None
            if payload is None:
                payload = self._document().to_payload()
            try:
                record = await self._store.write_document(self._session_id, payload)
            except Exception:
                document_writes_total.labels(kind=kind, status="error").inc()
                raise
        document_writes_total.labels(kind=kind, status="ok").inc()
        self.unsynced = False
        self.last_version = record.version
        logger.debug(
            "Wrote itinerary (%s) version=%d days=%d",
            kind,
            record.version,
            len(payload),
            extra={"session_id": self._session_id},
        )
        return record

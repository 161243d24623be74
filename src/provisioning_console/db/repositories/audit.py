"""
provisioning_console.db.repositories.audit

Repository for `AuditEvent` entities.

Responsibilities:
- Append audit events for an attempt.
- Query the trail of an attempt, oldest first.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning_console.db.models import AuditEvent


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        attempt_id: uuid.UUID,
        actor: str,
        event_type: str,
        details: dict[str, Any],
        position: int = 0,
    ) -> AuditEvent:
        # Append-only: no update/delete in normal operation.
        ev = AuditEvent(
            attempt_id=attempt_id,
            actor=actor,
            event_type=event_type,
            details=details,
            position=position,
        )
        self._session.add(ev)
        await self._session.flush()
        return ev

    async def list_for_attempt(self, attempt_id: uuid.UUID, *, limit: int = 200) -> list[AuditEvent]:
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.attempt_id == attempt_id)
            .order_by(AuditEvent.created_at, AuditEvent.position)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

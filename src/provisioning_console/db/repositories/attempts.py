"""
provisioning_console.db.repositories.attempts

Repository for `ProvisioningAttempt` entities.

Responsibilities:
- Create attempts and record their outcome.
- Look attempts up by identity id (directory retries) and list orphans.
"""

from __future__ import annotations

import uuid

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning_console.db.models import AttemptStatus, ProvisioningAttempt


class AttemptRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        actor: str,
        email: str,
        given_name: str,
        family_name: str,
        role_id: int | None,
    ) -> ProvisioningAttempt:
        attempt = ProvisioningAttempt(
            actor=actor,
            email=email,
            given_name=given_name,
            family_name=family_name,
            role_id=role_id,
            state="IDLE",
            status=AttemptStatus.running,
        )
        self._session.add(attempt)
        await self._session.flush()
        return attempt

    async def get(self, attempt_id: uuid.UUID) -> ProvisioningAttempt | None:
        return await self._session.get(ProvisioningAttempt, attempt_id)

    async def latest_for_identity(self, identity_id: str) -> ProvisioningAttempt | None:
        stmt = (
            select(ProvisioningAttempt)
            .where(ProvisioningAttempt.identity_id == identity_id)
            .order_by(desc(ProvisioningAttempt.created_at))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def record(
        self,
        attempt_id: uuid.UUID,
        *,
        state: str,
        status: AttemptStatus,
        identity_id: str | None = None,
        role_id: int | None = None,
        error_kind: str | None = None,
        error: str | None = None,
    ) -> ProvisioningAttempt | None:
        attempt = await self._session.get(ProvisioningAttempt, attempt_id, with_for_update=True)
        if attempt is None:
            return None
        attempt.state = state
        attempt.status = status
        if identity_id is not None:
            attempt.identity_id = identity_id
        if role_id is not None:
            attempt.role_id = role_id
        # Error columns always reflect the latest outcome (cleared on success).
        attempt.error_kind = error_kind
        attempt.error = error
        return attempt

    async def list_orphans(self, *, limit: int = 200) -> list[ProvisioningAttempt]:
        stmt = (
            select(ProvisioningAttempt)
            .where(ProvisioningAttempt.status == AttemptStatus.orphaned)
            .order_by(desc(ProvisioningAttempt.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# An identity id appears on at most one attempt that created it; later retries
# update that same attempt rather than opening new ones.

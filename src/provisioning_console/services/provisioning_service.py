"""
provisioning_console.services.provisioning_service

Provisioning lifecycle service (transaction + ledger owner).

Responsibilities:
- Open a ledger attempt before any remote call.
- Run the orchestrator and persist its outcome and transition trail, including
  when the caller was cancelled mid-run or an unexpected exception escaped
  after an identity already existed.
- Signal the account listing to reload after a completed run.
- Re-run the directory write for orphaned identities and report orphans.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from provisioning_console.db.models import AttemptStatus, AuditEvent, ProvisioningAttempt
from provisioning_console.db.repositories.attempts import AttemptRepo
from provisioning_console.db.repositories.audit import AuditRepo
from provisioning_console.directory.listing import DirectoryListing
from provisioning_console.observability.logging import get_logger
from provisioning_console.provisioning.models import Profile, ProvisioningRequest
from provisioning_console.provisioning.orchestrator import ProvisioningOrchestrator
from provisioning_console.provisioning.outcomes import Completed, Failed, Outcome, ProvisioningRun

log = get_logger(__name__)


def attempt_status(outcome: Outcome) -> AttemptStatus:
    if isinstance(outcome, Completed):
        return AttemptStatus.completed
    if isinstance(outcome, Failed) and outcome.orphaned_identity_id is None:
        return AttemptStatus.failed
    return AttemptStatus.orphaned


class ProvisioningService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        orchestrator: ProvisioningOrchestrator,
        listing: DirectoryListing,
    ) -> None:
        self._session = session
        self._orchestrator = orchestrator
        self._listing = listing

        self._attempts = AttemptRepo(session)
        self._audit = AuditRepo(session)

    async def provision(
        self, *, request: ProvisioningRequest, actor: str
    ) -> tuple[uuid.UUID, Outcome]:
        profile = request.profile
        attempt = await self._attempts.create(
            actor=actor,
            email=profile.email,
            given_name=profile.given_name,
            family_name=profile.family_name,
            role_id=request.role_id,
        )
        await self._audit.add(
            attempt_id=attempt.id,
            actor=actor,
            event_type="ATTEMPT_CREATED",
            details={"email": profile.email, "role_id": request.role_id},
        )
        # Committed up front so the attempt exists even if the process dies mid-run.
        await self._session.commit()

        run = ProvisioningRun()
        with structlog.contextvars.bound_contextvars(attempt_id=str(attempt.id)):
            outcome = await self._drive(
                attempt.id, run, self._orchestrator.provision(request, run=run)
            )
        await self._persist(attempt.id, run, outcome)
        return attempt.id, outcome

    async def retry_directory(
        self, *, identity_id: str, role_id: int | None, actor: str
    ) -> tuple[uuid.UUID, Outcome]:
        attempt = await self._attempts.latest_for_identity(identity_id)
        if attempt is None:
            raise ValueError("no provisioning attempt for identity")

        await self._audit.add(
            attempt_id=attempt.id,
            actor=actor,
            event_type="DIRECTORY_RETRY",
            details={"identity_id": identity_id, "role_id": role_id},
        )
        await self._session.commit()

        profile = Profile(
            given_name=attempt.given_name,
            family_name=attempt.family_name,
            email=attempt.email,
        )
        run = ProvisioningRun()
        with structlog.contextvars.bound_contextvars(attempt_id=str(attempt.id)):
            outcome = await self._drive(
                attempt.id,
                run,
                self._orchestrator.retry_directory(
                    identity_id=identity_id, profile=profile, role_id=role_id, run=run
                ),
            )
        await self._persist(attempt.id, run, outcome, role_id=role_id)
        return attempt.id, outcome

    async def orphans(self) -> list[ProvisioningAttempt]:
        return await self._attempts.list_orphans()

    async def trail(self, attempt_id: uuid.UUID) -> list[AuditEvent]:
        return await self._audit.list_for_attempt(attempt_id)

    async def _drive(self, attempt_id: uuid.UUID, run: ProvisioningRun, work) -> Outcome:
        try:
            return await work
        except asyncio.CancelledError:
            # The orchestrator finishes its uncancellable region before this
            # arrives, so a created identity is always on the run by now.
            if run.outcome is not None:
                await asyncio.shield(self._persist(attempt_id, run, run.outcome))
            else:
                await asyncio.shield(
                    self._persist_unfinished(attempt_id, run, error_kind="cancelled", error="cancelled")
                )
            raise
        except Exception as e:
            log.error(
                "provisioning_crashed",
                state=str(run.state),
                identity_id=run.identity_id,
                error=repr(e),
            )
            await self._session.rollback()
            await self._persist_unfinished(
                attempt_id, run, error_kind="unexpected_error", error=repr(e)
            )
            raise

    async def _persist(
        self,
        attempt_id: uuid.UUID,
        run: ProvisioningRun,
        outcome: Outcome,
        *,
        role_id: int | None = None,
    ) -> None:
        reason = outcome.reason
        await self._attempts.record(
            attempt_id,
            state=str(run.state),
            status=attempt_status(outcome),
            identity_id=outcome.identity_id or run.identity_id,
            role_id=role_id if isinstance(outcome, Completed) else None,
            error_kind=reason.kind if reason is not None else None,
            error=reason.message if reason is not None else None,
        )
        await self._write_trail(attempt_id, run)
        await self._session.commit()

        if outcome.reload_directory:
            self._listing.invalidate()

    async def _persist_unfinished(
        self, attempt_id: uuid.UUID, run: ProvisioningRun, *, error_kind: str, error: str
    ) -> None:
        # No outcome: an identity on the run means it may be orphaned.
        await self._attempts.record(
            attempt_id,
            state=str(run.state),
            status=AttemptStatus.orphaned if run.identity_id else AttemptStatus.failed,
            identity_id=run.identity_id,
            error_kind=error_kind,
            error=error,
        )
        await self._write_trail(attempt_id, run)
        await self._session.commit()

    async def _write_trail(self, attempt_id: uuid.UUID, run: ProvisioningRun) -> None:
        for position, transition in enumerate(run.transitions):
            await self._audit.add(
                attempt_id=attempt_id,
                actor="orchestrator",
                event_type=f"STATE_{transition['state']}",
                details=dict(transition),
                position=position,
            )


# --- Module Notes -----------------------------------------------------------
# This service is the transaction boundary: the orchestrator decides outcomes,
# this module decides what of them becomes durable and when.

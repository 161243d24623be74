"""
tests.test_provisioning_service

Ledger persistence around provisioning runs.

Responsibilities:
- Every submission leaves an attempt row with its classified outcome and trail.
- Orphans are reported and cleared by a successful directory retry.
- Cancelled callers still get their outcome persisted.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from provisioning_console.db.models import AttemptStatus, ProvisioningAttempt
from provisioning_console.provisioning.outcomes import Completed, Failed, OrphanAccount
from provisioning_console.services.provisioning_service import ProvisioningService

from fakes import jane, sign_in_operator


def _service(session, stack) -> ProvisioningService:
    return ProvisioningService(session=session, orchestrator=stack.orchestrator, listing=stack.listing)


@pytest.mark.asyncio
async def test_completed_attempt_is_recorded_with_trail(stack, backend, ledger) -> None:
    await sign_in_operator(stack, backend)
    await stack.listing.accounts()

    async with ledger() as session:
        service = _service(session, stack)
        attempt_id, outcome = await service.provision(request=jane(), actor="ops-console")
        trail = await service.trail(attempt_id)

    assert isinstance(outcome, Completed)
    # Completed runs signal the account listing to reload.
    assert stack.listing.is_loaded is False

    async with ledger() as session:
        attempt = await session.get(ProvisioningAttempt, attempt_id)
    assert attempt.status is AttemptStatus.completed
    assert attempt.state == "COMPLETED"
    assert attempt.identity_id == outcome.identity_id
    assert attempt.actor == "ops-console"
    assert attempt.error_kind is None

    assert [e.event_type for e in trail] == [
        "ATTEMPT_CREATED",
        "STATE_VALIDATING_INPUT",
        "STATE_CREATING_IDENTITY",
        "STATE_RESTORING_SESSION",
        "STATE_WRITING_DIRECTORY",
        "STATE_COMPLETED",
    ]
    assert "Secret123!" not in str([e.details for e in trail])


@pytest.mark.asyncio
async def test_rejected_attempt_is_failed_without_identity(stack, backend, ledger) -> None:
    await sign_in_operator(stack, backend)

    async with ledger() as session:
        service = _service(session, stack)
        attempt_id, outcome = await service.provision(request=jane(email="nope"), actor="ops")
        orphans = await service.orphans()

    assert isinstance(outcome, Failed)
    async with ledger() as session:
        attempt = await session.get(ProvisioningAttempt, attempt_id)
    assert attempt.status is AttemptStatus.failed
    assert attempt.error_kind == "validation_error"
    assert attempt.identity_id is None
    assert orphans == []


@pytest.mark.asyncio
async def test_orphan_is_reported_until_directory_retry(stack, backend, ledger) -> None:
    await sign_in_operator(stack, backend)
    await stack.catalog.roles()
    del backend.roles[999]

    async with ledger() as session:
        service = _service(session, stack)
        attempt_id, orphan = await service.provision(request=jane(role_id=999), actor="ops")
        assert isinstance(orphan, OrphanAccount)

        orphans = await service.orphans()
        assert [(a.id, a.identity_id) for a in orphans] == [(attempt_id, orphan.identity_id)]
        assert orphans[0].error_kind == "directory_validation_error"

        retry_attempt_id, outcome = await service.retry_directory(
            identity_id=orphan.identity_id, role_id=2, actor="ops"
        )
        assert await service.orphans() == []
        trail = [e.event_type for e in await service.trail(attempt_id)]

    assert retry_attempt_id == attempt_id
    assert isinstance(outcome, Completed)
    assert len(backend.records_for(orphan.identity_id)) == 1
    assert "DIRECTORY_RETRY" in trail
    assert trail[-1] == "STATE_COMPLETED"

    async with ledger() as session:
        attempt = await session.get(ProvisioningAttempt, attempt_id)
    assert attempt.status is AttemptStatus.completed
    assert attempt.role_id == 2
    assert attempt.error is None


@pytest.mark.asyncio
async def test_lost_operator_session_is_recorded_as_orphan(stack, backend, ledger) -> None:
    s0 = await sign_in_operator(stack, backend)
    backend.revoke_on_signup.add(s0.user_id)

    async with ledger() as session:
        service = _service(session, stack)
        attempt_id, outcome = await service.provision(request=jane(), actor="ops")
        orphans = await service.orphans()

    assert isinstance(outcome, Failed)
    assert [a.id for a in orphans] == [attempt_id]
    assert orphans[0].error_kind == "session_restore_error"
    assert orphans[0].identity_id == backend.account("jane@x.com").id


@pytest.mark.asyncio
async def test_retry_without_attempt_is_rejected(stack, backend, ledger) -> None:
    await sign_in_operator(stack, backend)

    async with ledger() as session:
        with pytest.raises(ValueError):
            await _service(session, stack).retry_directory(identity_id="unknown", role_id=2, actor="ops")


@pytest.mark.asyncio
async def test_cancelled_caller_still_persists_outcome(stack, backend, ledger) -> None:
    await sign_in_operator(stack, backend)
    backend.rpc_gate = asyncio.Event()

    async with ledger() as session:
        task = asyncio.create_task(_service(session, stack).provision(request=jane(), actor="ops"))
        await backend.rpc_started.wait()
        task.cancel()
        await asyncio.sleep(0.01)
        backend.rpc_gate.set()
        with pytest.raises(asyncio.CancelledError):
            await task

    async with ledger() as session:
        attempts = (await session.execute(select(ProvisioningAttempt))).scalars().all()
    assert len(attempts) == 1
    assert attempts[0].status is AttemptStatus.completed
    assert attempts[0].identity_id == backend.account("jane@x.com").id

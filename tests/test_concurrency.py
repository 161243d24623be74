"""
tests.test_concurrency

Serialization and cancellation behaviour of provisioning runs.

Responsibilities:
- Concurrent runs never interleave their session-swap windows.
- Other session-dependent reads wait for an in-flight run.
- Cancelling a caller after the identity exists does not abandon the run.
- A run that crashes after a deferred cancellation still reports the cancellation.
- A hung directory write is bounded and reported as an ambiguous orphan.
"""

from __future__ import annotations

import asyncio

import pytest

from provisioning_console.errors import DirectoryUnavailableError
from provisioning_console.provisioning.directory import DirectoryWriter
from provisioning_console.provisioning.identity import IdentityProvisioner
from provisioning_console.provisioning.orchestrator import ProvisioningOrchestrator
from provisioning_console.provisioning.outcomes import Completed, OrphanAccount, ProvisioningRun

from fakes import jane, sign_in_operator


@pytest.mark.asyncio
async def test_concurrent_runs_do_not_interleave(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    first = jane()
    second = jane(given_name="John", email="john@x.com")

    outcomes = await asyncio.gather(
        stack.orchestrator.provision(first),
        stack.orchestrator.provision(second),
    )

    assert all(isinstance(o, Completed) for o in outcomes)
    writes = [c for c in backend.calls if c[0] in ("signup", "rpc")]
    assert [kind for kind, _ in writes] == ["signup", "rpc", "signup", "rpc"]
    # Each directory write belongs to the identity created just before it.
    assert writes[1][1] == backend.account(writes[0][1]).id
    assert writes[3][1] == backend.account(writes[2][1]).id
    assert backend.rpc_callers == [s0.user_id, s0.user_id]
    assert stack.ambient.current == s0


@pytest.mark.asyncio
async def test_listing_waits_for_inflight_run(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    backend.rpc_gate = asyncio.Event()

    run = asyncio.create_task(stack.orchestrator.provision(jane()))
    await backend.rpc_started.wait()
    listing = asyncio.create_task(stack.listing.accounts())
    await asyncio.sleep(0.01)
    assert not listing.done()

    backend.rpc_gate.set()
    outcome = await run
    records = await listing

    assert isinstance(outcome, Completed)
    assert [r.identity_id for r in records] == [outcome.identity_id]
    assert stack.ambient.current == s0


@pytest.mark.asyncio
async def test_cancellation_is_deferred_until_run_settles(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    backend.rpc_gate = asyncio.Event()
    run = ProvisioningRun()

    task = asyncio.create_task(stack.orchestrator.provision(jane(), run=run))
    await backend.rpc_started.wait()
    task.cancel()
    await asyncio.sleep(0.01)
    assert not task.done()

    backend.rpc_gate.set()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert isinstance(run.outcome, Completed)
    assert len(backend.records_for(run.identity_id)) == 1
    assert stack.ambient.current == s0
    assert not stack.ambient.lock.locked()


@pytest.mark.asyncio
async def test_cancellation_before_identity_exists_is_immediate(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    await stack.ambient.lock.acquire()
    run = ProvisioningRun()

    task = asyncio.create_task(stack.orchestrator.provision(jane(), run=run))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    stack.ambient.lock.release()

    assert run.identity_id is None
    assert run.outcome is None
    assert not [c for c in backend.calls if c[0] == "signup"]
    assert stack.ambient.current == s0


@pytest.mark.asyncio
async def test_hung_directory_write_times_out_as_ambiguous_orphan(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    backend.rpc_gate = asyncio.Event()
    orchestrator = ProvisioningOrchestrator(
        guard=stack.guard,
        identity=IdentityProvisioner(client=stack.identity),
        writer=stack.writer,
        catalog=stack.catalog,
        directory_timeout=0.05,
    )

    outcome = await orchestrator.provision(jane())

    assert isinstance(outcome, OrphanAccount)
    assert outcome.identity_id == backend.account("jane@x.com").id
    assert isinstance(outcome.reason, DirectoryUnavailableError)
    assert outcome.reason.ambiguous is True
    assert stack.ambient.current == s0


class _CrashingWriter(DirectoryWriter):
    def __init__(self, gate: asyncio.Event) -> None:
        self._gate = gate
        self.started = asyncio.Event()

    async def insert(self, *, identity_id, profile, role_id):
        self.started.set()
        await self._gate.wait()
        raise RuntimeError("writer crashed")


@pytest.mark.asyncio
async def test_deferred_cancellation_survives_crash_in_run(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    gate = asyncio.Event()
    writer = _CrashingWriter(gate)
    orchestrator = ProvisioningOrchestrator(
        guard=stack.guard,
        identity=IdentityProvisioner(client=stack.identity),
        writer=writer,
        catalog=stack.catalog,
    )
    run = ProvisioningRun()

    task = asyncio.create_task(orchestrator.provision(jane(), run=run))
    await writer.started.wait()
    task.cancel()
    await asyncio.sleep(0.01)
    gate.set()

    with pytest.raises(asyncio.CancelledError) as exc:
        await task

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert run.identity_id == backend.account("jane@x.com").id
    assert run.outcome is None
    assert stack.ambient.current == s0
    assert not stack.ambient.lock.locked()

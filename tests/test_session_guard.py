from __future__ import annotations

import pytest

from provisioning_console.errors import SessionRestoreError
from provisioning_console.identity.session import AdminSession

from fakes import sign_in_operator


@pytest.mark.asyncio
async def test_snapshot_has_no_side_effects(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    calls = list(backend.calls)

    assert stack.guard.snapshot() is s0
    assert stack.guard.matches(s0)
    assert backend.calls == calls


@pytest.mark.asyncio
async def test_restore_reinstates_operator_after_signup(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    await stack.identity.sign_up(email="jane@x.com", password="Secret123!", attributes={})
    assert stack.ambient.owner_id == backend.account("jane@x.com").id

    restored = await stack.guard.restore(s0)

    assert restored == s0
    assert stack.ambient.current == s0


@pytest.mark.asyncio
async def test_restore_refreshes_expiring_access_token(stack, backend) -> None:
    # Inside the expiry margin from the start.
    backend.token_ttl = 5
    s0 = await sign_in_operator(stack, backend)

    restored = await stack.guard.restore(s0)

    assert restored.user_id == s0.user_id
    assert restored.refresh_token != s0.refresh_token
    assert ("refresh", s0.user_id) in backend.calls
    assert not [c for c in backend.calls if c[0] == "user"]
    assert stack.ambient.current == restored


@pytest.mark.asyncio
async def test_hold_restores_on_exception(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)

    with pytest.raises(RuntimeError, match="boom"):
        async with stack.guard.hold() as hold:
            await stack.identity.sign_up(email="jane@x.com", password="Secret123!", attributes={})
            hold.mark_dirty()
            raise RuntimeError("boom")

    assert stack.ambient.current == s0
    assert not stack.ambient.lock.locked()


@pytest.mark.asyncio
async def test_failed_restore_in_exception_path_keeps_both_errors(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    backend.revoke_on_signup.add(s0.user_id)

    with pytest.raises(SessionRestoreError) as exc:
        async with stack.guard.hold() as hold:
            await stack.identity.sign_up(email="jane@x.com", password="Secret123!", attributes={})
            hold.mark_dirty()
            raise RuntimeError("boom")

    assert isinstance(exc.value.original, RuntimeError)
    assert str(exc.value.original) == "boom"
    assert exc.value.__cause__ is not None
    assert stack.ambient.current is None
    assert not stack.ambient.lock.locked()


@pytest.mark.asyncio
async def test_restore_rejects_session_of_another_account(stack, backend) -> None:
    s0 = await sign_in_operator(stack, backend)
    stranger = backend._create_account("stranger@x.com", "Stranger123!", {})
    foreign = AdminSession.from_payload(backend.session_payload(stranger))
    forged = AdminSession(
        access_token=foreign.access_token,
        refresh_token=foreign.refresh_token,
        user_id=s0.user_id,
        expires_at=foreign.expires_at,
    )

    with pytest.raises(SessionRestoreError) as exc:
        await stack.guard.restore(forged)

    assert exc.value.details["cause"] == "owner_mismatch"
    assert stack.ambient.current is None


@pytest.mark.asyncio
async def test_hold_without_snapshot_discards_swapped_session(stack, backend) -> None:
    async with stack.guard.hold() as hold:
        assert hold.snapshot is None
        await stack.identity.sign_up(email="jane@x.com", password="Secret123!", attributes={})
        hold.mark_dirty()

    assert stack.ambient.current is None

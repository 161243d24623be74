"""
provisioning_console.provisioning.session_guard

Snapshot/restore of the ambient session around calls with session side effects.

Responsibilities:
- Capture the operator's session without side effects (`snapshot`).
- Reinstate it after the provider swapped it (`restore`), failing loudly with
  `SessionRestoreError` and never leaving the swapped session in place.
- Provide the scoped critical section (`hold`) that serializes provisioning
  runs on the ambient session and guarantees a restore attempt on every exit
  path once the session may have been swapped.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from provisioning_console.errors import IdentityError, SessionRestoreError
from provisioning_console.identity.client import IdentityProviderClient
from provisioning_console.identity.session import AdminSession, AmbientSession
from provisioning_console.observability.logging import get_logger

log = get_logger(__name__)


class SessionHold:
    """
    Handle yielded by `SessionGuard.hold()`.

    `mark_dirty()` records that the ambient session may no longer be the
    snapshot; `restore()` then reinstates it, at most once per dirtying.
    """

    def __init__(self, guard: SessionGuard, snapshot: AdminSession | None) -> None:
        self._guard = guard
        self.snapshot = snapshot
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True

    async def restore(self) -> AdminSession | None:
        if not self._dirty:
            return self.snapshot
        # Cleared before awaiting: a failed restore is reported, never retried silently.
        self._dirty = False
        if self.snapshot is None:
            self._guard.discard(reason="no_snapshot")
            return None
        return await self._guard.restore(self.snapshot)


class SessionGuard:
    def __init__(self, *, ambient: AmbientSession, identity: IdentityProviderClient) -> None:
        self._ambient = ambient
        self._identity = identity

    def snapshot(self) -> AdminSession | None:
        # AdminSession is immutable, so the current reference is the snapshot.
        return self._ambient.current

    def matches(self, snapshot: AdminSession | None) -> bool:
        return self._ambient.current == snapshot

    def discard(self, *, reason: str) -> None:
        self._ambient.clear(reason=reason)

    async def restore(self, snapshot: AdminSession) -> AdminSession:
        try:
            restored = await self._identity.set_session(
                access_token=snapshot.access_token,
                refresh_token=snapshot.refresh_token,
            )
        except IdentityError as e:
            self._fail(snapshot, cause=e.kind)
            raise SessionRestoreError(
                f"could not restore operator session: {e.message}",
                owner_id=snapshot.user_id,
                details={"cause": e.kind},
            ) from e

        if restored.user_id != snapshot.user_id:
            self._fail(snapshot, cause="owner_mismatch")
            raise SessionRestoreError(
                "restored session belongs to a different account",
                owner_id=snapshot.user_id,
                details={"cause": "owner_mismatch", "restored_owner": restored.user_id},
            )

        log.info("operator_session_restored", owner=restored.user_id)
        return restored

    def _fail(self, snapshot: AdminSession, *, cause: str) -> None:
        # Whatever is ambient now is not the operator; nothing may keep using it.
        self._ambient.clear(reason="restore_failed")
        log.critical("operator_session_restore_failed", owner=snapshot.user_id, cause=cause)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[SessionHold]:
        async with self._ambient.lock:
            hold = SessionHold(self, self.snapshot())
            try:
                yield hold
            except BaseException as exc:
                if hold.dirty:
                    try:
                        await hold.restore()
                    except SessionRestoreError as restore_error:
                        restore_error.original = exc
                        raise
                raise
            if hold.dirty:
                await hold.restore()


# --- Module Notes -----------------------------------------------------------
# A failing restore inside `hold()`'s exception path raises SessionRestoreError
# with `__cause__` set to the provider error and `original` set to the exception
# that was leaving the scope, so neither is lost.

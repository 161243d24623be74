"""
provisioning_console.provisioning.orchestrator

Sequencing of account provisioning across two independent stores.

Responsibilities:
- Validate the request locally before any remote call.
- Hold the ambient session for the whole run; create the identity, restore
  the operator's session, then write the directory record.
- Shield the restore + write region from cancellation once an identity exists.
- Classify every run into `Completed`, `Failed` or `OrphanAccount`.

Protocol (one run):

    VALIDATING_INPUT -> CREATING_IDENTITY -> RESTORING_SESSION -> WRITING_DIRECTORY
          |                   |                    |                    |
        FAILED              FAILED        FAILED (orphaned id)   COMPLETED | ORPHAN_ACCOUNT

The restore sits strictly between the two writes: after identity creation the
ambient session belongs to the new, unprivileged account, and the directory
procedure authorizes from the ambient session.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Coroutine
from typing import Any

from provisioning_console.directory.records import DirectoryRecord
from provisioning_console.directory.roles import RoleCatalog
from provisioning_console.errors import (
    ConflictError,
    DirectoryError,
    DirectoryUnavailableError,
    DirectoryValidationError,
    IdentityError,
    NoActiveSessionError,
    SessionRestoreError,
    ValidationError,
)
from provisioning_console.identity.client import IdentityAccount
from provisioning_console.observability.logging import get_logger
from provisioning_console.provisioning.directory import DirectoryWriter
from provisioning_console.provisioning.identity import IdentityProvisioner
from provisioning_console.provisioning.models import Profile, ProvisioningRequest
from provisioning_console.provisioning.outcomes import (
    Bucket,
    Completed,
    Failed,
    OrphanAccount,
    Outcome,
    ProvisioningRun,
    ProvisioningState,
)
from provisioning_console.provisioning.session_guard import SessionGuard, SessionHold

log = get_logger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_REQUIRED_TEXT = ("given_name", "family_name", "email", "credential")


class ProvisioningOrchestrator:
    def __init__(
        self,
        *,
        guard: SessionGuard,
        identity: IdentityProvisioner,
        writer: DirectoryWriter,
        catalog: RoleCatalog,
        directory_timeout: float | None = None,
    ) -> None:
        self._guard = guard
        self._identity = identity
        self._writer = writer
        self._catalog = catalog
        self._directory_timeout = directory_timeout

    async def provision(
        self, request: ProvisioningRequest, *, run: ProvisioningRun | None = None
    ) -> Outcome:
        run = run if run is not None else ProvisioningRun()
        self._enter(run, ProvisioningState.validating_input)
        try:
            await self._validate(request)
        except (ValidationError, DirectoryError) as e:
            return self._finish(run, Failed(reason=e))

        profile = request.profile
        async with self._guard.hold() as hold:
            if hold.snapshot is None:
                return self._finish(
                    run, Failed(reason=NoActiveSessionError("provisioning requires a signed-in operator"))
                )

            self._enter(run, ProvisioningState.creating_identity)
            try:
                account = await self._identity.create(
                    email=profile.email,
                    credential=request.credential or "",
                    attributes=request.display_attributes(),
                )
            except IdentityError as e:
                return self._finish(run, await self._after_identity_error(run, hold, e))

            run.identity_id = account.id
            hold.mark_dirty()
            return await _run_uncancellable(
                self._settle(run, hold, account, profile, request.role_id),  # type: ignore[arg-type]
                run,
            )

    async def retry_directory(
        self,
        *,
        identity_id: str,
        profile: Profile,
        role_id: int | None,
        run: ProvisioningRun | None = None,
    ) -> Outcome:
        """
        Re-run the directory write alone for an identity left orphaned by an
        earlier run. The identity is never recreated here.
        """

        run = run if run is not None else ProvisioningRun()
        run.identity_id = identity_id
        self._enter(run, ProvisioningState.validating_input, retry=True)
        try:
            await self._validate_role(role_id)
        except (ValidationError, DirectoryError) as e:
            return self._finish(run, OrphanAccount(identity_id=identity_id, reason=e))

        async with self._guard.hold() as hold:
            if hold.snapshot is None:
                return self._finish(
                    run,
                    OrphanAccount(
                        identity_id=identity_id,
                        reason=NoActiveSessionError("directory retry requires a signed-in operator"),
                    ),
                )
            return await self._write(run, identity_id, profile, role_id)  # type: ignore[arg-type]

    async def _validate(self, request: ProvisioningRequest) -> None:
        problems: dict[str, str] = {}
        for name in _REQUIRED_TEXT:
            value = getattr(request, name)
            if value is None or not str(value).strip():
                problems[name] = "required"
        if "email" not in problems and not _EMAIL_RE.match(request.profile.email):
            problems["email"] = "invalid format"
        if request.role_id is None:
            problems["role_id"] = "required"
        if problems:
            raise ValidationError("incomplete or malformed request", details={"fields": problems})
        await self._validate_role(request.role_id)

    async def _validate_role(self, role_id: int | None) -> None:
        if role_id is None:
            raise ValidationError("role id is required", details={"fields": {"role_id": "required"}})
        if not await self._catalog.contains(role_id):
            raise ValidationError(
                f"unknown role id {role_id}", details={"fields": {"role_id": "unknown role"}}
            )

    async def _after_identity_error(
        self, run: ProvisioningRun, hold: SessionHold, error: IdentityError
    ) -> Outcome:
        # A failed create can still have swapped the session (a transient error
        # after the provider acted); re-verify instead of trusting the error.
        if self._guard.matches(hold.snapshot):
            return Failed(reason=error)

        log.warning("session_changed_after_identity_error", error_kind=error.kind, error=error.message)
        self._enter(run, ProvisioningState.restoring_session, after=error.kind)
        hold.mark_dirty()
        try:
            await hold.restore()
        except SessionRestoreError as e:
            return Failed(reason=e)
        return Failed(reason=error)

    async def _settle(
        self,
        run: ProvisioningRun,
        hold: SessionHold,
        account: IdentityAccount,
        profile: Profile,
        role_id: int,
    ) -> Outcome:
        self._enter(run, ProvisioningState.restoring_session, identity_id=account.id)
        try:
            await hold.restore()
        except SessionRestoreError as e:
            return self._finish(run, Failed(reason=e, orphaned_identity_id=account.id))
        return await self._write(run, account.id, profile, role_id)

    async def _write(
        self, run: ProvisioningRun, identity_id: str, profile: Profile, role_id: int
    ) -> Outcome:
        self._enter(run, ProvisioningState.writing_directory, identity_id=identity_id)
        try:
            async with asyncio.timeout(self._directory_timeout):
                record = await self._writer.insert(
                    identity_id=identity_id, profile=profile, role_id=role_id
                )
        except ConflictError:
            # The record is already there: this is what a safe retry looks like.
            record = DirectoryRecord(
                identity_id=identity_id,
                given_name=profile.given_name,
                family_name=profile.family_name,
                email=profile.email,
                role_id=role_id,
            )
            return self._finish(run, Completed(record=record, already_existed=True))
        except TimeoutError:
            reason = DirectoryUnavailableError(
                f"directory write did not finish within {self._directory_timeout}s",
                ambiguous=True,
            )
            return self._finish(run, OrphanAccount(identity_id=identity_id, reason=reason))
        except DirectoryError as e:
            if isinstance(e, DirectoryValidationError):
                # The local role check passed, so the cached catalog is stale.
                self._catalog.invalidate()
            return self._finish(run, OrphanAccount(identity_id=identity_id, reason=e))
        return self._finish(run, Completed(record=record))

    def _enter(self, run: ProvisioningRun, state: ProvisioningState, **details: Any) -> None:
        run.transition(state, **details)
        log.info("provisioning_transition", state=str(state), **details)

    def _finish(self, run: ProvisioningRun, outcome: Outcome) -> Outcome:
        run.finish(outcome)
        reason = outcome.reason
        fields = {
            "status": outcome.status,
            "bucket": str(outcome.bucket),
            "identity_id": outcome.identity_id,
            "error_kind": reason.kind if reason is not None else None,
        }
        if outcome.bucket is Bucket.needs_attention:
            log.error("provisioning_needs_attention", **fields)
        elif outcome.bucket is Bucket.retry_safe_failure:
            log.warning("provisioning_failed", **fields)
        else:
            log.info("provisioning_completed", **fields)
        return outcome


async def _run_uncancellable(coro: Coroutine[Any, Any, Outcome], run: ProvisioningRun) -> Outcome:
    """
    Drive `coro` to completion even if the caller is cancelled meanwhile.

    Cancellation is honoured afterwards: the run record already carries the
    outcome, then CancelledError is re-raised to the caller. If `coro` itself
    raised, the cancellation is re-raised chained to that error.
    """

    task = asyncio.ensure_future(coro)
    deferred = False
    while True:
        try:
            outcome = await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.done():
                raise
            if not deferred:
                log.warning("cancellation_deferred", state=str(run.state), identity_id=run.identity_id)
            deferred = True
            continue
        except Exception as e:
            if deferred:
                log.error("cancellation_resumed_after_error", identity_id=run.identity_id, error=repr(e))
                raise asyncio.CancelledError() from e
            raise
        break

    if deferred:
        log.warning("cancellation_resumed", status=outcome.status, identity_id=run.identity_id)
        raise asyncio.CancelledError()
    return outcome


# --- Module Notes -----------------------------------------------------------
# The orchestrator never writes the directory store directly; the privileged
# procedure stays the only path, so the store's own access checks decide.

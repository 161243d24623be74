"""
provisioning_console.provisioning.outcomes

Workflow states, tagged outcomes and the per-run record.

Responsibilities:
- `ProvisioningState`: the orchestrator's state machine, with legal transitions.
- `Completed` / `Failed` / `OrphanAccount`: the closed set of results, each
  sorted into a caller-facing bucket.
- `ProvisioningRun`: mutable record of one run (state, identity id,
  transition log, outcome) that outlives cancellation of the caller.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

from provisioning_console.directory.records import DirectoryRecord
from provisioning_console.errors import ProvisioningError, SessionRestoreError


class ProvisioningState(enum.StrEnum):
    idle = "IDLE"
    validating_input = "VALIDATING_INPUT"
    creating_identity = "CREATING_IDENTITY"
    restoring_session = "RESTORING_SESSION"
    writing_directory = "WRITING_DIRECTORY"
    completed = "COMPLETED"
    failed = "FAILED"
    orphan_account = "ORPHAN_ACCOUNT"


class Bucket(enum.StrEnum):
    success = "success"
    # Nothing was created; running the whole workflow again is safe.
    retry_safe_failure = "retry_safe_failure"
    # Something exists (or the operator lost their session); do not re-run blindly.
    needs_attention = "needs_attention"


_S = ProvisioningState

_TRANSITIONS: dict[ProvisioningState, frozenset[ProvisioningState]] = {
    _S.idle: frozenset({_S.validating_input}),
    _S.validating_input: frozenset(
        {_S.creating_identity, _S.writing_directory, _S.failed, _S.orphan_account}
    ),
    _S.creating_identity: frozenset({_S.restoring_session, _S.failed}),
    _S.restoring_session: frozenset({_S.writing_directory, _S.failed}),
    _S.writing_directory: frozenset({_S.completed, _S.orphan_account}),
}

TERMINAL_STATES = frozenset({_S.completed, _S.failed, _S.orphan_account})


@dataclass(frozen=True, slots=True)
class Completed:
    record: DirectoryRecord
    # True when the store already held the record (a retry landing twice).
    already_existed: bool = False

    status: ClassVar[str] = "completed"
    state: ClassVar[ProvisioningState] = _S.completed

    @property
    def identity_id(self) -> str:
        return self.record.identity_id

    @property
    def reason(self) -> None:
        return None

    @property
    def bucket(self) -> Bucket:
        return Bucket.success

    @property
    def reload_directory(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failed:
    reason: ProvisioningError
    # Set when an identity was created but the run could not go on to write it.
    orphaned_identity_id: str | None = None

    status: ClassVar[str] = "failed"
    state: ClassVar[ProvisioningState] = _S.failed

    @property
    def identity_id(self) -> str | None:
        return self.orphaned_identity_id

    @property
    def bucket(self) -> Bucket:
        if self.orphaned_identity_id or isinstance(self.reason, SessionRestoreError):
            return Bucket.needs_attention
        return Bucket.retry_safe_failure

    @property
    def reload_directory(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class OrphanAccount:
    identity_id: str
    reason: ProvisioningError

    status: ClassVar[str] = "orphan_account"
    state: ClassVar[ProvisioningState] = _S.orphan_account

    @property
    def bucket(self) -> Bucket:
        return Bucket.needs_attention

    @property
    def reload_directory(self) -> bool:
        return False


Outcome = Completed | Failed | OrphanAccount


@dataclass(slots=True)
class ProvisioningRun:
    state: ProvisioningState = _S.idle
    identity_id: str | None = None
    transitions: list[dict[str, Any]] = field(default_factory=list)
    outcome: Outcome | None = None

    def transition(self, state: ProvisioningState, **details: Any) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if state not in allowed:
            raise RuntimeError(f"illegal provisioning transition {self.state} -> {state}")
        self.state = state
        self.transitions.append(
            {"state": str(state), "at": datetime.now(tz=UTC).isoformat(), **details}
        )

    def finish(self, outcome: Outcome) -> Outcome:
        details: dict[str, Any] = {}
        if outcome.identity_id:
            details["identity_id"] = outcome.identity_id
        if outcome.reason is not None:
            details["error_kind"] = outcome.reason.kind
        self.transition(outcome.state, **details)
        self.outcome = outcome
        return outcome

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES


# --- Module Notes -----------------------------------------------------------
# Outcomes are values, not exceptions: a partial failure has to survive being
# passed through the service, the ledger and the API without being flattened
# into a generic error.

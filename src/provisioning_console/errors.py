"""
provisioning_console.errors

Error taxonomy for the provisioning workflow.

Responsibilities:
- Classify failures by origin: local validation, identity provider, session
  restore, directory store.
- Give every error a stable `kind` string used in API bodies and the ledger.
"""

from __future__ import annotations

from typing import Any, ClassVar


class ProvisioningError(Exception):
    kind: ClassVar[str] = "provisioning_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationError(ProvisioningError):
    """Request rejected locally; nothing was sent to either store."""

    kind = "validation_error"


class NoActiveSessionError(ProvisioningError):
    kind = "no_active_session"


# --- Identity provider ------------------------------------------------------


class IdentityError(ProvisioningError):
    kind = "identity_error"


class DuplicateAccountError(IdentityError):
    kind = "duplicate_account"


class WeakCredentialError(IdentityError):
    kind = "weak_credential"


class TransientError(IdentityError):
    """Provider unreachable or overloaded. Session state is unknown afterwards."""

    kind = "transient_error"


class InvalidSessionError(IdentityError):
    # Raised by token/user endpoints when a credential is rejected.
    kind = "invalid_session"


class SessionRestoreError(ProvisioningError):
    """
    The operator's session could not be re-established.

    Higher severity than any request error: the operator has lost their own
    privileges mid-workflow, and any identity created in the run is orphaned.
    """

    kind = "session_restore_error"

    def __init__(
        self,
        message: str,
        *,
        owner_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.owner_id = owner_id
        # Set when the restore ran while another exception was leaving the run.
        self.original: BaseException | None = None


# --- Directory store --------------------------------------------------------


class DirectoryError(ProvisioningError):
    kind = "directory_error"


class AuthorizationError(DirectoryError):
    kind = "authorization_error"


class ConflictError(DirectoryError):
    """A record already exists for this identity id (a successful retry)."""

    kind = "conflict"


class DirectoryValidationError(DirectoryError, ValidationError):
    kind = "directory_validation_error"


class DirectoryUnavailableError(DirectoryError):
    kind = "directory_unavailable"

    def __init__(
        self,
        message: str,
        *,
        ambiguous: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        # Ambiguous: the request may have reached the store, so the write may exist.
        self.ambiguous = ambiguous
        self.details.setdefault("ambiguous", ambiguous)


# --- Module Notes -----------------------------------------------------------
# `DirectoryValidationError` is also a `ValidationError` so callers can treat bad
# role ids the same way whether they were caught locally or by the store.

"""
provisioning_console.identity.session

Ambient session model.

Responsibilities:
- `AdminSession`: immutable credential pair + owner of an authenticated session.
- `AmbientSession`: the process-wide "currently authenticated as" holder that
  provider calls read and (as a side effect) replace, plus the lock that
  serializes every session-dependent operation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from provisioning_console.auth.jwt import read_unverified_claims
from provisioning_console.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AdminSession:
    access_token: str
    refresh_token: str
    user_id: str
    expires_at: int
    email: str | None = None

    def __repr__(self) -> str:
        # Tokens stay out of reprs (and therefore out of tracebacks and logs).
        return f"AdminSession(user_id={self.user_id!r}, expires_at={self.expires_at})"

    def expires_within(self, seconds: float, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return self.expires_at - seconds <= current

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AdminSession:
        """
        Build from a provider session body:
        `{access_token, refresh_token, expires_in, expires_at, user: {id, email}}`.
        """

        access_token = str(payload["access_token"])
        user = payload.get("user") or {}
        claims = read_unverified_claims(access_token)

        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = int(time.time()) + int(payload["expires_in"])
        if expires_at is None:
            expires_at = claims.get("exp", 0)

        return cls(
            access_token=access_token,
            refresh_token=str(payload.get("refresh_token", "")),
            user_id=str(user.get("id") or claims.get("sub", "")),
            expires_at=int(expires_at),
            email=user.get("email") or claims.get("email"),
        )


class AmbientSession:
    """
    Process-wide mutable session state.

    Provider calls that sign somebody in write here, whether or not the caller
    wanted that. `lock` must be held by any top-level operation that reads the
    session and cannot tolerate it changing underneath (provisioning, catalog
    loads, listings, operator sign-in).
    """

    def __init__(self, initial: AdminSession | None = None) -> None:
        self._current = initial
        self.lock = asyncio.Lock()

    @property
    def current(self) -> AdminSession | None:
        return self._current

    @property
    def owner_id(self) -> str | None:
        return self._current.user_id if self._current else None

    def replace(self, session: AdminSession, *, reason: str) -> None:
        previous = self.owner_id
        self._current = session
        log.info(
            "ambient_session_replaced",
            reason=reason,
            previous_owner=previous,
            owner=session.user_id,
        )

    def clear(self, *, reason: str) -> None:
        previous = self.owner_id
        self._current = None
        log.warning("ambient_session_cleared", reason=reason, previous_owner=previous)


# --- Module Notes -----------------------------------------------------------
# There is exactly one AmbientSession per process (created in the app lifespan);
# clients receive it by reference so the provider's side effects are visible
# everywhere, just as they would be in a browser client.

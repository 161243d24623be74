"""
provisioning_console.identity.client

HTTP client boundary for the identity provider (GoTrue-style `/auth/v1/*`).

Responsibilities:
- Create credentialed accounts (`sign_up`), sign the operator in, refresh and
  reinstate sessions.
- Reproduce the provider's documented side effect: any response that carries a
  session replaces the ambient session.
- Classify provider failures into the identity error taxonomy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from provisioning_console.auth.jwt import read_unverified_claims
from provisioning_console.errors import (
    DuplicateAccountError,
    IdentityError,
    InvalidSessionError,
    TransientError,
    WeakCredentialError,
)
from provisioning_console.identity.session import AdminSession, AmbientSession
from provisioning_console.observability.logging import get_logger
from provisioning_console.settings import Settings

log = get_logger(__name__)

_DUPLICATE_CODES = frozenset({"user_already_exists", "email_exists"})
_SESSION_REJECTED = frozenset({400, 401, 403, 404})


@dataclass(frozen=True, slots=True)
class IdentityAccount:
    id: str
    email: str


class IdentityProviderClient:
    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        ambient: AmbientSession,
    ) -> None:
        self._settings = settings
        self._http = http
        self._ambient = ambient

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        key = self._settings.provider_api_key
        return {"apikey": key, "Authorization": f"Bearer {access_token or key}"}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"identity provider timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"identity provider unreachable: {e}") from e

    async def sign_up(
        self, *, email: str, password: str, attributes: dict[str, Any]
    ) -> IdentityAccount:
        r = await self._send(
            "POST",
            "/auth/v1/signup",
            headers=self._headers(),
            json={"email": email, "password": password, "data": attributes},
        )
        if r.is_error:
            raise _classify_signup_error(r)

        try:
            body = r.json()
        except ValueError as e:
            # Accepted but unreadable: the account (and a session swap) may exist.
            raise TransientError("unreadable signup response", details={"email": email}) from e

        user = (body.get("user") or {}) if body.get("access_token") else body

        # With confirmations enabled the provider answers an existing email with
        # an obfuscated user that has no identities instead of an error.
        if user.get("identities") == []:
            raise DuplicateAccountError("User already registered", details={"email": email})
        if not user.get("id"):
            raise IdentityError("identity provider returned no account id", details={"email": email})

        if body.get("access_token"):
            # Provider signed the new account in: the ambient session now belongs to it.
            self._ambient.replace(AdminSession.from_payload(body), reason="sign_up")
        return IdentityAccount(id=str(user["id"]), email=str(user.get("email") or email))

    async def sign_in_with_password(self, *, email: str, password: str) -> AdminSession:
        r = await self._send(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            headers=self._headers(),
            json={"email": email, "password": password},
        )
        if r.is_error:
            raise _classify_session_error(r)
        session = AdminSession.from_payload(r.json())
        self._ambient.replace(session, reason="sign_in")
        return session

    async def refresh(self, refresh_token: str) -> AdminSession:
        r = await self._send(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            headers=self._headers(),
            json={"refresh_token": refresh_token},
        )
        if r.is_error:
            raise _classify_session_error(r)
        return AdminSession.from_payload(r.json())

    async def get_user(self, access_token: str) -> dict[str, Any]:
        r = await self._send("GET", "/auth/v1/user", headers=self._headers(access_token))
        if r.is_error:
            raise _classify_session_error(r)
        return r.json()

    async def set_session(self, *, access_token: str, refresh_token: str) -> AdminSession:
        """
        Reinstate a session from a credential pair and make it ambient.

        A live access token is validated with the provider and kept as-is; an
        expiring or rejected one is exchanged through the refresh token.
        """

        margin = self._settings.session_expiry_margin_seconds
        claims = read_unverified_claims(access_token)
        candidate = AdminSession(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=str(claims.get("sub", "")),
            expires_at=int(claims.get("exp", 0)),
            email=claims.get("email"),
        )

        session: AdminSession | None = None
        if not candidate.expires_within(margin):
            try:
                user = await self.get_user(access_token)
            except InvalidSessionError:
                log.info("access_token_rejected_refreshing", owner=candidate.user_id)
            else:
                session = AdminSession(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    user_id=str(user.get("id") or candidate.user_id),
                    expires_at=candidate.expires_at,
                    email=user.get("email") or candidate.email,
                )

        if session is None:
            session = await self.refresh(refresh_token)

        self._ambient.replace(session, reason="set_session")
        return session


def _error_body(r: httpx.Response) -> dict[str, Any]:
    try:
        body = r.json()
    except ValueError:
        return {"msg": r.text}
    return body if isinstance(body, dict) else {"msg": str(body)}


def _message(body: dict[str, Any]) -> str:
    return str(
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
        or "identity provider error"
    )


def _classify_signup_error(r: httpx.Response) -> IdentityError:
    body = _error_body(r)
    code = str(body.get("error_code") or body.get("error") or "")
    message = _message(body)
    details = {"status": r.status_code, "error_code": code}

    if code in _DUPLICATE_CODES or "already registered" in message.lower():
        return DuplicateAccountError(message, details=details)
    if code == "weak_password":
        weak = body.get("weak_password") or {}
        details["reasons"] = list(weak.get("reasons", []))
        return WeakCredentialError(message, details=details)
    if r.status_code == 429 or r.status_code >= 500:
        return TransientError(message, details=details)
    return IdentityError(message, details=details)


def _classify_session_error(r: httpx.Response) -> IdentityError:
    body = _error_body(r)
    details = {"status": r.status_code, "error_code": body.get("error_code") or body.get("error")}
    if r.status_code in _SESSION_REJECTED:
        return InvalidSessionError(_message(body), details=details)
    if r.status_code == 429 or r.status_code >= 500:
        return TransientError(_message(body), details=details)
    return IdentityError(_message(body), details=details)


# --- Module Notes -----------------------------------------------------------
# The ambient-session side effect of `sign_up` is not optional: it is how the
# provider behaves when email confirmation is disabled, and the provisioning
# workflow is built around it (see `provisioning.session_guard`).

"""
provisioning_console.directory.client

HTTP client boundary for the directory store.

Responsibilities:
- Call privileged stored procedures (`/rest/v1/rpc/<name>`) and read tables.
- Authenticate every call with the *ambient* session's access token; the store
  enforces privileges from that token, so the client never decides access.
- Classify store failures into the directory error taxonomy.
"""

from __future__ import annotations

from typing import Any

import httpx

from provisioning_console.errors import (
    AuthorizationError,
    ConflictError,
    DirectoryError,
    DirectoryUnavailableError,
    DirectoryValidationError,
)
from provisioning_console.identity.session import AmbientSession
from provisioning_console.settings import Settings

_AUTHZ_CODES = frozenset({"42501", "PGRST301", "PGRST302"})
_CONFLICT_CODES = frozenset({"23505"})


class DirectoryClient:
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

    def _headers(self) -> dict[str, str]:
        key = self._settings.provider_api_key
        current = self._ambient.current
        token = current.access_token if current else key
        return {"apikey": key, "Authorization": f"Bearer {token}"}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            r = await self._http.request(method, path, headers=self._headers(), **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise DirectoryUnavailableError(f"directory store unreachable: {e}") from e
        except httpx.TimeoutException as e:
            # The request may have been applied; only a read-back can tell.
            raise DirectoryUnavailableError(f"directory store timed out: {e}", ambiguous=True) from e
        except httpx.TransportError as e:
            raise DirectoryUnavailableError(f"directory store transport error: {e}", ambiguous=True) from e
        if r.is_error:
            raise classify_directory_error(r)
        return r

    async def call_procedure(self, name: str, params: dict[str, Any]) -> Any:
        r = await self._send("POST", f"/rest/v1/rpc/{name}", json=params)
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    async def select(self, table: str, *, params: dict[str, str]) -> list[dict[str, Any]]:
        r = await self._send("GET", f"/rest/v1/{table}", params=params)
        rows = r.json()
        if not isinstance(rows, list):
            raise DirectoryError(f"unexpected response shape from {table}", details={"body": rows})
        return rows


def classify_directory_error(r: httpx.Response) -> DirectoryError:
    try:
        body = r.json()
    except ValueError:
        body = {"message": r.text}
    if not isinstance(body, dict):
        body = {"message": str(body)}

    code = str(body.get("code") or "")
    message = str(body.get("message") or body.get("msg") or f"directory store returned {r.status_code}")
    details = {
        "status": r.status_code,
        "code": code,
        "hint": body.get("hint"),
        "details": body.get("details"),
    }

    if r.status_code in (401, 403) or code in _AUTHZ_CODES:
        return AuthorizationError(message, details=details)
    if r.status_code == 409 or code in _CONFLICT_CODES:
        return ConflictError(message, details=details)
    if r.status_code >= 500:
        return DirectoryUnavailableError(message, ambiguous=True, details=details)
    return DirectoryValidationError(message, details=details)


# --- Module Notes -----------------------------------------------------------
# 5xx responses are treated as ambiguous: a gateway in front of the store can
# time out or fail after the procedure has already committed.

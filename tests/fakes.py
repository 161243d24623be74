"""
tests.fakes

In-memory identity provider + directory store behind `httpx.MockTransport`.

Responsibilities:
- Serve the `/auth/v1/*` and `/rest/v1/*` endpoints the console calls, with the
  provider's real quirks: signup returns a session for the new account, the
  directory procedure authorizes from the bearer token, duplicate inserts
  answer 409/23505.
- Expose knobs for failure injection and a call log for ordering assertions.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
import jwt

from provisioning_console.identity.session import AdminSession
from provisioning_console.provisioning.models import ProvisioningRequest
from provisioning_console.services.stack import ProvisioningStack

_SIGNING_KEY = "fake-provider-signing-key"


@dataclass
class FakeAccount:
    id: str
    email: str
    password: str
    attributes: dict[str, Any] = field(default_factory=dict)


class FakeBackend:
    def __init__(self) -> None:
        self.accounts: dict[str, FakeAccount] = {}
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.admins: set[str] = set()
        self.roles: dict[int, str] = {1: "super_admin", 2: "admin", 3: "user", 999: "legacy"}
        self.rows: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str]] = []
        self.rpc_callers: list[str | None] = []

        # Failure injection
        self.signup_failure: httpx.Response | Exception | None = None
        self.rpc_failure: httpx.Response | None = None
        self.rpc_gate: asyncio.Event | None = None
        self.rpc_started = asyncio.Event()
        self.revoke_on_signup: set[str] = set()
        self.token_ttl = 3600

        self._seq = itertools.count(1)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # --- Seeding / inspection -------------------------------------------------

    def seed_operator(
        self, email: str = "ops@example.com", password: str = "Operator123!"
    ) -> FakeAccount:
        account = self._create_account(email, password, {})
        self.admins.add(account.id)
        return account

    def account(self, email: str) -> FakeAccount:
        return self.accounts[email]

    def records_for(self, identity_id: str) -> list[dict[str, Any]]:
        return [row for row in self.rows if row["id"] == identity_id]

    def revoke_sessions(self, user_id: str) -> None:
        self.access_tokens = {t: u for t, u in self.access_tokens.items() if u != user_id}
        self.refresh_tokens = {t: u for t, u in self.refresh_tokens.items() if u != user_id}

    # --- Transport --------------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/v1/signup":
            return await self._signup(request)
        if path == "/auth/v1/token":
            return self._token(request)
        if path == "/auth/v1/user":
            return self._user(request)
        if path.startswith("/rest/v1/rpc/"):
            return await self._rpc(request)
        if path == "/rest/v1/roles":
            roles = sorted(self.roles.items(), key=lambda kv: kv[1])
            return httpx.Response(200, json=[{"id": i, "name": n} for i, n in roles])
        if path == "/rest/v1/users":
            return self._users(request)
        return httpx.Response(404, json={"message": f"no route {path}"})

    async def _signup(self, request: httpx.Request) -> httpx.Response:
        body = _json(request)
        email = body["email"]
        self.calls.append(("signup", email))
        # Yield so concurrent runs get a chance to interleave if they could.
        await asyncio.sleep(0)

        if self.signup_failure is not None:
            failure, self.signup_failure = self.signup_failure, None
            if isinstance(failure, Exception):
                raise failure
            return failure
        if email in self.accounts:
            return httpx.Response(
                422,
                json={"code": 422, "error_code": "user_already_exists", "msg": "User already registered"},
            )
        if len(body.get("password", "")) < 8:
            return httpx.Response(
                422,
                json={
                    "code": 422,
                    "error_code": "weak_password",
                    "msg": "Password should be at least 8 characters.",
                    "weak_password": {"reasons": ["length"]},
                },
            )

        account = self._create_account(email, body["password"], body.get("data") or {})
        for user_id in self.revoke_on_signup:
            self.revoke_sessions(user_id)
        return httpx.Response(200, json=self.session_payload(account))

    def _token(self, request: httpx.Request) -> httpx.Response:
        grant = request.url.params.get("grant_type")
        body = _json(request)
        if grant == "password":
            account = self.accounts.get(body.get("email", ""))
            if account is None or account.password != body.get("password"):
                return httpx.Response(
                    400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
                )
            return httpx.Response(200, json=self.session_payload(account))
        if grant == "refresh_token":
            user_id = self.refresh_tokens.pop(body.get("refresh_token", ""), None)
            self.calls.append(("refresh", user_id or "unknown"))
            if user_id is None:
                return httpx.Response(
                    400,
                    json={
                        "code": 400,
                        "error_code": "refresh_token_not_found",
                        "msg": "Invalid Refresh Token: Refresh Token Not Found",
                    },
                )
            return httpx.Response(200, json=self.session_payload(self._by_id(user_id)))
        return httpx.Response(400, json={"error": "unsupported_grant_type"})

    def _user(self, request: httpx.Request) -> httpx.Response:
        user_id = self._bearer_user(request)
        self.calls.append(("user", user_id or "unknown"))
        if user_id is None:
            return httpx.Response(401, json={"code": 401, "error_code": "bad_jwt", "msg": "invalid JWT"})
        account = self._by_id(user_id)
        return httpx.Response(200, json={"id": account.id, "email": account.email})

    async def _rpc(self, request: httpx.Request) -> httpx.Response:
        params = _json(request)
        caller = self._bearer_user(request)
        self.calls.append(("rpc", params.get("p_id", "")))
        self.rpc_callers.append(caller)
        self.rpc_started.set()
        if self.rpc_gate is not None:
            await self.rpc_gate.wait()

        if self.rpc_failure is not None:
            failure, self.rpc_failure = self.rpc_failure, None
            return failure
        if caller is None or caller not in self.admins:
            return httpx.Response(
                403, json={"code": "42501", "message": "permission denied: admin required"}
            )
        if params["p_rol_id"] not in self.roles:
            return httpx.Response(
                400,
                json={
                    "code": "23503",
                    "message": 'insert or update on table "users" violates foreign key constraint "users_rol_id_fkey"',
                },
            )
        if self.records_for(params["p_id"]):
            return httpx.Response(
                409,
                json={"code": "23505", "message": 'duplicate key value violates unique constraint "users_pkey"'},
            )

        row = {
            "id": params["p_id"],
            "email": params["p_email"],
            "name": params["p_name"],
            "last_name": params["p_last_name"],
            "rol_id": params["p_rol_id"],
            "created_at": datetime.now(tz=UTC).isoformat(),
        }
        self.rows.append(row)
        return httpx.Response(200, json=row)

    def _users(self, request: httpx.Request) -> httpx.Response:
        rows = list(reversed(self.rows))
        wanted = request.url.params.get("id")
        if wanted and wanted.startswith("eq."):
            rows = [r for r in rows if r["id"] == wanted[3:]]
        return httpx.Response(200, json=rows)

    # --- Internals ----------------------------------------------------------------

    def _create_account(self, email: str, password: str, attributes: dict[str, Any]) -> FakeAccount:
        account = FakeAccount(id=str(uuid.uuid4()), email=email, password=password, attributes=attributes)
        self.accounts[email] = account
        return account

    def _by_id(self, user_id: str) -> FakeAccount:
        return next(a for a in self.accounts.values() if a.id == user_id)

    def session_payload(self, account: FakeAccount) -> dict[str, Any]:
        expires_at = int(time.time()) + self.token_ttl
        access = jwt.encode(
            {"sub": account.id, "email": account.email, "exp": expires_at, "jti": next(self._seq)},
            _SIGNING_KEY,
            algorithm="HS256",
        )
        refresh = f"rt-{next(self._seq)}"
        self.access_tokens[access] = account.id
        self.refresh_tokens[refresh] = account.id
        return {
            "access_token": access,
            "token_type": "bearer",
            "expires_in": self.token_ttl,
            "expires_at": expires_at,
            "refresh_token": refresh,
            "user": {"id": account.id, "email": account.email},
        }

    def _bearer_user(self, request: httpx.Request) -> str | None:
        header = request.headers.get("authorization", "")
        token = header.removeprefix("Bearer ").strip()
        return self.access_tokens.get(token)


def _json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content or b"{}")


async def sign_in_operator(stack: ProvisioningStack, backend: FakeBackend) -> AdminSession:
    operator = backend.seed_operator()
    return await stack.identity.sign_in_with_password(email=operator.email, password=operator.password)


def jane(**overrides: Any) -> ProvisioningRequest:
    values: dict[str, Any] = {
        "given_name": "Jane",
        "family_name": "Doe",
        "email": "jane@x.com",
        "credential": "Secret123!",
        "role_id": 2,
    }
    values.update(overrides)
    return ProvisioningRequest(**values)

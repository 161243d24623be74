"""
provisioning_console.directory.roles

Read-only role catalog.

Responsibilities:
- Load the valid role ids from the directory store and cache them for a TTL.
- Answer "is this role id known" for local request validation.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from provisioning_console.directory.client import DirectoryClient
from provisioning_console.directory.records import Role
from provisioning_console.identity.session import AmbientSession
from provisioning_console.observability.logging import get_logger

log = get_logger(__name__)


class RoleCatalog:
    def __init__(
        self,
        *,
        client: DirectoryClient,
        ambient: AmbientSession,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ambient = ambient
        self._ttl = ttl_seconds
        self._clock = clock
        self._roles: dict[int, Role] | None = None
        self._loaded_at = 0.0

    def _fresh(self) -> bool:
        return self._roles is not None and self._clock() - self._loaded_at < self._ttl

    async def roles(self) -> list[Role]:
        if not self._fresh():
            # Reads go out under the ambient session, so they wait for any
            # provisioning run that has the session swapped.
            async with self._ambient.lock:
                if not self._fresh():
                    rows = await self._client.select(
                        "roles", params={"select": "id,name", "order": "name"}
                    )
                    self._roles = {r.id: r for r in (Role.from_row(row) for row in rows)}
                    self._loaded_at = self._clock()
                    log.info("role_catalog_loaded", count=len(self._roles))
        return list(self._roles.values())  # type: ignore[union-attr]

    async def contains(self, role_id: int) -> bool:
        return any(r.id == role_id for r in await self.roles())

    def invalidate(self) -> None:
        self._roles = None

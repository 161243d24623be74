"""
provisioning_console.directory.listing

Cached listing of directory records (the console's account table).

Responsibilities:
- Load the newest-first account listing once and serve it from cache.
- Drop the cache when a provisioning run completes (the "reload" signal).
"""

from __future__ import annotations

from provisioning_console.directory.client import DirectoryClient
from provisioning_console.directory.records import DirectoryRecord
from provisioning_console.identity.session import AmbientSession


class DirectoryListing:
    def __init__(self, *, client: DirectoryClient, ambient: AmbientSession) -> None:
        self._client = client
        self._ambient = ambient
        self._records: list[DirectoryRecord] | None = None

    @property
    def is_loaded(self) -> bool:
        return self._records is not None

    async def accounts(self) -> list[DirectoryRecord]:
        if self._records is None:
            async with self._ambient.lock:
                rows = await self._client.select(
                    "users", params={"select": "*", "order": "created_at.desc"}
                )
            self._records = [DirectoryRecord.from_row(row) for row in rows]
        return list(self._records)

    def invalidate(self) -> None:
        self._records = None

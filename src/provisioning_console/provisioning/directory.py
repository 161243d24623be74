"""
provisioning_console.provisioning.directory

Directory write step.

Responsibilities:
- Insert the profile/role record through the store's privileged procedure,
  under whatever session is ambient (it must be the operator's).
- Read a record back by identity id.
"""

from __future__ import annotations

from typing import Any

from provisioning_console.directory.client import DirectoryClient
from provisioning_console.directory.records import DirectoryRecord
from provisioning_console.errors import DirectoryUnavailableError
from provisioning_console.provisioning.models import Profile


class DirectoryWriter:
    def __init__(self, *, client: DirectoryClient, procedure: str) -> None:
        self._client = client
        self._procedure = procedure

    async def insert(self, *, identity_id: str, profile: Profile, role_id: int) -> DirectoryRecord:
        """
        Raises `ConflictError` when a record for `identity_id` already exists;
        the store keeps exactly one record per identity.
        """

        result = await self._client.call_procedure(
            self._procedure,
            {
                "p_id": identity_id,
                "p_email": profile.email,
                "p_name": profile.given_name,
                "p_last_name": profile.family_name,
                "p_rol_id": role_id,
            },
        )
        row = _first_row(result)
        if row is not None:
            return DirectoryRecord.from_row(row)

        # Procedures declared `returns void` acknowledge without the row.
        record = await self.fetch(identity_id)
        if record is None:
            raise DirectoryUnavailableError(
                "insert acknowledged but record is not readable",
                ambiguous=True,
                details={"identity_id": identity_id},
            )
        return record

    async def fetch(self, identity_id: str) -> DirectoryRecord | None:
        rows = await self._client.select(
            "users", params={"select": "*", "id": f"eq.{identity_id}"}
        )
        return DirectoryRecord.from_row(rows[0]) if rows else None


def _first_row(result: Any) -> dict[str, Any] | None:
    if isinstance(result, list):
        result = result[0] if result else None
    if isinstance(result, dict) and result.get("id"):
        return result
    return None

"""
provisioning_console.directory.records

Row types read from and written to the directory store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class Role:
    id: int
    name: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Role:
        return cls(id=int(row["id"]), name=str(row["name"]))


@dataclass(frozen=True, slots=True)
class DirectoryRecord:
    identity_id: str
    given_name: str | None
    family_name: str | None
    email: str
    role_id: int | None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> DirectoryRecord:
        # Column names are the store's: name / last_name / rol_id.
        created_at = row.get("created_at")
        role_id = row.get("rol_id")
        return cls(
            identity_id=str(row["id"]),
            given_name=row.get("name"),
            family_name=row.get("last_name"),
            email=str(row.get("email") or ""),
            role_id=int(role_id) if role_id is not None else None,
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "email": self.email,
            "role_id": self.role_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

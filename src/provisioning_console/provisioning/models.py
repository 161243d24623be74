"""
provisioning_console.provisioning.models

Operator-submitted request types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Profile:
    given_name: str
    family_name: str
    email: str


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """
    Consumed once by the orchestrator. Fields are optional at construction so
    that missing input is reported as a validation failure, not a TypeError.
    """

    given_name: str | None
    family_name: str | None
    email: str | None
    credential: str | None = field(repr=False)
    role_id: int | None

    @property
    def profile(self) -> Profile:
        return Profile(
            given_name=(self.given_name or "").strip(),
            family_name=(self.family_name or "").strip(),
            email=(self.email or "").strip(),
        )

    def display_attributes(self) -> dict[str, Any]:
        profile = self.profile
        return {"name": profile.given_name, "last_name": profile.family_name}

"""
provisioning_console.provisioning.identity

Identity creation step.

Responsibilities:
- Create the credentialed account at the identity provider.
- Nothing else: on success the provider has already replaced the ambient
  session, and undoing that is the session guard's job.
"""

from __future__ import annotations

from typing import Any

from provisioning_console.identity.client import IdentityAccount, IdentityProviderClient
from provisioning_console.observability.logging import get_logger

log = get_logger(__name__)


class IdentityProvisioner:
    def __init__(self, *, client: IdentityProviderClient) -> None:
        self._client = client

    async def create(
        self, *, email: str, credential: str, attributes: dict[str, Any]
    ) -> IdentityAccount:
        account = await self._client.sign_up(email=email, password=credential, attributes=attributes)
        log.info("identity_created", identity_id=account.id)
        return account

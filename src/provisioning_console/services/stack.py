"""
provisioning_console.services.stack

Composition of the provisioning stack.

Responsibilities:
- Build the single ambient session and every component that shares it.
- Keep construction in one place so the API lifespan and tests wire it the same way.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from provisioning_console.directory.client import DirectoryClient
from provisioning_console.directory.listing import DirectoryListing
from provisioning_console.directory.roles import RoleCatalog
from provisioning_console.identity.client import IdentityProviderClient
from provisioning_console.identity.session import AmbientSession
from provisioning_console.provisioning.directory import DirectoryWriter
from provisioning_console.provisioning.identity import IdentityProvisioner
from provisioning_console.provisioning.orchestrator import ProvisioningOrchestrator
from provisioning_console.provisioning.session_guard import SessionGuard
from provisioning_console.settings import Settings


@dataclass(slots=True)
class ProvisioningStack:
    ambient: AmbientSession
    identity: IdentityProviderClient
    directory: DirectoryClient
    catalog: RoleCatalog
    listing: DirectoryListing
    guard: SessionGuard
    writer: DirectoryWriter
    orchestrator: ProvisioningOrchestrator

    @classmethod
    def build(
        cls,
        *,
        settings: Settings,
        identity_http: httpx.AsyncClient,
        directory_http: httpx.AsyncClient,
        ambient: AmbientSession | None = None,
    ) -> ProvisioningStack:
        ambient = ambient if ambient is not None else AmbientSession()
        identity = IdentityProviderClient(settings=settings, http=identity_http, ambient=ambient)
        directory = DirectoryClient(settings=settings, http=directory_http, ambient=ambient)
        catalog = RoleCatalog(
            client=directory, ambient=ambient, ttl_seconds=settings.role_catalog_ttl_seconds
        )
        guard = SessionGuard(ambient=ambient, identity=identity)
        writer = DirectoryWriter(client=directory, procedure=settings.directory_procedure)
        orchestrator = ProvisioningOrchestrator(
            guard=guard,
            identity=IdentityProvisioner(client=identity),
            writer=writer,
            catalog=catalog,
            directory_timeout=settings.directory_write_timeout_seconds,
        )
        return cls(
            ambient=ambient,
            identity=identity,
            directory=directory,
            catalog=catalog,
            listing=DirectoryListing(client=directory, ambient=ambient),
            guard=guard,
            writer=writer,
            orchestrator=orchestrator,
        )


def build_http_client(
    base_url: str, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        transport=transport,
    )

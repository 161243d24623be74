"""
provisioning_console.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for DB sessions, the provisioning stack and service.
- Encapsulate app.state access patterns.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from provisioning_console.services.provisioning_service import ProvisioningService
from provisioning_console.services.stack import ProvisioningStack


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed by the service layer.
    async with session_factory() as session:
        yield session


def provisioning_stack(request: Request) -> ProvisioningStack:
    # Built once in the app lifespan; shared by every request in the process.
    return request.app.state.provisioning  # type: ignore[attr-defined]


def provisioning_service(
    session: AsyncSession = Depends(db_session),
    stack: ProvisioningStack = Depends(provisioning_stack),
) -> ProvisioningService:
    return ProvisioningService(
        session=session, orchestrator=stack.orchestrator, listing=stack.listing
    )

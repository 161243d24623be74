from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from provisioning_console.db.init_db import init_db
from provisioning_console.db.session import create_engine, create_sessionmaker
from provisioning_console.services.stack import ProvisioningStack, build_http_client
from provisioning_console.settings import Settings

from fakes import FakeBackend


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        identity_base_url="http://provider.test",
        directory_base_url="http://provider.test",
        provider_api_key="anon-key",
        jwt_secret="test-secret-value-long-enough-for-hs256",
        directory_write_timeout_seconds=5.0,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def stack(settings: Settings, backend: FakeBackend) -> ProvisioningStack:
    transport = backend.transport()
    return ProvisioningStack.build(
        settings=settings,
        identity_http=build_http_client(settings.identity_base_url, settings, transport=transport),
        directory_http=build_http_client(settings.directory_base_url, settings, transport=transport),
    )


@pytest_asyncio.fixture
async def ledger(settings: Settings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_engine(settings)
    await init_db(engine)
    try:
        yield create_sessionmaker(engine)
    finally:
        await engine.dispose()

"""
测试公共夹具：每个测试一个独立的 SQLite 文件库
"""
from datetime import datetime, timezone

import pytest

from checkout.core.config import GatewayConfig
from checkout.core.database import Base, create_engine_and_session
from tests.helpers import TEST_KEY, FixedClock


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        pid="1001",
        key=TEST_KEY,
        base_url="https://shop.example.com",
    )


@pytest.fixture
async def session_factory(tmp_path):
    engine, factory = create_engine_and_session(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 4, 1, tzinfo=timezone.utc))

"""Shared fixtures: a throwaway SQLite database per test and an app client bound to it."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.application.services.fee_calculator import FeeCalculator
from app.application.services.fee_settings_cache import InProcessFeeSettingsCache
from app.application.services.platform_health_service import PlatformHealthMonitor
from app.application.services.platform_health_store import PlatformHealthStore
from app.application.services.system_resources import ResourceUsage
from app.core.config import settings
from app.core.security import create_access_token
from app.domain import models  # noqa: F401
from app.infrastructure.db.base import Base
from app.infrastructure.db.session import get_async_db
from main import app


class StaticResourceProbe:
    def __init__(self, memory: float = 50.0, cpu: float = 50.0, disk: float = 40.0) -> None:
        self.usage = ResourceUsage(
            memory_usage_percent=memory,
            cpu_usage_percent=cpu,
            disk_usage_percent=disk,
            process_rss_bytes=64 * 1024 * 1024,
        )

    def sample(self) -> ResourceUsage:
        return self.usage


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'platform_ops.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
def fee_calculator(session_factory):
    return FeeCalculator(session_factory, InProcessFeeSettingsCache())


@pytest.fixture
def health_monitor(session_factory):
    return PlatformHealthMonitor(PlatformHealthStore(session_factory), StaticResourceProbe())


@pytest.fixture
async def client(session_factory, fee_calculator, health_monitor):
    async def override_get_async_db():
        async with session_factory() as db:
            yield db

    previous_state = (app.state.fee_calculator, app.state.health_monitor)
    app.state.fee_calculator = fee_calculator
    app.state.health_monitor = health_monitor
    app.dependency_overrides[get_async_db] = override_get_async_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    await health_monitor.wait_for_background_tasks()
    app.dependency_overrides.clear()
    app.state.fee_calculator, app.state.health_monitor = previous_state


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token("admin-user", email="ops@marketplace.test", role="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def creator_headers() -> dict:
    token = create_access_token("creator-user", email="creator@marketplace.test", role="creator")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def restore_admin_emails():
    original = settings.platform_admin_emails
    yield
    settings.platform_admin_emails = original

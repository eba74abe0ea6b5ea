"""
Shared pytest fixtures – in-memory SQLite for unit tests (no real Postgres needed).
"""
from __future__ import annotations

import os

# Settings are read once at import time, so the environment goes first
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = "testsecret"

os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["MAKSEKESKUS_API_SECRET_KEY"] = TEST_SECRET
os.environ.setdefault("MAKSEKESKUS_SHOP_ID", "shop-test")
os.environ.setdefault("MAKSEKESKUS_API_OPEN_KEY", "open-test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_storefront")
os.environ.pop("CATALOG_SYNC_TOKEN", None)

from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from storefront.database import get_db
from storefront.main import app
from storefront.models import Base


@pytest_asyncio.fixture(scope="function")
async def db_factory() -> AsyncGenerator[async_sessionmaker, None]:
    # One shared connection so every session sees the same in-memory database
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_factory) -> AsyncGenerator[AsyncSession, None]:
    async with db_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_factory) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with db_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as http:
        yield http
    app.dependency_overrides.clear()

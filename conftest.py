"""Shared pytest fixtures for the policy service tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path
from uuid import uuid4

# Point the engine at a throwaway SQLite file before anything imports app.core.config
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="policy-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR / 'policies.sqlite'}"
os.environ["ENFORCE_POLICY_ACCESS"] = "0"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core import config  # noqa: E402
from app.core.database.engine import AsyncSessionLocal, drop_db, init_db  # noqa: E402
from app.features.policies.repository import InMemoryPolicyRepository  # noqa: E402


@pytest_asyncio.fixture()
async def database() -> AsyncIterator[None]:
    """Create fresh tables for a test and drop them afterwards."""

    await drop_db()
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture()
async def db_session(database: None) -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture(scope="session")
def app() -> FastAPI:
    from app.main import app as fastapi_app

    return fastapi_app


@pytest_asyncio.fixture()
async def async_client(app: FastAPI, database: None) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the FastAPI app."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture()
def enforce_access(monkeypatch: pytest.MonkeyPatch) -> None:
    """Turn on policy-based protection of the management routes."""

    monkeypatch.setattr(config, "ENFORCE_POLICY_ACCESS", True)


@pytest.fixture()
def memory_repository() -> InMemoryPolicyRepository:
    return InMemoryPolicyRepository()


@pytest.fixture()
def profile_id() -> str:
    return f"servicing:srf:{uuid4().hex[:9]}"


@pytest.fixture()
def user_id() -> str:
    return str(uuid4())

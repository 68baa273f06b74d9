"""
Pytest configuration and shared fixtures.

Tests run against a fresh SQLite file per test unless TEST_DATABASE_URL
points at another database (e.g. a PostgreSQL test instance).
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.api.main import create_app
from jobqueue.config import WorkerConfig
from jobqueue.db import Base, close_db, get_engine, get_session_factory, init_db


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get the test database URL."""
    return os.getenv(
        "TEST_DATABASE_URL",
        f"sqlite+aiosqlite:///{tmp_path / 'jobqueue_test.db'}",
    )


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[str]:
    """Initialize the global engine against an empty delayed_jobs table."""
    await close_db()
    await init_db(database_url)

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield database_url

    await close_db()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests. Commit before handing work to a worker."""
    async with get_session_factory()() as session:
        yield session
        await session.rollback()


@pytest.fixture
def worker_config(tmp_path: Path) -> WorkerConfig:
    """Create a fast, quiet worker configuration."""
    return WorkerConfig(
        worker_name="test-worker",
        sleep_seconds=0.01,
        pid_dir=str(tmp_path / "pids"),
        quiet=True,
    )


@pytest_asyncio.fixture
async def app(database: str) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app for testing with initialized database."""
    yield create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def created_job(client: AsyncClient) -> dict:
    """Enqueue an echo job through the API."""
    response = await client.post(
        "/v1/jobs",
        json={"kind": "echo", "data": {"message": "hello"}, "priority": 2},
    )
    assert response.status_code == 201
    return response.json()

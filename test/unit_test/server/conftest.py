import asyncio
import os
from typing import Any, AsyncGenerator, Dict, List
from unittest.mock import patch

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Set test database URL before importing app
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from lakitu_ai.agent_core.gateway.client import GatewayResponse  # noqa: E402
from lakitu_ai.agent_core.repos.sql import create_all, create_engine, create_sessionmaker  # noqa: E402
from lakitu_ai.agent_core.schemas.domain import ToolResult  # noqa: E402


class FakeGateway:
    """Scripted model gateway; the last scripted item repeats once the script runs out."""

    def __init__(self) -> None:
        self.script: List[Any] = [GatewayResponse(text="done")]
        self.calls: List[Dict[str, Any]] = []
        self.hang = False

    def reply(self, *items: Any) -> None:
        self.script = list(items)

    async def complete(self, messages, *, tool=None, model=None, max_tokens=4096, temperature=None):
        self.calls.append({"messages": list(messages), "model": model})
        if self.hang:
            await asyncio.Event().wait()
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeExecutor:
    def __init__(self) -> None:
        self.codes: List[str] = []

    async def execute(self, code: str, *, timeout_ms: int) -> ToolResult:
        self.codes.append(code)
        return ToolResult(success=True, output=f"ran {code}")


@pytest_asyncio.fixture(name="gateway")
async def gateway_fixture() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture(name="executor")
async def executor_fixture() -> FakeExecutor:
    return FakeExecutor()


@pytest_asyncio.fixture(name="orchestrator")
async def orchestrator_fixture(gateway: FakeGateway, executor: FakeExecutor) -> AsyncGenerator[Any, None]:
    """An orchestrator on a private in-memory database with a scripted gateway and executor."""
    from lakitu_ai.server.core.config import Settings
    from lakitu_ai.server.services.orchestrator import OrchestratorService

    engine = create_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    await create_all(engine)

    orchestrator = OrchestratorService(
        settings=Settings(AGENT_RUN_TIMEOUT_MS=0, SUBAGENT_WORKERS=1),
        session_factory=create_sessionmaker(engine),
        gateway=gateway,
        executor=executor,
    )
    yield orchestrator

    await orchestrator.stop()
    await engine.dispose()


@pytest_asyncio.fixture(name="client")
async def client_fixture(orchestrator: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and overridden dependencies."""
    from lakitu_ai.server.main import app
    from lakitu_ai.server.services.orchestrator import get_orchestrator

    def get_orchestrator_override():
        return orchestrator

    app.dependency_overrides[get_orchestrator] = get_orchestrator_override

    # Mock the lifespan to prevent database initialization during tests
    async def mock_lifespan(app):
        yield

    with patch("lakitu_ai.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()


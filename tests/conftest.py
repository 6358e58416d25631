"""Pytest configuration and fixtures.

Provides common fixtures for all tests including:
- Settings and credential encryption
- An in-memory credential store with one credential per type
- A fake code runner
- An HTTP client bound to the ASGI app
"""

from typing import Any, AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from flowhook.config import Settings
from flowhook.core.encryption import CredentialEncryption
from flowhook.core.orchestrator import WorkflowOrchestrator
from flowhook.models.execution import TriggerEvent
from flowhook.nodes.base import NodeContext
from flowhook.services.code_runner import CodeRunResult
from flowhook.services.credential_service import InMemoryCredentialStore
from flowhook.services.workflow_service import InMemoryWorkflowSource


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        encryption_key=CredentialEncryption.generate_key(),
        template_timezone="UTC",
        debug=True,
    )


@pytest.fixture
def encryption(test_settings: Settings) -> CredentialEncryption:
    """Create encryption instance from the test key."""
    return CredentialEncryption(test_settings.encryption_key.get_secret_value())


@pytest.fixture
def credential_store(encryption: CredentialEncryption) -> InMemoryCredentialStore:
    """Encrypted store holding one credential of each type."""
    store = InMemoryCredentialStore(encryption)
    store.add("bearer-1", "bearer", {"token": "secret-token"})
    store.add("oauth-1", "oauth2", {"accessToken": "Bearer oauth-token"})
    store.add("apikey-1", "api_key", {"key": "k-123", "headerName": "X-API-Key"})
    store.add("basic-1", "basic", {"username": "alice", "password": "s3cret"})
    store.add("custom-1", "custom", {"headerName": "X-Custom", "headerValue": "custom-value"})
    store.add("llm-1", "api_key", {"headerValue": "Bearer sk-test"})
    return store


class FakeCodeRunner:
    """Code runner returning canned results and remembering scripts."""

    def __init__(self, stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self.result = CodeRunResult(stdout=stdout, stderr=stderr, returncode=returncode)
        self.scripts: list[str] = []

    async def run(self, script: str) -> CodeRunResult:
        self.scripts.append(script)
        return self.result


@pytest.fixture
def fake_runner() -> FakeCodeRunner:
    """Code runner that prints an object."""
    return FakeCodeRunner(stdout='{"ok": true}\n')


@pytest.fixture
def make_runner() -> type[FakeCodeRunner]:
    """Fake code runner class for tests needing other canned results."""
    return FakeCodeRunner


@pytest.fixture
def mock_transport() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.MockTransport]:
    """Build an httpx mock transport that records requests."""

    def build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
        def recording(request: httpx.Request) -> httpx.Response:
            build.requests.append(request)
            return handler(request)

        return httpx.MockTransport(recording)

    build.requests = []
    return build


@pytest.fixture
def make_context(
    credential_store: InMemoryCredentialStore,
    test_settings: Settings,
) -> Callable[..., NodeContext]:
    """Build node contexts sharing the test credential store."""

    def build(**overrides: Any) -> NodeContext:
        values: dict[str, Any] = {
            "execution_id": "exec-test",
            "node_id": "node-test",
            "trigger": TriggerEvent(),
            "credentials": credential_store,
            "settings": test_settings,
        }
        values.update(overrides)
        return NodeContext(**values)

    return build


@pytest.fixture
def orchestrator(
    credential_store: InMemoryCredentialStore,
    fake_runner: FakeCodeRunner,
    test_settings: Settings,
) -> WorkflowOrchestrator:
    """Orchestrator with the test credential store and fake code runner."""
    return WorkflowOrchestrator(
        credentials=credential_store,
        code_runner=fake_runner,
        settings=test_settings,
    )


@pytest.fixture
def workflow_source() -> InMemoryWorkflowSource:
    """Empty in-memory workflow source."""
    return InMemoryWorkflowSource()


@pytest_asyncio.fixture
async def client(
    workflow_source: InMemoryWorkflowSource,
    credential_store: InMemoryCredentialStore,
    fake_runner: FakeCodeRunner,
    test_settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client bound to a fresh application."""
    from flowhook.main import create_app

    app = create_app(
        source=workflow_source,
        credentials=credential_store,
        code_runner=fake_runner,
        app_settings=test_settings,
    )
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

"""Tests for test-listen sessions."""

import pytest

from flowhook.models.execution import TriggerEvent
from flowhook.services.test_listen import TestListenRegistry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def listeners(clock, test_settings) -> TestListenRegistry:
    return TestListenRegistry(
        ttl=300, listen_timeout=120, capture_ttl=60, clock=clock, settings=test_settings
    )


class TestSessionLifecycle:
    """Tests for status transitions."""

    def test_start_listening(self, listeners):
        """New sessions listen on a normalised path."""
        session = listeners.start("wf-1", path="/orders/", method="post")

        assert session.id.startswith("test_")
        assert session.path == "orders"
        assert session.method == "POST"
        assert listeners.status(session.id)["status"] == "listening"

    @pytest.mark.asyncio
    async def test_capture_then_received(self, listeners):
        """A matching request is captured and reported."""
        session = listeners.start("wf-1", path="orders", method="POST")
        event = TriggerEvent(method="POST", body={"id": 1}, query={"a": "b"})

        assert await listeners.capture("/orders", event) is True

        status = listeners.status(session.id)
        assert status["status"] == "received"
        assert status["data"]["body"] == {"id": 1}
        assert status["data"]["query"] == {"a": "b"}
        assert "received_at" in status["data"]

    @pytest.mark.asyncio
    async def test_first_capture_wins(self, listeners):
        """Later requests are acknowledged but not stored."""
        session = listeners.start("wf-1", path="orders")

        await listeners.capture("orders", TriggerEvent(body={"n": 1}))
        assert await listeners.capture("orders", TriggerEvent(body={"n": 2})) is True

        assert listeners.status(session.id)["data"]["body"] == {"n": 1}

    @pytest.mark.asyncio
    async def test_path_and_method_must_match(self, listeners):
        listeners.start("wf-1", path="orders", method="POST")

        assert await listeners.capture("other", TriggerEvent()) is False
        assert await listeners.capture("orders", TriggerEvent(method="GET")) is False

    def test_timeout_removes_session(self, listeners, clock):
        """After the listen timeout the session reports timeout once."""
        session = listeners.start("wf-1", path="orders")
        clock.advance(121)

        assert listeners.status(session.id)["status"] == "timeout"
        assert listeners.status(session.id)["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_received_wins_over_timeout(self, listeners, clock):
        session = listeners.start("wf-1", path="orders")
        await listeners.capture("orders", TriggerEvent())
        clock.advance(59)

        assert listeners.status(session.id)["status"] == "received"

    @pytest.mark.asyncio
    async def test_captured_data_expires(self, listeners, clock):
        """Captured data lives for the capture TTL, then the session listens again."""
        session = listeners.start("wf-1", path="orders")
        await listeners.capture("orders", TriggerEvent())
        clock.advance(61)

        assert listeners.status(session.id)["status"] == "listening"

    @pytest.mark.asyncio
    async def test_stop(self, listeners, clock):
        """Stopping discards captured data and is remembered for a while."""
        session = listeners.start("wf-1", path="orders")
        await listeners.capture("orders", TriggerEvent())

        listeners.stop(session.id)

        assert listeners.status(session.id)["status"] == "stopped"
        assert await listeners.capture("orders", TriggerEvent()) is False
        clock.advance(61)
        assert listeners.status(session.id)["status"] == "not_found"

    def test_other_workflow_cannot_poll_or_stop(self, listeners):
        """A session answers only to the workflow that started it."""
        session = listeners.start("wf-1", path="orders")

        assert listeners.status(session.id, "wf-2")["status"] == "not_found"
        assert listeners.stop(session.id, "wf-2") is False
        assert listeners.status(session.id, "wf-1")["status"] == "listening"
        assert listeners.stop(session.id, "wf-1") is True
        assert listeners.status(session.id, "wf-2")["status"] == "not_found"
        assert listeners.status(session.id, "wf-1")["status"] == "stopped"

    def test_unknown_session(self, listeners):
        assert listeners.status("test_missing") == {
            "status": "not_found",
            "message": "Test session not found",
        }

    def test_purge_expired(self, listeners, clock):
        """Sessions are dropped after their TTL."""
        listeners.start("wf-1", path="a")
        clock.advance(200)
        listeners.start("wf-1", path="b")
        clock.advance(101)

        assert listeners.purge_expired() == 1
        assert len(listeners) == 1


class TestCaptureAuth:
    """Tests for auth checks on captured requests."""

    @pytest.mark.asyncio
    async def test_rejected_request_is_not_captured(self, listeners):
        session = listeners.start(
            "wf-1",
            path="secure",
            auth="header",
            auth_type="apiKey",
            auth_config={"apiKeyName": "X-Key", "apiKeyValue": "k1"},
        )

        assert await listeners.capture("secure", TriggerEvent(headers={"X-Key": "bad"})) is False
        assert listeners.status(session.id)["status"] == "listening"
        assert await listeners.capture("secure", TriggerEvent(headers={"X-Key": "k1"})) is True

    @pytest.mark.asyncio
    async def test_bearer_credential(self, listeners, credential_store):
        session = listeners.start(
            "wf-1", path="secure", auth="header", auth_type="bearer", credential_id="bearer-1"
        )
        event = TriggerEvent(headers={"Authorization": "Bearer secret-token"})

        assert await listeners.capture("secure", event, credential_store) is True
        assert listeners.status(session.id)["status"] == "received"

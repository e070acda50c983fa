"""Shared test fixtures and configuration for relay tests."""
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from secretchat.core.config import Settings
from secretchat.core.state import RelayState
from secretchat.main import create_app

# Timers shrunk so that status updates, the initial message and reaping
# all happen within a fraction of a second.
FAST_TIMERS = dict(
    INITIAL_MESSAGE_DELAY_SECONDS=0.05,
    DELIVERED_DELAY_SECONDS=0.05,
    READ_DELAY_SECONDS=0.1,
    ROOM_REAP_DELAY_SECONDS=0.2,
)


class RecordingHandle:
    """Delivery handle that keeps every event it is sent."""

    def __init__(self):
        self.events = []
        self.closed = False

    async def send(self, event):
        self.events.append(event)

    def close(self):
        self.closed = True

    def of_type(self, event_type):
        return [e for e in self.events if e["type"] == event_type]


class DeadHandle:
    """Delivery handle whose channel is broken."""

    def __init__(self):
        self.attempts = 0
        self.closed = False

    async def send(self, event):
        self.attempts += 1
        raise ConnectionError("stream is gone")

    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    return Settings(PUBLIC_BASE_URL="http://chat.test", **FAST_TIMERS)


@pytest_asyncio.fixture
async def relay(settings):
    """A fresh, fully wired relay running on the test's event loop."""
    state = RelayState(settings)
    yield state
    await state.shutdown()


@pytest.fixture
def recording_handle():
    return RecordingHandle


@pytest.fixture
def dead_handle():
    return DeadHandle


@pytest.fixture
def api_client(settings):
    """TestClient for an app with its own relay state and fast timers.

    Entered as a context manager so every request and WebSocket shares one
    event loop, which is where the relay's timers run.
    """
    app = create_app(settings)
    with TestClient(app) as client:
        yield client

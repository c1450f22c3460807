import sys
from pathlib import Path

import pytest

# Ensure 'src' directory is on sys.path for imports
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from tvreceiver.engine import EngineEvent, NegotiationEngine  # noqa: E402
from tvreceiver.orchestrator import SessionOrchestrator  # noqa: E402


class FakeEngine(NegotiationEngine):
    """Records commands; tests fire events by hand through ``fire``."""

    def __init__(self, generation, emit):
        self.generation = generation
        self.emit = emit
        self.calls = []
        self.closed = False

    def set_remote_description(self, sdp):
        self.calls.append(("set_remote", sdp))

    def create_answer(self):
        self.calls.append(("create_answer",))

    def set_local_description(self, sdp):
        self.calls.append(("set_local", sdp))

    def add_candidate(self, candidate):
        self.calls.append(("add_candidate", candidate))

    def close(self):
        self.closed = True

    def fire(self, kind, **kwargs):
        # Delivered even after close() to model late engine completions
        self.emit(EngineEvent(kind, self.generation, **kwargs))


class FakeChannel:
    def __init__(self):
        self.sent = []
        self.close_calls = 0

    def post(self, msg):
        self.sent.append(msg)
        return True

    async def close(self):
        self.close_calls += 1


class FakeSink:
    def __init__(self):
        self.attached = []
        self.detached = 0
        self.stopped = 0

    def attach(self, track):
        self.attached.append(track)

    def detach(self):
        self.detached += 1

    async def stop(self):
        self.stopped += 1


@pytest.fixture
def engines():
    return []


@pytest.fixture
def engine_factory(engines):
    def factory(generation, emit):
        engine = FakeEngine(generation, emit)
        engines.append(engine)
        return engine
    return factory


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def orchestrator(channel, engine_factory, sink):
    return SessionOrchestrator(channel, engine_factory, sink)

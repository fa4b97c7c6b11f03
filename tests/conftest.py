from types import SimpleNamespace

import pytest

from gigfleet.config import FleetConfig
from gigfleet.models import Agent, Task, Point


class FakeModels:
    """Stands in for `genai.Client().models`; replies are consumed in order."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        r = self.replies.pop(0)
        if isinstance(r, Exception):
            raise r
        return SimpleNamespace(text=r)

    def generate_content_stream(self, **kwargs):
        self.calls.append(kwargs)
        for r in self.replies:
            if isinstance(r, Exception):
                raise r
            yield SimpleNamespace(text=r)


class FakeClock:
    def __init__(self, t: float = 1_700_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def fake_genai():
    def make(*replies):
        return SimpleNamespace(models=FakeModels(replies))
    return make


@pytest.fixture
def cfg():
    return FleetConfig(api_key="test-key")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def agent():
    return Agent(agent_id="d-1", name="Maya", status="idle", position=Point(10.0, 10.0))


@pytest.fixture
def task():
    return Task(task_id="o-0001", customer="Jordan P.", address="12 Pine Rd", amount=24.5, position=Point(10.0, 13.0))

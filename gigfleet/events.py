from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterator, List, Tuple, Union

from .models import Agent, Task, Point


@dataclass(frozen=True)
class ScenarioLoaded:
    agents: Tuple[Agent, ...]
    tasks: Tuple[Task, ...]
    source: str = "random"
    at: float = 0.0


@dataclass(frozen=True)
class AgentsMoved:
    positions: Dict[str, Point] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskAssigned:
    task_id: str
    agent_id: str
    at: float = 0.0


@dataclass(frozen=True)
class DeliveryCompleted:
    agent_id: str
    task_id: str
    at: float = 0.0


@dataclass(frozen=True)
class AgentApproved:
    agent_id: str
    at: float = 0.0


@dataclass(frozen=True)
class DisputeResolved:
    task_id: str
    at: float = 0.0


@dataclass(frozen=True)
class NotificationPosted:
    title: str
    message: str
    type: str = "info"
    at: float = 0.0


FleetEvent = Union[
    ScenarioLoaded,
    AgentsMoved,
    TaskAssigned,
    DeliveryCompleted,
    AgentApproved,
    DisputeResolved,
    NotificationPosted,
]


class EventQueue:
    """FIFO of fleet events. Producers put, the engine drains serially."""

    def __init__(self) -> None:
        self._q: Deque[FleetEvent] = deque()

    def put(self, event: FleetEvent) -> None:
        self._q.append(event)

    def extend(self, events: List[FleetEvent]) -> None:
        self._q.extend(events)

    def drain(self) -> Iterator[FleetEvent]:
        # events put while draining are picked up in the same pass
        while self._q:
            yield self._q.popleft()

    def __len__(self) -> int:
        return len(self._q)

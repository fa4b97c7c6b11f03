"""
Fleet dispatch state and its transitions.

`FleetState` is never mutated in place: `reduce(state, event)` returns a new
state and replaces (never edits) the Agent/Task records it touches, so a
snapshot handed to the position loop stays valid while events are applied.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .models import Agent, Task, Notification, Point
from .geo import plane_distance, step_toward
from .events import (
    FleetEvent,
    ScenarioLoaded,
    AgentsMoved,
    TaskAssigned,
    DeliveryCompleted,
    AgentApproved,
    DisputeResolved,
    NotificationPosted,
)


@dataclass(frozen=True)
class FleetState:
    agents: Dict[str, Agent] = field(default_factory=dict)
    tasks: Dict[str, Task] = field(default_factory=dict)
    notifications: Tuple[Notification, ...] = ()
    notification_seq: int = 0
    notification_cap: int = 5
    delivered_count: int = 0
    source: str = ""
    completion_bonus: float = 25.0

    def busy_agents(self) -> List[Agent]:
        return [a for a in self.agents.values() if a.status == "busy"]

    def pending_tasks(self) -> List[Task]:
        return [t for t in self.tasks.values() if t.status == "pending"]

    def idle_agents(self) -> List[Agent]:
        return [a for a in self.agents.values() if a.status == "idle"]


def _short(task_id: str) -> str:
    return task_id[:4]


def _notify(state: FleetState, title: str, message: str, kind: str, at: float) -> FleetState:
    seq = state.notification_seq + 1
    n = Notification(
        notification_id=f"n-{seq}",
        title=title,
        message=message,
        timestamp=at,
        type=kind,  # type: ignore[arg-type]
    )
    feed = (n,) + state.notifications[: max(0, state.notification_cap - 1)]
    return replace(state, notifications=feed, notification_seq=seq)


def _with(state: FleetState, agents: Optional[Dict[str, Agent]] = None, tasks: Optional[Dict[str, Task]] = None, **kw) -> FleetState:
    return replace(
        state,
        agents=state.agents if agents is None else agents,
        tasks=state.tasks if tasks is None else tasks,
        **kw,
    )


# ----------------------------
# Reducer
# ----------------------------

def reduce(state: FleetState, event: FleetEvent) -> FleetState:
    if isinstance(event, ScenarioLoaded):
        agents = {a.agent_id: replace(a) for a in event.agents}
        tasks = {t.task_id: replace(t) for t in event.tasks}
        fresh = FleetState(
            agents=agents,
            tasks=tasks,
            notifications=state.notifications,
            notification_seq=state.notification_seq,
            notification_cap=state.notification_cap,
            completion_bonus=state.completion_bonus,
            source=event.source,
        )
        return _notify(fresh, "System Updated", "Fleet data and pending approvals refreshed.", "info", event.at)

    if isinstance(event, AgentsMoved):
        if not event.positions:
            return state
        agents = dict(state.agents)
        for aid, pos in event.positions.items():
            a = agents.get(aid)
            if a is not None:
                agents[aid] = replace(a, position=pos)
        return _with(state, agents=agents)

    if isinstance(event, TaskAssigned):
        t = state.tasks.get(event.task_id)
        a = state.agents.get(event.agent_id)
        if t is None or a is None or t.status != "pending" or a.status != "idle":
            return state
        agents = dict(state.agents)
        tasks = dict(state.tasks)
        tasks[t.task_id] = replace(t, status="assigned", assigned_agent_id=a.agent_id)
        agents[a.agent_id] = replace(a, status="busy", active_task_id=t.task_id)
        nxt = _with(state, agents=agents, tasks=tasks)
        return _notify(nxt, "Order Dispatched", f"Order #{_short(t.task_id)} assigned to {a.name}", "success", event.at)

    if isinstance(event, DeliveryCompleted):
        t = state.tasks.get(event.task_id)
        a = state.agents.get(event.agent_id)
        # idempotent: only the first completion for a live assignment counts
        if t is None or a is None or t.status == "delivered":
            return state
        if a.status != "busy" or a.active_task_id != t.task_id:
            return state
        agents = dict(state.agents)
        tasks = dict(state.tasks)
        tasks[t.task_id] = replace(t, status="delivered")
        agents[a.agent_id] = replace(
            a,
            status="idle",
            active_task_id=None,
            earnings=a.earnings + state.completion_bonus,
        )
        nxt = _with(state, agents=agents, tasks=tasks, delivered_count=state.delivered_count + 1)
        return _notify(nxt, "Delivery Complete", f"{a.name} delivered Order #{_short(t.task_id)}", "success", event.at)

    if isinstance(event, AgentApproved):
        a = state.agents.get(event.agent_id)
        if a is None or a.status != "pending_approval":
            return state
        agents = dict(state.agents)
        agents[a.agent_id] = replace(a, status="idle")
        nxt = _with(state, agents=agents)
        return _notify(nxt, "Admin Action", "Driver approved successfully.", "success", event.at)

    if isinstance(event, DisputeResolved):
        t = state.tasks.get(event.task_id)
        if t is None or t.status != "disputed":
            return state
        tasks = {tid: x for tid, x in state.tasks.items() if tid != event.task_id}
        nxt = _with(state, tasks=tasks)
        return _notify(nxt, "Admin Action", "Dispute resolved and archived.", "success", event.at)

    if isinstance(event, NotificationPosted):
        return _notify(state, event.title, event.message, event.type, event.at)

    raise TypeError(f"Unknown fleet event: {type(event).__name__}")


# ----------------------------
# Position loop (one tick)
# ----------------------------

def advance_agents(
    state: FleetState,
    step: float,
    arrival_threshold: float,
    at: float = 0.0,
) -> Tuple[Dict[str, Point], List[DeliveryCompleted]]:
    """
    Compute one tick of movement for every busy agent.

    Returns the new positions and the completion events for agents already
    within `arrival_threshold` of their task. Nothing is applied here; the
    caller queues both for the reducer.
    """
    moves: Dict[str, Point] = {}
    arrivals: List[DeliveryCompleted] = []

    for a in state.agents.values():
        if a.status != "busy" or not a.active_task_id or a.position is None:
            continue
        t = state.tasks.get(a.active_task_id)
        if t is None or t.status == "delivered" or t.position is None:
            continue

        d = plane_distance(a.position, t.position)
        if d < arrival_threshold:
            arrivals.append(DeliveryCompleted(agent_id=a.agent_id, task_id=t.task_id, at=at))
            continue
        moves[a.agent_id] = step_toward(a.position, t.position, step)

    return moves, arrivals

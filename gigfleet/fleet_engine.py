from __future__ import annotations
from typing import Dict, List, Optional, Any, Callable
import logging
import random
import time

from .models import Agent, Task, Point
from .config import FleetConfig
from .errors import IntelligenceError, NotLoaded, UnknownEntity
from .events import (
    EventQueue,
    FleetEvent,
    ScenarioLoaded,
    AgentsMoved,
    TaskAssigned,
    AgentApproved,
    DisputeResolved,
    NotificationPosted,
)
from .fleet_state import FleetState, reduce, advance_agents
from .heuristics import greedy_assignments
from .intelligence import IntelligenceClient
from .schemas import Assignment, FleetScenario

logger = logging.getLogger(__name__)

_FIRST_NAMES = ["Maya", "Luis", "Priya", "Jamal", "Elena", "Tom", "Aisha", "Ken", "Sofia", "Omar"]
_CUSTOMERS = ["Jordan P.", "Casey L.", "Riley M.", "Morgan K.", "Avery T.", "Quinn S.", "Drew H.", "Sam R."]
_STREETS = ["Oak Ave", "Main St", "Pine Rd", "Elm St", "Lakeview Dr", "Cedar Ln", "Harbor Blvd", "Maple Ct"]
_ITEMS = ["Burrito Bowl", "Pad Thai", "Pepperoni Pizza", "Caesar Salad", "Ramen", "Cheeseburger", "Iced Latte", "Tacos"]


def augment_scenario(agents: List[Agent], tasks: List[Task]):
    """Every scenario carries one driver awaiting approval and one disputed order."""
    agents = agents + [
        Agent(
            agent_id="d-pending-1",
            name="New Guy",
            status="pending_approval",
            position=Point(50.0, 50.0),
            earnings=0.0,
            rating=0.0,
            current_location="Main St",
        )
    ]
    tasks = tasks + [
        Task(
            task_id="o-dispute-1",
            customer="Angry Customer",
            address="123 Bad Ln",
            amount=15.0,
            items=["Cold Pizza"],
            status="disputed",
        )
    ]
    return agents, tasks


def scenario_from_model(sc: FleetScenario):
    agents: List[Agent] = []
    for d in sc.drivers:
        pos = None if d.coordinates is None else Point(d.coordinates.x, d.coordinates.y)
        # a generated "busy" driver has no order to drive to
        status = "idle" if d.status == "busy" else d.status
        agents.append(Agent(
            agent_id=d.id,
            name=d.name,
            status=status,  # type: ignore[arg-type]
            position=pos,
            earnings=d.earnings,
            rating=d.rating,
            current_location=d.currentLocation,
        ))
    tasks: List[Task] = []
    for o in sc.orders:
        pos = None if o.coordinates is None else Point(o.coordinates.x, o.coordinates.y)
        tasks.append(Task(
            task_id=o.id,
            customer=o.customer,
            address=o.address,
            amount=o.amount,
            items=list(o.items),
            position=pos,
        ))
    return agents, tasks


class FleetEngine:
    def __init__(self, cfg: FleetConfig, clock: Callable[[], float] = time.time, rng: Optional[random.Random] = None):
        self.cfg = cfg
        self.clock = clock
        self.rng = rng or random.Random()

        self.loaded = False
        self.ticks: int = 0
        self.state = FleetState(
            notification_cap=cfg.fleet_notification_cap,
            completion_bonus=cfg.completion_bonus,
        )
        self.queue = EventQueue()

    # ---------- event plumbing ----------
    def submit(self, event: FleetEvent) -> None:
        self.queue.put(event)

    def pump(self) -> FleetState:
        """Apply queued events one at a time, in order."""
        for ev in self.queue.drain():
            self.state = reduce(self.state, ev)
        return self.state

    def _require_loaded(self):
        if not self.loaded:
            raise NotLoaded("Scenario not loaded")

    # ---------- scenario ----------
    def load(self, agents: List[Agent], tasks: List[Task], source: str = "file", augment: bool = True):
        if augment:
            agents, tasks = augment_scenario(agents, tasks)
        self.submit(ScenarioLoaded(agents=tuple(agents), tasks=tuple(tasks), source=source, at=self.clock()))
        self.pump()
        self.loaded = True
        self.ticks = 0
        logger.info("Scenario loaded from %s: %d agents, %d tasks", source, len(agents), len(tasks))

    def random_scenario(self, n_agents: Optional[int] = None, n_tasks: Optional[int] = None):
        n_agents = self.cfg.scenario_agents if n_agents is None else n_agents
        n_tasks = self.cfg.scenario_tasks if n_tasks is None else n_tasks
        lo, hi = self.cfg.scenario_coord_min, self.cfg.scenario_coord_max
        r = self.rng

        agents = []
        for i in range(n_agents):
            agents.append(Agent(
                agent_id=f"d-{i + 1}",
                name=r.choice(_FIRST_NAMES),
                status=r.choice(["idle", "idle", "idle", "offline"]),  # type: ignore[arg-type]
                position=Point(round(r.uniform(lo, hi), 2), round(r.uniform(lo, hi), 2)),
                earnings=round(r.uniform(40, 180), 2),
                rating=round(r.uniform(3.5, 5.0), 1),
                current_location=f"{r.randint(10, 999)} {r.choice(_STREETS)}",
            ))

        tasks = []
        for i in range(n_tasks):
            tasks.append(Task(
                task_id=f"o-{i + 1:04d}",
                customer=r.choice(_CUSTOMERS),
                address=f"{r.randint(10, 999)} {r.choice(_STREETS)}",
                amount=round(r.uniform(12, 60), 2),
                items=r.sample(_ITEMS, k=r.randint(1, 3)),
                position=Point(round(r.uniform(lo, hi), 2), round(r.uniform(lo, hi), 2)),
            ))

        self.load(agents, tasks, source="random")

    # ---------- dispatch ----------
    def propose(self, client: IntelligenceClient, agents: List[Agent], tasks: List[Task]) -> Optional[List[Assignment]]:
        """
        Ask the model for a matching. Reads only the lists it is given, so it
        can run off the engine lock. Returns None when the call failed and the
        greedy matcher should be used instead.
        """
        try:
            return client.plan_dispatch(agents, tasks)
        except IntelligenceError:
            if not self.cfg.local_fallback:
                raise
            logger.warning("Dispatch model unavailable, using greedy matcher")
            return None

    def apply_plan(self, plan: Optional[List[Assignment]]) -> Dict[str, Any]:
        """Queue one assignment event per proposal; the reducer skips stale or conflicting ones."""
        self._require_loaded()
        source = "model"
        if plan is None:
            source = "heuristic"
            plan = greedy_assignments(list(self.state.agents.values()), self.state.pending_tasks())

        now = self.clock()
        before = self.state
        self.submit(NotificationPosted("AI Optimizing", "Calculating best routes...", "info", now))
        for a in plan:
            self.submit(TaskAssigned(task_id=a.orderId, agent_id=a.driverId, at=now))
        self.pump()

        applied: List[Dict[str, str]] = []
        seen = set()
        for a in plan:
            if a.orderId in seen:
                continue
            was = before.tasks.get(a.orderId)
            after = self.state.tasks.get(a.orderId)
            if was is None or was.status != "pending" or after is None or after.assigned_agent_id != a.driverId:
                continue
            seen.add(a.orderId)
            applied.append({"orderId": a.orderId, "driverId": a.driverId})
        logger.info("Dispatch (%s): %d of %d proposed assignments applied", source, len(applied), len(plan))
        return {"source": source, "assignments": applied}

    def dispatch(self, client: Optional[IntelligenceClient] = None) -> Dict[str, Any]:
        self._require_loaded()
        plan = None
        if client is not None:
            plan = self.propose(client, list(self.state.agents.values()), list(self.state.tasks.values()))
        return self.apply_plan(plan)

    # ---------- live loop ----------
    def has_busy_agents(self) -> bool:
        return any(a.status == "busy" for a in self.state.agents.values())

    def tick(self) -> FleetState:
        """One animation frame: move busy agents, then apply arrivals."""
        self._require_loaded()
        moves, arrivals = advance_agents(
            self.state,
            step=self.cfg.step_distance,
            arrival_threshold=self.cfg.arrival_threshold,
            at=self.clock(),
        )
        if moves:
            self.submit(AgentsMoved(positions=moves))
        self.queue.extend(arrivals)
        self.ticks += 1
        return self.pump()

    def run(self, ticks: int) -> FleetState:
        for _ in range(max(0, int(ticks))):
            self.tick()
        return self.state

    # ---------- admin ----------
    def approve_agent(self, agent_id: str) -> Agent:
        self._require_loaded()
        if agent_id not in self.state.agents:
            raise UnknownEntity("Agent", agent_id)
        self.submit(AgentApproved(agent_id=agent_id, at=self.clock()))
        self.pump()
        return self.state.agents[agent_id]

    def resolve_dispute(self, task_id: str) -> bool:
        self._require_loaded()
        if task_id not in self.state.tasks:
            raise UnknownEntity("Task", task_id)
        self.submit(DisputeResolved(task_id=task_id, at=self.clock()))
        self.pump()
        return task_id not in self.state.tasks

    # ---------- views ----------
    def snapshot(self) -> Dict[str, Any]:
        s = self.state

        def _pt(p: Optional[Point]):
            return None if p is None else {"x": round(p.x, 4), "y": round(p.y, 4)}

        return {
            "tick": self.ticks,
            "source": s.source,
            "counts": {
                "agents_online": sum(1 for a in s.agents.values() if a.status != "offline"),
                "idle": sum(1 for a in s.agents.values() if a.status == "idle"),
                "busy": sum(1 for a in s.agents.values() if a.status == "busy"),
                "pending": sum(1 for t in s.tasks.values() if t.status == "pending"),
                "delivered": s.delivered_count,
            },
            "agents": [
                {
                    "id": a.agent_id,
                    "name": a.name,
                    "status": a.status,
                    "position": _pt(a.position),
                    "active_task_id": a.active_task_id,
                    "earnings": round(a.earnings, 2),
                    "rating": a.rating,
                    "current_location": a.current_location,
                }
                for a in s.agents.values()
            ],
            "tasks": [
                {
                    "id": t.task_id,
                    "customer": t.customer,
                    "address": t.address,
                    "amount": t.amount,
                    "items": list(t.items),
                    "position": _pt(t.position),
                    "status": t.status,
                    "assigned_agent_id": t.assigned_agent_id,
                }
                for t in s.tasks.values()
            ],
            "routes": [
                {"agent_id": a.agent_id, "from": _pt(a.position), "to": _pt(s.tasks[a.active_task_id].position)}
                for a in s.agents.values()
                if a.status == "busy"
                and a.position is not None
                and a.active_task_id in s.tasks
                and s.tasks[a.active_task_id].position is not None
            ],
            "notifications": [
                {"id": n.notification_id, "title": n.title, "message": n.message, "timestamp": n.timestamp, "type": n.type}
                for n in s.notifications
            ],
        }

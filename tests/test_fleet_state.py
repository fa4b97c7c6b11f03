from dataclasses import replace

import pytest

from gigfleet.events import (
    ScenarioLoaded,
    TaskAssigned,
    DeliveryCompleted,
    AgentApproved,
    DisputeResolved,
    NotificationPosted,
    AgentsMoved,
    EventQueue,
)
from gigfleet.fleet_state import FleetState, reduce, advance_agents
from gigfleet.geo import plane_distance
from gigfleet.models import Agent, Task, Point


def loaded(agents, tasks):
    return reduce(FleetState(), ScenarioLoaded(agents=tuple(agents), tasks=tuple(tasks), source="test"))


def run_ticks(state, n):
    for _ in range(n):
        moves, arrivals = advance_agents(state, step=0.3, arrival_threshold=1.0)
        q = EventQueue()
        if moves:
            q.put(AgentsMoved(positions=moves))
        q.extend(arrivals)
        for ev in q.drain():
            state = reduce(state, ev)
    return state


def test_scenario_load_posts_system_notice(agent, task):
    s = loaded([agent], [task])
    assert s.source == "test"
    assert s.notifications[0].title == "System Updated"
    assert set(s.agents) == {"d-1"}


def test_assignment_links_agent_and_task(agent, task):
    s = reduce(loaded([agent], [task]), TaskAssigned("o-0001", "d-1"))
    assert s.tasks["o-0001"].status == "assigned"
    assert s.tasks["o-0001"].assigned_agent_id == "d-1"
    assert s.agents["d-1"].status == "busy"
    assert s.agents["d-1"].active_task_id == "o-0001"
    assert s.notifications[0].title == "Order Dispatched"


def test_assignment_rejects_busy_or_ineligible(agent, task):
    other = Task(task_id="o-0002", customer="C", address="A", amount=10, position=Point(50, 50))
    s = reduce(loaded([agent], [task, other]), TaskAssigned("o-0001", "d-1"))
    assert reduce(s, TaskAssigned("o-0002", "d-1")) is s

    offline = replace(agent, agent_id="d-9", status="offline")
    s2 = loaded([offline], [task])
    assert reduce(s2, TaskAssigned("o-0001", "d-9")) is s2
    assert reduce(s2, TaskAssigned("o-0001", "missing")) is s2


def test_delivery_happens_on_the_eighth_tick(agent, task):
    s = reduce(loaded([agent], [task]), TaskAssigned("o-0001", "d-1"))

    s = run_ticks(s, 7)
    assert s.tasks["o-0001"].status == "assigned"
    assert s.agents["d-1"].position.y == pytest.approx(12.1)

    s = run_ticks(s, 1)
    assert s.tasks["o-0001"].status == "delivered"
    a = s.agents["d-1"]
    assert a.status == "idle"
    assert a.active_task_id is None
    assert a.earnings == 25.0
    assert s.delivered_count == 1


def test_more_ticks_after_delivery_change_nothing(agent, task):
    s = reduce(loaded([agent], [task]), TaskAssigned("o-0001", "d-1"))
    s = run_ticks(s, 8)
    after = run_ticks(s, 20)
    assert after.agents["d-1"].earnings == 25.0
    assert after.delivered_count == 1


def test_duplicate_completion_credits_once(agent, task):
    s = reduce(loaded([agent], [task]), TaskAssigned("o-0001", "d-1"))
    done = DeliveryCompleted("d-1", "o-0001")
    s = reduce(reduce(s, done), done)
    assert s.agents["d-1"].earnings == 25.0
    assert s.delivered_count == 1
    assert [n.title for n in s.notifications].count("Delivery Complete") == 1


def test_completion_for_wrong_agent_is_ignored(agent, task):
    other = Agent(agent_id="d-2", name="Luis", position=Point(0, 0))
    s = reduce(loaded([agent, other], [task]), TaskAssigned("o-0001", "d-1"))
    assert reduce(s, DeliveryCompleted("d-2", "o-0001")) is s


def test_reducer_never_mutates_the_previous_state(agent, task):
    s0 = loaded([agent], [task])
    s1 = reduce(s0, TaskAssigned("o-0001", "d-1"))
    assert s0.agents["d-1"].status == "idle"
    assert s0.tasks["o-0001"].status == "pending"
    assert s1.agents["d-1"] is not s0.agents["d-1"]


def test_approve_only_pending_drivers():
    pending = Agent(agent_id="d-p", name="New Guy", status="pending_approval", position=Point(50, 50))
    s = loaded([pending], [])
    s = reduce(s, AgentApproved("d-p"))
    assert s.agents["d-p"].status == "idle"
    assert reduce(s, AgentApproved("d-p")) is s


def test_resolve_removes_disputed_task_only(task):
    disputed = Task(task_id="o-x", customer="Angry Customer", address="123 Bad Ln", amount=15, status="disputed")
    s = loaded([], [task, disputed])
    s = reduce(s, DisputeResolved("o-x"))
    assert "o-x" not in s.tasks
    assert reduce(s, DisputeResolved("o-0001")) is s


def test_notification_feed_is_capped_newest_first():
    s = FleetState(notification_cap=5)
    for i in range(8):
        s = reduce(s, NotificationPosted(f"t{i}", "m"))
    assert [n.title for n in s.notifications] == ["t7", "t6", "t5", "t4", "t3"]
    assert s.notifications[0].notification_id == "n-8"


def test_unknown_event_type():
    with pytest.raises(TypeError):
        reduce(FleetState(), object())  # type: ignore[arg-type]


def test_agents_without_task_position_do_not_move(agent):
    t = Task(task_id="o-1", customer="C", address="A", amount=1)
    s = reduce(loaded([agent], [t]), TaskAssigned("o-1", "d-1"))
    moves, arrivals = advance_agents(s, 0.3, 1.0)
    assert moves == {}
    assert arrivals == []


def test_distance_shrinks_every_tick_until_arrival(agent, task):
    s = reduce(loaded([agent], [task]), TaskAssigned("o-0001", "d-1"))
    s = run_ticks(s, 1)
    assert s.agents["d-1"].position.x == 10.0
    assert s.agents["d-1"].position.y == pytest.approx(10.3)

    last = plane_distance(s.agents["d-1"].position, task.position)
    while s.tasks["o-0001"].status != "delivered":
        s = run_ticks(s, 1)
        d = plane_distance(s.agents["d-1"].position, task.position)
        assert d < last or s.tasks["o-0001"].status == "delivered"
        assert d >= 0.0
        last = d

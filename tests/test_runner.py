import asyncio

from gigfleet.fleet_engine import FleetEngine
from gigfleet.fleet_runner import FleetRunner
from gigfleet.models import Agent, Task, Point
from gigfleet.ws_manager import FleetFeed


class RecordingFeed:
    def __init__(self):
        self.sent = []

    async def broadcast(self, payload):
        self.sent.append(payload)
        return 1


def one_job_engine(cfg, target):
    e = FleetEngine(cfg)
    e.load(
        [Agent(agent_id="d-1", name="Maya", position=Point(10, 10))],
        [Task(task_id="o-1", customer="c", address="a", amount=10, position=target)],
        augment=False,
    )
    e.dispatch()
    return e


def test_loop_stops_once_nobody_is_busy(cfg):
    engine = one_job_engine(cfg, Point(10, 13))
    feed = RecordingFeed()

    async def go():
        runner = FleetRunner(engine, feed, asyncio.Lock())
        await runner.start(tick_ms=1)
        await asyncio.wait_for(runner._task, timeout=5)
        return runner

    runner = asyncio.run(go())
    assert not runner.running
    assert engine.state.tasks["o-1"].status == "delivered"
    assert feed.sent[-1]["counts"]["delivered"] == 1


def test_stop_cancels_a_running_loop(cfg):
    engine = one_job_engine(cfg, Point(90, 90))
    feed = RecordingFeed()

    async def go():
        runner = FleetRunner(engine, feed, asyncio.Lock())
        await runner.start(tick_ms=1)
        assert runner.running
        await asyncio.sleep(0.02)
        await runner.stop()
        return runner

    runner = asyncio.run(go())
    assert not runner.running
    assert engine.state.tasks["o-1"].status == "assigned"


def test_push_state_before_load_sends_nothing(cfg):
    feed = RecordingFeed()
    runner = FleetRunner(FleetEngine(cfg), feed, asyncio.Lock())
    asyncio.run(runner.push_state())
    assert feed.sent == []


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.received = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("connection closed")
        self.received.append(payload)


def test_feed_drops_dead_clients():
    async def go():
        feed = FleetFeed()
        ok, dead = FakeSocket(), FakeSocket(fail=True)
        await feed.connect(ok)
        await feed.connect(dead)
        delivered = await feed.broadcast({"tick": 1})
        return feed, ok, delivered

    feed, ok, delivered = asyncio.run(go())
    assert delivered == 1
    assert feed.size == 1
    assert ok.accepted
    assert ok.received == [{"tick": 1}]


class BrokenEngine(FleetEngine):
    def tick(self):
        raise RuntimeError("bad frame")


def test_loop_failure_is_logged(cfg, caplog):
    engine = BrokenEngine(cfg)
    engine.load(
        [Agent(agent_id="d-1", name="Maya", position=Point(10, 10))],
        [Task(task_id="o-1", customer="c", address="a", amount=10, position=Point(90, 90))],
        augment=False,
    )
    engine.dispatch()

    async def go():
        runner = FleetRunner(engine, RecordingFeed(), asyncio.Lock())
        await runner.start(tick_ms=1)
        await asyncio.wait_for(runner._task, timeout=5)
        return runner

    with caplog.at_level("ERROR", logger="gigfleet.fleet_runner"):
        runner = asyncio.run(go())
    assert not runner.running
    assert "Fleet loop failed after 0 ticks" in caplog.text
    assert "bad frame" in caplog.text

import asyncio

import pytest

from gigfleet.config import FleetConfig
from gigfleet.errors import IntelligenceError, OfferValidationError, LocationUnavailable
from gigfleet.geo import MileageAccumulator
from gigfleet.heuristics import nearest_first_route, pay_per_mile_stack, split_known
from gigfleet.intelligence import IntelligenceClient
from gigfleet.models import Job, Order, Settings
from gigfleet.planner import analyze_offer, analyze_stack, offer_metrics, optimize_route
from gigfleet.session import ShiftSession
from gigfleet.shift import (
    ShiftState,
    ModeChanged,
    JobAdded,
    JobCompleted,
    JobsReordered,
    MilesTracked,
    OrderPlaced,
    OrdersListed,
    OrderAccepted,
    OrderCompleted,
    NotificationPosted,
    NotificationDismissed,
    SettingsChanged,
    reduce_shift,
    active_notifications,
    shift_stats,
)
from gigfleet.tracking import MileageTracker


def job(jid, pay=10.0, distance=2.0, status="active"):
    return Job(job_id=jid, platform="UberEats", restaurant=f"R{jid}", pay=pay, distance=distance, address="x", status=status)


def order(oid, restaurant="Noodle Bar"):
    return Order(order_id=oid, platform="Other", restaurant=restaurant, pay=9.0, distance=2.5, address="5 Maple Ct", estimated_time=20)


# ---------- reducer ----------

def test_unknown_mode():
    with pytest.raises(ValueError):
        reduce_shift(ShiftState(), ModeChanged("PARTY"))


def test_first_tracking_mode_starts_the_shift():
    s = reduce_shift(ShiftState(), ModeChanged("SHIFT", at=100.0))
    s = reduce_shift(s, ModeChanged("HOME", at=200.0))
    s = reduce_shift(s, ModeChanged("LIVE_TRACKING", at=300.0))
    assert s.shift_started_at == 100.0
    assert s.tracking_enabled


def test_high_value_alert():
    s = reduce_shift(ShiftState(), JobAdded(job("j1", pay=22.0, distance=5.0), at=1.0))
    assert s.notifications[0].title == "High Value Alert!"

    s = reduce_shift(ShiftState(), JobAdded(job("j2", pay=22.0, distance=20.0)))
    assert s.notifications == ()


def test_alerts_can_be_turned_off():
    s = reduce_shift(ShiftState(), SettingsChanged(Settings(high_value_alerts=False)))
    s = reduce_shift(s, JobAdded(job("j1", pay=40.0, distance=2.0)))
    assert s.notifications == ()


def test_complete_unknown_job_is_a_no_op():
    s = reduce_shift(ShiftState(), JobAdded(job("j1")))
    assert reduce_shift(s, JobCompleted("zzz")) is s
    assert reduce_shift(s, JobCompleted("j1")).completed_jobs()[0].job_id == "j1"


def test_reorder_applies_to_the_current_jobs():
    s = ShiftState(jobs=(job("a"), job("b", status="completed"), job("c"), job("d")))
    s = reduce_shift(s, JobsReordered(("d", "b", "ghost", "d", "a")))
    # c was not ranked, b is no longer active
    assert [j.job_id for j in s.jobs] == ["d", "a", "c", "b"]
    assert [j.job_id for j in s.active_jobs()] == ["d", "a", "c"]


def test_new_feed_replaces_unclaimed_feed_orders():
    s = reduce_shift(ShiftState(), OrderPlaced(order("o1"), at=1.0))
    s = reduce_shift(s, OrdersListed((order("f1"), order("f2"), order("o1"))))
    assert [(o.order_id, o.source) for o in s.orders] == [("o1", "customer"), ("f1", "feed"), ("f2", "feed")]

    s = reduce_shift(s, OrderAccepted("f2"))
    s = reduce_shift(s, OrdersListed((order("f3"),)))
    assert [o.order_id for o in s.orders] == ["o1", "f2", "f3"]
    assert s.order("f2").status == "accepted"


def test_tracked_miles_never_go_down():
    s = reduce_shift(ShiftState(), MilesTracked(3.2))
    s = reduce_shift(s, MilesTracked(1.0))
    assert s.tracked_miles == 3.2


def test_marketplace_order_flow():
    s = reduce_shift(ShiftState(), OrderPlaced(order("o1"), at=1.0))
    assert s.mode == "CUSTOMER"
    s = reduce_shift(s, OrderPlaced(order("o2", "Taco Hut"), at=2.0))

    s = reduce_shift(s, OrderAccepted("o1", at=3.0))
    assert s.active_order_id == "o1"
    assert s.order("o1").driver_id == "driver-01"
    # one active order at a time
    assert reduce_shift(s, OrderAccepted("o2")) is s

    s = reduce_shift(s, OrderCompleted(pay=11.5, at=4.0))
    assert s.active_order_id is None
    assert s.order("o1").status == "delivered"
    done = s.completed_jobs()
    assert [(j.job_id, j.pay) for j in done] == [("o1", 11.5)]
    assert s.notifications[0].title == "Delivery Complete!"


def test_notifications_expire_and_dismiss():
    s = reduce_shift(ShiftState(), NotificationPosted("a", "m", at=0.0))
    s = reduce_shift(s, NotificationPosted("b", "m", at=10.0))
    assert [n.title for n in active_notifications(s, now=12.0, ttl=5.0)] == ["b"]

    s = reduce_shift(s, NotificationDismissed(s.notifications[0].notification_id))
    assert [n.title for n in s.notifications] == ["a"]


def test_shift_stats():
    s = ShiftState(
        jobs=(job("j1", pay=30.0, status="completed"), job("j2", pay=10.0, status="completed"), job("j3", pay=99.0)),
        tracked_miles=10.0,
        shift_started_at=0.0,
    )
    st = shift_stats(s, now=7200.0, irs_rate=0.67)
    assert st.total_earnings == 40.0
    assert st.jobs_completed == 2
    assert st.active_hours == 2.0
    assert st.profit_per_hour == 20.0
    assert st.mileage_deduction == 6.7
    assert st.estimated_tax_owed == 6.0


def test_stats_before_shift_start():
    st = shift_stats(ShiftState(), now=50.0)
    assert st.active_hours == 0.0
    assert st.profit_per_hour == 0.0


# ---------- session / tracking ----------

def test_fixes_ignored_outside_tracking_modes(cfg, clock):
    sess = ShiftSession(cfg, clock)
    assert sess.record_fix(0.0, 0.0) is None
    assert sess.mileage.anchor is None


def test_fixes_accumulate_during_shift(cfg, clock):
    sess = ShiftSession(cfg, clock)
    sess.apply(ModeChanged("SHIFT", at=clock()))
    assert sess.record_fix(0.0, 0.0) == 0.0
    added = sess.record_fix(0.0, 0.01)
    assert added == pytest.approx(0.691, abs=0.001)
    assert sess.state.tracked_miles == pytest.approx(added)


def test_denied_location_keeps_the_total():
    acc = MileageAccumulator()
    updates = []

    async def source():
        yield 0.0, 0.0
        yield 0.0, 0.01
        raise LocationUnavailable("permission denied")

    tracker = MileageTracker(acc.add_sample, on_update=updates.append)
    total = asyncio.run(tracker.consume(source()))

    assert tracker.degraded
    assert total == pytest.approx(0.691, abs=0.001)
    assert updates == [acc.total_miles]


def test_tracker_writes_through_the_session(cfg, clock):
    sess = ShiftSession(cfg, clock)

    async def source():
        yield 0.0, 0.0
        yield 0.0, 0.01

    idle = MileageTracker(sess.record_fix)
    assert asyncio.run(idle.consume(source())) == 0.0
    assert sess.state.tracked_miles == 0.0

    sess.apply(ModeChanged("SHIFT", at=clock()))
    tracker = MileageTracker(sess.record_fix)
    total = asyncio.run(tracker.consume(source()))
    assert total == pytest.approx(0.691, abs=0.001)
    assert sess.state.tracked_miles == pytest.approx(total)
    assert sess.mileage.total_miles == sess.state.tracked_miles


# ---------- offers ----------

def test_offer_validation_runs_before_any_call(cfg, fake_genai):
    g = fake_genai()
    client = IntelligenceClient(cfg, client=g)
    with pytest.raises(OfferValidationError) as ei:
        analyze_offer(client, cfg, Settings(), None, 3.0, 0)
    assert ei.value.missing == ["Payout", "Estimated Time"]
    assert str(ei.value) == "Please fill in Payout, Estimated Time."
    assert g.models.calls == []


def test_offer_metrics_use_vehicle_costs():
    m = offer_metrics(10.0, 4.0, 30.0, Settings(mpg=25, fuel_cost=3.5))
    assert m.dollars_per_mile == 2.5
    assert m.dollars_per_hour == 20.0
    assert m.fuel_adjusted_profit == 9.44


def test_offer_metrics_fall_back_to_irs_rate():
    m = offer_metrics(10.0, 4.0, 30.0, Settings(mpg=0), irs_rate=0.67)
    assert m.fuel_adjusted_profit == 7.32


def test_offer_analysis(cfg, fake_genai):
    client = IntelligenceClient(cfg, client=fake_genai('{"recommendation": "Decline", "reasoning": "Too far."}'))
    out = analyze_offer(client, cfg, Settings(), 6.0, 9.0, 35)
    assert out["recommendation"] == "Decline"
    assert out["dollarsPerMile"] == 0.67


# ---------- routes and stacks ----------

def test_route_from_model_keeps_every_job(cfg, fake_genai):
    jobs = [job("j1"), job("j2"), job("j3")]
    client = IntelligenceClient(cfg, client=fake_genai('["j2", "ghost", "j2", "j1"]'))
    res = optimize_route(client, cfg, jobs)
    assert res["source"] == "model"
    assert [j.job_id for j in res["jobs"]] == ["j2", "j1", "j3"]


def test_route_falls_back_to_nearest_first(cfg, fake_genai):
    jobs = [job("far", distance=8.0), job("near", distance=1.0), job("mid", distance=3.0)]
    client = IntelligenceClient(cfg, client=fake_genai(RuntimeError("timeout")))
    res = optimize_route(client, cfg, jobs)
    assert res["source"] == "heuristic"
    assert [j.job_id for j in res["jobs"]] == ["near", "mid", "far"]


def test_route_failure_surfaces_without_fallback(fake_genai):
    cfg = FleetConfig(api_key="k", local_fallback=False)
    client = IntelligenceClient(cfg, client=fake_genai("{}"))
    with pytest.raises(IntelligenceError):
        optimize_route(client, cfg, [job("a"), job("b")])


def test_single_job_route_needs_no_model(cfg, fake_genai):
    g = fake_genai()
    res = optimize_route(IntelligenceClient(cfg, client=g), cfg, [job("a")])
    assert res["source"] == "none"
    assert g.models.calls == []


def test_nearest_first_breaks_ties_on_pay():
    jobs = [job("cheap", pay=4.0, distance=2.0), job("rich", pay=9.0, distance=2.0)]
    assert [j.job_id for j in nearest_first_route(jobs)] == ["rich", "cheap"]


def test_stack_falls_back_to_pay_per_mile(cfg, fake_genai):
    jobs = [job("good", pay=10.0, distance=2.0), job("bad", pay=4.0, distance=4.0)]
    client = IntelligenceClient(cfg, client=fake_genai(RuntimeError("500")))
    res = analyze_stack(client, cfg, jobs)
    assert res["source"] == "heuristic"
    assert res["recommendedJobIds"] == ["good"]
    assert res["efficiencyRating"] == "High"


def test_stack_keeps_best_job_when_all_are_poor():
    res = pay_per_mile_stack([job("a", pay=2.0, distance=4.0), job("b", pay=3.0, distance=4.0)])
    assert res.recommendedJobIds == ["b"]
    assert res.efficiencyRating == "Low"


def test_split_known():
    jobs = [job("a"), job("b"), job("c")]
    ordered, rest = split_known(["c", "x", "c"], jobs)
    assert [j.job_id for j in ordered] == ["c"]
    assert [j.job_id for j in rest] == ["a", "b"]

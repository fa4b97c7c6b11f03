"""
Driver-side application state: current mode, job list, marketplace orders,
settings, tracked miles and the toast feed. `reduce_shift` is the only way it
changes.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

from .models import Job, Order, Notification, Settings, ShiftStats

MODES = (
    "HOME", "SHIFT", "FLEET", "COPILOT", "LIVE", "CUSTOMER", "CUSTOMER_APP",
    "ANALYTICS", "SETTINGS", "BILLING", "LIVE_TRACKING",
)
TRACKING_MODES = ("SHIFT", "LIVE_TRACKING")


@dataclass(frozen=True)
class ShiftState:
    mode: str = "HOME"
    jobs: Tuple[Job, ...] = ()
    orders: Tuple[Order, ...] = ()
    active_order_id: Optional[str] = None
    settings: Settings = Settings()
    notifications: Tuple[Notification, ...] = ()
    notification_seq: int = 0
    tracked_miles: float = 0.0
    shift_started_at: Optional[float] = None
    alert_min_pay: float = 18.0
    alert_min_pay_per_mile: float = 1.5

    @property
    def tracking_enabled(self) -> bool:
        return self.mode in TRACKING_MODES

    def job(self, job_id: str) -> Optional[Job]:
        return next((j for j in self.jobs if j.job_id == job_id), None)

    def order(self, order_id: str) -> Optional[Order]:
        return next((o for o in self.orders if o.order_id == order_id), None)

    def active_jobs(self):
        return [j for j in self.jobs if j.status == "active"]

    def completed_jobs(self):
        return [j for j in self.jobs if j.status == "completed"]


# ----------------------------
# Actions
# ----------------------------

@dataclass(frozen=True)
class ModeChanged:
    mode: str
    at: float = 0.0


@dataclass(frozen=True)
class JobAdded:
    job: Job
    at: float = 0.0


@dataclass(frozen=True)
class JobsReordered:
    """Suggested delivery order, by job id. Applied to whatever jobs are active when it lands."""
    order: Tuple[str, ...]


@dataclass(frozen=True)
class JobCompleted:
    job_id: str


@dataclass(frozen=True)
class SettingsChanged:
    settings: Settings


@dataclass(frozen=True)
class MilesTracked:
    total_miles: float


@dataclass(frozen=True)
class OrderPlaced:
    order: Order
    at: float = 0.0


@dataclass(frozen=True)
class OrdersListed:
    """A fresh marketplace feed. Unclaimed orders from the previous feed are replaced."""
    orders: Tuple[Order, ...]


@dataclass(frozen=True)
class OrderAccepted:
    order_id: str
    driver_id: str = "driver-01"
    at: float = 0.0


@dataclass(frozen=True)
class OrderStepUpdated:
    order_id: str
    status: str


@dataclass(frozen=True)
class OrderCompleted:
    pay: float
    at: float = 0.0


@dataclass(frozen=True)
class NotificationPosted:
    title: str
    message: str
    type: str = "info"
    at: float = 0.0


@dataclass(frozen=True)
class NotificationDismissed:
    notification_id: str


ShiftAction = Union[
    ModeChanged, JobAdded, JobsReordered, JobCompleted, SettingsChanged, MilesTracked,
    OrderPlaced, OrdersListed, OrderAccepted, OrderStepUpdated, OrderCompleted,
    NotificationPosted, NotificationDismissed,
]


def is_high_value(pay: float, distance: float, min_pay: float = 18.0, min_pay_per_mile: float = 1.5) -> bool:
    if distance <= 0:
        return pay >= min_pay
    return pay >= min_pay and pay / distance >= min_pay_per_mile


def _post(state: ShiftState, title: str, message: str, kind: str, at: float) -> ShiftState:
    seq = state.notification_seq + 1
    n = Notification(f"s-{seq}", title, message, at, kind)  # type: ignore[arg-type]
    return replace(state, notifications=(n,) + state.notifications, notification_seq=seq)


def reduce_shift(state: ShiftState, action: ShiftAction) -> ShiftState:
    if isinstance(action, ModeChanged):
        if action.mode not in MODES:
            raise ValueError(f"Unknown mode: {action.mode}")
        started = state.shift_started_at
        if action.mode in TRACKING_MODES and started is None:
            started = action.at
        return replace(state, mode=action.mode, shift_started_at=started)

    if isinstance(action, JobAdded):
        nxt = replace(state, jobs=state.jobs + (action.job,))
        j = action.job
        if state.settings.high_value_alerts and is_high_value(j.pay, j.distance, state.alert_min_pay, state.alert_min_pay_per_mile):
            nxt = _post(
                nxt,
                "High Value Alert!",
                f"{j.restaurant}: ${j.pay:.2f} for {j.distance:.1f} mi",
                "success",
                action.at,
            )
        return nxt

    if isinstance(action, JobsReordered):
        active = {j.job_id: j for j in state.jobs if j.status == "active"}
        ordered = [active.pop(jid) for jid in dict.fromkeys(action.order) if jid in active]
        unranked = [j for j in state.jobs if j.job_id in active]
        done = [j for j in state.jobs if j.status != "active"]
        return replace(state, jobs=tuple(ordered + unranked + done))

    if isinstance(action, JobCompleted):
        if state.job(action.job_id) is None:
            return state
        jobs = tuple(replace(j, status="completed") if j.job_id == action.job_id else j for j in state.jobs)
        return replace(state, jobs=jobs)

    if isinstance(action, SettingsChanged):
        return replace(state, settings=action.settings)

    if isinstance(action, MilesTracked):
        # mileage only grows
        return replace(state, tracked_miles=max(state.tracked_miles, action.total_miles))

    if isinstance(action, OrderPlaced):
        o = action.order
        nxt = replace(state, orders=state.orders + (o,), mode="CUSTOMER")
        return _post(nxt, "New Customer Order!", f"{o.restaurant} order placed and is now in the feed.", "info", action.at)

    if isinstance(action, OrdersListed):
        kept = tuple(
            o for o in state.orders
            if not (o.source == "feed" and o.status == "pending")
        )
        known = {o.order_id for o in kept}
        fresh = []
        for o in action.orders:
            if o.order_id not in known:
                known.add(o.order_id)
                fresh.append(replace(o, source="feed"))
        return replace(state, orders=kept + tuple(fresh))

    if isinstance(action, OrderAccepted):
        o = state.order(action.order_id)
        if o is None or o.status != "pending" or state.active_order_id is not None:
            return state
        orders = tuple(
            replace(x, status="accepted", driver_id=action.driver_id) if x.order_id == o.order_id else x
            for x in state.orders
        )
        nxt = replace(state, orders=orders, active_order_id=o.order_id)
        return _post(nxt, "Order Accepted!", f"Get ready to pick up from {o.restaurant}.", "success", action.at)

    if isinstance(action, OrderStepUpdated):
        if state.order(action.order_id) is None:
            return state
        orders = tuple(
            replace(x, status=action.status) if x.order_id == action.order_id else x  # type: ignore[arg-type]
            for x in state.orders
        )
        return replace(state, orders=orders)

    if isinstance(action, OrderCompleted):
        o = state.order(state.active_order_id) if state.active_order_id else None
        nxt = replace(state, active_order_id=None)
        if o is not None:
            orders = tuple(replace(x, status="delivered") if x.order_id == o.order_id else x for x in state.orders)
            job = Job(
                job_id=o.order_id,
                platform=o.platform,
                restaurant=o.restaurant,
                pay=action.pay,
                distance=o.distance,
                address=o.address,
                status="completed",
                timestamp=action.at,
                estimated_time=o.estimated_time,
            )
            nxt = replace(nxt, orders=orders, jobs=nxt.jobs + (job,))
        return _post(nxt, "Delivery Complete!", f"+${action.pay:.2f} added to your earnings.", "success", action.at)

    if isinstance(action, NotificationPosted):
        return _post(state, action.title, action.message, action.type, action.at)

    if isinstance(action, NotificationDismissed):
        return replace(state, notifications=tuple(n for n in state.notifications if n.notification_id != action.notification_id))

    raise TypeError(f"Unknown shift action: {type(action).__name__}")


def active_notifications(state: ShiftState, now: float, ttl: float = 5.0) -> Tuple[Notification, ...]:
    return tuple(n for n in state.notifications if now - n.timestamp < ttl)


def shift_stats(state: ShiftState, now: float, irs_rate: float = 0.67) -> ShiftStats:
    done = state.completed_jobs()
    earnings = sum(j.pay for j in done)
    hours = 0.0
    if state.shift_started_at is not None:
        hours = max(0.0, now - state.shift_started_at) / 3600.0
    return ShiftStats(
        total_earnings=round(earnings, 2),
        total_miles=round(state.tracked_miles, 3),
        jobs_completed=len(done),
        active_hours=round(hours, 3),
        profit_per_hour=round(earnings / hours, 2) if hours > 0 else 0.0,
        mileage_deduction=round(state.tracked_miles * irs_rate, 2),
        estimated_tax_owed=round(earnings * state.settings.tax_rate / 100.0, 2),
    )

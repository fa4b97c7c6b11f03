from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from dataclasses import asdict
from datetime import datetime
import asyncio
import base64
import binascii
import logging
import os
import time
import uuid
from typing import List, Literal, Optional

from .config import load_config
from .errors import IntelligenceError, OfferValidationError, NotLoaded, UnknownEntity, LocationUnavailable
from .fleet_engine import FleetEngine, scenario_from_model
from .fleet_runner import FleetRunner
from .intelligence import IntelligenceClient
from .loader import load_agents, load_tasks
from .models import Job, Order, Point, Settings, PLATFORMS
from .planner import analyze_offer, analyze_stack, optimize_route
from .schemas import OrderDraft
from .session import ShiftSession
from .shift import (
    ModeChanged, JobAdded, JobsReordered, JobCompleted, SettingsChanged,
    OrderPlaced, OrdersListed, OrderAccepted, OrderStepUpdated, OrderCompleted, NotificationDismissed,
    active_notifications, shift_stats,
)
from .tracking import MileageTracker
from .voice import VoiceBridge
from .ws_manager import FleetFeed

from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger(__name__)

app = FastAPI(title="Gigfleet Backend", version="0.3.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

cfg = load_config()
engine = FleetEngine(cfg)
feed = FleetFeed()
engine_lock = asyncio.Lock()
runner = FleetRunner(engine, feed, engine_lock)
session = ShiftSession(cfg)
intel = IntelligenceClient(cfg)
voice = VoiceBridge(cfg)

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
DEFAULT_AGENTS = os.path.join(DATA_DIR, "agents.csv")
DEFAULT_TASKS = os.path.join(DATA_DIR, "tasks.csv")


# ---- error mapping ----
@app.exception_handler(IntelligenceError)
async def _intelligence_error(request: Request, exc: IntelligenceError):
    return JSONResponse(status_code=502, content={"detail": str(exc), "operation": exc.operation, "retryable": True})


@app.exception_handler(OfferValidationError)
async def _offer_invalid(request: Request, exc: OfferValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "missing": exc.missing})


@app.exception_handler(NotLoaded)
async def _not_loaded(request: Request, exc: NotLoaded):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UnknownEntity)
async def _unknown(request: Request, exc: UnknownEntity):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ---- request bodies ----
class LoadBody(BaseModel):
    agents_path: str | None = None
    tasks_path: str | None = None


class ScenarioBody(BaseModel):
    source: Literal["random", "model"] = "random"
    n_agents: int | None = Field(default=None, ge=1, le=50)
    n_tasks: int | None = Field(default=None, ge=0, le=200)


class DispatchBody(BaseModel):
    use_model: bool = True


class TickBody(BaseModel):
    ticks: int = Field(default=1, ge=1, le=10000)


class PlayBody(BaseModel):
    tick_ms: int | None = None


class ModeBody(BaseModel):
    mode: str


class CoordsBody(BaseModel):
    x: float
    y: float


class JobBody(BaseModel):
    id: str | None = None
    platform: Literal["UberEats", "DoorDash", "GrubHub", "Other"] = "Other"
    restaurant: str = ""
    pay: float = Field(ge=0)
    distance: float = Field(ge=0)
    address: str = ""
    profit_score: float | None = None
    estimated_time: int | None = None


class SettingsBody(BaseModel):
    mpg: float = 25.0
    fuel_cost: float = 3.50
    tax_rate: float = 15.0
    high_value_alerts: bool = True
    shift_reminders: bool = False


class LocationBody(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class OrderBody(BaseModel):
    id: str | None = None
    platform: Literal["UberEats", "DoorDash", "GrubHub", "Other"] = "Other"
    restaurant: str
    pay: float
    distance: float
    address: str
    items: List[str] = []
    estimated_time: int = 0
    pickup: CoordsBody | None = None
    delivery: CoordsBody | None = None


class StepBody(BaseModel):
    status: Literal["pending", "accepted", "picked_up", "delivered"]


class CompleteOrderBody(BaseModel):
    pay: float


class OfferBody(BaseModel):
    pay: float | None = None
    distance: float | None = None
    estimated_time: float | None = None


class ImageBody(BaseModel):
    image_base64: str
    mime_type: str = "image/jpeg"


class ChatBody(BaseModel):
    message: str
    image_base64: str | None = None
    mime_type: str = "image/jpeg"


def _image(b64: str) -> bytes:
    if "," in b64 and b64.startswith("data:"):
        b64 = b64.split(",", 1)[1]
    try:
        return base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="image_base64 is not valid base64")


def _point(c) -> Optional[Point]:
    return None if c is None else Point(c.x, c.y)


def _shift_view():
    s = session.state
    now = time.time()
    return {
        "mode": s.mode,
        "tracking": s.tracking_enabled,
        "jobs": [asdict(j) for j in s.jobs],
        "orders": [asdict(o) for o in s.orders],
        "active_order_id": s.active_order_id,
        "settings": asdict(s.settings),
        "tracked_miles": round(s.tracked_miles, 3),
        "notifications": [asdict(n) for n in active_notifications(s, now, cfg.notification_ttl_sec)],
    }


@app.get("/health")
def health():
    return {"ok": True, "loaded": engine.loaded, "running": runner.running, "version": app.version}


# ---- Fleet ----
@app.post("/fleet/load")
async def fleet_load(body: LoadBody):
    agents_path = body.agents_path or DEFAULT_AGENTS
    tasks_path = body.tasks_path or DEFAULT_TASKS

    if not os.path.exists(agents_path):
        raise HTTPException(status_code=400, detail=f"Agents CSV not found: {agents_path}")
    if not os.path.exists(tasks_path):
        raise HTTPException(status_code=400, detail=f"Tasks CSV not found: {tasks_path}")

    agents = load_agents(agents_path)
    tasks = load_tasks(tasks_path)
    await runner.stop()
    async with engine_lock:
        engine.load(agents, tasks, source="file")
    return {"loaded": True, "agents": len(agents), "tasks": len(tasks)}


@app.post("/fleet/scenario")
async def fleet_scenario(body: ScenarioBody):
    await runner.stop()
    if body.source == "model":
        try:
            sc = await asyncio.to_thread(intel.generate_fleet_scenario, cfg.scenario_agents, cfg.scenario_tasks)
        except IntelligenceError:
            if not cfg.local_fallback:
                raise
            logger.warning("Scenario model unavailable, generating locally")
        else:
            agents, tasks = scenario_from_model(sc)
            async with engine_lock:
                engine.load(agents, tasks, source="model")
                return engine.snapshot()

    async with engine_lock:
        engine.random_scenario(body.n_agents, body.n_tasks)
        return engine.snapshot()


@app.get("/fleet/state")
async def fleet_state():
    async with engine_lock:
        if not engine.loaded:
            raise NotLoaded("Scenario not loaded")
        return engine.snapshot()


@app.post("/fleet/dispatch")
async def fleet_dispatch(body: DispatchBody):
    if not engine.loaded:
        raise NotLoaded("Scenario not loaded")
    async with engine_lock:
        agents = list(engine.state.agents.values())
        tasks = list(engine.state.tasks.values())

    plan = None
    if body.use_model:
        plan = await asyncio.to_thread(engine.propose, intel, agents, tasks)

    async with engine_lock:
        result = engine.apply_plan(plan)
        snap = engine.snapshot()
    await feed.broadcast(snap)
    return result


@app.post("/fleet/tick")
async def fleet_tick(body: TickBody):
    async with engine_lock:
        engine.run(body.ticks)
        return engine.snapshot()


@app.post("/fleet/play")
async def fleet_play(body: PlayBody):
    if not engine.loaded:
        raise NotLoaded("Scenario not loaded")
    await runner.start(tick_ms=body.tick_ms)
    return {"running": runner.running}


@app.post("/fleet/pause")
async def fleet_pause():
    await runner.stop()
    return {"running": False}


@app.post("/fleet/agents/{agent_id}/approve")
async def approve_agent(agent_id: str):
    async with engine_lock:
        a = engine.approve_agent(agent_id)
    await runner.push_state()
    return {"id": a.agent_id, "status": a.status}


@app.post("/fleet/tasks/{task_id}/resolve")
async def resolve_dispute(task_id: str):
    async with engine_lock:
        removed = engine.resolve_dispute(task_id)
    await runner.push_state()
    return {"id": task_id, "resolved": removed}


@app.websocket("/ws/fleet")
async def ws_fleet(ws: WebSocket):
    await feed.connect(ws)
    try:
        async with engine_lock:
            snap = engine.snapshot() if engine.loaded else {"detail": "Scenario not loaded"}
        await feed.send(ws, snap)
        while True:
            try:
                await asyncio.wait_for(ws.receive_text(), timeout=30)
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
    except WebSocketDisconnect:
        pass
    finally:
        await feed.disconnect(ws)
        # dispatch view closed
        if feed.size == 0:
            await runner.stop()


# ---- Shift (driver app) ----
@app.get("/shift/state")
def get_shift():
    return _shift_view()


@app.post("/shift/mode")
def set_mode(body: ModeBody):
    try:
        session.apply(ModeChanged(body.mode, at=time.time()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _shift_view()


@app.post("/shift/jobs")
def add_job(body: JobBody):
    job = Job(
        job_id=body.id or uuid.uuid4().hex[:8],
        platform=body.platform,
        restaurant=body.restaurant,
        pay=body.pay,
        distance=body.distance,
        address=body.address,
        status="active",
        timestamp=time.time(),
        profit_score=body.profit_score,
        estimated_time=body.estimated_time,
    )
    session.apply(JobAdded(job, at=job.timestamp))
    return asdict(job)


@app.post("/shift/jobs/{job_id}/complete")
def complete_job(job_id: str):
    if session.state.job(job_id) is None:
        raise UnknownEntity("Job", job_id)
    session.apply(JobCompleted(job_id))
    return asdict(session.state.job(job_id))


@app.post("/shift/settings")
def update_settings(body: SettingsBody):
    session.apply(SettingsChanged(Settings(**body.model_dump())))
    return asdict(session.state.settings)


@app.post("/shift/location")
def post_location(body: LocationBody):
    added = session.record_fix(body.lat, body.lon)
    return {
        "tracking": added is not None,
        "added_miles": added or 0.0,
        "tracked_miles": round(session.state.tracked_miles, 4),
    }


@app.websocket("/ws/location")
async def ws_location(ws: WebSocket):
    await ws.accept()

    async def fixes():
        while True:
            msg = await ws.receive_json()
            if msg.get("error"):
                raise LocationUnavailable(str(msg["error"]))
            yield float(msg["lat"]), float(msg["lon"])

    # the session drops fixes outside the tracking modes
    tracker = MileageTracker(session.record_fix)
    tracker.start(fixes())
    try:
        await tracker.wait()
        await ws.send_json({
            "tracking": False,
            "degraded": tracker.degraded,
            "tracked_miles": round(session.state.tracked_miles, 4),
        })
    except WebSocketDisconnect:
        pass
    finally:
        await tracker.stop()


@app.get("/shift/stats")
def get_stats():
    st = shift_stats(session.state, time.time(), cfg.irs_mileage_rate)
    return asdict(st)


@app.delete("/shift/notifications/{notification_id}")
def dismiss(notification_id: str):
    session.apply(NotificationDismissed(notification_id))
    return {"ok": True}


@app.post("/shift/orders")
def place_order(body: OrderBody):
    order = Order(
        order_id=body.id or uuid.uuid4().hex[:8],
        platform=body.platform,
        restaurant=body.restaurant,
        pay=body.pay,
        distance=body.distance,
        address=body.address,
        items=list(body.items),
        estimated_time=body.estimated_time,
        pickup=_point(body.pickup),
        delivery=_point(body.delivery),
    )
    session.apply(OrderPlaced(order, at=time.time()))
    return asdict(order)


def _draft_fields(d: OrderDraft) -> dict:
    return {
        "platform": d.platform if d.platform in PLATFORMS else "Other",
        "restaurant": d.restaurant,
        "pay": d.pay,
        "distance": d.distance,
        "address": d.address,
        "items": list(d.items),
        "estimated_time": int(round(d.estimatedTime)),
        "pickup": None if d.pickupCoords is None else {"x": d.pickupCoords.x, "y": d.pickupCoords.y},
        "delivery": None if d.deliveryCoords is None else {"x": d.deliveryCoords.x, "y": d.deliveryCoords.y},
    }


@app.get("/shift/orders/feed")
async def orders_feed():
    """Pending customer orders first, then a freshly generated batch of offers."""
    try:
        generated = await asyncio.to_thread(intel.generate_marketplace_orders)
        source = "model"
    except IntelligenceError:
        if not cfg.local_fallback:
            raise
        logger.warning("Order feed model unavailable, showing customer orders only")
        generated, source = [], "none"

    known = {o.order_id for o in session.state.orders}
    fresh = []
    for d in generated:
        oid = d.id if d.id and d.id not in known else f"mk-{uuid.uuid4().hex[:8]}"
        known.add(oid)
        f = _draft_fields(d)
        fresh.append(Order(
            order_id=oid,
            platform=f["platform"],
            restaurant=f["restaurant"],
            pay=f["pay"],
            distance=f["distance"],
            address=f["address"],
            items=f["items"],
            estimated_time=f["estimated_time"],
            pickup=_point(d.pickupCoords),
            delivery=_point(d.deliveryCoords),
        ))
    session.apply(OrdersListed(tuple(fresh)))
    pending = [o for o in session.state.orders if o.status == "pending"]
    return {"source": source, "orders": [asdict(o) for o in pending]}


@app.post("/shift/orders/generate")
async def orders_generate():
    """A draft customer order, shaped like the body of POST /shift/orders. Nothing is placed."""
    draft = await asyncio.to_thread(intel.generate_customer_order)
    return _draft_fields(draft)


@app.post("/shift/orders/{order_id}/accept")
def accept_order(order_id: str):
    if session.state.order(order_id) is None:
        raise UnknownEntity("Order", order_id)
    session.apply(OrderAccepted(order_id, at=time.time()))
    return _shift_view()


@app.post("/shift/orders/{order_id}/step")
def order_step(order_id: str, body: StepBody):
    if session.state.order(order_id) is None:
        raise UnknownEntity("Order", order_id)
    session.apply(OrderStepUpdated(order_id, body.status))
    return asdict(session.state.order(order_id))


@app.post("/shift/orders/complete")
def complete_order(body: CompleteOrderBody):
    session.apply(OrderCompleted(body.pay, at=time.time()))
    return _shift_view()


# ---- Offer triage / planning ----
@app.post("/offers/analyze")
async def offers_analyze(body: OfferBody):
    return await asyncio.to_thread(
        analyze_offer, intel, cfg, session.state.settings, body.pay, body.distance, body.estimated_time
    )


@app.post("/offers/screenshot")
async def offers_screenshot(body: ImageBody):
    res = await asyncio.to_thread(intel.parse_offer_screenshot, _image(body.image_base64), body.mime_type)
    return res.model_dump()


@app.post("/shift/route/optimize")
async def route_optimize():
    active = session.state.active_jobs()
    if len(active) < 2:
        return {"source": "none", "jobs": [asdict(j) for j in active]}
    res = await asyncio.to_thread(optimize_route, intel, cfg, active)
    # jobs may have been added or completed while the model was thinking
    session.apply(JobsReordered(tuple(j.job_id for j in res["jobs"])))
    return {"source": res["source"], "jobs": [asdict(j) for j in session.state.active_jobs()]}


@app.post("/shift/stack/analyze")
async def stack_analyze():
    active = session.state.active_jobs()
    if len(active) < 2:
        raise HTTPException(status_code=400, detail="Need at least two active jobs to stack")
    return await asyncio.to_thread(analyze_stack, intel, cfg, active)


@app.post("/analytics/earnings")
async def analytics_earnings():
    done = session.state.completed_jobs()
    if not done:
        raise HTTPException(status_code=400, detail="No completed jobs to analyze")
    res = await asyncio.to_thread(intel.analyze_earnings, done)
    return res.model_dump()


@app.post("/analytics/forecast")
async def analytics_forecast():
    res = await asyncio.to_thread(intel.forecast_earnings, session.state.jobs, datetime.now())
    return res.model_dump()


@app.post("/delivery/verify")
async def delivery_verify(body: ImageBody):
    res = await asyncio.to_thread(intel.verify_delivery_photo, _image(body.image_base64), body.mime_type)
    return res.model_dump()


@app.post("/chat")
def chat(body: ChatBody):
    image = _image(body.image_base64) if body.image_base64 else None
    stream = intel.stream_chat(body.message, image, body.mime_type)
    # pull the first fragment so a failed call still gets a proper status code
    first = next(stream, "")

    def _rest():
        yield first
        try:
            yield from stream
        except IntelligenceError as e:
            yield f"\n[error] {e}"

    return StreamingResponse(_rest(), media_type="text/plain; charset=utf-8")


# ---- Realtime voice ----
@app.websocket("/ws/voice")
async def ws_voice(ws: WebSocket):
    await ws.accept()

    async def frames():
        while True:
            yield await ws.receive_bytes()

    try:
        async with voice.connect() as live:
            await voice.relay(live, frames(), ws.send_json)
    except WebSocketDisconnect:
        pass
    except IntelligenceError as e:
        await ws.close(code=1011, reason=str(e))


@app.on_event("shutdown")
async def _shutdown():
    await runner.stop()

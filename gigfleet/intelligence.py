"""
Client for the model-backed judgment calls (offer scoring, stacking, route
ordering, fleet matching, marketplace orders, analytics, vision, chat).

Every call sends a prompt plus a JSON response schema and validates what comes
back. Transport errors and malformed payloads both surface as
`IntelligenceError`; callers never see a half-parsed value.
"""
from __future__ import annotations

import json
import logging
import random
import re
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from google import genai
from google.genai import types
from pydantic import TypeAdapter, ValidationError

from .config import FleetConfig
from .errors import IntelligenceError
from .models import Agent, Task, Job
from .schemas import (
    OfferRecommendation,
    StackAnalysis,
    Assignment,
    DispatchPlan,
    EarningsAnalysis,
    EarningsForecast,
    FleetScenario,
    OfferExtraction,
    DeliveryVerification,
    OrderDraft,
    MarketplaceOrder,
)

logger = logging.getLogger(__name__)

CHAT_SYSTEM_INSTRUCTION = (
    "You are an expert gig-economy consultant. Help drivers maximize tax deductions, "
    "choose the best times to drive, and handle difficult delivery situations."
)

_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")

_route_ids = TypeAdapter(List[str])
_marketplace_orders = TypeAdapter(List[MarketplaceOrder])


def strip_fences(text: str) -> str:
    m = _FENCE.search(text)
    if m:
        return m.group(1).strip()
    return text.replace("```json", "").replace("```", "").strip()


def _num(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = _NUMBER.search(value.replace(",", ""))
        if m:
            return float(m.group(0))
    return default


def simulate_traffic(jobs: List[Job], rng: random.Random) -> Dict[str, str]:
    # 20% heavy, 30% moderate, 50% light
    out: Dict[str, str] = {}
    for j in jobs:
        r = rng.random()
        out[j.job_id] = "Heavy (Accident Reported)" if r > 0.8 else "Moderate" if r > 0.5 else "Light"
    return out


class IntelligenceClient:
    def __init__(self, cfg: FleetConfig, client: Any = None, rng: Optional[random.Random] = None):
        self.cfg = cfg
        self._client = client
        self.rng = rng or random.Random()

    # ---------- transport ----------
    def _models(self):
        if self._client is None:
            if not self.cfg.api_key:
                logger.warning("No API key configured for the intelligence service")
                raise IntelligenceError("API key is missing", "connect")
            self._client = genai.Client(api_key=self.cfg.api_key)
        return self._client.models

    def _call(self, operation: str, **kwargs) -> str:
        models = self._models()
        try:
            resp = models.generate_content(**kwargs)
        except Exception as e:
            logger.warning("%s: model call failed: %s", operation, e)
            raise IntelligenceError(f"{operation} failed: {e}", operation) from e

        text = getattr(resp, "text", None)
        if not text:
            raise IntelligenceError(f"{operation}: empty response", operation)
        return text

    def _json(self, operation: str, model: str, contents: Any, schema: Any, adapter: TypeAdapter) -> Any:
        text = self._call(
            operation,
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        try:
            return adapter.validate_json(strip_fences(text))
        except ValidationError as e:
            logger.warning("%s: malformed response: %s", operation, e.errors(include_url=False)[:3])
            raise IntelligenceError(f"{operation}: malformed response", operation) from e

    # ---------- offers ----------
    def analyze_offer(self, pay: float, distance: float, estimated_time: int) -> OfferRecommendation:
        prompt = f"""
As an expert gig driver assistant, analyze this delivery offer and provide a recommendation.
- Payout: ${pay:.2f}
- Distance: {distance:.1f} miles
- Estimated Time: {estimated_time} minutes

Factors to consider:
- Dollars per mile (aim for > ${self.cfg.target_pay_per_mile:.2f}).
- Dollars per hour (aim for > ${self.cfg.target_pay_per_hour:.0f}).
- Short, low-pay orders can be good for stacking with another order.
- Long distance orders need very high pay to be worthwhile.

Return a JSON object with your recommendation and a brief, one-sentence reasoning.
Recommendation must be one of: "Take", "Stack", "Decline".
"""
        return self._json(
            "analyze_offer", self.cfg.chat_model, prompt, OfferRecommendation, TypeAdapter(OfferRecommendation)
        )

    def analyze_stack(self, jobs: List[Job]) -> StackAnalysis:
        if not jobs:
            raise ValueError("No jobs to analyze")

        context = [
            {
                "id": j.job_id,
                "restaurant": j.restaurant,
                "pay": j.pay,
                "distance": j.distance,
                "address": j.address,
                "traffic": "Heavy" if self.rng.random() > 0.7 else "Light",
            }
            for j in jobs
        ]
        prompt = f"""
As an expert logistics assistant, analyze these delivery jobs for a gig driver.

Jobs:
{json.dumps(context)}

Determine the best subset of these jobs to "stack" (bundle) together to maximize profit per hour.
You can recommend taking all of them, or rejecting some if they are inefficient
(opposite direction, low pay, heavy traffic).

Return JSON with: recommendedJobIds, reasoning, totalProjectedPay, totalDistance
(consider overlap savings), efficiencyRating ('High', 'Medium' or 'Low') and a short strategyTip.
"""
        return self._json("analyze_stack", self.cfg.reasoning_model, prompt, StackAnalysis, TypeAdapter(StackAnalysis))

    def order_route(self, jobs: List[Job]) -> List[str]:
        """Job ids in the suggested delivery order (may omit or invent ids)."""
        traffic = simulate_traffic(jobs, self.rng)
        job_list = "\n".join(
            f"ID: {j.job_id}, Restaurant: {j.restaurant}, Customer: {j.address}, Traffic: {traffic[j.job_id]}"
            for j in jobs
        )
        prompt = f"""I have these delivery jobs. Order them in the most logical sequence for a driver to complete
to MINIMIZE TOTAL DELIVERY TIME.

Account for the reported 'Traffic' conditions:
- Avoid sequences passing through 'Heavy' traffic if a faster alternative exists.
- Prefer 'Light' traffic paths.
- Pickup all food items first before starting deliveries (unless a drop-off is en-route and highly efficient).

Return ONLY a JSON array of IDs in the correct order.

{job_list}"""
        return self._json("order_route", self.cfg.reasoning_model, prompt, list[str], _route_ids)

    # ---------- fleet ----------
    def plan_dispatch(self, agents: List[Agent], tasks: List[Task]) -> List[Assignment]:
        pending = [t for t in tasks if t.status == "pending"]
        available = [a for a in agents if a.status not in ("offline", "pending_approval")]
        if not pending or not available:
            return []

        drivers = [
            {
                "id": a.agent_id,
                "name": a.name,
                "coords": None if a.position is None else {"x": a.position.x, "y": a.position.y},
                "status": a.status,
            }
            for a in available
        ]
        orders = [
            {"id": t.task_id, "coords": None if t.position is None else {"x": t.position.x, "y": t.position.y}}
            for t in pending
        ]
        prompt = f"""
Match these pending orders to available drivers to minimize delivery time (calculate distance using coordinates x,y).
Drivers: {json.dumps(drivers)}
Orders: {json.dumps(orders)}

Return JSON array of assignments: {{ orderId, driverId }}.
"""
        plan = self._json("plan_dispatch", self.cfg.chat_model, prompt, DispatchPlan, TypeAdapter(DispatchPlan))
        return plan.assignments

    def generate_fleet_scenario(self, n_agents: int, n_tasks: int) -> FleetScenario:
        lo, hi = int(self.cfg.scenario_coord_min), int(self.cfg.scenario_coord_max)
        prompt = (
            "Generate a realistic scenario for a local delivery fleet in a 2D grid city.\n"
            f"Create {n_agents} Drivers: id, name, status (idle/busy/offline), currentLocation (address), "
            f"earnings, rating (3.5-5.0), and coordinates (x, y between {lo}-{hi}).\n"
            f"Create {n_tasks} Pending Orders: id, customer name, address, amount, items, "
            f"and coordinates (x, y between {lo}-{hi}).\n"
            "Return JSON."
        )
        return self._json("generate_fleet_scenario", self.cfg.chat_model, prompt, FleetScenario, TypeAdapter(FleetScenario))

    # ---------- marketplace ----------
    def generate_marketplace_orders(self, count: int = 3) -> List[MarketplaceOrder]:
        """Simulated open offers for the driver's order feed."""
        lo, hi = int(self.cfg.scenario_coord_min), int(self.cfg.scenario_coord_max)
        prompt = (
            f"Generate {count} realistic delivery orders for a gig driver (DoorDash or UberEats).\n"
            "Include: id (unique), platform ('DoorDash' or 'UberEats'), restaurant, pay (5-25), distance (1-10), "
            "address, items (string array), and estimatedTime (minutes, calculated based on distance + traffic).\n"
            f"Also include pickupCoords (x, y between {lo}-{hi}) and deliveryCoords (x, y between {lo}-{hi}) "
            "for a 2D map simulation.\n"
            "Return JSON array."
        )
        return self._json(
            "generate_marketplace_orders", self.cfg.chat_model, prompt, list[MarketplaceOrder], _marketplace_orders
        )

    def generate_customer_order(self) -> OrderDraft:
        lo, hi = int(self.cfg.scenario_coord_min), int(self.cfg.scenario_coord_max)
        prompt = (
            "Generate one realistic food delivery order from a customer's perspective (DoorDash or UberEats).\n"
            "Include: platform, restaurant, pay (driver payout, 5-25), distance (1-10), address (customer's address), "
            "items (string array of 2-3 food items), and estimatedTime (minutes).\n"
            f"Also include pickupCoords (restaurant, x/y between {lo}-{hi}) and deliveryCoords "
            f"(customer, x/y between {lo}-{hi}) for a 2D map simulation.\n"
            "Return a single JSON object."
        )
        return self._json("generate_customer_order", self.cfg.chat_model, prompt, OrderDraft, TypeAdapter(OrderDraft))

    # ---------- analytics ----------
    def analyze_earnings(self, jobs: List[Job]) -> EarningsAnalysis:
        simplified = []
        for j in jobs:
            ts = datetime.fromtimestamp(j.timestamp)
            simplified.append({
                "platform": j.platform,
                "pay": j.pay,
                "distance": j.distance,
                "address": j.address,
                "hour": ts.hour,
                "day": ts.strftime("%A"),
            })
        prompt = f"""
As an expert gig-driver analyst, examine this data of completed jobs.
Provide actionable insights to help a driver earn more money.

Job Data: {json.dumps(simplified)}

1. Best Hours: the most profitable time block (e.g. "5 PM - 9 PM").
2. Best Zones: the top 2 most profitable zones, from common keywords in the addresses.
3. Platform Comparison: total earnings and percentage for each platform.
4. Top Day: the highest-earning day of the week.
5. Efficiency Tip: one concise, actionable tip.

Return a JSON object.
"""
        return self._json(
            "analyze_earnings", self.cfg.reasoning_model, prompt, EarningsAnalysis, TypeAdapter(EarningsAnalysis)
        )

    def forecast_earnings(self, jobs: List[Job], now: datetime) -> EarningsForecast:
        if not jobs:
            return EarningsForecast(
                predictedRate=self.cfg.default_forecast_rate,
                reasoning="General estimate based on typical market conditions.",
                peakTime=self.cfg.default_forecast_peak,
            )

        simplified = []
        for j in jobs:
            ts = datetime.fromtimestamp(j.timestamp)
            # 0 = Sunday
            simplified.append({"pay": j.pay, "hour": ts.hour, "day": (ts.weekday() + 1) % 7})

        prompt = f"""
As a gig-work economist, analyze this driver's historical earnings and the current time to predict
their potential hourly earnings for the next 2-3 hours.

Historical Data (simplified): {json.dumps(simplified)}
Current Time: {now.strftime("%A %I %p").replace(" 0", " ")}

Factors: meal rushes (lunch 11a-2p, dinner 5p-9p), weekends vs weekdays, and past earnings in similar windows.

Return a JSON object with predictedRate (number), reasoning (one sentence) and peakTime
(the next high-demand time block, e.g. "Dinner Rush (5 PM - 9 PM)").
"""
        return self._json(
            "forecast_earnings", self.cfg.reasoning_model, prompt, EarningsForecast, TypeAdapter(EarningsForecast)
        )

    # ---------- vision ----------
    def parse_offer_screenshot(self, image: bytes, mime_type: str = "image/jpeg") -> OfferExtraction:
        instruction = """Analyze this delivery offer screenshot. Extract details and calculate a 'profitScore' (1-10).

Extract: platform (UberEats, DoorDash, etc., infer from the UI if text is missing), restaurant,
pay (number), distance (miles, number), address (or 'Unknown'), estimatedTime (minutes, if visible).

Profit score factors: pay-to-mile ratio ($2/mile is ideal), time of day and traffic, expected
restaurant wait, and operating costs.

Return JSON object: { platform, restaurant, pay, distance, address, profitScore, estimatedTime }"""
        text = self._call(
            "parse_offer_screenshot",
            model=self.cfg.vision_model,
            contents=[types.Part.from_bytes(data=image, mime_type=mime_type), instruction],
        )
        try:
            raw = json.loads(strip_fences(text))
        except ValueError as e:
            raise IntelligenceError("Failed to parse offer details.", "parse_offer_screenshot") from e
        if not isinstance(raw, dict):
            raise IntelligenceError("Failed to parse offer details.", "parse_offer_screenshot")

        data = {str(k).lower(): v for k, v in raw.items()}
        eta = int(_num(data.get("estimatedtime"), 0))
        score = _num(data.get("profitscore"), 5) or 5
        return OfferExtraction(
            platform=str(data.get("platform") or "Other"),
            restaurant=str(data.get("restaurant") or "Unknown"),
            pay=_num(data.get("pay")),
            distance=_num(data.get("distance")),
            address=str(data.get("address") or "Unknown"),
            profitScore=score,
            estimatedTime=eta or None,
        )

    def verify_delivery_photo(self, image: bytes, mime_type: str = "image/jpeg") -> DeliveryVerification:
        contents = [
            types.Part.from_bytes(data=image, mime_type=mime_type),
            "Verify if this image shows a food delivery package at a door. Return JSON: { verified: boolean, reason: string }.",
        ]
        return self._json(
            "verify_delivery_photo",
            self.cfg.chat_model,
            contents,
            DeliveryVerification,
            TypeAdapter(DeliveryVerification),
        )

    # ---------- chat ----------
    def stream_chat(self, message: str, image: Optional[bytes] = None, mime_type: str = "image/jpeg") -> Iterator[str]:
        """Lazy, finite stream of text fragments. A failed stream cannot be resumed."""
        models = self._models()
        contents: Any = message
        if image is not None:
            contents = [types.Part.from_bytes(data=image, mime_type=mime_type), message]
        config = types.GenerateContentConfig(
            system_instruction=CHAT_SYSTEM_INSTRUCTION,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )
        try:
            for chunk in models.generate_content_stream(model=self.cfg.chat_model, contents=contents, config=config):
                text = getattr(chunk, "text", None)
                if text:
                    yield text
        except Exception as e:
            logger.warning("stream_chat failed: %s", e)
            raise IntelligenceError(f"chat failed: {e}", "stream_chat") from e

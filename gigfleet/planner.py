from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import FleetConfig
from .errors import IntelligenceError, OfferValidationError
from .heuristics import nearest_first_route, pay_per_mile_stack, split_known
from .intelligence import IntelligenceClient
from .models import Job, Settings
from .schemas import StackAnalysis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OfferMetrics:
    dollars_per_mile: float
    dollars_per_hour: float
    fuel_adjusted_profit: float


def validate_offer(pay: Optional[float], distance: Optional[float], estimated_time: Optional[float]):
    missing = [
        name
        for name, v in (("Payout", pay), ("Distance", distance), ("Estimated Time", estimated_time))
        if not v or v <= 0
    ]
    if missing:
        raise OfferValidationError(missing)


def offer_metrics(pay: float, distance: float, estimated_time: float, settings: Settings, irs_rate: float = 0.67) -> OfferMetrics:
    per_mile = pay / distance if distance > 0 else 0.0
    per_hour = pay / (estimated_time / 60.0) if estimated_time > 0 else 0.0
    if settings.mpg > 0 and settings.fuel_cost > 0:
        profit = pay - (distance / settings.mpg) * settings.fuel_cost
    else:
        # IRS rate when the vehicle settings are unusable
        profit = pay - distance * irs_rate
    return OfferMetrics(
        dollars_per_mile=round(per_mile, 2),
        dollars_per_hour=round(per_hour, 2),
        fuel_adjusted_profit=round(profit, 2),
    )


def analyze_offer(
    client: IntelligenceClient,
    cfg: FleetConfig,
    settings: Settings,
    pay: Optional[float],
    distance: Optional[float],
    estimated_time: Optional[float],
) -> Dict[str, Any]:
    validate_offer(pay, distance, estimated_time)
    m = offer_metrics(pay, distance, estimated_time, settings, cfg.irs_mileage_rate)  # type: ignore[arg-type]
    rec = client.analyze_offer(pay, distance, int(estimated_time))  # type: ignore[arg-type]
    return {
        "recommendation": rec.recommendation,
        "reasoning": rec.reasoning,
        "dollarsPerMile": m.dollars_per_mile,
        "dollarsPerHour": m.dollars_per_hour,
        "fuelAdjustedProfit": m.fuel_adjusted_profit,
    }


def optimize_route(client: IntelligenceClient, cfg: FleetConfig, jobs: List[Job]) -> Dict[str, Any]:
    """Active jobs in delivery order. Jobs the model left out go last."""
    if len(jobs) <= 1:
        return {"source": "none", "jobs": list(jobs)}
    try:
        ids = client.order_route(jobs)
    except IntelligenceError:
        if not cfg.local_fallback:
            raise
        logger.warning("Route model unavailable, ordering nearest-first")
        return {"source": "heuristic", "jobs": nearest_first_route(jobs)}

    ordered, rest = split_known(ids, jobs)
    return {"source": "model", "jobs": ordered + rest}


def analyze_stack(client: IntelligenceClient, cfg: FleetConfig, jobs: List[Job]) -> Dict[str, Any]:
    if not jobs:
        raise ValueError("No jobs to analyze")
    try:
        res: StackAnalysis = client.analyze_stack(jobs)
        source = "model"
    except IntelligenceError:
        if not cfg.local_fallback:
            raise
        logger.warning("Stack model unavailable, bundling by pay per mile")
        res = pay_per_mile_stack(
            jobs,
            min_pay_per_mile=cfg.target_pay_per_mile,
            high=cfg.stack_high_pay_per_mile,
            medium=cfg.stack_medium_pay_per_mile,
        )
        source = "heuristic"
    return {"source": source, **res.model_dump()}

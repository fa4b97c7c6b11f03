"""
Response shapes of the intelligence / vision services.

Field names follow the JSON the model is asked for (camelCase), so the same
classes double as `response_schema` for the request.
"""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class OfferRecommendation(BaseModel):
    recommendation: Literal["Take", "Stack", "Decline"]
    reasoning: str


class StackAnalysis(BaseModel):
    recommendedJobIds: List[str]
    reasoning: str
    totalProjectedPay: float
    totalDistance: float
    efficiencyRating: Literal["High", "Medium", "Low"]
    strategyTip: str


class Assignment(BaseModel):
    orderId: str
    driverId: str


class DispatchPlan(BaseModel):
    assignments: List[Assignment] = Field(default_factory=list)


class PlatformShare(BaseModel):
    platform: str
    totalEarnings: float
    percentage: float


class EarningsAnalysis(BaseModel):
    bestHours: str
    bestZones: List[str]
    platformComparison: List[PlatformShare]
    topPerformingDay: str
    efficiencyTip: str


class EarningsForecast(BaseModel):
    predictedRate: float
    reasoning: str
    peakTime: str


class Coords(BaseModel):
    x: float
    y: float


class ScenarioDriver(BaseModel):
    id: str
    name: str
    status: Literal["idle", "busy", "offline", "pending_approval"] = "idle"
    currentLocation: str = ""
    earnings: float = 0.0
    rating: Optional[float] = None
    coordinates: Optional[Coords] = None


class ScenarioOrder(BaseModel):
    id: str
    customer: str
    address: str
    amount: float
    items: List[str] = Field(default_factory=list)
    status: Literal["pending"] = "pending"
    coordinates: Optional[Coords] = None


class FleetScenario(BaseModel):
    drivers: List[ScenarioDriver] = Field(default_factory=list)
    orders: List[ScenarioOrder] = Field(default_factory=list)


class OfferExtraction(BaseModel):
    platform: str = "Other"
    restaurant: str = "Unknown"
    pay: float = 0.0
    distance: float = 0.0
    address: str = "Unknown"
    profitScore: float = 5
    estimatedTime: Optional[int] = None


class DeliveryVerification(BaseModel):
    verified: bool
    reason: str


class OrderDraft(BaseModel):
    platform: str = "Other"
    restaurant: str
    pay: float
    distance: float
    address: str
    items: List[str] = Field(default_factory=list)
    estimatedTime: float = 0
    pickupCoords: Optional[Coords] = None
    deliveryCoords: Optional[Coords] = None


class MarketplaceOrder(OrderDraft):
    id: str

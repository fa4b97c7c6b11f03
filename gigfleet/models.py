from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, List, Tuple


AgentStatus = Literal["idle", "busy", "offline", "pending_approval"]
TaskStatus = Literal["pending", "assigned", "picked_up", "delivered", "disputed"]
Platform = Literal["UberEats", "DoorDash", "GrubHub", "Other"]
JobStatus = Literal["pending", "active", "completed"]
OrderStatus = Literal["pending", "accepted", "picked_up", "delivered"]
NotificationType = Literal["info", "success", "warning", "error"]
OrderSource = Literal["customer", "feed"]

PLATFORMS: Tuple[str, ...] = ("UberEats", "DoorDash", "GrubHub", "Other")


@dataclass(frozen=True)
class Point:
    x: float  # 0-100
    y: float  # 0-100


@dataclass
class Agent:
    agent_id: str
    name: str
    status: AgentStatus = "idle"
    position: Optional[Point] = None
    active_task_id: Optional[str] = None
    earnings: float = 0.0
    rating: Optional[float] = None
    current_location: str = ""


@dataclass
class Task:
    task_id: str
    customer: str
    address: str
    amount: float
    items: List[str] = field(default_factory=list)
    position: Optional[Point] = None
    status: TaskStatus = "pending"
    assigned_agent_id: Optional[str] = None


@dataclass
class Job:
    job_id: str
    platform: Platform
    restaurant: str
    pay: float
    distance: float  # miles
    address: str
    status: JobStatus = "active"
    timestamp: float = 0.0
    profit_score: Optional[float] = None  # 1-10
    estimated_time: Optional[int] = None  # minutes

    @property
    def pay_per_mile(self) -> float:
        return self.pay / self.distance if self.distance > 0 else 0.0


@dataclass
class Order:
    order_id: str
    platform: Platform
    restaurant: str
    pay: float
    distance: float
    address: str
    items: List[str] = field(default_factory=list)
    estimated_time: int = 0
    pickup: Optional[Point] = None
    delivery: Optional[Point] = None
    status: OrderStatus = "pending"
    driver_id: Optional[str] = None
    source: OrderSource = "customer"


@dataclass(frozen=True)
class Notification:
    notification_id: str
    title: str
    message: str
    timestamp: float
    type: NotificationType = "info"


@dataclass(frozen=True)
class Settings:
    mpg: float = 25.0
    fuel_cost: float = 3.50  # per gallon
    tax_rate: float = 15.0  # percent
    high_value_alerts: bool = True
    shift_reminders: bool = False


@dataclass(frozen=True)
class ShiftStats:
    total_earnings: float
    total_miles: float
    jobs_completed: int
    active_hours: float
    profit_per_hour: float
    mileage_deduction: float
    estimated_tax_owed: float

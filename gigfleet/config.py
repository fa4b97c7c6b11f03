import os
from pydantic import BaseModel
from typing import Optional


class FleetConfig(BaseModel):
    # Position loop (normalized 0-100 plane)
    step_distance: float = 0.3
    arrival_threshold: float = 1.0
    completion_bonus: float = 25.0

    # Live runner cadence
    tick_interval_ms: int = 16   # ~ display refresh
    broadcast_every_ticks: int = 6

    # Notification feeds
    fleet_notification_cap: int = 5
    notification_ttl_sec: float = 5.0

    # ---- Mileage ----
    earth_radius_miles: float = 3958.8
    jitter_threshold_miles: float = 0.005
    irs_mileage_rate: float = 0.67  # 2024 IRS standard rate, $/mile

    # ---- Offer triage ----
    high_value_min_pay: float = 18.0
    high_value_min_pay_per_mile: float = 1.5
    target_pay_per_mile: float = 1.5
    target_pay_per_hour: float = 20.0

    # Stack heuristic ratings ($/mile)
    stack_high_pay_per_mile: float = 2.0
    stack_medium_pay_per_mile: float = 1.5

    # ---- Scenario generator ----
    scenario_agents: int = 4
    scenario_tasks: int = 6
    scenario_coord_min: float = 10.0
    scenario_coord_max: float = 90.0

    # ---- Intelligence service ----
    api_key: Optional[str] = None
    chat_model: str = "gemini-3-flash-preview"
    reasoning_model: str = "gemini-3-pro-preview"
    vision_model: str = "gemini-2.5-flash-image"
    live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    # degrade to local heuristics when the model call fails
    local_fallback: bool = True

    # Forecast used when there is no job history
    default_forecast_rate: float = 18.50
    default_forecast_peak: str = "5 PM - 9 PM"


def load_config(env: Optional[dict] = None) -> FleetConfig:
    """Defaults overlaid with GIGFLEET_* environment variables."""
    env = os.environ if env is None else env
    values = {}
    for name in FleetConfig.model_fields:
        raw = env.get(f"GIGFLEET_{name.upper()}")
        if raw is not None:
            values[name] = raw

    if "api_key" not in values:
        key = env.get("GEMINI_API_KEY") or env.get("API_KEY")
        if key:
            values["api_key"] = key

    return FleetConfig.model_validate(values)

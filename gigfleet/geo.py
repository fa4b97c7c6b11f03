import math
from typing import Optional, Tuple

from .models import Point

EARTH_RADIUS_MILES = 3958.8


def haversine_miles(a: Tuple[float, float], b: Tuple[float, float], radius: float = EARTH_RADIUS_MILES) -> float:
    lat1, lon1 = a
    lat2, lon2 = b
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)

    x = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    return 2 * radius * math.asin(min(1.0, math.sqrt(x)))


def plane_distance(a: Point, b: Point) -> float:
    return math.hypot(b.x - a.x, b.y - a.y)


def step_toward(a: Point, b: Point, step: float) -> Point:
    """Move `a` by `step` along the unit vector to `b`, never past `b`."""
    d = plane_distance(a, b)
    if d <= step:
        return b
    return Point(a.x + step * (b.x - a.x) / d, a.y + step * (b.y - a.y) / d)


class MileageAccumulator:
    """
    Turns a stream of (lat, lon) fixes into trip miles.

    The first fix becomes the anchor. A later fix only counts (and only
    replaces the anchor) when it is farther than `jitter_threshold` from it,
    so repeated small GPS noise cannot creep into the total.
    """

    def __init__(self, jitter_threshold: float = 0.005, radius: float = EARTH_RADIUS_MILES):
        self.jitter_threshold = jitter_threshold
        self.radius = radius
        self.total_miles: float = 0.0
        self.anchor: Optional[Tuple[float, float]] = None
        self.accepted: int = 0
        self.rejected: int = 0

    def add_sample(self, lat: float, lon: float) -> float:
        """Returns the distance credited for this fix (0.0 when discarded)."""
        fix = (float(lat), float(lon))
        if self.anchor is None:
            self.anchor = fix
            self.accepted += 1
            return 0.0

        d = haversine_miles(self.anchor, fix, self.radius)
        if d > self.jitter_threshold:
            self.total_miles += d
            self.anchor = fix
            self.accepted += 1
            return d

        self.rejected += 1
        return 0.0

    def reset(self):
        self.total_miles = 0.0
        self.anchor = None
        self.accepted = 0
        self.rejected = 0

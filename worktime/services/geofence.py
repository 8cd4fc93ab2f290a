"""
Geofence evaluator: Haversine containment against named circular regions.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True)
class Region:
    name: str
    center: GeoPoint
    radius_m: float

    @classmethod
    def from_dict(cls, raw: dict) -> Region:
        center = raw["center"]
        return cls(
            name=raw["name"],
            center=GeoPoint(lat=float(center["lat"]), lng=float(center["lng"])),
            radius_m=float(raw["radius_m"]),
        )


@dataclass(frozen=True)
class GeofenceMatch:
    in_region: bool
    region_name: str | None = None


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in metres."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def locate(point: GeoPoint, regions: Iterable[Region]) -> GeofenceMatch:
    """First region (in configured order) containing *point* wins."""
    for region in regions:
        if haversine_m(point, region.center) <= region.radius_m:
            return GeofenceMatch(in_region=True, region_name=region.name)
    return GeofenceMatch(in_region=False)

from __future__ import annotations

"""
File: fleet_ops/routing.py
Purpose: Driving-route providers used by the engine and the route planner.
Key responsibilities:
- Call the Mapbox Directions API and normalize routes to GeoJSON.
- Provide an offline straight-line provider.
- Parse "lon, lat" strings and order intermediate stops.
Config/env vars:
- ROUTE_PROVIDER, MAPBOX_TOKEN, MAPBOX_PROFILE, MAPBOX_BASE_URL, ROUTE_TIMEOUT_S
"""

import logging
import math
from typing import Any, Sequence

import httpx

from fleet_ops.settings import Settings
from fleet_ops.sim.geo import Coord, planar_distance, polyline_length_m

logger = logging.getLogger("fleet-ops.routing")


class RoutingError(Exception):
    """Raised when the directions service cannot produce a route."""


def parse_coord(raw: str | None) -> Coord | None:
    """Parse "lon, lat" into a coordinate, or None if malformed."""
    if not raw:
        return None
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 2:
        return None
    try:
        lon = float(parts[0])
        lat = float(parts[1])
    except ValueError:
        return None
    if not math.isfinite(lon) or not math.isfinite(lat):
        return None
    return (lon, lat)


def format_coord(coord: Sequence[float]) -> str:
    return f"{coord[0]}, {coord[1]}"


def optimize_stop_order(origin: Coord, stops: Sequence[Coord]) -> list[Coord]:
    """Greedy nearest-neighbour ordering of stops starting from origin."""
    remaining = list(stops)
    ordered: list[Coord] = []
    current = origin
    while remaining:
        best_idx = min(range(len(remaining)), key=lambda i: planar_distance(current, remaining[i]))
        current = remaining.pop(best_idx)
        ordered.append(current)
    return ordered


def primary_polyline(route: dict[str, Any]) -> list[Coord]:
    """Extract the primary route's coordinates from a FeatureCollection."""
    for feature in route.get("features") or []:
        if (feature.get("properties") or {}).get("variant") == "primary":
            coords = (feature.get("geometry") or {}).get("coordinates") or []
            return [(float(c[0]), float(c[1])) for c in coords]
    return []


class MapboxDirections:
    """HTTP client for the Mapbox Directions API."""
    def __init__(
        self,
        token: str,
        profile: str = "driving-traffic",
        base_url: str = "https://api.mapbox.com",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.profile = profile
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.transport = transport

    async def directions(
        self,
        origin: Coord,
        stops: Sequence[Coord],
        destination: Coord,
    ) -> dict[str, Any]:
        """Return primary and alternative routes as a FeatureCollection."""
        if not self.token:
            raise RoutingError("Mapbox token not configured")
        points = [origin, *stops, destination]
        path = ";".join(f"{p[0]},{p[1]}" for p in points)
        params = {
            "alternatives": "true",
            "geometries": "geojson",
            "overview": "full",
            "annotations": "duration,distance,speed",
            "steps": "false",
            "language": "en",
            "access_token": self.token,
        }
        url = f"{self.base_url}/directions/v5/mapbox/{self.profile}/{path}"
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
            resp = await client.get(url, params=params)
        if resp.status_code >= 400:
            raise RoutingError(f"Mapbox error {resp.status_code}: {resp.text}")
        data = resp.json()
        if not isinstance(data, dict):
            raise RoutingError("Mapbox returned an unexpected payload")
        routes = data.get("routes") if isinstance(data.get("routes"), list) else []
        features = [
            {
                "type": "Feature",
                "geometry": route.get("geometry"),
                "properties": {
                    "distance": route.get("distance"),
                    "duration": route.get("duration"),
                    "variant": "primary" if idx == 0 else "alt",
                },
            }
            for idx, route in enumerate(routes)
        ]
        return {"type": "FeatureCollection", "features": features}

    async def fetch(self, origin: Coord, destination: Coord) -> list[Coord]:
        """Primary polyline between two points, or [] on any failure."""
        try:
            route = await self.directions(origin, [], destination)
        except (RoutingError, httpx.HTTPError, ValueError) as exc:
            logger.warning("route fetch failed origin=%s destination=%s err=%s", origin, destination, exc)
            return []
        return primary_polyline(route)


class StraightLineRoutes:
    """Offline provider: every route is the straight segment between its points."""
    async def directions(
        self,
        origin: Coord,
        stops: Sequence[Coord],
        destination: Coord,
    ) -> dict[str, Any]:
        points = [origin, *stops, destination]
        return {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {"type": "LineString", "coordinates": [[p[0], p[1]] for p in points]},
                    "properties": {
                        "distance": polyline_length_m(points),
                        "duration": None,
                        "variant": "primary",
                    },
                }
            ],
        }

    async def fetch(self, origin: Coord, destination: Coord) -> list[Coord]:
        return [(float(origin[0]), float(origin[1])), (float(destination[0]), float(destination[1]))]


def build_route_provider(cfg: Settings) -> MapboxDirections | StraightLineRoutes:
    """Pick the route provider named by ROUTE_PROVIDER ("auto" prefers Mapbox)."""
    choice = cfg.route_provider.lower()
    if choice == "straight" or (choice == "auto" and not cfg.mapbox_token):
        logger.info("using straight-line routes")
        return StraightLineRoutes()
    return MapboxDirections(
        token=cfg.mapbox_token,
        profile=cfg.mapbox_profile,
        base_url=cfg.mapbox_base_url,
        timeout_s=cfg.route_timeout_s,
    )

from __future__ import annotations

"""
File: fleet_ops/storage.py
Purpose: Session-scoped key-value storage for planner data.
Key responsibilities:
- Recent places, saved routes, vehicle route assignments, planned assignments.
- JSON-encoded values under versioned keys; nothing outlives the process.
"""

from dataclasses import asdict, dataclass, field
import json
import time
from typing import Any, Callable

RECENTS_KEY = "fleet_recents_v1"
ROUTES_KEY = "fleet_routes_v1"
ASSIGN_KEY = "fleet_assignments_v1"
PLANNED_KEY = "fleet_planned_v1"

MAX_RECENTS = 20


@dataclass
class RecentPlace:
    id: str
    label: str
    lng: float
    lat: float
    ts: int


@dataclass
class SavedRoute:
    id: str
    name: str
    origin: str
    destination: str
    created_at: int
    stops: list[str] = field(default_factory=list)


@dataclass
class VehicleAssignment:
    vehicle_id: str
    route_id: str
    assigned_at: int


@dataclass
class PlannedAssignment:
    id: str
    route_id: str
    vehicle_ids: list[str]
    start_at: int
    notes: str | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class KeyValueStore:
    """In-memory string store with JSON helpers."""
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def read_json(self, key: str, fallback: Any) -> Any:
        raw = self._data.get(key)
        if not raw:
            return fallback
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return fallback

    def write_json(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, separators=(",", ":"))


class PlannerStorage:
    """Saved routes, assignments and recents for one session."""
    def __init__(self, store: KeyValueStore | None = None, clock: Callable[[], int] = _now_ms) -> None:
        self.store = store or KeyValueStore()
        self.clock = clock
        self._last_id_ms = 0

    def _new_id(self, prefix: str) -> str:
        stamp = max(self.clock(), self._last_id_ms + 1)
        self._last_id_ms = stamp
        return f"{prefix}-{stamp}"

    # Recent places

    def get_recent_places(self, limit: int = 10) -> list[RecentPlace]:
        items = [RecentPlace(**item) for item in self.store.read_json(RECENTS_KEY, [])]
        items.sort(key=lambda r: r.ts, reverse=True)
        return items[:limit]

    def add_recent_place(self, label: str, lng: float, lat: float) -> RecentPlace:
        place_id = f"{lng:.6f},{lat:.6f}"
        items = [item for item in self.store.read_json(RECENTS_KEY, []) if item["id"] != place_id]
        place = RecentPlace(id=place_id, label=label, lng=lng, lat=lat, ts=self.clock())
        items.insert(0, asdict(place))
        self.store.write_json(RECENTS_KEY, items[:MAX_RECENTS])
        return place

    # Saved routes

    def get_saved_routes(self) -> list[SavedRoute]:
        items = [SavedRoute(**item) for item in self.store.read_json(ROUTES_KEY, [])]
        items.sort(key=lambda r: r.created_at, reverse=True)
        return items

    def get_saved_route(self, route_id: str) -> SavedRoute | None:
        return next((r for r in self.get_saved_routes() if r.id == route_id), None)

    def save_route(self, name: str, origin: str, destination: str, stops: list[str] | None = None) -> SavedRoute:
        route = SavedRoute(
            id=self._new_id("R"),
            name=name,
            origin=origin,
            destination=destination,
            created_at=self.clock(),
            stops=list(stops or []),
        )
        items = self.store.read_json(ROUTES_KEY, [])
        items.insert(0, asdict(route))
        self.store.write_json(ROUTES_KEY, items)
        return route

    def delete_route(self, route_id: str) -> None:
        """Delete a saved route and every vehicle assignment pointing at it."""
        items = self.store.read_json(ROUTES_KEY, [])
        self.store.write_json(ROUTES_KEY, [r for r in items if r["id"] != route_id])
        assigns = self.store.read_json(ASSIGN_KEY, [])
        self.store.write_json(ASSIGN_KEY, [a for a in assigns if a["route_id"] != route_id])

    def update_route_name(self, route_id: str, name: str) -> None:
        items = self.store.read_json(ROUTES_KEY, [])
        for item in items:
            if item["id"] == route_id:
                item["name"] = name
        self.store.write_json(ROUTES_KEY, items)

    # Vehicle assignments

    def get_assignments(self) -> list[VehicleAssignment]:
        return [VehicleAssignment(**item) for item in self.store.read_json(ASSIGN_KEY, [])]

    def assign_route_to_vehicle(self, vehicle_id: str, route_id: str) -> VehicleAssignment:
        """Assign a saved route to a vehicle, replacing its previous assignment."""
        assigns = [a for a in self.store.read_json(ASSIGN_KEY, []) if a["vehicle_id"] != vehicle_id]
        assignment = VehicleAssignment(vehicle_id=vehicle_id, route_id=route_id, assigned_at=self.clock())
        assigns.insert(0, asdict(assignment))
        self.store.write_json(ASSIGN_KEY, assigns)
        return assignment

    # Planned assignments

    def get_planned_assignments(self) -> list[PlannedAssignment]:
        items = [PlannedAssignment(**item) for item in self.store.read_json(PLANNED_KEY, [])]
        items.sort(key=lambda p: p.start_at)
        return items

    def add_planned_assignment(
        self,
        route_id: str,
        vehicle_ids: list[str],
        start_at: int,
        notes: str | None = None,
    ) -> PlannedAssignment:
        planned = PlannedAssignment(
            id=self._new_id("P"),
            route_id=route_id,
            vehicle_ids=list(vehicle_ids),
            start_at=start_at,
            notes=notes or None,
        )
        items = self.store.read_json(PLANNED_KEY, [])
        items.append(asdict(planned))
        self.store.write_json(PLANNED_KEY, items)
        return planned

    def delete_planned_assignment(self, planned_id: str) -> None:
        items = self.store.read_json(PLANNED_KEY, [])
        self.store.write_json(PLANNED_KEY, [p for p in items if p["id"] != planned_id])

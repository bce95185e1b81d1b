from __future__ import annotations

"""
File: fleet_ops/sim/entities.py
Purpose: Core dataclasses and type aliases for simulation state.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from fleet_ops.sim.geo import Coord


VehicleType = Literal[
    "van",
    "cargo_van",
    "light_truck",
    "box_truck",
    "semi_truck",
    "pickup",
    "motorcycle",
    "cargo_bike",
]
VehicleState = Literal["idle", "en_route", "offline"]
LocationType = Literal["warehouse", "store"]
DeliveryStatus = Literal["pending", "picking", "en_route", "delivered", "cancelled"]

STARTABLE_STATUSES = {"pending", "picking"}
TERMINAL_STATUSES = {"delivered", "cancelled"}


@dataclass
class Vehicle:
    """Vehicle tracked by the simulation engine. Only position/state/speed/battery move."""
    id: str
    position: Coord
    state: VehicleState = "idle"
    type: VehicleType = "van"
    alias: str = ""
    heading: float = 0.0
    speed: float | None = None
    battery: float | None = None
    license_plate: str | None = None
    capacity_kg: float | None = None
    manufacturer: str | None = None
    model: str | None = None
    year: int | None = None
    characteristics: dict[str, Any] = field(default_factory=dict)


@dataclass
class InventoryItem:
    sku: str
    qty: int
    name: str | None = None


@dataclass
class Location:
    """Warehouse or store. Read-only for the engine."""
    id: str
    name: str
    type: LocationType
    position: Coord
    inventory: list[InventoryItem] = field(default_factory=list)


@dataclass
class DeliveryItem:
    sku: str
    qty: int


@dataclass
class Delivery:
    """Two-leg delivery: vehicle -> pickup warehouse -> drop store."""
    id: str
    vehicle_id: str
    pickup_warehouse_id: str
    drop_store_id: str
    items: list[DeliveryItem] = field(default_factory=list)
    status: DeliveryStatus = "pending"
    route: dict[str, Any] | None = None
    progress: float = 0.0
    eta_ms: int | None = None


@dataclass
class SimulationState:
    """Container for all simulation entities, polylines and counters."""
    vehicles: list[Vehicle]
    locations: list[Location]
    deliveries: list[Delivery]
    # delivery id -> polyline / meters traveled
    routes: dict[str, list[Coord]] = field(default_factory=dict)
    progress: dict[str, float] = field(default_factory=dict)
    # vehicle id -> ad-hoc reroute polyline / meters traveled
    vehicle_routes: dict[str, list[Coord]] = field(default_factory=dict)
    vehicle_progress: dict[str, float] = field(default_factory=dict)
    running: bool = False
    tick: int = 0

    def vehicle(self, vehicle_id: str) -> Vehicle | None:
        return next((v for v in self.vehicles if v.id == vehicle_id), None)

    def location(self, location_id: str) -> Location | None:
        return next((loc for loc in self.locations if loc.id == location_id), None)

    def delivery(self, delivery_id: str) -> Delivery | None:
        return next((d for d in self.deliveries if d.id == delivery_id), None)

from __future__ import annotations

"""
File: fleet_ops/sim/world.py
Purpose: Load the demo fleet snapshots and prepare them for a session.
Key responsibilities:
- Read vehicles/locations GeoJSON and the deliveries list.
- Enrich vehicles with manufacturer, model, year and a fleet alias.
- Keep only the vehicles the deliveries refer to.
"""

import json
from pathlib import Path

from fleet_ops.sim.entities import Delivery, Location, Vehicle
from fleet_ops.sim.geojson import delivery_from_dict, locations_from_geojson, vehicles_from_geojson

TYPE_CODE = {
    "cargo_van": "CV",
    "van": "VN",
    "pickup": "PU",
    "light_truck": "LT",
    "box_truck": "BX",
    "semi_truck": "ST",
    "motorcycle": "MC",
    "cargo_bike": "CB",
}

MANUFACTURERS_BY_TYPE = {
    "cargo_van": [("Mercedes", "Sprinter 2500"), ("Ford", "Transit"), ("RAM", "ProMaster")],
    "van": [("Nissan", "NV200"), ("Chevrolet", "Express")],
    "pickup": [("Ford", "F-150"), ("Toyota", "Hilux")],
    "light_truck": [("Isuzu", "N-Series"), ("Hino", "300")],
    "box_truck": [("Freightliner", "M2 106")],
    "semi_truck": [("Mercedes", "Actros"), ("Volvo", "FH")],
    "motorcycle": [("Honda", "CB500"), ("Yamaha", "FZ-25")],
    "cargo_bike": [("Urban Arrow", "Cargo")],
}

SOURCE_VEHICLE_LIMIT = 15


def generate_alias(
    city_code: str,
    vehicle_type: str,
    manufacturer: str | None = None,
    model: str | None = None,
    sequence: int | None = None,
) -> str:
    """Build an alias like "TJ-CV-Mercedes-Sprinter2500-01"."""
    code = TYPE_CODE.get(vehicle_type, "XX")
    brand = "".join((manufacturer or "").split())
    mdl = "".join((model or "").split())
    seq = f"{sequence:02d}" if sequence else "01"
    parts = [p for p in (city_code, code, brand, mdl) if p]
    return f"{'-'.join(parts)}-{seq}"


def enrich_vehicles(vehicles: list[Vehicle], city_code: str) -> list[Vehicle]:
    """Fill in manufacturer/model/year/alias, ensuring one semi truck exists."""
    for idx, vehicle in enumerate(vehicles):
        options = MANUFACTURERS_BY_TYPE.get(vehicle.type, [("Generic", "Model")])
        manufacturer, model = options[idx % len(options)]
        vehicle.manufacturer = manufacturer
        vehicle.model = model
        vehicle.year = vehicle.year or 2021 + idx % 4
        vehicle.alias = generate_alias(city_code, vehicle.type, manufacturer, model, idx + 1)

    if vehicles and not any(v.type == "semi_truck" for v in vehicles):
        target_idx = next((i for i, v in enumerate(vehicles) if v.type == "light_truck"), 0)
        target = vehicles[target_idx]
        manufacturer, model = MANUFACTURERS_BY_TYPE["semi_truck"][0]
        target.type = "semi_truck"
        target.manufacturer = manufacturer
        target.model = model
        target.alias = generate_alias(city_code, "semi_truck", manufacturer, model, target_idx + 1)
        if target.capacity_kg is None:
            target.capacity_kg = 20000
    return vehicles


def load_fleet(
    data_dir: str | Path,
    city_code: str,
    max_vehicles: int,
) -> tuple[list[Vehicle], list[Location], list[Delivery]]:
    """Load and prepare vehicles, locations and deliveries for a session."""
    root = Path(data_dir)
    vehicles_raw = json.loads((root / "vehicles.geojson").read_text(encoding="utf-8"))
    locations_raw = json.loads((root / "locations.geojson").read_text(encoding="utf-8"))
    deliveries_raw = json.loads((root / "deliveries.json").read_text(encoding="utf-8"))

    vehicles = enrich_vehicles(vehicles_from_geojson(vehicles_raw)[:SOURCE_VEHICLE_LIMIT], city_code)
    locations = locations_from_geojson(locations_raw)
    deliveries = [delivery_from_dict(item) for item in deliveries_raw or []]

    if deliveries:
        referenced = {d.vehicle_id for d in deliveries}
        vehicles = [v for v in vehicles if v.id in referenced]
    return vehicles[:max_vehicles], locations, deliveries

from __future__ import annotations

"""
File: fleet_ops/sim/geojson.py
Purpose: Convert between GeoJSON/JSON snapshots and simulation dataclasses.
Key responsibilities:
- Vehicle and location FeatureCollections (Point features).
- Delivery dicts with camelCase keys.
- Delivery route overlays (LineString FeatureCollections).
"""

from typing import Any, Iterable, Sequence

from fleet_ops.sim.entities import Delivery, DeliveryItem, InventoryItem, Location, Vehicle

VEHICLE_FIELDS = (
    "alias",
    "type",
    "heading",
    "state",
    "speed",
    "battery",
    "license_plate",
    "capacity_kg",
    "manufacturer",
    "model",
    "year",
)


def _coord(geometry: dict[str, Any]) -> tuple[float, float]:
    coords = geometry.get("coordinates") or [0.0, 0.0]
    return (float(coords[0]), float(coords[1]))


def vehicle_from_feature(feature: dict[str, Any]) -> Vehicle:
    props = feature.get("properties") or {}
    return Vehicle(
        id=str(props["id"]),
        position=_coord(feature.get("geometry") or {}),
        state=props.get("state", "idle"),
        type=props.get("type", "van"),
        alias=props.get("alias", ""),
        heading=float(props.get("heading", 0.0) or 0.0),
        speed=props.get("speed"),
        battery=props.get("battery"),
        license_plate=props.get("license_plate"),
        capacity_kg=props.get("capacity_kg"),
        manufacturer=props.get("manufacturer"),
        model=props.get("model"),
        year=props.get("year"),
        characteristics=dict(props.get("characteristics") or {}),
    )


def vehicle_to_feature(vehicle: Vehicle) -> dict[str, Any]:
    props: dict[str, Any] = {"id": vehicle.id}
    for name in VEHICLE_FIELDS:
        value = getattr(vehicle, name)
        if value is not None:
            props[name] = value
    if vehicle.characteristics:
        props["characteristics"] = dict(vehicle.characteristics)
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [vehicle.position[0], vehicle.position[1]]},
        "properties": props,
    }


def vehicles_from_geojson(data: dict[str, Any]) -> list[Vehicle]:
    return [vehicle_from_feature(f) for f in data.get("features") or []]


def vehicles_to_geojson(vehicles: Iterable[Vehicle]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": [vehicle_to_feature(v) for v in vehicles]}


def location_from_feature(feature: dict[str, Any]) -> Location:
    props = feature.get("properties") or {}
    inventory = [
        InventoryItem(sku=str(item["sku"]), qty=int(item.get("qty", 0)), name=item.get("name"))
        for item in props.get("inventory") or []
    ]
    return Location(
        id=str(props["id"]),
        name=props.get("name", str(props["id"])),
        type=props.get("type", "warehouse"),
        position=_coord(feature.get("geometry") or {}),
        inventory=inventory,
    )


def location_to_feature(location: Location) -> dict[str, Any]:
    props: dict[str, Any] = {"id": location.id, "name": location.name, "type": location.type}
    if location.inventory:
        props["inventory"] = [
            {k: v for k, v in {"sku": i.sku, "name": i.name, "qty": i.qty}.items() if v is not None}
            for i in location.inventory
        ]
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [location.position[0], location.position[1]]},
        "properties": props,
    }


def locations_from_geojson(data: dict[str, Any]) -> list[Location]:
    return [location_from_feature(f) for f in data.get("features") or []]


def locations_to_geojson(locations: Iterable[Location]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": [location_to_feature(loc) for loc in locations]}


def delivery_from_dict(data: dict[str, Any]) -> Delivery:
    return Delivery(
        id=str(data["id"]),
        vehicle_id=str(data["vehicleId"]),
        pickup_warehouse_id=str(data["pickupWarehouseId"]),
        drop_store_id=str(data["dropStoreId"]),
        items=[DeliveryItem(sku=str(i["sku"]), qty=int(i["qty"])) for i in data.get("items") or []],
        status=data.get("status", "pending"),
        route=data.get("route"),
        progress=float(data.get("progress") or 0.0),
        eta_ms=data.get("etaMs"),
    )


def delivery_to_dict(delivery: Delivery) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": delivery.id,
        "vehicleId": delivery.vehicle_id,
        "pickupWarehouseId": delivery.pickup_warehouse_id,
        "dropStoreId": delivery.drop_store_id,
        "items": [{"sku": i.sku, "qty": i.qty} for i in delivery.items],
        "status": delivery.status,
        "route": delivery.route,
        "progress": round(delivery.progress, 3),
    }
    if delivery.eta_ms is not None:
        payload["etaMs"] = delivery.eta_ms
    return payload


def route_feature_collection(
    poly: Sequence[Sequence[float]],
    vehicle_id: str,
    delivery_id: str,
) -> dict[str, Any]:
    """Displayable route for a delivery: a single primary LineString."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "LineString", "coordinates": [[p[0], p[1]] for p in poly]},
                "properties": {"variant": "primary", "vehicleId": vehicle_id, "deliveryId": delivery_id},
            }
        ],
    }

from __future__ import annotations

"""
File: fleet_ops/host.py
Purpose: Per-session host wiring the simulation engine to the outside world.
Key responsibilities:
- Load snapshots, own one SimulationEngine, auto-start the first deliveries.
- Keep the latest vehicle/delivery collections and the route overlay.
- Translate assistant intents into engine operations.
- Fan out updates to registered sinks (WebSocket clients, RabbitMQ).
Key entrypoints:
- FleetSession.from_settings(), open(), close(), snapshot_message()
"""

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence

from fleet_ops.assistant.chat import ChatResult, ChatService
from fleet_ops.assistant.gemini import GeminiClient
from fleet_ops.assistant.rules import Intent
from fleet_ops.routing import MapboxDirections, StraightLineRoutes, build_route_provider, optimize_stop_order
from fleet_ops.settings import Settings
from fleet_ops.sim.engine import SimulationEngine
from fleet_ops.sim.entities import Delivery, Location, Vehicle
from fleet_ops.sim.geo import Coord
from fleet_ops.sim.geojson import delivery_to_dict, vehicles_to_geojson
from fleet_ops.sim.metrics import compute_kpis
from fleet_ops.sim.world import load_fleet
from fleet_ops.storage import PlannerStorage

logger = logging.getLogger("fleet-ops.host")

ROUTE_COLORS = ["#F59E0B", "#10B981", "#3B82F6", "#EC4899", "#8B5CF6"]
DEFAULT_ROUTE_COLOR = "#F59E0B"

EventSink = Callable[[str, dict[str, Any]], Awaitable[None]]


def _envelope(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"event_type": event_type, **payload, "ts_utc": datetime.now(timezone.utc).isoformat()}


def build_delivery_routes(
    deliveries: Iterable[Delivery],
    vehicles: Sequence[Vehicle],
    hidden_vehicle_ids: set[str],
) -> dict[str, Any] | None:
    """Combine active delivery routes into one overlay, coloured per vehicle."""
    color_by_vehicle = {v.id: ROUTE_COLORS[idx % len(ROUTE_COLORS)] for idx, v in enumerate(vehicles)}
    features: list[dict[str, Any]] = []
    for delivery in deliveries:
        if delivery.status == "cancelled" or not delivery.route:
            continue
        if delivery.vehicle_id not in color_by_vehicle or delivery.vehicle_id in hidden_vehicle_ids:
            continue
        for feature in delivery.route.get("features") or []:
            features.append(
                {
                    **feature,
                    "properties": {
                        **(feature.get("properties") or {}),
                        "variant": "primary",
                        "vehicleId": delivery.vehicle_id,
                        "deliveryId": delivery.id,
                        "color": color_by_vehicle.get(delivery.vehicle_id, DEFAULT_ROUTE_COLOR),
                    },
                }
            )
    if not features:
        return None
    return {"type": "FeatureCollection", "features": features}


class FleetSession:
    """One operator session: snapshots, engine handle, overlays and storage."""
    def __init__(
        self,
        engine: SimulationEngine,
        route_provider: MapboxDirections | StraightLineRoutes,
        vehicles: list[Vehicle],
        locations: list[Location],
        deliveries: list[Delivery],
        chat: ChatService | None = None,
        storage: PlannerStorage | None = None,
        autostart_deliveries: int = 3,
    ) -> None:
        self.engine = engine
        self.route_provider = route_provider
        self.vehicles = vehicles
        self.locations = locations
        self.deliveries = deliveries
        self.chat_service = chat or ChatService()
        self.storage = storage or PlannerStorage()
        self.autostart_deliveries = autostart_deliveries

        self.hidden_vehicle_ids: set[str] = set()
        self.delivery_routes: dict[str, Any] | None = None
        self.routes_version = 0
        self.sinks: list[EventSink] = []
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, cfg: Settings) -> FleetSession:
        """Build a session from demo data and environment configuration."""
        vehicles, locations, deliveries = load_fleet(cfg.fleet_data_dir, cfg.fleet_city_code, cfg.fleet_max_vehicles)
        provider = build_route_provider(cfg)
        engine = SimulationEngine(
            route_fetcher=provider.fetch,
            tick_interval_s=cfg.tick_interval_s,
            avg_speed_mps=cfg.avg_speed_mps,
            battery_drain=cfg.battery_drain,
            arrival_tolerance_m=cfg.arrival_tolerance_m,
            default_battery=cfg.default_battery,
        )
        gemini = None
        if cfg.google_ai_api_key:
            gemini = GeminiClient(
                api_key=cfg.google_ai_api_key,
                model=cfg.gemini_model,
                base_url=cfg.gemini_base_url,
                timeout_s=cfg.chat_timeout_s,
            )
        return cls(
            engine=engine,
            route_provider=provider,
            vehicles=vehicles,
            locations=locations,
            deliveries=deliveries,
            chat=ChatService(gemini),
            autostart_deliveries=cfg.autostart_deliveries,
        )

    # Lifecycle

    async def open(self) -> None:
        """Hand the snapshots to the engine, start ticking, auto-start deliveries."""
        self.engine.init(
            self.vehicles,
            self.locations,
            self.deliveries,
            on_vehicles_update=self._on_vehicles_update,
            on_deliveries_update=self._on_deliveries_update,
        )
        if self.engine.state is None:
            return
        self.vehicles = list(self.engine.state.vehicles)
        self.deliveries = list(self.engine.state.deliveries)
        self.engine.start()

        to_start = [d.id for d in self.deliveries if d.status == "pending"][: self.autostart_deliveries]
        for delivery_id in to_start:
            await self.engine.start_delivery(delivery_id)
        logger.info("session opened autostarted=%s", to_start)

    async def close(self) -> None:
        self.engine.stop()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("session closed")

    # Engine callbacks

    def _on_vehicles_update(self, vehicles: list[Vehicle]) -> None:
        self.vehicles = vehicles
        tick = self.engine.state.tick if self.engine.state is not None else 0
        self._dispatch("vehicles.updated", {"tick": tick, "vehicles": vehicles_to_geojson(vehicles)})

    def _on_deliveries_update(self, deliveries: list[Delivery]) -> None:
        self.deliveries = deliveries
        self.refresh_delivery_routes()
        self._dispatch(
            "deliveries.updated",
            {
                "deliveries": [delivery_to_dict(d) for d in deliveries],
                "delivery_routes": self.delivery_routes,
                "routes_version": self.routes_version,
            },
        )

    def _dispatch(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self.sinks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running loop, dropping %s", event_type)
            return
        message = _envelope(event_type, payload)
        for sink in self.sinks:
            task = loop.create_task(sink(event_type, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def snapshot_message(self) -> dict[str, Any]:
        """Full session state in the shape of the update events, for new dashboard clients."""
        tick = self.engine.state.tick if self.engine.state is not None else 0
        return _envelope(
            "session.snapshot",
            {
                "tick": tick,
                "vehicles": vehicles_to_geojson(self.vehicles),
                "deliveries": [delivery_to_dict(d) for d in self.deliveries],
                "delivery_routes": self.delivery_routes,
                "routes_version": self.routes_version,
            },
        )

    # Route overlay

    def refresh_delivery_routes(self) -> None:
        self.delivery_routes = build_delivery_routes(self.deliveries, self.vehicles, self.hidden_vehicle_ids)
        self.routes_version += 1

    def set_vehicle_hidden(self, vehicle_id: str, hidden: bool) -> None:
        if hidden:
            self.hidden_vehicle_ids.add(vehicle_id)
        else:
            self.hidden_vehicle_ids.discard(vehicle_id)
        self.refresh_delivery_routes()

    def show_vehicle_route(self, vehicle_token: str) -> None:
        """Restrict the overlay to routes whose vehicle id contains the token."""
        token = vehicle_token.lower()
        features = [
            feature
            for delivery in self.deliveries
            if delivery.route
            for feature in delivery.route.get("features") or []
            if token in str((feature.get("properties") or {}).get("vehicleId", "")).lower()
        ]
        self.delivery_routes = {"type": "FeatureCollection", "features": features} if features else None
        self.routes_version += 1

    def hide_all_routes(self) -> None:
        self.delivery_routes = None
        self.routes_version += 1

    # Lookups used to validate ids before calling the engine

    def has_vehicle(self, vehicle_id: str) -> bool:
        return any(v.id == vehicle_id for v in self.vehicles)

    def has_location(self, location_id: str) -> bool:
        return any(loc.id == location_id for loc in self.locations)

    def get_delivery(self, delivery_id: str) -> Delivery | None:
        return next((d for d in self.deliveries if d.id == delivery_id), None)

    # Operations

    async def apply_intent(self, intent: Intent) -> None:
        """Execute an assistant intent."""
        payload = intent.payload
        if intent.type == "start_delivery":
            await self.engine.start_delivery(str(payload["id"]))
        elif intent.type == "cancel_delivery":
            self.engine.cancel_delivery(str(payload["id"]))
        elif intent.type == "reroute_to_location":
            await self.engine.reroute_vehicle_to(str(payload["vehicleId"]), str(payload["locationId"]))
        elif intent.type == "show_vehicle_route":
            self.show_vehicle_route(str(payload["vehicleToken"]))
        elif intent.type == "hide_all_routes":
            self.hide_all_routes()
        else:
            logger.warning("unknown intent type=%s", intent.type)

    async def chat(self, message: str) -> ChatResult:
        result = await self.chat_service.respond(message, self.vehicles, self.locations, self.deliveries)
        if result.intent is not None:
            logger.info("chat intent type=%s payload=%s", result.intent.type, result.intent.payload)
            await self.apply_intent(result.intent)
        return result

    async def plan_route(
        self,
        origin: Coord,
        stops: Sequence[Coord],
        destination: Coord,
        optimize: bool = True,
    ) -> dict[str, Any]:
        """Request a multi-stop route, optionally reordering the stops first."""
        ordered = list(stops)
        if optimize and len(ordered) > 1:
            ordered = optimize_stop_order(origin, ordered)
        route = await self.route_provider.directions(origin, ordered, destination)
        primary = next(
            (f for f in route.get("features") or [] if (f.get("properties") or {}).get("variant") == "primary"),
            None,
        )
        props = (primary or {}).get("properties") or {}
        summary = {
            "distance_km": (props.get("distance") or 0) / 1000,
            "duration_min": (props.get("duration") or 0) / 60,
        }
        return {"route": route, "stops": [[p[0], p[1]] for p in ordered], "summary": summary}

    def kpis(self) -> dict[str, int | float]:
        return compute_kpis(self.vehicles, self.deliveries)

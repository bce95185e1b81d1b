from __future__ import annotations

"""
File: fleet_ops/main.py
Purpose: FastAPI entrypoint for the fleet-operations dashboard backend.
Key responsibilities:
- Own one FleetSession for the process lifetime.
- Expose fleet snapshots, route planning, chat and fleet commands.
- Stream vehicles.updated / deliveries.updated to WebSocket clients.
Key entrypoints:
- create_app()
- /api/* endpoints, /ws
Config/env vars:
- SIM_*, ROUTE_PROVIDER, MAPBOX_*, GOOGLE_AI_API_KEY, GEMINI_*, FLEET_*
- EVENTS_ENABLED, RABBITMQ_*
"""

from contextlib import asynccontextmanager
from dataclasses import asdict
import logging
from typing import Any, Callable

import httpx
import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse

from fleet_ops.host import ROUTE_COLORS, FleetSession
from fleet_ops.mq import EventPublisher
from fleet_ops.routing import RoutingError, parse_coord
from fleet_ops.schemas import (
    AssignmentCreate,
    ChatRequest,
    ChatResponse,
    HiddenRequest,
    IntentModel,
    PlannedAssignmentCreate,
    RecentPlaceCreate,
    RerouteRequest,
    RouteRequest,
    SavedRouteCreate,
    SavedRouteRename,
)
from fleet_ops.settings import Settings, rabbit_url, settings
from fleet_ops.sim.geojson import delivery_to_dict, locations_to_geojson, vehicles_to_geojson
from fleet_ops.ws import WSManager

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s fleet-ops %(message)s")
logger = logging.getLogger("fleet-ops")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    cfg: Settings = settings,
    session_factory: Callable[[Settings], FleetSession] = FleetSession.from_settings,
) -> FastAPI:
    """Build the API around a session created at startup."""
    ws_manager = WSManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session = session_factory(cfg)

        async def ws_sink(_event_type: str, message: dict[str, Any]) -> None:
            await ws_manager.broadcast(message)

        session.sinks.append(ws_sink)

        publisher: EventPublisher | None = None
        if cfg.events_enabled:
            publisher = EventPublisher(rabbit_url(cfg), cfg.exchange_name)
            try:
                await publisher.start()
                session.sinks.append(publisher.publish)
            except Exception as exc:  # noqa: BLE001
                logger.exception("event publisher unavailable: %s", exc)
                publisher = None

        app.state.session = session
        await session.open()
        logger.info("fleet-ops started")
        try:
            yield
        finally:
            await session.close()
            if publisher is not None:
                await publisher.close()

    app = FastAPI(title="fleet-ops", version="1.0.0", lifespan=lifespan)
    app.state.ws_manager = ws_manager

    def _session(request: Request) -> FleetSession:
        return request.app.state.session

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness/readiness endpoint."""
        return {"status": "ok"}

    @app.get("/api/config")
    async def config(request: Request) -> dict[str, Any]:
        """Return simulation defaults for the UI."""
        session = _session(request)
        return {
            "tick_ms": cfg.sim_tick_ms,
            "avg_speed_mps": cfg.avg_speed_mps,
            "route_provider": type(session.route_provider).__name__,
            "assistant": "gemini" if session.chat_service.gemini is not None else "local",
            "route_colors": ROUTE_COLORS,
        }

    @app.get("/api/vehicles")
    async def vehicles(request: Request) -> dict[str, Any]:
        return vehicles_to_geojson(_session(request).vehicles)

    @app.get("/api/locations")
    async def locations(request: Request) -> dict[str, Any]:
        return locations_to_geojson(_session(request).locations)

    @app.get("/api/deliveries")
    async def deliveries(request: Request) -> list[dict[str, Any]]:
        return [delivery_to_dict(d) for d in _session(request).deliveries]

    @app.get("/api/delivery-routes")
    async def delivery_routes(request: Request) -> dict[str, Any]:
        session = _session(request)
        return {"routes": session.delivery_routes, "routes_version": session.routes_version}

    @app.get("/api/kpis")
    async def kpis(request: Request) -> dict[str, Any]:
        return _session(request).kpis()

    @app.get("/api/snapshot")
    async def snapshot(request: Request) -> dict[str, Any]:
        return _session(request).engine.snapshot()

    @app.post("/api/route")
    async def plan_route(req: RouteRequest, request: Request) -> JSONResponse:
        """Plan a driving route through optional stops."""
        origin = parse_coord(req.origin)
        destination = parse_coord(req.destination)
        stops = [c for c in (parse_coord(s) for s in req.stops) if c is not None]
        if origin is None or destination is None:
            return _error(400, "Invalid origin or destination")
        try:
            result = await _session(request).plan_route(origin, stops, destination, optimize=req.optimize)
        except (RoutingError, httpx.HTTPError, ValueError) as exc:
            logger.warning("route planning failed err=%s", exc)
            return _error(500, str(exc) or "Routing failed")
        return JSONResponse(content=result)

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(req: ChatRequest, request: Request) -> ChatResponse:
        """Answer a chat message and execute any command it contains."""
        result = await _session(request).chat(req.message)
        intent = IntentModel(type=result.intent.type, payload=result.intent.payload) if result.intent else None
        return ChatResponse(
            reply=result.reply,
            intent=intent,
            provider=result.provider,
            used_fallback=result.used_fallback,
        )

    @app.post("/api/deliveries/{delivery_id}/start")
    async def start_delivery(delivery_id: str, request: Request) -> JSONResponse:
        session = _session(request)
        if session.get_delivery(delivery_id) is None:
            return _error(404, f"unknown delivery: {delivery_id}")
        await session.engine.start_delivery(delivery_id)
        return JSONResponse(content=delivery_to_dict(session.get_delivery(delivery_id)))

    @app.post("/api/deliveries/{delivery_id}/cancel")
    async def cancel_delivery(delivery_id: str, request: Request) -> JSONResponse:
        session = _session(request)
        if session.get_delivery(delivery_id) is None:
            return _error(404, f"unknown delivery: {delivery_id}")
        session.engine.cancel_delivery(delivery_id)
        return JSONResponse(content=delivery_to_dict(session.get_delivery(delivery_id)))

    @app.post("/api/vehicles/{vehicle_id}/reroute")
    async def reroute_vehicle(vehicle_id: str, req: RerouteRequest, request: Request) -> JSONResponse:
        session = _session(request)
        if not session.has_vehicle(vehicle_id):
            return _error(404, f"unknown vehicle: {vehicle_id}")
        if not session.has_location(req.location_id):
            return _error(404, f"unknown location: {req.location_id}")
        await session.engine.reroute_vehicle_to(vehicle_id, req.location_id)
        return JSONResponse(content={"vehicle_id": vehicle_id, "location_id": req.location_id})

    @app.delete("/api/vehicles/{vehicle_id}")
    async def delete_vehicle(vehicle_id: str, request: Request) -> JSONResponse:
        session = _session(request)
        if not session.has_vehicle(vehicle_id):
            return _error(404, f"unknown vehicle: {vehicle_id}")
        session.engine.remove_vehicle(vehicle_id)
        session.hidden_vehicle_ids.discard(vehicle_id)
        return JSONResponse(content={"deleted": vehicle_id})

    @app.post("/api/vehicles/{vehicle_id}/hidden")
    async def set_vehicle_hidden(vehicle_id: str, req: HiddenRequest, request: Request) -> JSONResponse:
        session = _session(request)
        if not session.has_vehicle(vehicle_id):
            return _error(404, f"unknown vehicle: {vehicle_id}")
        session.set_vehicle_hidden(vehicle_id, req.hidden)
        return JSONResponse(content={"hidden": sorted(session.hidden_vehicle_ids)})

    @app.get("/api/saved-routes")
    async def list_saved_routes(request: Request) -> list[dict[str, Any]]:
        return [asdict(r) for r in _session(request).storage.get_saved_routes()]

    @app.post("/api/saved-routes")
    async def create_saved_route(req: SavedRouteCreate, request: Request) -> dict[str, Any]:
        route = _session(request).storage.save_route(req.name, req.origin, req.destination, req.stops)
        return asdict(route)

    @app.patch("/api/saved-routes/{route_id}")
    async def rename_saved_route(route_id: str, req: SavedRouteRename, request: Request) -> JSONResponse:
        storage = _session(request).storage
        if storage.get_saved_route(route_id) is None:
            return _error(404, f"unknown route: {route_id}")
        storage.update_route_name(route_id, req.name)
        return JSONResponse(content=asdict(storage.get_saved_route(route_id)))

    @app.delete("/api/saved-routes/{route_id}")
    async def delete_saved_route(route_id: str, request: Request) -> dict[str, str]:
        _session(request).storage.delete_route(route_id)
        return {"deleted": route_id}

    @app.get("/api/assignments")
    async def list_assignments(request: Request) -> list[dict[str, Any]]:
        return [asdict(a) for a in _session(request).storage.get_assignments()]

    @app.post("/api/assignments")
    async def create_assignment(req: AssignmentCreate, request: Request) -> JSONResponse:
        session = _session(request)
        if not session.has_vehicle(req.vehicle_id):
            return _error(404, f"unknown vehicle: {req.vehicle_id}")
        if session.storage.get_saved_route(req.route_id) is None:
            return _error(404, f"unknown route: {req.route_id}")
        assignment = session.storage.assign_route_to_vehicle(req.vehicle_id, req.route_id)
        return JSONResponse(content=asdict(assignment))

    @app.get("/api/planned")
    async def list_planned(request: Request) -> list[dict[str, Any]]:
        return [asdict(p) for p in _session(request).storage.get_planned_assignments()]

    @app.post("/api/planned")
    async def create_planned(req: PlannedAssignmentCreate, request: Request) -> JSONResponse:
        storage = _session(request).storage
        if storage.get_saved_route(req.route_id) is None:
            return _error(404, f"unknown route: {req.route_id}")
        planned = storage.add_planned_assignment(req.route_id, req.vehicle_ids, req.start_at, req.notes)
        return JSONResponse(content=asdict(planned))

    @app.delete("/api/planned/{planned_id}")
    async def delete_planned(planned_id: str, request: Request) -> dict[str, str]:
        _session(request).storage.delete_planned_assignment(planned_id)
        return {"deleted": planned_id}

    @app.get("/api/recents")
    async def list_recents(request: Request) -> list[dict[str, Any]]:
        return [asdict(p) for p in _session(request).storage.get_recent_places()]

    @app.post("/api/recents")
    async def add_recent(req: RecentPlaceCreate, request: Request) -> dict[str, Any]:
        return asdict(_session(request).storage.add_recent_place(req.label, req.lng, req.lat))

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """Send the session snapshot, then stream session updates."""
        await ws_manager.connect(websocket, websocket.app.state.session.snapshot_message())
        try:
            while True:
                await websocket.receive_text()
        except Exception:  # noqa: BLE001
            await ws_manager.disconnect(websocket)

    return app


app = create_app()


def main() -> None:
    uvicorn.run("fleet_ops.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()

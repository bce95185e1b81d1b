from __future__ import annotations

"""
File: fleet_ops/sim/engine.py
Purpose: Tick-driven simulation engine moving vehicles along road polylines.
Key responsibilities:
- Own the simulation state for one session (vehicles, deliveries, polylines).
- Advance every en-route delivery and ad-hoc reroute by a fixed distance per tick.
- Apply start/cancel/reroute/remove mutations and notify the host.
Key entrypoints:
- SimulationEngine.init(), start(), stop(), tick()
- start_delivery(), cancel_delivery(), reroute_vehicle_to(), remove_vehicle()
"""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Iterable

from fleet_ops.sim.entities import (
    STARTABLE_STATUSES,
    TERMINAL_STATUSES,
    Delivery,
    Location,
    SimulationState,
    Vehicle,
)
from fleet_ops.sim.geo import Coord, join_legs, point_at_offset, polyline_length_m
from fleet_ops.sim.geojson import delivery_to_dict, route_feature_collection, vehicles_to_geojson

logger = logging.getLogger("fleet-ops.sim")

RouteFetcher = Callable[[Coord, Coord], Awaitable[list[Coord]]]
VehiclesListener = Callable[[list[Vehicle]], None]
DeliveriesListener = Callable[[list[Delivery]], None]


class SimulationEngine:
    """Simulation engine that advances vehicles and deliveries per tick."""
    def __init__(
        self,
        route_fetcher: RouteFetcher,
        tick_interval_s: float = 1.0,
        avg_speed_mps: float = 12.0,
        battery_drain: float = 0.5,
        arrival_tolerance_m: float = 1.0,
        default_battery: float = 80.0,
    ) -> None:
        """Initialize the engine with simulation parameters."""
        self.route_fetcher = route_fetcher
        self.tick_interval_s = tick_interval_s
        self.avg_speed_mps = avg_speed_mps
        self.battery_drain = battery_drain
        self.arrival_tolerance_m = arrival_tolerance_m
        self.default_battery = default_battery

        self.state: SimulationState | None = None
        self.on_vehicles_update: VehiclesListener | None = None
        self.on_deliveries_update: DeliveriesListener | None = None

        self._task: asyncio.Task | None = None
        self._vehicles_dirty = False
        # vehicle id -> sequence number of the latest movement command
        self._command_seq: dict[str, int] = {}
        # delivery id -> vehicle id, for starts waiting on route legs
        self._starting: dict[str, str] = {}

    @property
    def advance_per_tick_m(self) -> float:
        return self.avg_speed_mps * self.tick_interval_s

    @property
    def running(self) -> bool:
        return self.state is not None and self.state.running

    # Lifecycle

    def init(
        self,
        vehicles: Iterable[Vehicle] | None,
        locations: list[Location] | None,
        deliveries: Iterable[Delivery] | None,
        on_vehicles_update: VehiclesListener | None = None,
        on_deliveries_update: DeliveriesListener | None = None,
    ) -> None:
        """Take ownership of copies of the vehicle and delivery snapshots."""
        if vehicles is None or locations is None or deliveries is None:
            return
        self.stop()

        owned_deliveries = copy.deepcopy(list(deliveries))
        for delivery in owned_deliveries:
            delivery.progress = 0.0

        self.state = SimulationState(
            vehicles=copy.deepcopy(list(vehicles)),
            locations=locations,
            deliveries=owned_deliveries,
        )
        self.on_vehicles_update = on_vehicles_update
        self.on_deliveries_update = on_deliveries_update
        self._vehicles_dirty = False
        self._command_seq.clear()
        self._starting.clear()
        logger.info(
            "sim initialized vehicles=%s locations=%s deliveries=%s",
            len(self.state.vehicles),
            len(locations),
            len(owned_deliveries),
        )

    def start(self) -> None:
        """Begin ticking on the running event loop. No-op if already running."""
        if self.state is None or self.state.running:
            return
        self.state.running = True
        self._task = asyncio.get_running_loop().create_task(self._run(self.state))
        logger.info("sim started tick_interval_s=%s", self.tick_interval_s)

    def stop(self) -> None:
        """Prevent further ticks. State is kept."""
        if self.state is None or not self.state.running:
            return
        self.state.running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("sim stopped tick=%s", self.state.tick)

    async def _run(self, state: SimulationState) -> None:
        # Ticks run back to back on one task, so two ticks never overlap.
        while state.running and self.state is state:
            await asyncio.sleep(self.tick_interval_s)
            if not state.running or self.state is not state:
                break
            self.tick()

    # Tick

    def tick(self) -> None:
        """Advance every active delivery and reroute once, then notify."""
        state = self.state
        if state is None:
            return

        vehicles_changed = self._vehicles_dirty
        self._vehicles_dirty = False
        arrivals = False

        for delivery in list(state.deliveries):
            if delivery.status != "en_route":
                continue
            try:
                moved, arrived = self._advance_delivery(state, delivery)
            except Exception:  # noqa: BLE001
                logger.exception("tick failed delivery_id=%s", delivery.id)
                continue
            vehicles_changed = vehicles_changed or moved
            arrivals = arrivals or arrived

        for vehicle_id in list(state.vehicle_routes):
            try:
                moved = self._advance_reroute(state, vehicle_id)
            except Exception:  # noqa: BLE001
                logger.exception("tick failed reroute vehicle_id=%s", vehicle_id)
                continue
            vehicles_changed = vehicles_changed or moved

        state.tick += 1
        if arrivals:
            self._emit_deliveries()
        if vehicles_changed:
            self._emit_vehicles()

    def _advance_delivery(self, state: SimulationState, delivery: Delivery) -> tuple[bool, bool]:
        """Move a delivery's vehicle one step. Returns (moved, arrived)."""
        poly = state.routes.get(delivery.id)
        if not poly or len(poly) < 2:
            return False, False
        vehicle = state.vehicle(delivery.vehicle_id)
        if vehicle is None:
            return False, False

        progress, arrived = self._step_along(vehicle, poly, state.progress.get(delivery.id, 0.0))
        state.progress[delivery.id] = progress
        delivery.progress = progress
        if arrived:
            delivery.status = "delivered"
            delivery.route = None
            state.routes.pop(delivery.id, None)
            state.progress.pop(delivery.id, None)
            logger.info("delivery delivered delivery_id=%s vehicle_id=%s", delivery.id, vehicle.id)
        return True, arrived

    def _advance_reroute(self, state: SimulationState, vehicle_id: str) -> bool:
        poly = state.vehicle_routes.get(vehicle_id)
        if not poly or len(poly) < 2:
            return False
        vehicle = state.vehicle(vehicle_id)
        if vehicle is None:
            return False

        progress, arrived = self._step_along(vehicle, poly, state.vehicle_progress.get(vehicle_id, 0.0))
        state.vehicle_progress[vehicle_id] = progress
        if arrived:
            state.vehicle_routes.pop(vehicle_id, None)
            state.vehicle_progress.pop(vehicle_id, None)
            logger.info("reroute arrived vehicle_id=%s", vehicle_id)
        return True

    def _step_along(self, vehicle: Vehicle, poly: list[Coord], progress_m: float) -> tuple[float, bool]:
        """Advance a vehicle along a polyline and return (new progress, arrived)."""
        total = polyline_length_m(poly)
        new_progress = min(progress_m + self.advance_per_tick_m, total)

        vehicle.position = point_at_offset(poly, new_progress)
        vehicle.state = "en_route"
        vehicle.speed = round(self.avg_speed_mps * 3.6)
        battery = vehicle.battery if vehicle.battery is not None else self.default_battery
        vehicle.battery = max(0.0, battery - self.battery_drain)

        arrived = new_progress >= total - self.arrival_tolerance_m
        if arrived:
            vehicle.state = "idle"
            vehicle.speed = 0
        return new_progress, arrived

    # Mutations

    async def start_delivery(self, delivery_id: str) -> None:
        """Fetch both legs for a pending delivery and put it en route."""
        state = self.state
        if state is None:
            return
        delivery = state.delivery(delivery_id)
        if delivery is None or delivery.status not in STARTABLE_STATUSES or delivery_id in self._starting:
            logger.debug("start ignored delivery_id=%s", delivery_id)
            return
        if self._vehicle_has_delivery(state, delivery.vehicle_id):
            logger.info(
                "start skipped, vehicle busy delivery_id=%s vehicle_id=%s",
                delivery_id,
                delivery.vehicle_id,
            )
            return

        vehicle = state.vehicle(delivery.vehicle_id)
        warehouse = state.location(delivery.pickup_warehouse_id)
        store = state.location(delivery.drop_store_id)
        if vehicle is None or warehouse is None or store is None:
            logger.debug("start ignored, missing vehicle or location delivery_id=%s", delivery_id)
            return

        seq = self._claim_vehicle(vehicle.id)
        self._starting[delivery_id] = vehicle.id
        try:
            leg1, leg2 = await asyncio.gather(
                self._fetch_route(vehicle.position, warehouse.position),
                self._fetch_route(warehouse.position, store.position),
            )
        finally:
            self._starting.pop(delivery_id, None)

        # Anything may have changed while the legs were being fetched.
        if self.state is not state or delivery.status not in STARTABLE_STATUSES:
            logger.info("start dropped, delivery changed delivery_id=%s", delivery_id)
            return
        if state.vehicle(vehicle.id) is None or self._command_seq.get(vehicle.id) != seq:
            logger.info("start dropped, vehicle removed or redirected delivery_id=%s", delivery_id)
            return

        # A missing leg leaves the whole delivery inert.
        if len(leg1) < 2 or len(leg2) < 2:
            logger.warning(
                "delivery has no usable route delivery_id=%s leg_points=%s,%s",
                delivery_id,
                len(leg1),
                len(leg2),
            )
            poly: list[Coord] = []
        else:
            poly = self._from_current_position(join_legs(leg1, leg2), vehicle)

        self._clear_reroute(state, vehicle.id)
        state.routes[delivery.id] = poly
        state.progress[delivery.id] = 0.0
        delivery.progress = 0.0
        delivery.status = "en_route"
        delivery.route = route_feature_collection(poly, delivery.vehicle_id, delivery.id)
        if not poly:
            self._settle_vehicle(state, vehicle.id)
        logger.info("delivery started delivery_id=%s vehicle_id=%s points=%s", delivery.id, vehicle.id, len(poly))
        self._emit_deliveries()

    def cancel_delivery(self, delivery_id: str) -> None:
        """Cancel a delivery. Terminal deliveries are left alone."""
        state = self.state
        if state is None:
            return
        delivery = state.delivery(delivery_id)
        if delivery is None or delivery.status in TERMINAL_STATUSES:
            logger.debug("cancel ignored delivery_id=%s", delivery_id)
            return
        self._cancel(state, delivery)
        logger.info("delivery cancelled delivery_id=%s", delivery_id)
        self._emit_deliveries()

    async def reroute_vehicle_to(self, vehicle_id: str, location_id: str) -> None:
        """Send a vehicle straight to a location, cancelling its active delivery."""
        state = self.state
        if state is None:
            return
        vehicle = state.vehicle(vehicle_id)
        target = state.location(location_id)
        if vehicle is None or target is None:
            logger.debug("reroute ignored vehicle_id=%s location_id=%s", vehicle_id, location_id)
            return

        seq = self._claim_vehicle(vehicle_id)
        active = [d for d in state.deliveries if d.vehicle_id == vehicle_id and d.status == "en_route"]
        if active:
            for delivery in active:
                self._cancel(state, delivery)
                logger.info("delivery cancelled for reroute delivery_id=%s", delivery.id)
            self._emit_deliveries()

        poly = await self._fetch_route(vehicle.position, target.position)

        if self.state is not state or state.vehicle(vehicle_id) is None:
            return
        if self._command_seq.get(vehicle_id) != seq:
            logger.info("reroute dropped, superseded vehicle_id=%s", vehicle_id)
            return
        if len(poly) < 2:
            logger.warning("reroute has no usable route vehicle_id=%s location_id=%s", vehicle_id, location_id)
            poly = []
        else:
            poly = self._from_current_position(poly, vehicle)
        state.vehicle_routes[vehicle_id] = poly
        state.vehicle_progress[vehicle_id] = 0.0
        if not poly:
            self._settle_vehicle(state, vehicle_id)
        logger.info("vehicle rerouted vehicle_id=%s location_id=%s points=%s", vehicle_id, location_id, len(poly))

    def remove_vehicle(self, vehicle_id: str) -> None:
        """Delete a vehicle, cancelling its open deliveries and any reroute."""
        state = self.state
        if state is None:
            return
        if state.vehicle(vehicle_id) is None:
            logger.debug("remove ignored vehicle_id=%s", vehicle_id)
            return

        state.vehicles[:] = [v for v in state.vehicles if v.id != vehicle_id]
        for delivery in state.deliveries:
            if delivery.vehicle_id == vehicle_id and delivery.status not in TERMINAL_STATUSES:
                self._cancel(state, delivery)
        self._clear_reroute(state, vehicle_id)
        self._command_seq.pop(vehicle_id, None)
        logger.info("vehicle removed vehicle_id=%s", vehicle_id)
        self._emit_deliveries()
        self._emit_vehicles()

    # Helpers

    async def _fetch_route(self, origin: Coord, destination: Coord) -> list[Coord]:
        try:
            poly = await self.route_fetcher(origin, destination)
        except Exception:  # noqa: BLE001
            logger.exception("route fetch failed origin=%s destination=%s", origin, destination)
            return []
        return [(float(p[0]), float(p[1])) for p in poly or []]

    def _claim_vehicle(self, vehicle_id: str) -> int:
        seq = self._command_seq.get(vehicle_id, 0) + 1
        self._command_seq[vehicle_id] = seq
        return seq

    def _vehicle_has_delivery(self, state: SimulationState, vehicle_id: str) -> bool:
        if vehicle_id in self._starting.values():
            return True
        return any(d.vehicle_id == vehicle_id and d.status == "en_route" for d in state.deliveries)

    def _cancel(self, state: SimulationState, delivery: Delivery) -> None:
        was_active = delivery.status == "en_route"
        delivery.status = "cancelled"
        delivery.route = None
        delivery.progress = 0.0
        state.routes.pop(delivery.id, None)
        state.progress.pop(delivery.id, None)
        if was_active:
            self._settle_vehicle(state, delivery.vehicle_id)

    def _clear_reroute(self, state: SimulationState, vehicle_id: str) -> None:
        state.vehicle_routes.pop(vehicle_id, None)
        state.vehicle_progress.pop(vehicle_id, None)

    @staticmethod
    def _from_current_position(poly: list[Coord], vehicle: Vehicle) -> list[Coord]:
        """Replace a fetched polyline's first point with where the vehicle is now.

        The route was requested from the position read before the fetch; a
        vehicle on a reroute keeps moving meanwhile.
        """
        here = (float(vehicle.position[0]), float(vehicle.position[1]))
        return [here, *poly[1:]]

    def _is_driven(self, state: SimulationState, vehicle_id: str) -> bool:
        """True while the vehicle has a polyline it can actually move along."""
        if len(state.vehicle_routes.get(vehicle_id) or []) >= 2:
            return True
        return any(
            d.vehicle_id == vehicle_id and d.status == "en_route" and len(state.routes.get(d.id) or []) >= 2
            for d in state.deliveries
        )

    def _settle_vehicle(self, state: SimulationState, vehicle_id: str) -> None:
        """Return a vehicle to idle once nothing is driving it."""
        vehicle = state.vehicle(vehicle_id)
        if vehicle is None or self._is_driven(state, vehicle_id):
            return
        if vehicle.state == "en_route":
            vehicle.state = "idle"
            vehicle.speed = 0
            self._vehicles_dirty = True

    def _emit_vehicles(self) -> None:
        if self.state is None or self.on_vehicles_update is None:
            return
        try:
            self.on_vehicles_update(list(self.state.vehicles))
        except Exception:  # noqa: BLE001
            logger.exception("vehicles listener failed")

    def _emit_deliveries(self) -> None:
        if self.state is None or self.on_deliveries_update is None:
            return
        try:
            self.on_deliveries_update(list(self.state.deliveries))
        except Exception:  # noqa: BLE001
            logger.exception("deliveries listener failed")

    def snapshot(self) -> dict[str, Any]:
        """Return a serializable snapshot of current sim state."""
        if self.state is None:
            return {"tick": 0, "running": False, "vehicles": vehicles_to_geojson([]), "deliveries": []}
        return {
            "tick": self.state.tick,
            "running": self.state.running,
            "vehicles": vehicles_to_geojson(self.state.vehicles),
            "deliveries": [delivery_to_dict(d) for d in self.state.deliveries],
        }

import asyncio

import pytest

from fleet_ops.assistant.rules import Intent
from fleet_ops.host import ROUTE_COLORS, FleetSession, build_delivery_routes
from fleet_ops.settings import Settings
from fleet_ops.sim.entities import Delivery, Vehicle
from fleet_ops.sim.geojson import route_feature_collection


def _session(autostart: int = 3) -> FleetSession:
    cfg = Settings(
        route_provider="straight",
        sim_tick_ms=3_600_000,
        google_ai_api_key="",
        autostart_deliveries=autostart,
    )
    return FleetSession.from_settings(cfg)


def _route_ids(session: FleetSession) -> list[str]:
    if session.delivery_routes is None:
        return []
    return [f["properties"]["deliveryId"] for f in session.delivery_routes["features"]]


def test_build_delivery_routes_skips_cancelled_hidden_and_unknown():
    vehicles = [Vehicle(id="V1", position=(0.0, 0.0)), Vehicle(id="V2", position=(0.0, 0.0))]
    poly = [(0.0, 0.0), (0.0, 1.0)]

    def delivery(did, vid, status="en_route"):
        return Delivery(
            id=did,
            vehicle_id=vid,
            pickup_warehouse_id="W",
            drop_store_id="S",
            status=status,
            route=route_feature_collection(poly, vid, did),
        )

    deliveries = [
        delivery("D1", "V1"),
        delivery("D2", "V2"),
        delivery("D3", "V1", status="cancelled"),
        delivery("D4", "V9"),
        Delivery(id="D5", vehicle_id="V1", pickup_warehouse_id="W", drop_store_id="S"),
    ]

    overlay = build_delivery_routes(deliveries, vehicles, hidden_vehicle_ids={"V2"})

    assert [f["properties"]["deliveryId"] for f in overlay["features"]] == ["D1"]
    assert overlay["features"][0]["properties"]["color"] == ROUTE_COLORS[0]
    assert build_delivery_routes(deliveries, vehicles, hidden_vehicle_ids={"V1", "V2"}) is None


def test_open_autostarts_first_pending_deliveries():
    session = _session()
    events: list[tuple[str, dict]] = []

    async def sink(event_type, message):
        events.append((event_type, message))

    session.sinks.append(sink)

    async def scenario():
        await session.open()
        await session.close()

    asyncio.run(scenario())

    statuses = {d.id: d.status for d in session.deliveries}
    assert statuses == {
        "D-1001": "en_route",
        "D-1002": "en_route",
        "D-1003": "en_route",
        "D-1004": "pending",
        "D-1005": "pending",
    }
    assert _route_ids(session) == ["D-1001", "D-1002", "D-1003"]
    colors = [f["properties"]["color"] for f in session.delivery_routes["features"]]
    assert colors == ROUTE_COLORS[:3]

    assert [e[0] for e in events] == ["deliveries.updated"] * 3
    last = events[-1][1]
    assert last["routes_version"] == session.routes_version
    assert "ts_utc" in last
    assert len(last["delivery_routes"]["features"]) == 3


def test_session_lists_are_engine_owned_copies():
    session = _session(autostart=0)
    original = session.vehicles[0]

    async def scenario():
        await session.open()
        await session.close()

    asyncio.run(scenario())

    assert session.vehicles[0] is not original
    assert session.vehicles[0] is session.engine.state.vehicles[0]


def test_intents_drive_engine_and_overlay():
    session = _session()

    async def scenario():
        await session.open()
        await session.apply_intent(Intent("cancel_delivery", {"id": "D-1001"}))
        assert session.get_delivery("D-1001").status == "cancelled"
        assert _route_ids(session) == ["D-1002", "D-1003"]

        session.set_vehicle_hidden("V-002", True)
        assert _route_ids(session) == ["D-1003"]
        session.set_vehicle_hidden("V-002", False)

        await session.apply_intent(Intent("show_vehicle_route", {"vehicleToken": "v-003"}))
        assert _route_ids(session) == ["D-1003"]

        version = session.routes_version
        await session.apply_intent(Intent("hide_all_routes"))
        assert session.delivery_routes is None
        assert session.routes_version == version + 1

        await session.apply_intent(Intent("start_delivery", {"id": "D-1004"}))
        assert session.get_delivery("D-1004").status == "en_route"

        await session.apply_intent(Intent("reroute_to_location", {"vehicleId": "V-002", "locationId": "WH-1"}))
        assert session.get_delivery("D-1002").status == "cancelled"
        assert "V-002" in session.engine.state.vehicle_routes
        await session.close()

    asyncio.run(scenario())


def test_chat_executes_command_intent():
    session = _session()

    async def scenario():
        await session.open()
        result = await session.chat("cancel delivery d-1002")
        await session.close()
        return result

    result = asyncio.run(scenario())

    assert result.reply == "Cancelling delivery D-1002."
    assert result.provider == "local"
    assert session.get_delivery("D-1002").status == "cancelled"


def test_plan_route_orders_stops_and_summarizes():
    session = _session(autostart=0)
    origin = (-117.0, 32.5)
    far, near = (-117.0, 32.53), (-117.0, 32.51)

    result = asyncio.run(session.plan_route(origin, [far, near], (-117.0, 32.54), optimize=True))

    assert result["stops"] == [[-117.0, 32.51], [-117.0, 32.53]]
    assert result["summary"]["distance_km"] == pytest.approx(0.04 * 110540.0 / 1000)
    assert result["summary"]["duration_min"] == 0

    unordered = asyncio.run(session.plan_route(origin, [far, near], (-117.0, 32.54), optimize=False))
    assert unordered["stops"] == [[-117.0, 32.53], [-117.0, 32.51]]


def test_kpis_reflect_session_state():
    session = _session()

    async def scenario():
        await session.open()
        await session.close()

    asyncio.run(scenario())
    kpis = session.kpis()

    assert kpis["total_vehicles"] == 5
    assert kpis["trips_in_progress"] == 3
    assert kpis["pending_deliveries"] == 2


def test_snapshot_message_mirrors_session_state():
    session = _session(autostart=2)

    async def scenario():
        await session.open()
        session.engine.stop()
        session.engine.tick()
        await session.close()

    asyncio.run(scenario())
    snapshot = session.snapshot_message()

    assert snapshot["event_type"] == "session.snapshot"
    assert snapshot["tick"] == 1
    assert "ts_utc" in snapshot
    assert snapshot["routes_version"] == session.routes_version
    assert [f["properties"]["deliveryId"] for f in snapshot["delivery_routes"]["features"]] == ["D-1001", "D-1002"]
    statuses = {d["id"]: d["status"] for d in snapshot["deliveries"]}
    assert statuses["D-1001"] == "en_route"
    assert statuses["D-1003"] == "pending"
    states = {f["properties"]["id"]: f["properties"]["state"] for f in snapshot["vehicles"]["features"]}
    assert states["V-001"] == "en_route"

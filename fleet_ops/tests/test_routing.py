import asyncio

import httpx
import pytest

from fleet_ops.routing import (
    MapboxDirections,
    RoutingError,
    StraightLineRoutes,
    build_route_provider,
    optimize_stop_order,
    parse_coord,
    primary_polyline,
)
from fleet_ops.settings import Settings

MAPBOX_BODY = {
    "routes": [
        {
            "geometry": {"type": "LineString", "coordinates": [[-117.0, 32.5], [-117.0, 32.505], [-117.0, 32.51]]},
            "distance": 1110.0,
            "duration": 95.0,
        },
        {
            "geometry": {"type": "LineString", "coordinates": [[-117.0, 32.5], [-117.01, 32.51]]},
            "distance": 1500.0,
            "duration": 130.0,
        },
    ]
}


def _mapbox(handler) -> MapboxDirections:
    return MapboxDirections(token="pk.test", transport=httpx.MockTransport(handler))


def test_parse_coord_accepts_lon_lat_strings():
    assert parse_coord("-117.03, 32.51") == (-117.03, 32.51)
    assert parse_coord(" -117 ,32 ") == (-117.0, 32.0)


@pytest.mark.parametrize("raw", [None, "", "abc", "1,2,3", "nan, 1", "1;2"])
def test_parse_coord_rejects_malformed(raw):
    assert parse_coord(raw) is None


def test_optimize_stop_order_is_nearest_neighbour():
    origin = (0.0, 0.0)
    stops = [(5.0, 0.0), (1.0, 0.0), (3.0, 0.0)]
    assert optimize_stop_order(origin, stops) == [(1.0, 0.0), (3.0, 0.0), (5.0, 0.0)]
    assert optimize_stop_order(origin, []) == []


def test_mapbox_directions_builds_request_and_labels_variants():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=MAPBOX_BODY)

    route = asyncio.run(_mapbox(handler).directions((-117.0, 32.5), [(-117.005, 32.505)], (-117.0, 32.51)))

    assert seen["path"] == "/directions/v5/mapbox/driving-traffic/-117.0,32.5;-117.005,32.505;-117.0,32.51"
    assert seen["params"]["geometries"] == "geojson"
    assert seen["params"]["alternatives"] == "true"
    assert seen["params"]["access_token"] == "pk.test"
    variants = [f["properties"]["variant"] for f in route["features"]]
    assert variants == ["primary", "alt"]
    assert route["features"][0]["properties"]["distance"] == 1110.0
    assert primary_polyline(route)[-1] == (-117.0, 32.51)


def test_mapbox_directions_raises_on_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Invalid coordinates"})

    with pytest.raises(RoutingError):
        asyncio.run(_mapbox(handler).directions((0.0, 0.0), [], (1.0, 1.0)))


def test_mapbox_requires_token():
    client = MapboxDirections(token="")
    with pytest.raises(RoutingError):
        asyncio.run(client.directions((0.0, 0.0), [], (1.0, 1.0)))


def test_mapbox_fetch_returns_primary_polyline():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=MAPBOX_BODY)

    poly = asyncio.run(_mapbox(handler).fetch((-117.0, 32.5), (-117.0, 32.51)))
    assert poly == [(-117.0, 32.5), (-117.0, 32.505), (-117.0, 32.51)]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream down"),
        httpx.Response(200, json={"routes": []}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["unexpected"]),
    ],
)
def test_mapbox_fetch_degrades_to_empty(response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    assert asyncio.run(_mapbox(handler).fetch((0.0, 0.0), (1.0, 1.0))) == []


def test_mapbox_fetch_survives_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(_mapbox(handler).fetch((0.0, 0.0), (1.0, 1.0))) == []


def test_straight_line_provider():
    provider = StraightLineRoutes()
    route = asyncio.run(provider.directions((-117.0, 32.5), [(-117.0, 32.51)], (-117.0, 32.52)))

    feature = route["features"][0]
    assert feature["properties"]["variant"] == "primary"
    assert feature["properties"]["distance"] == pytest.approx(0.02 * 110540.0)
    assert len(feature["geometry"]["coordinates"]) == 3
    assert asyncio.run(provider.fetch((1, 2), (3, 4))) == [(1.0, 2.0), (3.0, 4.0)]


def test_build_route_provider_selection():
    assert isinstance(build_route_provider(Settings(route_provider="straight", mapbox_token="pk")), StraightLineRoutes)
    assert isinstance(build_route_provider(Settings(route_provider="auto", mapbox_token="")), StraightLineRoutes)
    provider = build_route_provider(Settings(route_provider="auto", mapbox_token="pk.live"))
    assert isinstance(provider, MapboxDirections)
    assert provider.token == "pk.live"

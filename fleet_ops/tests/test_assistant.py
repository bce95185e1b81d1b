import asyncio
import json
import random

import httpx
import pytest

from fleet_ops.assistant.chat import ChatService
from fleet_ops.assistant.gemini import NO_REPLY, AssistantError, GeminiClient, build_fleet_context
from fleet_ops.assistant.rules import generate_reply, interpret
from fleet_ops.sim.entities import Delivery, Location, Vehicle


def _vehicles():
    return [
        Vehicle(id="V-1", position=(-117.0, 32.5), state="en_route", type="cargo_van", alias="TJ-CV-01", battery=25.0, speed=43),
        Vehicle(id="V-2", position=(-117.01, 32.5), state="idle", type="light_truck", alias="TJ-LT-02", battery=80.0, speed=0),
        Vehicle(id="V-3", position=(-117.02, 32.5), state="offline", type="van", alias="TJ-VN-03", battery=12.0),
    ]


def _locations():
    return [
        Location(id="WH-1", name="Otay Distribution Center", type="warehouse", position=(-116.97, 32.55)),
        Location(id="WH-2", name="La Mesa Warehouse", type="warehouse", position=(-116.98, 32.52)),
        Location(id="ST-1", name="Zona Rio Market", type="store", position=(-117.02, 32.53)),
    ]


def _deliveries():
    return [
        Delivery(id="D-1001", vehicle_id="V-1", pickup_warehouse_id="WH-1", drop_store_id="ST-1", status="en_route"),
        Delivery(id="D-1002", vehicle_id="V-3", pickup_warehouse_id="WH-2", drop_store_id="ST-1", status="delivered"),
        Delivery(id="D-1003", vehicle_id="V-2", pickup_warehouse_id="WH-2", drop_store_id="ST-1"),
    ]


def _interpret(message: str):
    return interpret(message, _vehicles(), _locations(), _deliveries(), rng=random.Random(0))


def test_reply_lists_en_route_vehicles():
    reply = generate_reply("Which vehicles are en route?", _vehicles())
    assert reply == "Currently, 1 vehicles are en route:\nTJ-CV-01 (cargo_van)\n\nTotal fleet: 3 vehicles"


def test_reply_reports_offline_vehicles():
    reply = generate_reply("anything offline?", _vehicles())
    assert reply.startswith("1 vehicles are currently offline:")
    assert "TJ-VN-03 (V-3) - Battery: 12%" in reply

    online = [v for v in _vehicles() if v.state != "offline"]
    assert generate_reply("any disconnected?", online) == "Great news! All vehicles are currently online and operational."


def test_reply_summarizes_battery():
    reply = generate_reply("battery levels please", _vehicles())
    assert reply.startswith("Average battery level: 39%")
    assert "2 vehicles have low battery" in reply
    assert "TJ-CV-01: 25%, TJ-VN-03: 12%" in reply


def test_reply_reports_fastest_vehicle():
    reply = generate_reply("who is the fastest?", _vehicles())
    assert reply == "Fastest vehicle: TJ-CV-01 at 43 km/h\nAverage speed of moving vehicles: 43 km/h"

    parked = [v for v in _vehicles() if v.state != "en_route"]
    assert generate_reply("speed?", parked) == "No vehicles are currently moving."


def test_reply_breaks_down_vehicle_type():
    reply = generate_reply("how are the trucks doing", _vehicles())
    assert reply == "light truck fleet status:\nTotal: 1\nEn route: 0\nIdle: 1\nOffline: 0"

    cargo = generate_reply("cargo van report", _vehicles())
    assert cargo.startswith("cargo van fleet status:\nTotal: 1\nEn route: 1")


def test_reply_overview_greeting_and_fallback():
    overview = generate_reply("give me a status overview", _vehicles())
    assert overview.startswith("Fleet Overview:\n\nTotal Vehicles: 3\n")
    assert "Average Battery: 39%" in overview

    assert generate_reply("Hi!", _vehicles()).startswith("Hello! I'm your Fleet AI Assistant.")
    assert not generate_reply("this thing", _vehicles(), rng=random.Random(1)).startswith("Hello")


def test_reply_without_fleet_data():
    assert generate_reply("status", None).startswith("I'm still loading the fleet data.")
    assert generate_reply("status", []) == "There are no vehicles in the fleet right now."


def test_interpret_hide_and_show_routes():
    hide = _interpret("Please hide all routes")
    assert hide.intent.type == "hide_all_routes"
    assert hide.reply == "Hiding all delivery routes."

    show = _interpret("show routes for V-2")
    assert show.intent.type == "show_vehicle_route"
    assert show.intent.payload == {"vehicleToken": "v-2"}
    assert show.reply == "Showing routes for V-2."


def test_interpret_cancel_delivery():
    reply = _interpret("cancel delivery d-1001")
    assert reply.intent.type == "cancel_delivery"
    assert reply.intent.payload == {"id": "D-1001"}
    assert reply.reply == "Cancelling delivery D-1001."

    done = _interpret("cancel delivery D-1002")
    assert done.intent is None
    assert done.reply == "Delivery D-1002 is already delivered."

    missing = _interpret("abort delivery D-9")
    assert missing.intent is None
    assert missing.reply == "I couldn't find delivery D-9."


def test_interpret_start_delivery():
    reply = _interpret("dispatch delivery D-1003")
    assert reply.intent.type == "start_delivery"
    assert reply.intent.payload == {"id": "D-1003"}
    assert reply.reply == "Starting delivery D-1003 with vehicle V-2."

    busy = _interpret("start delivery D-1001")
    assert busy.intent is None
    assert busy.reply == "Delivery D-1001 is en route and can't be started."


def test_interpret_reroute_by_alias_and_location_name():
    reply = _interpret("send TJ-LT-02 to otay")
    assert reply.intent.type == "reroute_to_location"
    assert reply.intent.payload == {"vehicleId": "V-2", "locationId": "WH-1"}
    assert reply.reply == "Rerouting TJ-LT-02 to Otay Distribution Center."

    by_id = _interpret("move vehicle v-3 to WH-2.")
    assert by_id.intent.payload == {"vehicleId": "V-3", "locationId": "WH-2"}


def test_interpret_reroute_with_unknown_parts():
    assert _interpret("reroute V-2 to mars").reply == 'I couldn\'t find a location matching "mars".'
    assert _interpret("redirect truck9 to the la mesa warehouse").reply == "I couldn't find vehicle TRUCK9."


def test_interpret_plain_question_has_no_intent():
    reply = _interpret("fleet status")
    assert reply.intent is None
    assert reply.reply.startswith("Fleet Overview:")


def test_fleet_context_summary():
    assert build_fleet_context(_vehicles()) == (
        "Total: 3 | En route: 1 | Idle: 1 | Offline: 1 | Low battery: TJ-CV-01:25%, TJ-VN-03:12%"
    )
    assert build_fleet_context(None) == "No fleet context provided."


def test_gemini_client_posts_prompt_and_extracts_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.url.params.get("key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "All good."}]}}]})

    client = GeminiClient(api_key="g-key", transport=httpx.MockTransport(handler))
    reply = asyncio.run(client.generate("how is the fleet?", "Total: 3"))

    assert reply == "All good."
    assert seen["path"] == "/v1beta/models/gemini-1.5-flash:generateContent"
    assert seen["key"] == "g-key"
    prompt = seen["body"]["contents"][0]["parts"][0]["text"]
    assert "Fleet context: Total: 3" in prompt
    assert prompt.endswith("User: how is the fleet?")
    assert seen["body"]["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 512}


def test_gemini_client_handles_empty_and_failed_responses():
    empty = GeminiClient(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
    assert asyncio.run(empty.generate("hi", "")) == NO_REPLY

    failing = GeminiClient(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
    with pytest.raises(AssistantError):
        asyncio.run(failing.generate("hi", ""))


class FakeGemini:
    def __init__(self, reply: str | None = None) -> None:
        self.reply = reply
        self.calls: list[tuple[str, str]] = []

    async def generate(self, message: str, context: str) -> str:
        self.calls.append((message, context))
        if self.reply is None:
            raise AssistantError("quota exceeded")
        return self.reply


def _respond(service: ChatService, message: str):
    return asyncio.run(service.respond(message, _vehicles(), _locations(), _deliveries()))


def test_chat_without_model_uses_local_rules():
    result = _respond(ChatService(), "cancel delivery D-1001")
    assert result.provider == "local"
    assert result.used_fallback is True
    assert result.intent.type == "cancel_delivery"


def test_chat_prefers_model_for_questions():
    gemini = FakeGemini("Three vehicles, one moving.")
    result = _respond(ChatService(gemini), "how is the fleet?")

    assert result.reply == "Three vehicles, one moving."
    assert result.provider == "gemini"
    assert result.used_fallback is False
    assert result.intent is None
    assert gemini.calls[0][1].startswith("Total: 3")


def test_chat_commands_keep_local_intent_with_model_configured():
    gemini = FakeGemini("ignored")
    result = _respond(ChatService(gemini), "start delivery D-1003")

    assert result.intent.type == "start_delivery"
    assert result.reply == "Starting delivery D-1003 with vehicle V-2."
    assert gemini.calls == []


def test_chat_falls_back_when_model_fails():
    result = _respond(ChatService(FakeGemini(None)), "fleet status")

    assert result.provider == "local"
    assert result.used_fallback is True
    assert result.reply.startswith("Fleet Overview:")

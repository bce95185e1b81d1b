from __future__ import annotations

"""
File: fleet_ops/assistant/rules.py
Purpose: Local rule-based fleet assistant.
Key responsibilities:
- Answer fleet questions (status, battery, speed, vehicle types) from snapshots.
- Parse free-text commands into structured intents for the host.
Key entrypoints:
- generate_reply()
- interpret()
"""

from dataclasses import dataclass, field
import random
import re
from typing import Any, Literal, Sequence

from fleet_ops.sim.entities import STARTABLE_STATUSES, TERMINAL_STATUSES, Delivery, Location, Vehicle


IntentType = Literal[
    "start_delivery",
    "cancel_delivery",
    "reroute_to_location",
    "show_vehicle_route",
    "hide_all_routes",
]


@dataclass
class Intent:
    """Structured command extracted from a chat message."""
    type: IntentType
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatReply:
    reply: str
    intent: Intent | None = None


TYPE_KEYWORDS = ("van", "truck", "motorcycle", "bike", "pickup", "semi")

# Order matters: multi-word types must win over their suffixes.
TYPE_MAP = {
    "cargo van": "cargo_van",
    "box truck": "box_truck",
    "semi truck": "semi_truck",
    "pickup": "pickup",
    "truck": "light_truck",
    "van": "van",
    "motorcycle": "motorcycle",
    "bike": "cargo_bike",
}

LOW_BATTERY_PCT = 30

_HIDE_RE = re.compile(r"\b(hide|clear)\b.*\broutes?\b")
_SHOW_RE = re.compile(r"\bshow\b.*?\broutes?\b(?:\s+(?:for|of))?\s+(?:vehicle\s+)?(?P<token>[\w-]+)")
_CANCEL_RE = re.compile(r"\b(cancel|abort)\b.*?\bdelivery\s+(?P<id>[\w-]+)")
_START_RE = re.compile(r"\b(start|begin|dispatch)\b.*?\bdelivery\s+(?P<id>[\w-]+)")
_REROUTE_RE = re.compile(
    r"\b(reroute|redirect|send|move)\s+(?:vehicle\s+)?(?P<vehicle>[\w-]+)\s+to\s+(?:the\s+)?(?P<target>.+)$"
)


def _battery(vehicle: Vehicle) -> float:
    return vehicle.battery or 0


def _fmt(value: float | None) -> str:
    if value is None:
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _type_label(type_name: str) -> str:
    return type_name.replace("_", " ", 1)


def generate_reply(
    message: str,
    vehicles: Sequence[Vehicle] | None,
    rng: random.Random | None = None,
) -> str:
    """Answer a fleet question from the current vehicle snapshot."""
    lower = message.lower()

    if vehicles is None:
        return "I'm still loading the fleet data. Please wait a moment and try again."
    if not vehicles:
        return "There are no vehicles in the fleet right now."

    en_route = [v for v in vehicles if v.state == "en_route"]
    idle = [v for v in vehicles if v.state == "idle"]
    offline = [v for v in vehicles if v.state == "offline"]
    avg_battery = round(sum(_battery(v) for v in vehicles) / len(vehicles))

    if "en route" in lower or "moving" in lower or "driving" in lower:
        listing = ", ".join(f"{v.alias} ({v.type})" for v in en_route)
        return f"Currently, {len(en_route)} vehicles are en route:\n{listing}\n\nTotal fleet: {len(vehicles)} vehicles"

    if "offline" in lower or "disconnected" in lower:
        if not offline:
            return "Great news! All vehicles are currently online and operational."
        listing = "\n".join(f"{v.alias} ({v.id}) - Battery: {_fmt(v.battery)}%" for v in offline)
        return f"{len(offline)} vehicles are currently offline:\n{listing}\n\nThese vehicles may need immediate attention."

    if "idle" in lower or "parked" in lower:
        listing = ", ".join(f"{v.alias} ({v.type})" for v in idle)
        return f"{len(idle)} vehicles are currently idle:\n{listing}\n\nThese vehicles are available for dispatch."

    if "battery" in lower or "charge" in lower:
        low = [v for v in vehicles if _battery(v) < LOW_BATTERY_PCT]
        response = f"Average battery level: {avg_battery}%\n"
        if low:
            listing = ", ".join(f"{v.alias}: {_fmt(v.battery)}%" for v in low)
            response += f"\n⚠️ {len(low)} vehicles have low battery:\n{listing}"
        else:
            response += "\n✓ All vehicles have sufficient battery levels."
        return response

    if "speed" in lower or "fastest" in lower:
        moving = [v for v in en_route if (v.speed or 0) > 0]
        if not moving:
            return "No vehicles are currently moving."
        fastest = max(moving, key=lambda v: v.speed or 0)
        avg_speed = sum(v.speed or 0 for v in moving) / len(moving)
        return (
            f"Fastest vehicle: {fastest.alias} at {_fmt(fastest.speed)} km/h\n"
            f"Average speed of moving vehicles: {round(avg_speed)} km/h"
        )

    if any(word in lower for word in TYPE_KEYWORDS):
        requested = next((key for key in TYPE_MAP if key in lower), None)
        if requested is not None:
            type_name = TYPE_MAP[requested]
            of_type = [v for v in vehicles if v.type == type_name]
            return (
                f"{_type_label(type_name)} fleet status:\n"
                f"Total: {len(of_type)}\n"
                f"En route: {sum(1 for v in of_type if v.state == 'en_route')}\n"
                f"Idle: {sum(1 for v in of_type if v.state == 'idle')}\n"
                f"Offline: {sum(1 for v in of_type if v.state == 'offline')}"
            )

    if "status" in lower or "overview" in lower or "summary" in lower:
        return (
            "Fleet Overview:\n\n"
            f"Total Vehicles: {len(vehicles)}\n"
            f"✓ En Route: {len(en_route)}\n"
            f"⏸ Idle: {len(idle)}\n"
            f"⚠️ Offline: {len(offline)}\n\n"
            f"Average Battery: {avg_battery}%\n\n"
            "Fleet is operating normally. How can I assist you further?"
        )

    if re.search(r"\b(hello|hi)\b", lower):
        return (
            "Hello! I'm your Fleet AI Assistant. I can help you with:\n\n"
            "• Vehicle status and locations\n"
            "• Battery levels and charging\n"
            "• Speed and performance metrics\n"
            "• Fleet type breakdowns\n"
            "• Route planning assistance\n\n"
            "What would you like to know?"
        )

    responses = [
        f"Based on current data, we have {len(vehicles)} vehicles in the fleet. {len(en_route)} are currently en route.",
        "I can help you with fleet information. Try asking about vehicle status, battery levels, or specific vehicle types.",
        f"The fleet is operating with {len(vehicles)} total vehicles. Would you like details about a specific aspect?",
        "I have access to real-time fleet data. You can ask about vehicles, routes, battery levels, and more.",
    ]
    return (rng or random).choice(responses)


def _find_delivery(deliveries: Sequence[Delivery], token: str) -> Delivery | None:
    token = token.lower()
    return next((d for d in deliveries if d.id.lower() == token), None)


def _find_vehicle(vehicles: Sequence[Vehicle], token: str) -> Vehicle | None:
    token = token.lower()
    for vehicle in vehicles:
        if vehicle.id.lower() == token or (vehicle.alias and vehicle.alias.lower() == token):
            return vehicle
    return None


def _find_location(locations: Sequence[Location], text: str) -> Location | None:
    text = text.strip().strip(".!?").strip().lower()
    if not text:
        return None
    for location in locations:
        if location.id.lower() == text or location.name.lower() == text:
            return location
    return next((loc for loc in locations if text in loc.name.lower()), None)


def interpret(
    message: str,
    vehicles: Sequence[Vehicle] | None,
    locations: Sequence[Location] | None,
    deliveries: Sequence[Delivery] | None,
    rng: random.Random | None = None,
) -> ChatReply:
    """Parse a command into an intent, or fall back to a fleet answer."""
    lower = message.lower().strip()
    vehicles_list = list(vehicles or [])
    locations_list = list(locations or [])
    deliveries_list = list(deliveries or [])

    if _HIDE_RE.search(lower):
        return ChatReply("Hiding all delivery routes.", Intent("hide_all_routes"))

    match = _SHOW_RE.search(lower)
    if match:
        token = match.group("token")
        return ChatReply(f"Showing routes for {token.upper()}.", Intent("show_vehicle_route", {"vehicleToken": token}))

    match = _CANCEL_RE.search(lower)
    if match:
        delivery = _find_delivery(deliveries_list, match.group("id"))
        if delivery is None:
            return ChatReply(f"I couldn't find delivery {match.group('id').upper()}.")
        if delivery.status in TERMINAL_STATUSES:
            return ChatReply(f"Delivery {delivery.id} is already {delivery.status}.")
        return ChatReply(f"Cancelling delivery {delivery.id}.", Intent("cancel_delivery", {"id": delivery.id}))

    match = _START_RE.search(lower)
    if match:
        delivery = _find_delivery(deliveries_list, match.group("id"))
        if delivery is None:
            return ChatReply(f"I couldn't find delivery {match.group('id').upper()}.")
        if delivery.status not in STARTABLE_STATUSES:
            return ChatReply(f"Delivery {delivery.id} is {delivery.status.replace('_', ' ')} and can't be started.")
        return ChatReply(
            f"Starting delivery {delivery.id} with vehicle {delivery.vehicle_id}.",
            Intent("start_delivery", {"id": delivery.id}),
        )

    match = _REROUTE_RE.search(lower)
    if match:
        vehicle = _find_vehicle(vehicles_list, match.group("vehicle"))
        location = _find_location(locations_list, match.group("target"))
        if vehicle is not None and location is not None:
            return ChatReply(
                f"Rerouting {vehicle.alias or vehicle.id} to {location.name}.",
                Intent("reroute_to_location", {"vehicleId": vehicle.id, "locationId": location.id}),
            )
        if vehicle is not None:
            return ChatReply(f"I couldn't find a location matching \"{match.group('target').strip()}\".")
        if location is not None:
            return ChatReply(f"I couldn't find vehicle {match.group('vehicle').upper()}.")

    return ChatReply(generate_reply(message, vehicles, rng=rng))

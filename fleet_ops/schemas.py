from __future__ import annotations

"""
File: fleet_ops/schemas.py
Purpose: Pydantic models for the HTTP API request/response contracts.
Key responsibilities:
- Validate route, chat and fleet-command payloads.
- Validate saved-route, assignment, schedule and recent-place payloads.
"""

from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

from fleet_ops.assistant.rules import IntentType


class RouteRequest(BaseModel):
    """Request body for /api/route. Coordinates are "lon, lat" strings."""
    origin: str = ""
    stops: list[str] = Field(default_factory=list)
    destination: str = ""
    optimize: bool = False


class ChatRequest(BaseModel):
    message: str = ""


class IntentModel(BaseModel):
    type: IntentType
    payload: dict[str, Any] = Field(default_factory=dict)


class ChatResponse(BaseModel):
    """Response payload from /api/chat."""
    reply: str
    intent: Optional[IntentModel] = None
    provider: Literal["local", "gemini"]
    used_fallback: bool


class RerouteRequest(BaseModel):
    location_id: str


class HiddenRequest(BaseModel):
    hidden: bool = True


class SavedRouteCreate(BaseModel):
    name: str = Field(min_length=1)
    origin: str
    destination: str
    stops: list[str] = Field(default_factory=list)


class SavedRouteRename(BaseModel):
    name: str = Field(min_length=1)


class AssignmentCreate(BaseModel):
    vehicle_id: str
    route_id: str


class PlannedAssignmentCreate(BaseModel):
    route_id: str
    vehicle_ids: list[str] = Field(min_length=1)
    start_at: int = Field(description="epoch milliseconds")
    notes: Optional[str] = None


class RecentPlaceCreate(BaseModel):
    label: str
    lng: float = Field(ge=-180, le=180)
    lat: float = Field(ge=-90, le=90)

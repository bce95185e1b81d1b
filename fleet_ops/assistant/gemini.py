from __future__ import annotations

"""
File: fleet_ops/assistant/gemini.py
Purpose: HTTP client for the Gemini text-generation API.
Key responsibilities:
- Summarize the fleet into a one-line prompt context.
- Call generateContent and extract the reply text.
Config/env vars:
- GOOGLE_AI_API_KEY, GEMINI_MODEL, GEMINI_BASE_URL, CHAT_TIMEOUT_S
"""

from typing import Any, Sequence

import httpx

from fleet_ops.sim.entities import Vehicle

SYSTEM_PREAMBLE = (
    "You are a concise, helpful Fleet Operations Assistant. Respond in clear, plain English. "
    "If asked about fleet metrics, use the provided context. Keep answers short and actionable."
)
NO_REPLY = "Sorry, I could not generate a response."


class AssistantError(Exception):
    """Raised when the language model cannot produce a reply."""


def build_fleet_context(vehicles: Sequence[Vehicle] | None) -> str:
    """One-line fleet summary passed to the model."""
    if vehicles is None:
        return "No fleet context provided."
    en_route = sum(1 for v in vehicles if v.state == "en_route")
    idle = sum(1 for v in vehicles if v.state == "idle")
    offline = sum(1 for v in vehicles if v.state == "offline")
    low_battery = [f"{v.alias}:{(v.battery or 0):g}%" for v in vehicles if (v.battery or 0) < 30][:10]
    parts = [
        f"Total: {len(vehicles)}",
        f"En route: {en_route}",
        f"Idle: {idle}",
        f"Offline: {offline}",
    ]
    if low_battery:
        parts.append(f"Low battery: {', '.join(low_battery)}")
    return " | ".join(parts)


def _extract_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return NO_REPLY
    first = candidates[0] or {}
    parts = ((first.get("content") or {}).get("parts")) or []
    text = "".join(str(p.get("text") or "") for p in parts)
    return text or first.get("output_text") or NO_REPLY


class GeminiClient:
    """Minimal async client for generateContent."""
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout_s: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.transport = transport

    async def generate(self, message: str, context: str) -> str:
        """Send the prompt and return the model's reply text."""
        prompt = f"{SYSTEM_PREAMBLE}\n\nFleet context: {context}\n\nUser: {message}"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.3, "maxOutputTokens": 512},
        }
        url = f"{self.base_url}/v1beta/models/{self.model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                resp = await client.post(url, params={"key": self.api_key}, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AssistantError(str(exc)) from exc
        if not isinstance(data, dict):
            raise AssistantError("unexpected Gemini payload")
        return _extract_text(data)

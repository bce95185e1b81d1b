from __future__ import annotations

"""
File: fleet_ops/assistant/chat.py
Purpose: Chat entrypoint combining the language model and the local rules.
Key responsibilities:
- Prefer Gemini replies when an API key is configured.
- Fall back to the rule-based assistant on any model failure.
- Always derive the structured intent locally.
"""

from dataclasses import dataclass
import logging
from typing import Sequence

from fleet_ops.assistant.gemini import AssistantError, GeminiClient, build_fleet_context
from fleet_ops.assistant.rules import Intent, interpret
from fleet_ops.sim.entities import Delivery, Location, Vehicle

logger = logging.getLogger("fleet-ops.chat")


@dataclass
class ChatResult:
    reply: str
    intent: Intent | None
    provider: str
    used_fallback: bool


class ChatService:
    """Answer chat messages about the fleet."""
    def __init__(self, gemini: GeminiClient | None = None) -> None:
        self.gemini = gemini

    async def respond(
        self,
        message: str,
        vehicles: Sequence[Vehicle] | None,
        locations: Sequence[Location] | None,
        deliveries: Sequence[Delivery] | None,
    ) -> ChatResult:
        local = interpret(message, vehicles, locations, deliveries)
        if self.gemini is None:
            return ChatResult(reply=local.reply, intent=local.intent, provider="local", used_fallback=True)

        # Commands always get the local confirmation text.
        if local.intent is not None:
            return ChatResult(reply=local.reply, intent=local.intent, provider="local", used_fallback=False)

        try:
            reply = await self.gemini.generate(message, build_fleet_context(vehicles))
        except AssistantError as exc:
            logger.warning("gemini failed, using local rules err=%s", exc)
            return ChatResult(reply=local.reply, intent=None, provider="local", used_fallback=True)
        return ChatResult(reply=reply, intent=None, provider="gemini", used_fallback=False)

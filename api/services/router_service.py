"""
Responder selection.

Order of decisions for a turn:
  1. continuity: the session's last non-coordinator responder keeps the floor
  2. no text (audio/media only): fixed subject -> specialist table
  3. otherwise ask the coordinator for {route_to, reason, handoff_message, response}

Routing never raises; any coordinator failure becomes a "self" route with a
static apology.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from agents.core.llm import LLM
from agents.core.registry import AgentRegistry
from agents.core.teaching_agent import COORDINATOR_NAME
from api.prompt_builders.routing import build_routing_prompt
from api.services.interaction_service import InteractionStore
from api.utils.logger import configure_logging
from api.utils.parsing import DEFAULT_STRATEGIES, parse_model_json, regex_fields

logger = configure_logging()

SELF_ROUTE = "self"
DEFAULT_SPECIALIST = "math_specialist"
SUBJECT_SPECIALISTS = {
    "math": "math_specialist",
    "science": "science_specialist",
    "english": "english_specialist",
    "history": "history_specialist",
    "art": "art_specialist",
}
FALLBACK_REASON = "Routing error - handling directly"
FALLBACK_RESPONSE = "I'm here to help! Could you tell me what you'd like to learn today?"
REGEX_FALLBACK_REASON = "Extracted via fallback"

_ROUTING_STRATEGIES = DEFAULT_STRATEGIES + (regex_fields("route_to", "reason", "handoff_message", "response"),)


@dataclass(frozen=True)
class RouteResult:
    responder: str
    reason: str
    direct_response: Optional[str] = None
    handoff_message: Optional[str] = None
    fast_path: bool = False

    @property
    def is_self(self) -> bool:
        return self.responder == SELF_ROUTE


def specialist_for_subject(subject: Optional[str]) -> str:
    return SUBJECT_SPECIALISTS.get((subject or "").strip().lower(), DEFAULT_SPECIALIST)


class ResponderRouter:
    def __init__(
        self,
        interactions: InteractionStore,
        registry: AgentRegistry,
        llm_for: Callable[[str], LLM],
        model: Optional[str] = None,
    ):
        self._interactions = interactions
        self._registry = registry
        self._llm_for = llm_for
        self.model = model

    async def route(
        self,
        session_id: str,
        message: Optional[str],
        lesson=None,
        profile=None,
        active_responder: Optional[str] = None,
        check_continuity: bool = True,
    ) -> RouteResult:
        if check_continuity:
            if active_responder is None:
                try:
                    active_responder = await asyncio.to_thread(self._interactions.get_last_responder, session_id)
                except Exception as e:
                    logger.warning("last responder lookup failed session=%s: %s", session_id, e)
            if active_responder and active_responder != COORDINATOR_NAME:
                logger.info("fast path: continuing with %s", active_responder)
                return RouteResult(active_responder, f"Continuing with {active_responder}", fast_path=True)

        subject = getattr(lesson, "subject", None)
        if not (message or "").strip():
            specialist = specialist_for_subject(subject)
            return RouteResult(specialist, f"Media input routed to {specialist} for {subject or 'unknown'} lesson")

        return await self.ask_coordinator(message, lesson=lesson, profile=profile)

    async def ask_coordinator(self, message: str, lesson=None, profile=None) -> RouteResult:
        try:
            coordinator = self._registry.get(COORDINATOR_NAME)
            prompt = build_routing_prompt(
                coordinator_prompt=coordinator.system_prompt,
                message=message,
                profile=profile,
                lesson_title=getattr(lesson, "title", None),
                lesson_subject=getattr(lesson, "subject", None),
            )
            raw = await self._llm_for(self.model or coordinator.model).agenerate(prompt)
        except Exception as e:
            logger.error("coordinator routing call failed: %s", e, exc_info=True)
            return self._fallback()

        result = parse_model_json(raw or "", _ROUTING_STRATEGIES)
        if not result.ok or not result.value.get("route_to"):
            logger.error("coordinator routing output unusable: %s", (raw or "")[:500])
            return self._fallback()
        if result.strategy == "regex":
            logger.warning("routing decision recovered by regex fallback")

        decision = result.value
        route_to = str(decision["route_to"]).strip()
        if route_to.lower() != SELF_ROUTE:
            route_to = self._registry.resolve_name(route_to)
        else:
            route_to = SELF_ROUTE
        reason = decision.get("reason") or (REGEX_FALLBACK_REASON if result.strategy == "regex" else "")
        return RouteResult(
            responder=route_to,
            reason=reason,
            direct_response=decision.get("response"),
            handoff_message=decision.get("handoff_message"),
        )

    @staticmethod
    def _fallback() -> RouteResult:
        return RouteResult(SELF_ROUTE, FALLBACK_REASON, direct_response=FALLBACK_RESPONSE)

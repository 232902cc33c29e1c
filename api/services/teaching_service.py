"""
One teaching turn, end to end.

    assemble context -> route -> generate (+ speech) -> respond
                                   \-> background: mark correction delivered, save interaction,
                                       validate, log adaptation, extract evidence, enrich profile

Only context reads that the turn cannot do without (lesson, profile) fail the
request. Everything after the reply is fire-and-forget.
"""

from __future__ import annotations

import asyncio
import base64
import time
from datetime import datetime
from typing import List, Optional

from agents.core.llm import InlinePart
from agents.core.registry import AgentRegistry
from agents.core.speech import SpeechSynthesizer
from agents.core.teaching_agent import ASSESSOR_NAME, COORDINATOR_NAME, TeachingAgent
from api.schemas.teaching_schemas import (
    AgentReply,
    RoutingInfo,
    TeacherResponse,
    TeachRequest,
    TeachResponse,
)
from api.services.adaptation_service import AdaptationLogStore
from api.services.context_cache import ContextCacheManager
from api.services.context_service import ContextAssembler, TeachingContext
from api.services.correction_service import PendingCorrectionStore
from api.services.evidence_extractor import EvidenceExtractor
from api.services.interaction_service import InteractionStore
from api.services.mastery_service import MasteryCalculator
from api.services.profile_service import ProfileStore
from api.services.response_service import ResponseGenerator, SpokenReply
from api.services.router_service import FALLBACK_RESPONSE, ResponderRouter, specialist_for_subject
from api.services.validator_service import ResponseValidator, should_validate
from api.utils.background import BackgroundTaskRunner
from api.utils.logger import configure_logging, set_session_id

logger = configure_logging()

AUTO_START_PREFIX = "[AUTO_START]"
AUTO_START_REASON = "AUTO_START lesson introduction by Coordinator"
ASSESSOR_HANDOFF_MESSAGE = "Great work! You've mastered this lesson. Let's test your understanding."
ASSESSOR_REASON = "Lesson complete - automated assessment"
MEDIA_PLACEHOLDER = "[Audio/Media input]"
APOLOGY_TEXT = "I'm sorry, I had trouble putting that answer together. Could you ask me again?"


def inline_parts(request: TeachRequest) -> List[InlinePart]:
    parts: List[InlinePart] = []
    if request.audio_base64:
        parts.append(InlinePart(request.audio_mime_type or "audio/webm", request.audio_base64))
    if request.media_base64:
        default_mime = "video/mp4" if request.media_type == "video" else "image/jpeg"
        parts.append(InlinePart(request.media_mime_type or default_mime, request.media_base64))
    return parts


def _b64(audio: Optional[bytes]) -> Optional[str]:
    return base64.b64encode(audio).decode("ascii") if audio else None


class TeachingService:
    def __init__(
        self,
        registry: AgentRegistry,
        assembler: ContextAssembler,
        router: ResponderRouter,
        responses: ResponseGenerator,
        context_cache: ContextCacheManager,
        interactions: InteractionStore,
        corrections: PendingCorrectionStore,
        mastery: MasteryCalculator,
        profiles: ProfileStore,
        adaptations: AdaptationLogStore,
        validator: ResponseValidator,
        evidence: EvidenceExtractor,
        runner: BackgroundTaskRunner,
        tts: Optional[SpeechSynthesizer] = None,
    ):
        self._registry = registry
        self._assembler = assembler
        self._router = router
        self._responses = responses
        self._context_cache = context_cache
        self._interactions = interactions
        self._corrections = corrections
        self._mastery = mastery
        self._profiles = profiles
        self._adaptations = adaptations
        self._validator = validator
        self._evidence = evidence
        self._runner = runner
        self._tts = tts

    async def teach(self, request: TeachRequest) -> TeachResponse:
        set_session_id(request.session_id)
        started = time.monotonic()
        message = (request.message or "").strip()
        parts = inline_parts(request)

        context = await self._assembler.assemble(request.user_id, request.session_id, request.lesson_id)

        if message.startswith(AUTO_START_PREFIX):
            coordinator = self._registry.get(COORDINATOR_NAME)
            spoken = await self._generate(coordinator, context, request, message, parts)
            if spoken is None:
                return self._apology(coordinator.name, AUTO_START_REASON)
            self._mark_correction_delivered(context)
            self._after_turn(request, context, coordinator, spoken.reply, message, AUTO_START_REASON, started,
                             extract_evidence=False)
            return self._response(spoken, coordinator.name, AUTO_START_REASON)

        route = await self._router.route(
            request.session_id,
            message,
            lesson=context.lesson,
            profile=context.profile,
            active_responder=context.active_responder,
        )

        if route.is_self:
            text = route.direct_response or FALLBACK_RESPONSE
            reply = AgentReply(audio_text=text, display_text=text)
            audio = None
            if request.synthesize_audio:
                audio = await self._responses.synthesize(text, self._voice(request, COORDINATOR_NAME))
            self._save_interaction(request, COORDINATOR_NAME, message, reply, route.reason, started)
            return self._response(SpokenReply(reply=reply, audio=audio), COORDINATOR_NAME, route.reason)

        agent = self._resolve_responder(route.responder, context)
        previous = context.active_responder if route.fast_path else COORDINATOR_NAME

        generation = self._generate(
            agent, context, request, message, parts,
            previous_agent=previous, handoff_message=route.handoff_message,
        )
        if agent.name == ASSESSOR_NAME:
            spoken, mastered = await generation, False
        else:
            spoken, mastered = await asyncio.gather(generation, self._has_mastered(context))

        if spoken is None:
            return self._apology(agent.name, route.reason)

        reason = route.reason
        handoff_message = route.handoff_message
        if agent.name != ASSESSOR_NAME and (spoken.reply.lesson_complete or mastered):
            logger.info("lesson complete (self_reported=%s mastery_verdict=%s), handing off to assessor",
                        spoken.reply.lesson_complete, mastered)
            assessor = self._registry.find(ASSESSOR_NAME)
            assessed = None
            if assessor is not None:
                assessed = await self._generate(assessor, context, request, message, parts, previous_agent=agent.name)
            if assessed is not None:
                agent, spoken = assessor, assessed
                reason, handoff_message = ASSESSOR_REASON, ASSESSOR_HANDOFF_MESSAGE
                spoken.reply = spoken.reply.model_copy(update={"lesson_complete": True})

        self._mark_correction_delivered(context)
        self._after_turn(request, context, agent, spoken.reply, message, reason, started)
        return self._response(spoken, agent.name, reason, handoff_message=handoff_message)

    # ----- generation -----

    def _resolve_responder(self, name: str, context: TeachingContext) -> TeachingAgent:
        agent = self._registry.find(name)
        if agent is not None:
            return agent
        fallback = specialist_for_subject(context.lesson.subject)
        logger.warning("route target %s not registered, using %s", name, fallback)
        return self._registry.get(fallback)

    async def _instructions_for(self, agent: TeachingAgent) -> str:
        handle = await self._context_cache.ensure_fresh(agent.model)
        if handle:
            text = self._context_cache.instruction_text(agent.model)
            if text:
                return text
        return agent.system_prompt

    def _voice(self, request: TeachRequest, agent_name: str) -> str:
        if request.voice:
            return request.voice
        return self._tts.voice_for(agent_name) if self._tts else "default"

    async def _generate(
        self,
        agent: TeachingAgent,
        context: TeachingContext,
        request: TeachRequest,
        message: str,
        parts: List[InlinePart],
        previous_agent: Optional[str] = None,
        handoff_message: Optional[str] = None,
    ) -> Optional[SpokenReply]:
        """Reply from `agent`, or None when generation fails outright."""
        prompt = context.build_prompt(
            agent,
            await self._instructions_for(agent),
            user_message=message,
            previous_agent=previous_agent,
            handoff_message=handoff_message,
            has_audio=bool(request.audio_base64),
        )
        try:
            if request.synthesize_audio:
                return await self._responses.generate_with_audio(
                    agent, prompt, self._voice(request, agent.name), parts or None
                )
            return await self._responses.generate(agent, prompt, parts or None)
        except Exception as e:
            logger.error("generation failed agent=%s session=%s: %s", agent.name, context.session_id, e,
                         exc_info=True)
            return None

    async def _has_mastered(self, context: TeachingContext) -> bool:
        try:
            started_at = await asyncio.to_thread(self._interactions.get_session_started_at, context.session_id)
            verdict = await asyncio.to_thread(
                self._mastery.determine_mastery,
                context.user_id,
                context.lesson.id,
                context.lesson.subject,
                context.lesson.grade_level,
                started_at or datetime.utcnow(),
            )
        except Exception as e:
            logger.warning("mastery verdict unavailable session=%s: %s", context.session_id, e)
            return False
        return verdict.has_mastered

    # ----- side effects -----

    def _mark_correction_delivered(self, context: TeachingContext) -> None:
        if context.correction is None:
            return
        correction, context.correction = context.correction, None
        self._runner.spawn_blocking(f"correction-delivered:{correction.id}",
                                    self._corrections.mark_delivered, correction.id)

    def _save_interaction(self, request: TeachRequest, agent_name: str, message: str,
                          reply: AgentReply, reason: str, started: float) -> None:
        self._runner.spawn_blocking(
            "save-interaction",
            self._interactions.save_interaction,
            request.session_id,
            agent_name,
            message or MEDIA_PLACEHOLDER,
            reply.display_text,
            reason,
            int((time.monotonic() - started) * 1000),
        )

    def _after_turn(
        self,
        request: TeachRequest,
        context: TeachingContext,
        agent: TeachingAgent,
        reply: AgentReply,
        message: str,
        reason: str,
        started: float,
        extract_evidence: bool = True,
    ) -> None:
        self._save_interaction(request, agent.name, message, reply, reason, started)

        if should_validate(agent.name):
            self._runner.spawn(
                f"validate:{agent.name}",
                self._validator.review(context.session_id, agent.name, reply, context.profile, context.lesson),
            )

        if context.directives is not None:
            self._runner.spawn_blocking(
                "log-adaptation",
                self._adaptations.log_adaptation,
                context.user_id,
                context.lesson.id,
                context.session_id,
                context.directives,
                context.profile.learning_style,
                reply.display_text,
                reply.svg is not None,
            )

        if extract_evidence and message and reply.display_text:
            self._runner.spawn("evidence", self._record_evidence(context, message, reply.display_text))
        else:
            self._runner.spawn_blocking("enrich-profile", self._profiles.enrich_from_evidence,
                                        context.user_id, context.session_id)

    async def _record_evidence(self, context: TeachingContext, message: str, response_text: str) -> None:
        quality = await self._evidence.extract(message, response_text, context.lesson.title)
        await asyncio.to_thread(
            self._evidence.record, quality, context.user_id, context.lesson.id,
            context.session_id, context.lesson.title, message,
        )
        await asyncio.to_thread(self._profiles.enrich_from_evidence, context.user_id, context.session_id)

    def _apology(self, agent_name: str, reason: str) -> TeachResponse:
        reply = AgentReply(audio_text=APOLOGY_TEXT, display_text=APOLOGY_TEXT)
        return self._response(SpokenReply(reply=reply), agent_name, reason, success=False)

    @staticmethod
    def _response(
        spoken: SpokenReply,
        agent_name: str,
        reason: str,
        handoff_message: Optional[str] = None,
        success: bool = True,
    ) -> TeachResponse:
        reply = spoken.reply
        return TeachResponse(
            success=success,
            teacher_response=TeacherResponse(
                audio_text=reply.audio_text,
                display_text=reply.display_text,
                svg=reply.svg,
                audio_base64=_b64(spoken.audio),
                agent_name=agent_name,
                handoff_message=handoff_message,
            ),
            lesson_complete=reply.lesson_complete,
            routing=RoutingInfo(agent_name=agent_name, reason=reason),
        )

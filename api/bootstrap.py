"""
Object graph for the tutoring service. Built once per process (see api.api) and
handed to the routes through app.state; tests build their own with fakes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from agents.core.instruction_cache import InstructionCacheProvider
from agents.core.llm import LLM
from agents.core.registry import AgentRegistry
from agents.core.speech import SpeechSynthesizer
from api.config import Settings
from api.services.adaptation_service import AdaptationLogStore
from api.services.agent_service import load_active_agents
from api.services.context_cache import ContextCacheManager
from api.services.context_service import ContextAssembler
from api.services.correction_service import PendingCorrectionStore
from api.services.evidence_extractor import EvidenceExtractor
from api.services.evidence_service import EvidenceStore
from api.services.interaction_service import InteractionStore
from api.services.mastery_service import MasteryCalculator
from api.services.profile_service import LessonStore, ProfileStore
from api.services.response_service import ResponseGenerator
from api.services.router_service import ResponderRouter
from api.services.teaching_service import TeachingService
from api.services.validator_service import ResponseValidator, ValidationFailureStore
from api.utils.background import BackgroundTaskRunner
from api.utils.ttl_cache import TTLCache
from infra.llm.ollama import OllamaLLM
from infra.llm.ollama_cache import OllamaInstructionCache
from infra.tts.http_tts import HttpSpeechSynthesizer

AGENT_VOICES = {
    "coordinator": "en-US-Neural2-F",
    "math_specialist": "en-US-Neural2-A",
    "science_specialist": "en-US-Neural2-C",
    "english_specialist": "en-US-Neural2-H",
    "history_specialist": "en-US-Neural2-D",
    "art_specialist": "en-US-Neural2-E",
    "assessor": "en-US-Neural2-H",
    "motivator": "en-US-Neural2-C",
}


@dataclass
class TutorContainer:
    teaching: TeachingService
    registry: AgentRegistry
    context_cache: ContextCacheManager
    adaptations: AdaptationLogStore
    mastery: MasteryCalculator
    runner: BackgroundTaskRunner


def ollama_factory(settings: Settings) -> Callable[[str], LLM]:
    @lru_cache(maxsize=None)
    def _llm(model: str) -> LLM:
        return OllamaLLM(model=model, base_url=settings.ollama_base_url, json_mode=True)

    def llm_for(model: Optional[str]) -> LLM:
        return _llm(model or settings.teaching_model)

    return llm_for


def build_container(
    settings: Settings,
    session_factory: sessionmaker,
    llm_for: Optional[Callable[[str], LLM]] = None,
    tts: Optional[SpeechSynthesizer] = None,
    cache_provider: Optional[InstructionCacheProvider] = None,
    clock: Callable[[], float] = time.monotonic,
) -> TutorContainer:
    llm_for = llm_for or ollama_factory(settings)
    if tts is None:
        tts = HttpSpeechSynthesizer(
            base_url=settings.tts_base_url,
            default_voice=settings.tts_default_voice,
            voices=AGENT_VOICES,
            max_chars=settings.tts_max_chunk_length,
        )
    cache_provider = cache_provider or OllamaInstructionCache(base_url=settings.ollama_base_url)
    runner = BackgroundTaskRunner()

    def agent_loader():
        return load_active_agents(session_factory)

    registry = AgentRegistry(agent_loader, TTLCache(settings.agent_cache_ttl_seconds, clock=clock))
    interactions = InteractionStore(session_factory)
    profiles = ProfileStore(session_factory, TTLCache(settings.profile_cache_ttl_seconds, clock=clock))
    lessons = LessonStore(session_factory)
    corrections = PendingCorrectionStore(session_factory)
    mastery = MasteryCalculator(
        session_factory, EvidenceStore(session_factory), TTLCache(settings.mastery_cache_ttl_seconds, clock=clock)
    )
    adaptations = AdaptationLogStore(session_factory)

    context_cache = ContextCacheManager(
        cache_provider,
        registry.all,
        lessons=lessons,
        runner=runner,
        clock=clock,
        ttl_seconds=settings.context_cache_ttl_seconds,
        renewal_seconds=settings.context_cache_renewal_seconds,
    )
    assembler = ContextAssembler(
        profiles, lessons, interactions, mastery, corrections, history_limit=settings.history_limit
    )
    router = ResponderRouter(interactions, registry, llm_for, model=settings.router_model)
    responses = ResponseGenerator(
        llm_for,
        tts,
        max_parallel=settings.max_parallel_tts_chunks,
        failure_threshold=settings.max_tts_failure_threshold,
    )
    validator = ResponseValidator(
        llm_for(settings.validator_model),
        registry,
        corrections,
        ValidationFailureStore(session_factory),
        timeout_seconds=settings.validation_timeout_seconds,
        approval_threshold=settings.validation_approval_threshold,
    )
    evidence = EvidenceExtractor(
        llm_for(settings.evidence_model), mastery, confidence_threshold=settings.evidence_confidence_threshold
    )

    teaching = TeachingService(
        registry=registry,
        assembler=assembler,
        router=router,
        responses=responses,
        context_cache=context_cache,
        interactions=interactions,
        corrections=corrections,
        mastery=mastery,
        profiles=profiles,
        adaptations=adaptations,
        validator=validator,
        evidence=evidence,
        runner=runner,
        tts=tts,
    )
    return TutorContainer(
        teaching=teaching,
        registry=registry,
        context_cache=context_cache,
        adaptations=adaptations,
        mastery=mastery,
        runner=runner,
    )

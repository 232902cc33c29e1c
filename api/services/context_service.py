"""
Per-turn context assembly.

Profile, recent history, lesson, active responder, mastery and the oldest pending
correction are independent reads, so they run in parallel on worker threads.
History, responder and correction lookups degrade (empty / None); a missing lesson
or profile aborts the turn.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from agents.core.teaching_agent import TeachingAgent
from api.prompt_builders.teaching import build_teaching_prompt
from api.services.adaptive_directives import (
    AdaptiveDirectives,
    format_directives_for_prompt,
    generate_adaptive_directives,
)
from api.services.correction_service import (
    CorrectionSnapshot,
    PendingCorrectionStore,
    build_correction_block,
)
from api.services.interaction_service import HistoryItem, InteractionStore
from api.services.mastery_service import MasteryCalculator
from api.services.profile_service import LessonInfo, LessonStore, ProfileStore, StudentProfile
from api.utils.logger import configure_logging, log_request

logger = configure_logging()


@dataclass
class TeachingContext:
    user_id: str
    session_id: str
    profile: StudentProfile
    lesson: LessonInfo
    history: List[HistoryItem] = field(default_factory=list)
    active_responder: Optional[str] = None
    mastery: int = 50
    correction: Optional[CorrectionSnapshot] = None
    directives: Optional[AdaptiveDirectives] = None

    @property
    def adaptive_block(self) -> str:
        return format_directives_for_prompt(self.directives) if self.directives else ""

    @property
    def correction_block(self) -> Optional[str]:
        return build_correction_block(self.correction) if self.correction else None

    def build_prompt(
        self,
        agent: TeachingAgent,
        instructions: str,
        user_message: str = "",
        previous_agent: Optional[str] = None,
        handoff_message: Optional[str] = None,
        has_audio: bool = False,
    ) -> str:
        return build_teaching_prompt(
            agent=agent,
            instructions=instructions,
            profile=self.profile,
            lesson=self.lesson,
            history=self.history,
            mastery=self.mastery,
            adaptive_block=self.adaptive_block,
            correction_block=self.correction_block,
            previous_agent=previous_agent,
            handoff_message=handoff_message,
            user_message=user_message,
            has_audio=has_audio,
        )


class ContextAssembler:
    def __init__(
        self,
        profiles: ProfileStore,
        lessons: LessonStore,
        interactions: InteractionStore,
        mastery: MasteryCalculator,
        corrections: PendingCorrectionStore,
        history_limit: int = 5,
    ):
        self._profiles = profiles
        self._lessons = lessons
        self._interactions = interactions
        self._mastery = mastery
        self._corrections = corrections
        self.history_limit = history_limit

    async def assemble(self, user_id: str, session_id: str, lesson_id: str) -> TeachingContext:
        with log_request(logger, "assemble_context"):
            profile, lesson, history, responder, mastery, correction = await asyncio.gather(
                asyncio.to_thread(self._profiles.get_profile, user_id),
                asyncio.to_thread(self._lessons.get_lesson, lesson_id),
                self._optional(
                    "history", [], self._interactions.get_session_history, session_id, self.history_limit
                ),
                self._optional("active responder", None, self._interactions.get_last_responder, session_id),
                asyncio.to_thread(self._mastery.compute_mastery, user_id, lesson_id),
                self._optional("pending correction", None, self._corrections.get_pending, session_id),
            )

        directives = generate_adaptive_directives(profile, history, mastery)
        if correction is not None:
            logger.info("injecting self-correction id=%s session=%s", correction.id, session_id)
        logger.info(
            "context ready session=%s mastery=%s style=%s struggle_ratio=%.2f encouragement=%s",
            session_id, mastery, profile.learning_style or "-", directives.struggle_ratio,
            directives.encouragement_level,
        )
        return TeachingContext(
            user_id=user_id,
            session_id=session_id,
            profile=profile,
            lesson=lesson,
            history=history,
            active_responder=responder,
            mastery=mastery,
            correction=correction,
            directives=directives,
        )

    @staticmethod
    async def _optional(label: str, default, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except Exception as e:
            logger.warning("%s lookup failed, continuing without it: %s", label, e)
            return default

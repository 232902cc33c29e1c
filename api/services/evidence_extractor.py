from __future__ import annotations

from typing import Optional

from agents.core.llm import LLM
from api.prompt_builders.review import build_evidence_prompt
from api.schemas.teaching_schemas import EvidenceQuality
from api.services.mastery_service import MasteryCalculator
from api.utils.logger import configure_logging

logger = configure_logging()

EVIDENCE_TIMEOUT_SECONDS = 30.0
RECORD_CONFIDENCE_THRESHOLD = 0.7


def fallback_quality() -> EvidenceQuality:
    return EvidenceQuality(
        evidence_type="explanation",
        quality_score=50,
        confidence=0.3,
        reasoning="Failed to analyze evidence quality",
    )


class EvidenceExtractor:
    """Classifies a student's utterance into mastery evidence and records confident results."""

    def __init__(
        self,
        llm: LLM,
        mastery: MasteryCalculator,
        confidence_threshold: float = RECORD_CONFIDENCE_THRESHOLD,
        timeout_seconds: float = EVIDENCE_TIMEOUT_SECONDS,
    ):
        self._llm = llm
        self._mastery = mastery
        self.confidence_threshold = confidence_threshold
        self.timeout_seconds = timeout_seconds

    async def extract(self, student_message: str, teacher_response: str, concept: str) -> EvidenceQuality:
        prompt = build_evidence_prompt(
            student_message=student_message,
            teacher_response=teacher_response,
            concept=concept,
        )
        try:
            return await self._llm.generate_structured(prompt, EvidenceQuality, timeout=self.timeout_seconds)
        except Exception as e:
            logger.error("evidence extraction failed: %s", e)
            return fallback_quality()

    def record(
        self,
        quality: EvidenceQuality,
        user_id: str,
        lesson_id: str,
        session_id: Optional[str],
        concept: str,
        student_message: str,
    ) -> Optional[str]:
        if quality.confidence <= self.confidence_threshold:
            logger.debug("evidence below confidence threshold type=%s confidence=%.2f",
                         quality.evidence_type, quality.confidence)
            return None
        evidence_id = self._mastery.record_evidence(
            user_id,
            lesson_id,
            session_id,
            quality.evidence_type,
            quality_score=quality.quality_score,
            confidence=quality.confidence,
            context=concept,
            content=student_message,
        )
        return evidence_id

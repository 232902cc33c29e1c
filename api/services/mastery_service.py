"""
Mastery calculation.

Two questions are answered here:

* `compute_mastery` - a 0-100 score used to pick the difficulty band for the next turn.
  Priority: right/wrong answer ratio, then mean quality of scored evidence, then the
  stored progress value, then a neutral 50.
* `determine_mastery` - the deterministic verdict that ends a lesson and hands the
  student to assessment. Every configured criterion must pass.

Scores are cached briefly for read performance only; recording new evidence
for a (user, lesson) pair drops that pair's cached score.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from api.models.models import Lesson, SubjectConfiguration, UserProgress
from api.services.evidence_service import EvidenceRecord, EvidenceStore, EvidenceType
from api.utils.logger import configure_logging
from api.utils.ttl_cache import TTLCache

logger = configure_logging()

NEUTRAL_MASTERY = 50
CRITERIA = (
    "correct_answers",
    "explanation_quality",
    "application_attempts",
    "overall_quality",
    "struggle_ratio",
    "time_spent",
)


@dataclass(frozen=True)
class MasteryRules:
    min_correct_answers: int = 3
    min_explanation_quality: float = 0
    min_application_attempts: int = 0
    min_overall_quality: float = 60
    max_struggle_ratio: float = 0.4
    min_time_spent_minutes: float = 3

    _ALIASES = {
        "minCorrectAnswers": "min_correct_answers",
        "minExplanationQuality": "min_explanation_quality",
        "minApplicationAttempts": "min_application_attempts",
        "minOverallQuality": "min_overall_quality",
        "maxStruggleRatio": "max_struggle_ratio",
        "minTimeSpentMinutes": "min_time_spent_minutes",
    }

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "MasteryRules":
        """Build rules from stored JSON (camelCase or snake_case keys); missing keys keep defaults."""
        if not raw:
            return cls()
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            name = cls._ALIASES.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                values[name] = value
        return cls(**values)


@dataclass(frozen=True)
class EvidenceSummary:
    correct_answers: int
    incorrect_answers: int
    explanations: int
    applications: int
    struggles: int
    avg_explanation_quality: float
    avg_quality: float
    struggle_ratio: float
    time_spent_minutes: float


@dataclass(frozen=True)
class MasteryVerdict:
    has_mastered: bool
    criteria_met: Dict[str, bool]
    evidence: Dict[str, float]
    rules_applied: MasteryRules
    confidence: float = 1.0

    def to_dict(self) -> dict:
        return {
            "has_mastered": self.has_mastered,
            "confidence": self.confidence,
            "criteria_met": dict(self.criteria_met),
            "evidence": dict(self.evidence),
            "rules_applied": asdict(self.rules_applied),
        }


def round_half_up(value: float) -> int:
    """Halves round up (12.5 -> 13), unlike the built-in banker's rounding."""
    return math.floor(value + 0.5)


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def score_from_evidence(records: Iterable[EvidenceRecord]) -> Optional[int]:
    """Mastery from evidence alone, or None when there is nothing to go on."""
    records = list(records)
    correct = sum(1 for r in records if r.evidence_type is EvidenceType.CORRECT_ANSWER)
    incorrect = sum(1 for r in records if r.evidence_type is EvidenceType.INCORRECT_ANSWER)
    if correct + incorrect > 0:
        return round_half_up(correct * 100 / (correct + incorrect))

    scored = [r.quality_score for r in records if r.quality_score]
    if scored:
        return round_half_up(_mean(scored))
    return None


def summarize_evidence(records: Iterable[EvidenceRecord], time_spent_minutes: float) -> EvidenceSummary:
    records = list(records)
    by_type: Dict[EvidenceType, int] = {t: 0 for t in EvidenceType}
    for r in records:
        by_type[r.evidence_type] += 1

    explanation_scores = [
        r.quality_score for r in records
        if r.evidence_type is EvidenceType.EXPLANATION and r.quality_score
    ]
    all_scores = [r.quality_score for r in records if r.quality_score]
    # Struggles over every evidence type, correct answers included.
    struggle_ratio = by_type[EvidenceType.STRUGGLE] / len(records) if records else 0.0

    return EvidenceSummary(
        correct_answers=by_type[EvidenceType.CORRECT_ANSWER],
        incorrect_answers=by_type[EvidenceType.INCORRECT_ANSWER],
        explanations=by_type[EvidenceType.EXPLANATION],
        applications=by_type[EvidenceType.APPLICATION],
        struggles=by_type[EvidenceType.STRUGGLE],
        avg_explanation_quality=_mean(explanation_scores),
        avg_quality=_mean(all_scores),
        struggle_ratio=struggle_ratio,
        time_spent_minutes=time_spent_minutes,
    )


def evaluate_rules(summary: EvidenceSummary, rules: MasteryRules) -> MasteryVerdict:
    criteria = {
        "correct_answers": summary.correct_answers >= rules.min_correct_answers,
        "explanation_quality": summary.avg_explanation_quality >= rules.min_explanation_quality,
        "application_attempts": summary.applications >= rules.min_application_attempts,
        "overall_quality": summary.avg_quality >= rules.min_overall_quality,
        "struggle_ratio": summary.struggle_ratio <= rules.max_struggle_ratio,
        "time_spent": summary.time_spent_minutes >= rules.min_time_spent_minutes,
    }
    return MasteryVerdict(
        has_mastered=all(criteria.values()),
        criteria_met=criteria,
        evidence={
            "correct_answers": summary.correct_answers,
            "incorrect_answers": summary.incorrect_answers,
            "explanations": summary.explanations,
            "applications": summary.applications,
            "struggles": summary.struggles,
            "avg_quality": round_half_up(summary.avg_quality),
            "time_spent_minutes": round(summary.time_spent_minutes, 1),
        },
        rules_applied=rules,
    )


class MasteryCalculator:
    def __init__(
        self,
        session_factory: sessionmaker,
        evidence: EvidenceStore,
        cache: TTLCache,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._evidence = evidence
        self._cache = cache
        self._now = now

    # ----- score -----

    def compute_mastery(self, user_id: str, lesson_id: str) -> int:
        key = (user_id, lesson_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            score = score_from_evidence(self._evidence.list_for(user_id, lesson_id))
            if score is None:
                score = self._stored_progress(user_id, lesson_id)
            if score is None:
                score = NEUTRAL_MASTERY
        except SQLAlchemyError as e:
            logger.error("mastery lookup failed user=%s lesson=%s: %s", user_id, lesson_id, e)
            return NEUTRAL_MASTERY
        self._cache.set(key, score)
        return score

    def record_evidence(
        self,
        user_id: str,
        lesson_id: str,
        session_id: Optional[str],
        evidence_type: EvidenceType | str,
        quality_score: Optional[float] = None,
        confidence: Optional[float] = None,
        context: Optional[str] = None,
        content: Optional[str] = None,
    ) -> str:
        evidence_id = self._evidence.insert(
            user_id, lesson_id, session_id, evidence_type,
            quality_score=quality_score, confidence=confidence, context=context, content=content,
        )
        self._cache.invalidate((user_id, lesson_id))
        return evidence_id

    def _stored_progress(self, user_id: str, lesson_id: str) -> Optional[int]:
        with self._session_factory() as db:
            row = (
                db.query(UserProgress.mastery_level)
                .filter(UserProgress.user_id == user_id, UserProgress.lesson_id == lesson_id)
                .order_by(UserProgress.updated_at.desc())
                .first()
            )
        if row is None or row[0] is None:
            return None
        return round_half_up(row[0])

    def average_mastery(self, user_id: str) -> int:
        try:
            with self._session_factory() as db:
                levels = [
                    r[0] for r in db.query(UserProgress.mastery_level)
                    .filter(UserProgress.user_id == user_id)
                    .all()
                    if r[0] is not None
                ]
        except SQLAlchemyError as e:
            logger.error("average mastery lookup failed user=%s: %s", user_id, e)
            return NEUTRAL_MASTERY
        return round_half_up(_mean(levels)) if levels else NEUTRAL_MASTERY

    def subject_mastery(self, user_id: str, subject: str) -> int:
        try:
            with self._session_factory() as db:
                levels = [
                    r[0] for r in db.query(UserProgress.mastery_level)
                    .join(Lesson, Lesson.id == UserProgress.lesson_id)
                    .filter(UserProgress.user_id == user_id, Lesson.subject == subject)
                    .all()
                    if r[0] is not None
                ]
        except SQLAlchemyError as e:
            logger.error("subject mastery lookup failed user=%s subject=%s: %s", user_id, subject, e)
            return NEUTRAL_MASTERY
        return round_half_up(_mean(levels)) if levels else NEUTRAL_MASTERY

    # ----- verdict -----

    def load_rules(self, subject: str, grade_level: Optional[int]) -> MasteryRules:
        with self._session_factory() as db:
            row = (
                db.query(SubjectConfiguration)
                .filter(SubjectConfiguration.subject == subject, SubjectConfiguration.grade_level == grade_level)
                .first()
            )
            raw = row.mastery_rules if row else None
        if raw is None:
            logger.debug("no mastery rules subject=%s grade=%s, using defaults", subject, grade_level)
        return MasteryRules.from_mapping(raw)

    def determine_mastery(
        self,
        user_id: str,
        lesson_id: str,
        subject: str,
        grade_level: Optional[int],
        session_start: datetime,
    ) -> MasteryVerdict:
        try:
            records = self._evidence.list_for(user_id, lesson_id)
            rules = self.load_rules(subject, grade_level)
        except SQLAlchemyError as e:
            logger.error("mastery verdict failed user=%s lesson=%s: %s", user_id, lesson_id, e)
            return MasteryVerdict(
                has_mastered=False,
                criteria_met={name: False for name in CRITERIA},
                evidence={},
                rules_applied=MasteryRules(),
            )

        minutes = max((self._now() - session_start).total_seconds() / 60.0, 0.0)
        verdict = evaluate_rules(summarize_evidence(records, minutes), rules)
        logger.info("mastery verdict user=%s lesson=%s mastered=%s criteria=%s",
                    user_id, lesson_id, verdict.has_mastered, verdict.criteria_met)
        return verdict

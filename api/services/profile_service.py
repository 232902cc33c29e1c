"""
Student profiles and lesson metadata.

Profiles are read on every turn, so reads go through a short TTL cache that
enrichment invalidates. Lesson lookups are not cached; a missing lesson is fatal
to the turn.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from api.errors import LessonNotFoundError, ProfileNotFoundError
from api.models.models import Lesson, LessonCurriculum, MasteryEvidence, User
from api.utils.logger import configure_logging
from api.utils.ttl_cache import TTLCache

logger = configure_logging()

STRUGGLE_TOPIC_THRESHOLD = 3
STRENGTH_TOPIC_THRESHOLD = 2
STRENGTH_MIN_QUALITY = 80
ENRICHMENT_WINDOW = 10


@dataclass(frozen=True)
class StudentProfile:
    id: str
    name: str
    age: Optional[int] = None
    grade_level: Optional[int] = None
    learning_style: Optional[str] = None
    strengths: List[str] = field(default_factory=list)
    struggles: List[str] = field(default_factory=list)
    preferences: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "age": self.age,
            "grade_level": self.grade_level,
            "learning_style": self.learning_style,
            "strengths": list(self.strengths),
            "struggles": list(self.struggles),
        }


@dataclass(frozen=True)
class LessonInfo:
    id: str
    title: str
    subject: str
    grade_level: Optional[int]
    learning_objective: str


class ProfileStore:
    def __init__(self, session_factory: sessionmaker, cache: TTLCache):
        self._session_factory = session_factory
        self._cache = cache

    def get_profile(self, user_id: str) -> StudentProfile:
        return self._cache.get_or_load(user_id, lambda: self._load(user_id))

    def invalidate(self, user_id: str) -> None:
        self._cache.invalidate(user_id)

    def _load(self, user_id: str) -> StudentProfile:
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                raise ProfileNotFoundError(user_id)
            return StudentProfile(
                id=user.id,
                name=user.name,
                age=user.age,
                grade_level=user.grade_level,
                learning_style=user.learning_style,
                strengths=list(user.strengths or []),
                struggles=list(user.struggles or []),
                preferences=dict(user.preferences or {}),
            )

    def add_learning_patterns(self, user_id: str, strengths: List[str], struggles: List[str]) -> None:
        """Merge topics into the stored strengths/struggles (set union, order kept)."""
        if not strengths and not struggles:
            return
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                raise ProfileNotFoundError(user_id)
            user.strengths = _merge(user.strengths, strengths)
            user.struggles = _merge(user.struggles, struggles)
            user.updated_at = datetime.utcnow()
            db.commit()
        self.invalidate(user_id)
        logger.info("profile enriched user=%s strengths+=%s struggles+=%s", user_id, strengths, struggles)

    def enrich_from_evidence(self, user_id: str, session_id: str) -> None:
        """
        Look at the latest evidence for the session grouped by topic:
        repeated misses become struggles, repeated high-quality correct answers become strengths.
        """
        with self._session_factory() as db:
            rows = (
                db.query(MasteryEvidence)
                .filter(MasteryEvidence.session_id == session_id)
                .order_by(MasteryEvidence.created_at.desc())
                .limit(ENRICHMENT_WINDOW)
                .all()
            )
            records = [(r.evidence_type, r.quality_score or 0, r.context) for r in rows]

        misses: Dict[str, int] = defaultdict(int)
        wins: Dict[str, int] = defaultdict(int)
        for evidence_type, quality, topic in records:
            if not topic:
                continue
            if evidence_type in ("incorrect_answer", "struggle"):
                misses[topic] += 1
            if evidence_type == "correct_answer" and quality >= STRENGTH_MIN_QUALITY:
                wins[topic] += 1

        struggles = [t for t, n in misses.items() if n >= STRUGGLE_TOPIC_THRESHOLD]
        strengths = [t for t, n in wins.items() if n >= STRENGTH_TOPIC_THRESHOLD]
        self.add_learning_patterns(user_id, strengths, struggles)


class LessonStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_lesson(self, lesson_id: str) -> LessonInfo:
        with self._session_factory() as db:
            lesson = db.query(Lesson).filter(Lesson.id == lesson_id).first()
            if lesson is None:
                raise LessonNotFoundError(lesson_id)
            return LessonInfo(
                id=lesson.id,
                title=lesson.title,
                subject=lesson.subject,
                grade_level=lesson.grade_level,
                learning_objective=lesson.learning_objective or "",
            )

    def find_lesson(self, lesson_id: str) -> Optional[LessonInfo]:
        try:
            return self.get_lesson(lesson_id)
        except LessonNotFoundError:
            logger.warning("no lesson metadata lesson=%s", lesson_id)
            return None

    def get_curriculum(self, lesson_id: str) -> Optional[str]:
        with self._session_factory() as db:
            row = db.query(LessonCurriculum).filter(LessonCurriculum.lesson_id == lesson_id).first()
            content = row.curriculum_content if row else None
        if not content:
            logger.warning("no curriculum lesson=%s", lesson_id)
            return None
        return content


def _merge(current: Optional[List[str]], extra: List[str]) -> List[str]:
    merged = list(current or [])
    for item in extra:
        if item not in merged:
            merged.append(item)
    return merged

"""
Evidence store: append-only observations of student performance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from api.models.models import MasteryEvidence
from api.utils.logger import configure_logging

logger = configure_logging()


class EvidenceType(str, Enum):
    CORRECT_ANSWER = "correct_answer"
    INCORRECT_ANSWER = "incorrect_answer"
    EXPLANATION = "explanation"
    APPLICATION = "application"
    STRUGGLE = "struggle"


@dataclass(frozen=True)
class EvidenceRecord:
    id: str
    user_id: str
    lesson_id: str
    session_id: Optional[str]
    evidence_type: EvidenceType
    quality_score: Optional[float]
    confidence: Optional[float]
    context: Optional[str]
    created_at: datetime


def _to_record(row: MasteryEvidence) -> EvidenceRecord:
    return EvidenceRecord(
        id=row.id,
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        session_id=row.session_id,
        evidence_type=EvidenceType(row.evidence_type),
        quality_score=row.quality_score,
        confidence=row.confidence,
        context=row.context,
        created_at=row.created_at,
    )


class EvidenceStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def insert(
        self,
        user_id: str,
        lesson_id: str,
        session_id: Optional[str],
        evidence_type: EvidenceType | str,
        quality_score: Optional[float] = None,
        confidence: Optional[float] = None,
        context: Optional[str] = None,
        content: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        evidence_type = EvidenceType(evidence_type)
        if quality_score is not None and not 0 <= quality_score <= 100:
            raise ValueError(f"quality_score out of range: {quality_score}")
        if confidence is not None and not 0 <= confidence <= 1:
            raise ValueError(f"confidence out of range: {confidence}")

        evidence_id = str(uuid4())
        with self._session_factory() as db:
            db.add(MasteryEvidence(
                id=evidence_id,
                user_id=user_id,
                lesson_id=lesson_id,
                session_id=session_id,
                evidence_type=evidence_type.value,
                quality_score=quality_score,
                confidence=confidence,
                context=context,
                content=content,
                created_at=created_at or datetime.utcnow(),
            ))
            db.commit()
        logger.info("evidence recorded user=%s lesson=%s type=%s quality=%s",
                    user_id, lesson_id, evidence_type.value, quality_score)
        return evidence_id

    def list_for(self, user_id: str, lesson_id: str) -> List[EvidenceRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(MasteryEvidence)
                .filter(MasteryEvidence.user_id == user_id, MasteryEvidence.lesson_id == lesson_id)
                .order_by(MasteryEvidence.created_at.asc())
                .all()
            )
            return [_to_record(r) for r in rows]

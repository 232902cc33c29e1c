"""
API data models. Single import surface for DB entities.

DB entities (api.models.models):
- User, Lesson, LessonCurriculum, TutoringSession, AIAgent, AgentInteraction,
  MasteryEvidence, UserProgress, SubjectConfiguration, AdaptationLog, ValidationFailure

Corrections (api.models.corrections):
- PendingCorrection, CorrectionStatus
"""

from api.models.models import (
    User,
    Lesson,
    LessonCurriculum,
    TutoringSession,
    AIAgent,
    AgentInteraction,
    MasteryEvidence,
    UserProgress,
    SubjectConfiguration,
    AdaptationLog,
    ValidationFailure,
)
from api.models.corrections import PendingCorrection, CorrectionStatus

__all__ = [
    "User",
    "Lesson",
    "LessonCurriculum",
    "TutoringSession",
    "AIAgent",
    "AgentInteraction",
    "MasteryEvidence",
    "UserProgress",
    "SubjectConfiguration",
    "AdaptationLog",
    "ValidationFailure",
    "PendingCorrection",
    "CorrectionStatus",
]

from api.config import Base
from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, Text, Boolean, Float
from sqlalchemy.orm import relationship
from datetime import datetime


class User(Base):
    """Student profile. Long-lived; strengths/struggles are enriched from evidence."""
    __tablename__ = "users"
    id = Column(String, primary_key=True, index=True)  # uuid
    name = Column(String, nullable=False)
    age = Column(Integer, nullable=True)
    grade_level = Column(Integer, nullable=True)
    learning_style = Column(String, nullable=True)  # visual|auditory|kinesthetic|...
    strengths = Column(JSON, nullable=True)  # list[str]
    struggles = Column(JSON, nullable=True)  # list[str]
    preferences = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Lesson(Base):
    __tablename__ = "lessons"
    id = Column(String, primary_key=True, index=True)  # uuid
    title = Column(String, nullable=False)
    subject = Column(String, nullable=False, index=True)
    grade_level = Column(Integer, nullable=True)
    learning_objective = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    curriculum = relationship("LessonCurriculum", backref="lesson", uselist=False, cascade="all, delete-orphan")


class LessonCurriculum(Base):
    __tablename__ = "lesson_curriculum"
    id = Column(String, primary_key=True, index=True)  # uuid
    lesson_id = Column(String, ForeignKey("lessons.id"), unique=True, index=True, nullable=False)
    curriculum_content = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TutoringSession(Base):
    __tablename__ = "tutoring_sessions"
    id = Column(String, primary_key=True, index=True)  # uuid
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    lesson_id = Column(String, ForeignKey("lessons.id"), index=True, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    user = relationship("User", backref="tutoring_sessions", foreign_keys=[user_id])
    lesson = relationship("Lesson", foreign_keys=[lesson_id])


class AIAgent(Base):
    __tablename__ = "ai_agents"
    id = Column(String, primary_key=True, index=True)  # uuid
    name = Column(String, unique=True, index=True, nullable=False)  # coordinator|math_specialist|...
    role = Column(String, nullable=False)  # coordinator|subject|support
    model = Column(String, nullable=False)
    system_prompt = Column(Text, nullable=False)
    capabilities = Column(JSON, nullable=True)  # {"vision": true, "audio": true, ...}
    status = Column(String, default="active", nullable=False)  # active|disabled


class AgentInteraction(Base):
    """Append-only conversation log. Ordering by timestamp defines history and continuity."""
    __tablename__ = "agent_interactions"
    id = Column(String, primary_key=True, index=True)  # uuid
    session_id = Column(String, ForeignKey("tutoring_sessions.id"), index=True, nullable=False)
    agent_name = Column(String, nullable=False, index=True)
    user_message = Column(Text, nullable=False, default="")
    agent_response = Column(Text, nullable=False, default="")
    routing_reason = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class MasteryEvidence(Base):
    """Immutable observation of student performance. Only ever inserted and aggregated."""
    __tablename__ = "mastery_evidence"
    id = Column(String, primary_key=True, index=True)  # uuid
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    lesson_id = Column(String, ForeignKey("lessons.id"), index=True, nullable=False)
    session_id = Column(String, ForeignKey("tutoring_sessions.id"), index=True, nullable=True)
    evidence_type = Column(String, nullable=False)  # correct_answer|incorrect_answer|explanation|application|struggle
    quality_score = Column(Float, nullable=True)  # 0-100
    confidence = Column(Float, nullable=True)  # 0-1
    context = Column(String, nullable=True)  # topic
    content = Column(Text, nullable=True)  # what the student said
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class UserProgress(Base):
    __tablename__ = "user_progress"
    id = Column(String, primary_key=True, index=True)  # uuid
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    lesson_id = Column(String, ForeignKey("lessons.id"), index=True, nullable=False)
    mastery_level = Column(Float, nullable=True)  # 0-100
    completed = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lesson = relationship("Lesson", foreign_keys=[lesson_id])


class SubjectConfiguration(Base):
    __tablename__ = "subject_configurations"
    id = Column(String, primary_key=True, index=True)  # uuid
    subject = Column(String, nullable=False, index=True)
    grade_level = Column(Integer, nullable=False)
    mastery_rules = Column(JSON, nullable=True)  # camel or snake keys, see MasteryRules


class AdaptationLog(Base):
    __tablename__ = "adaptation_logs"
    id = Column(String, primary_key=True, index=True)  # uuid
    user_id = Column(String, index=True, nullable=False)
    lesson_id = Column(String, index=True, nullable=False)
    session_id = Column(String, index=True, nullable=False)
    mastery_level = Column(Integer, nullable=False)
    learning_style = Column(String, nullable=True)
    difficulty_level = Column(String, nullable=False)  # simplified|standard|accelerated
    scaffolding_level = Column(String, nullable=False)  # minimal|standard|high
    response_preview = Column(Text, nullable=True)
    has_svg = Column(Boolean, default=False, nullable=False)
    directive_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ValidationFailure(Base):
    __tablename__ = "validation_failures"
    id = Column(String, primary_key=True, index=True)  # uuid
    session_id = Column(String, index=True, nullable=False)
    agent_name = Column(String, nullable=False)
    confidence_score = Column(Float, nullable=True)
    issues = Column(JSON, nullable=True)
    required_fixes = Column(JSON, nullable=True)
    response_preview = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

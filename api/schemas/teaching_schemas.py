from pydantic import BaseModel, Field
from typing import Optional, Literal

EvidenceType = Literal["correct_answer", "incorrect_answer", "explanation", "application", "struggle"]


class AgentReply(BaseModel):
    """Structured reply every teaching agent must produce."""
    audio_text: str = Field(description="Speakable text for speech synthesis. No markup, no diagrams.")
    display_text: str = Field(description="Text shown to the student. May contain markdown and LaTeX.")
    svg: Optional[str] = Field(default=None, description="Optional SVG diagram markup.")
    lesson_complete: bool = Field(default=False, description="True when the student has finished the lesson content.")
    teaching_phase: Optional[int] = Field(default=None, ge=1, le=5, description="Current teaching phase (1-5).")


class RoutingDecision(BaseModel):
    """Coordinator output: who answers this turn."""
    route_to: str
    reason: str = ""
    handoff_message: Optional[str] = None
    response: Optional[str] = None


class ValidationVerdict(BaseModel):
    approved: bool
    confidence_score: float = Field(ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    required_fixes: Optional[list[str]] = None


class EvidenceQuality(BaseModel):
    evidence_type: EvidenceType = Field(description="Type of learning evidence detected in the student response")
    quality_score: float = Field(ge=0, le=100, description="0-100 quality score")
    confidence: float = Field(ge=0, le=1, description="Confidence in the classification")
    reasoning: str = ""


class TeachRequest(BaseModel):
    """Body for POST /tutor/teach."""
    user_id: str
    session_id: str
    lesson_id: str
    message: Optional[str] = None
    audio_base64: Optional[str] = None
    audio_mime_type: Optional[str] = None
    media_base64: Optional[str] = None
    media_mime_type: Optional[str] = None
    media_type: Optional[Literal["image", "video"]] = None
    voice: Optional[str] = None
    synthesize_audio: bool = True


class TeacherResponse(BaseModel):
    audio_text: str
    display_text: str
    svg: Optional[str] = None
    audio_base64: Optional[str] = None
    agent_name: str
    handoff_message: Optional[str] = None


class RoutingInfo(BaseModel):
    agent_name: str
    reason: str


class TeachResponse(BaseModel):
    success: bool = True
    teacher_response: TeacherResponse
    lesson_complete: bool = False
    routing: RoutingInfo


class CacheGroupStatus(BaseModel):
    cached: bool
    cache_name: Optional[str] = None
    age_minutes: int = 0
    will_renew_soon: bool = False


class AdaptationStats(BaseModel):
    total_adaptations: int
    avg_mastery: int
    difficulty_distribution: dict[str, int]
    scaffolding_distribution: dict[str, int]
    svg_generation_rate: Optional[float] = None

"""
API schemas package. Import from submodules or from this package.

Example:
    from api.schemas import TeachRequest, AgentReply
    from api.schemas.teaching_schemas import ValidationVerdict
"""

from api.schemas.teaching_schemas import (
    AgentReply,
    RoutingDecision,
    ValidationVerdict,
    EvidenceQuality,
    EvidenceType,
    TeachRequest,
    TeachResponse,
    TeacherResponse,
    RoutingInfo,
    CacheGroupStatus,
    AdaptationStats,
)

__all__ = [
    # model output
    "AgentReply",
    "RoutingDecision",
    "ValidationVerdict",
    "EvidenceQuality",
    "EvidenceType",
    # http
    "TeachRequest",
    "TeachResponse",
    "TeacherResponse",
    "RoutingInfo",
    "CacheGroupStatus",
    "AdaptationStats",
]

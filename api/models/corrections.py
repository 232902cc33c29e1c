"""
Pending self-corrections queued by the response validator.
"""

from api.config import Base
from sqlalchemy import Column, String, JSON, DateTime, Enum as SQLEnum
from datetime import datetime
from enum import Enum


class CorrectionStatus(str, Enum):
    """Lifecycle of a correction. The only allowed transition is PENDING -> DELIVERED."""
    PENDING = "pending"
    DELIVERED = "delivered"

    def can_transition_to(self, target: "CorrectionStatus") -> bool:
        return self is CorrectionStatus.PENDING and target is CorrectionStatus.DELIVERED


class PendingCorrection(Base):
    """
    Snapshot of a rejected response plus what the validator wants fixed.

    Rows are never deleted; a delivered row stays as the audit trail.
    """
    __tablename__ = "pending_corrections"

    id = Column(String, primary_key=True, index=True)  # uuid
    session_id = Column(String, index=True, nullable=False)
    specialist_name = Column(String, nullable=False)
    original_response = Column(JSON, nullable=False)  # {"audio_text", "display_text", "svg"}
    validation_issues = Column(JSON, nullable=False, default=list)
    required_fixes = Column(JSON, nullable=False, default=list)
    status = Column(SQLEnum(CorrectionStatus), default=CorrectionStatus.PENDING, nullable=False, index=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "specialist_name": self.specialist_name,
            "original_response": self.original_response or {},
            "validation_issues": list(self.validation_issues or []),
            "required_fixes": list(self.required_fixes or []),
            "status": self.status.value if self.status else None,
            "delivered_at": self.delivered_at,
            "created_at": self.created_at,
        }

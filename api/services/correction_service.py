"""
Pending self-corrections.

When the validator rejects a reply, a correction row is queued for the session.
The next turn picks up the oldest pending row, injects a self-correction block
into the prompt, and after the reply is generated marks it delivered. Delivery
is a conditional update (only from PENDING), so two concurrent turns for the
same session cannot both deliver the same correction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from api.errors import CorrectionStateError
from api.models.corrections import CorrectionStatus, PendingCorrection
from api.utils.logger import configure_logging

logger = configure_logging()

STATEMENT_PREVIEW_CHARS = 300


@dataclass(frozen=True)
class CorrectionSnapshot:
    id: str
    session_id: str
    specialist_name: str
    original_display_text: str
    original_audio_text: str
    issues: List[str]
    required_fixes: List[str]
    created_at: datetime


class PendingCorrectionStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save_correction(
        self,
        session_id: str,
        specialist_name: str,
        original_response: dict,
        issues: List[str],
        required_fixes: Optional[List[str]] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        correction_id = str(uuid4())
        with self._session_factory() as db:
            db.add(PendingCorrection(
                id=correction_id,
                session_id=session_id,
                specialist_name=specialist_name,
                original_response=original_response,
                validation_issues=list(issues or []),
                required_fixes=list(required_fixes or []),
                status=CorrectionStatus.PENDING,
                created_at=created_at or datetime.utcnow(),
            ))
            db.commit()
        logger.info("correction queued session=%s specialist=%s issues=%s",
                    session_id, specialist_name, len(issues or []))
        return correction_id

    def get_pending(self, session_id: str) -> Optional[CorrectionSnapshot]:
        """Oldest pending correction for the session, or None."""
        with self._session_factory() as db:
            row = (
                db.query(PendingCorrection)
                .filter(
                    PendingCorrection.session_id == session_id,
                    PendingCorrection.status == CorrectionStatus.PENDING,
                )
                .order_by(PendingCorrection.created_at.asc())
                .first()
            )
            if row is None:
                return None
            original = row.original_response or {}
            return CorrectionSnapshot(
                id=row.id,
                session_id=row.session_id,
                specialist_name=row.specialist_name,
                original_display_text=original.get("display_text") or "",
                original_audio_text=original.get("audio_text") or "",
                issues=list(row.validation_issues or []),
                required_fixes=list(row.required_fixes or []),
                created_at=row.created_at,
            )

    def mark_delivered(self, correction_id: str) -> None:
        """PENDING -> DELIVERED. Any other starting state raises CorrectionStateError."""
        with self._session_factory() as db:
            updated = (
                db.query(PendingCorrection)
                .filter(
                    PendingCorrection.id == correction_id,
                    PendingCorrection.status == CorrectionStatus.PENDING,
                )
                .update(
                    {
                        PendingCorrection.status: CorrectionStatus.DELIVERED,
                        PendingCorrection.delivered_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if updated == 1:
                logger.info("correction delivered id=%s", correction_id)
                return
            current = db.query(PendingCorrection.status).filter(PendingCorrection.id == correction_id).first()

        if current is None:
            raise CorrectionStateError(f"correction {correction_id} does not exist")
        status = CorrectionStatus(current[0])
        if not status.can_transition_to(CorrectionStatus.DELIVERED):
            raise CorrectionStateError(f"correction {correction_id} is already {status.value}")
        raise CorrectionStateError(f"correction {correction_id} could not be updated")  # pragma: no cover


def build_correction_block(correction: CorrectionSnapshot) -> str:
    """Instruction block telling the responder to own and fix its earlier mistake first."""
    lines = [
        "[SELF-CORRECTION REQUIRED]",
        "Your previous response contained an error that must be corrected before anything else.",
        "",
        f'What you said: "{correction.original_display_text[:STATEMENT_PREVIEW_CHARS]}"',
        "",
        "Issues found:",
    ]
    lines += [f"- {issue}" for issue in correction.issues] or ["- (none listed)"]
    if correction.required_fixes:
        lines += ["", "Required fixes:"]
        lines += [f"- {fix}" for fix in correction.required_fixes]
    lines += [
        "",
        "Start your reply by briefly acknowledging the mistake and giving the correct information,",
        "then continue with the student's current question.",
        "[END SELF-CORRECTION]",
    ]
    return "\n".join(lines)

"""
Interaction log: append-only record of every turn, read back for history and continuity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from agents.core.teaching_agent import COORDINATOR_NAME
from api.models.models import AgentInteraction, TutoringSession
from api.utils.logger import configure_logging

logger = configure_logging()


@dataclass(frozen=True)
class HistoryItem:
    user_message: str
    ai_response: str
    agent_name: str
    timestamp: datetime


class InteractionStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save_interaction(
        self,
        session_id: str,
        agent_name: str,
        user_message: str,
        agent_response: str,
        routing_reason: Optional[str] = None,
        response_time_ms: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> str:
        interaction_id = str(uuid4())
        with self._session_factory() as db:
            db.add(AgentInteraction(
                id=interaction_id,
                session_id=session_id,
                agent_name=agent_name,
                user_message=user_message or "",
                agent_response=agent_response or "",
                routing_reason=routing_reason,
                response_time_ms=response_time_ms,
                timestamp=timestamp or datetime.utcnow(),
            ))
            db.commit()
        logger.debug("interaction saved session=%s agent=%s", session_id, agent_name)
        return interaction_id

    def get_session_history(self, session_id: str, limit: int = 5) -> List[HistoryItem]:
        """The `limit` most recent interactions, returned oldest first."""
        with self._session_factory() as db:
            rows = (
                db.query(AgentInteraction)
                .filter(AgentInteraction.session_id == session_id)
                .order_by(AgentInteraction.timestamp.desc())
                .limit(limit)
                .all()
            )
            items = [
                HistoryItem(
                    user_message=r.user_message,
                    ai_response=r.agent_response,
                    agent_name=r.agent_name,
                    timestamp=r.timestamp,
                )
                for r in rows
            ]
        items.reverse()
        return items

    def get_last_responder(self, session_id: str) -> Optional[str]:
        """Name of the agent that answered last; None for a new session or when the coordinator answered."""
        with self._session_factory() as db:
            row = (
                db.query(AgentInteraction.agent_name)
                .filter(AgentInteraction.session_id == session_id)
                .order_by(AgentInteraction.timestamp.desc())
                .first()
            )
        if row is None:
            return None
        name = row[0]
        return None if name == COORDINATOR_NAME else name

    def get_session_started_at(self, session_id: str) -> Optional[datetime]:
        with self._session_factory() as db:
            row = (
                db.query(TutoringSession.started_at)
                .filter(TutoringSession.id == session_id)
                .first()
            )
        return row[0] if row else None

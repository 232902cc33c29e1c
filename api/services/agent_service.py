from typing import List

from sqlalchemy.orm import sessionmaker

from agents.core.teaching_agent import AgentRole, TeachingAgent
from api.models.models import AIAgent
from api.utils.logger import configure_logging

logger = configure_logging()


def load_active_agents(session_factory: sessionmaker) -> List[TeachingAgent]:
    """Read every active row of ai_agents into immutable TeachingAgent values."""
    with session_factory() as db:
        rows = db.query(AIAgent).filter(AIAgent.status == "active").all()
        agents = []
        for row in rows:
            try:
                role = AgentRole(row.role)
            except ValueError:
                logger.warning("agent %s has unknown role %r, treating as support", row.name, row.role)
                role = AgentRole.SUPPORT
            agents.append(
                TeachingAgent(
                    id=row.id,
                    name=row.name,
                    role=role,
                    model=row.model,
                    system_prompt=row.system_prompt,
                    capabilities=dict(row.capabilities or {}),
                )
            )
    logger.info("loaded %s active agents", len(agents))
    return agents

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class AgentRole(str, Enum):
    COORDINATOR = "coordinator"
    SUBJECT = "subject"
    SUPPORT = "support"


COORDINATOR_NAME = "coordinator"
ASSESSOR_NAME = "assessor"
VALIDATOR_NAME = "validator"


@dataclass(frozen=True)
class TeachingAgent:
    """
    A responder definition loaded from storage. Immutable once loaded;
    the registry swaps whole instances when it refreshes.
    """
    id: str
    name: str
    role: AgentRole
    model: str
    system_prompt: str
    capabilities: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_coordinator(self) -> bool:
        return self.role is AgentRole.COORDINATOR or self.name == COORDINATOR_NAME

    def supports(self, capability: str) -> bool:
        return bool(self.capabilities.get(capability))

from typing import Callable, Dict, List, Optional

from agents.core.teaching_agent import TeachingAgent
from api.errors import AgentNotFoundError

# Short names the coordinator (and older clients) use for specialists.
AGENT_ALIASES: Dict[str, str] = {
    "math": "math_specialist",
    "science": "science_specialist",
    "english": "english_specialist",
    "history": "history_specialist",
    "art": "art_specialist",
    "assessment": "assessor",
    "motivation": "motivator",
    "validation": "validator",
}


class AgentRegistry:
    """
    Name -> TeachingAgent lookup backed by a loader (usually the ai_agents table).

    The loaded set is kept in `cache` (any object with get/set/invalidate/age, see
    api.utils.ttl_cache.TTLCache) so it refreshes on TTL without a module-level global.
    """

    _KEY = "agents"

    def __init__(self, loader: Callable[[], List[TeachingAgent]], cache):
        self._loader = loader
        self._cache = cache

    def _agents(self) -> Dict[str, TeachingAgent]:
        agents = self._cache.get(self._KEY)
        if agents is None:
            agents = {a.name: a for a in self._loader()}
            self._cache.set(self._KEY, agents)
        return agents

    @staticmethod
    def resolve_name(name: str) -> str:
        key = (name or "").strip().lower()
        return AGENT_ALIASES.get(key, key)

    def get(self, name: str) -> TeachingAgent:
        resolved = self.resolve_name(name)
        agents = self._agents()
        if resolved not in agents:
            raise AgentNotFoundError(resolved)
        return agents[resolved]

    def find(self, name: str) -> Optional[TeachingAgent]:
        return self._agents().get(self.resolve_name(name))

    def list_agents(self) -> List[str]:
        return sorted(self._agents().keys())

    def all(self) -> List[TeachingAgent]:
        return list(self._agents().values())

    def invalidate(self) -> None:
        self._cache.invalidate(self._KEY)

    def cache_status(self) -> dict:
        age = self._cache.age(self._KEY)
        cached = self._cache.get(self._KEY)
        return {
            "cached": cached is not None,
            "agent_count": len(cached) if cached else 0,
            "age_seconds": round(age, 1) if cached is not None and age is not None else None,
            "ttl_seconds": self._cache.ttl_seconds,
        }

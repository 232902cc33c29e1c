"""
Integration test fixtures. A full container over the seeded SQLite file with
scripted models per role, recording speech and an in-memory instruction cache.
"""
import pytest

from agents.core.instruction_cache import InstructionCacheProvider


class InMemoryInstructionCache(InstructionCacheProvider):
    def __init__(self):
        self.created = []
        self.deleted = []

    async def create(self, model, text, ttl_seconds):
        self.created.append((model, text))
        return f"{model}#{len(self.created)}"

    async def renew(self, handle, ttl_seconds):
        return handle

    async def delete(self, handle):
        self.deleted.append(handle)


@pytest.fixture
def tutor_settings():
    from api.config import Settings
    return Settings(
        router_model="router-model",
        validator_model="validator-model",
        evidence_model="evidence-model",
        validation_timeout_seconds=2,
    )


@pytest.fixture
def llms(scripted_llm):
    """One scripted model per role; seeded agents all run on tutor-model."""
    return {
        "router-model": scripted_llm(),
        "tutor-model": scripted_llm(),
        "validator-model": scripted_llm(),
        "evidence-model": scripted_llm(),
    }


@pytest.fixture
def instruction_cache():
    return InMemoryInstructionCache()


@pytest.fixture
def container(tutor_settings, session_factory, seed, llms, speech, instruction_cache, clock):
    from api.bootstrap import build_container
    return build_container(
        tutor_settings,
        session_factory,
        llm_for=llms.__getitem__,
        tts=speech,
        cache_provider=instruction_cache,
        clock=clock,
    )


@pytest.fixture
def api_client(container):
    """FastAPI TestClient wired to the test container. Leaving the block drains background work."""
    from fastapi.testclient import TestClient
    from api.api import app
    previous = app.state.container
    app.state.container = container
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.state.container = previous

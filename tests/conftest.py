"""
Pytest configuration and shared fixtures for the test suite.
Ensures proper Python path and provides common fixtures for unit and integration tests.
"""
import sys
from collections import defaultdict, deque
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add project root and src to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))
src_path = project_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from agents.core.llm import LLM  # noqa: E402
from agents.core.speech import SpeechSynthesizer  # noqa: E402


# ----- SQLite file DB under tmp_path (worker threads each open their own connection) -----
@pytest.fixture
def engine(tmp_path):
    from api.config import Base
    import api.models  # noqa: F401
    eng = create_engine(f"sqlite:///{tmp_path / 'tutor-test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ----- Fake clock for TTL caches -----
class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ----- Scripted model and speech providers -----
class ScriptedLLM(LLM):
    """Returns queued replies in order; structured calls return queued schema instances (or raise them)."""

    def __init__(self, replies=None, structured=None, fragments=None):
        self.replies = deque(replies or [])
        self.structured = deque(structured or [])
        self.fragments = deque(fragments or [])
        self.prompts = []
        self.parts = []

    async def agenerate(self, prompt, parts=None):
        self.prompts.append(prompt)
        self.parts.append(parts)
        reply = self.replies.popleft()
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, prompt, parts=None):
        self.prompts.append(prompt)
        self.parts.append(parts)
        for fragment in self.fragments.popleft():
            yield fragment

    async def generate_structured(self, prompt, schema, timeout=None):
        self.prompts.append(prompt)
        item = self.structured.popleft()
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSpeech(SpeechSynthesizer):
    """Audio is the text's bytes; texts listed in `fail_on` raise."""

    def __init__(self, fail_on=(), max_chars=200):
        self.calls = []
        self.fail_on = set(fail_on)
        self.max_chars = max_chars

    def voice_for(self, agent_name):
        return f"voice-{agent_name}"

    async def synthesize(self, text, voice):
        from api.errors import SynthesisError
        self.calls.append((text, voice))
        if text in self.fail_on:
            raise SynthesisError(f"tts failed for {text!r}")
        return text.encode("utf-8")


@pytest.fixture
def scripted_llm():
    return ScriptedLLM


@pytest.fixture
def speech():
    return RecordingSpeech()


@pytest.fixture
def speech_factory():
    return RecordingSpeech


# ----- Seed data -----
AGENT_PROMPTS = {
    "coordinator": ("coordinator", "You are the coordinator. Route students to the right specialist."),
    "math_specialist": ("subject", "You are a patient math teacher."),
    "science_specialist": ("subject", "You are a curious science teacher."),
    "assessor": ("support", "You write short assessments."),
    "motivator": ("support", "You encourage students."),
    "validator": ("support", "You check teaching responses for errors."),
}


@pytest.fixture
def seed(session_factory):
    """Insert a student, a math lesson with curriculum, a session and the agent roster."""
    from api.models.models import AIAgent, Lesson, LessonCurriculum, TutoringSession, User

    ids = {"user": "user-1", "lesson": "lesson-1", "session": "session-1"}
    with session_factory() as db:
        db.add(User(
            id=ids["user"],
            name="Maya",
            age=10,
            grade_level=5,
            learning_style="visual",
            strengths=["multiplication"],
            struggles=[],
            preferences={},
        ))
        db.add(Lesson(
            id=ids["lesson"],
            title="Adding Fractions",
            subject="math",
            grade_level=5,
            learning_objective="Add fractions with unlike denominators",
        ))
        db.add(LessonCurriculum(id="curr-1", lesson_id=ids["lesson"], curriculum_content="Phase 1: common denominators."))
        db.add(TutoringSession(
            id=ids["session"],
            user_id=ids["user"],
            lesson_id=ids["lesson"],
            started_at=datetime.utcnow() - timedelta(minutes=5),
        ))
        for name, (role, prompt) in AGENT_PROMPTS.items():
            db.add(AIAgent(id=f"agent-{name}", name=name, role=role, model="tutor-model", system_prompt=prompt,
                           capabilities={}, status="active"))
        db.commit()
    return ids


@pytest.fixture
def interaction_writer(session_factory):
    """Append interactions with strictly increasing timestamps."""
    from api.services.interaction_service import InteractionStore

    store = InteractionStore(session_factory)
    counter = defaultdict(int)
    base = datetime(2026, 1, 1, 12, 0, 0)

    def _write(session_id, agent_name, user_message="hi", agent_response="hello"):
        counter[session_id] += 1
        return store.save_interaction(
            session_id, agent_name, user_message, agent_response,
            timestamp=base + timedelta(seconds=counter[session_id]),
        )

    return _write


@pytest.fixture
def registry(session_factory, seed, clock):
    """Agent registry over the seeded ai_agents rows."""
    from agents.core.registry import AgentRegistry
    from api.services.agent_service import load_active_agents
    from api.utils.ttl_cache import TTLCache

    return AgentRegistry(lambda: load_active_agents(session_factory), TTLCache(300, clock=clock))

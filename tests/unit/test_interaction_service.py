"""Unit tests for the interaction log, history window and continuity lookup."""
import pytest

from api.services.interaction_service import InteractionStore


@pytest.fixture
def store(session_factory):
    return InteractionStore(session_factory)


@pytest.mark.unit
class TestInteractionStore:
    def test_history_is_last_n_oldest_first(self, store, interaction_writer):
        for i in range(7):
            interaction_writer("s1", "math_specialist", f"q{i}", f"a{i}")

        history = store.get_session_history("s1", limit=5)
        assert [h.user_message for h in history] == ["q2", "q3", "q4", "q5", "q6"]

    def test_empty_session(self, store):
        assert store.get_session_history("nobody") == []
        assert store.get_last_responder("nobody") is None

    def test_last_responder_is_most_recent_agent(self, store, interaction_writer):
        interaction_writer("s1", "coordinator")
        interaction_writer("s1", "science_specialist")
        assert store.get_last_responder("s1") == "science_specialist"

    def test_coordinator_answer_resets_continuity(self, store, interaction_writer):
        interaction_writer("s1", "math_specialist")
        interaction_writer("s1", "coordinator")
        assert store.get_last_responder("s1") is None

    def test_session_started_at(self, store, seed):
        assert store.get_session_started_at(seed["session"]) is not None
        assert store.get_session_started_at("missing") is None

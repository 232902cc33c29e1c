"""
End-to-end teaching turns through the real container: routing, context, generation
with progressive audio, handoffs, corrections and the background side effects.
"""
import base64
import json

import pytest

from agents.core.llm import InlinePart
from api.errors import LessonNotFoundError
from api.models.models import AdaptationLog, AgentInteraction, AIAgent, MasteryEvidence, ValidationFailure
from api.schemas.teaching_schemas import EvidenceQuality, TeachRequest, ValidationVerdict
from api.services.correction_service import PendingCorrectionStore
from api.services.router_service import FALLBACK_REASON, FALLBACK_RESPONSE
from api.services.teaching_service import (
    APOLOGY_TEXT,
    ASSESSOR_HANDOFF_MESSAGE,
    ASSESSOR_REASON,
    AUTO_START_REASON,
    MEDIA_PLACEHOLDER,
)


def route(route_to, reason="", **extra):
    return json.dumps({"route_to": route_to, "reason": reason, **extra})


def reply(audio_text, display_text=None, **extra):
    return json.dumps({"audio_text": audio_text, "display_text": display_text or audio_text, **extra})


def streamed(payload, size=7):
    return [payload[i:i + size] for i in range(0, len(payload), size)]


def teach_request(message=None, **kwargs):
    kwargs.setdefault("lesson_id", "lesson-1")
    return TeachRequest(user_id="user-1", session_id="session-1", message=message, **kwargs)


def interactions(session_factory):
    with session_factory() as db:
        return db.query(AgentInteraction).order_by(AgentInteraction.timestamp.asc()).all()


@pytest.mark.integration
class TestSpecialistTurn:
    @pytest.mark.asyncio
    async def test_routed_turn_streams_audio_and_records_effects(self, container, llms, speech, session_factory):
        llms["router-model"].replies.append(route("math", "Fractions question", handoff_message="Over to math!"))
        llms["tutor-model"].fragments.append(streamed(reply(
            "Find a common denominator. Then add the tops.", "Use **4** as the denominator.", teaching_phase=2,
        )))
        llms["validator-model"].structured.append(ValidationVerdict(approved=True, confidence_score=0.95))
        llms["evidence-model"].structured.append(
            EvidenceQuality(evidence_type="correct_answer", quality_score=90, confidence=0.9)
        )

        response = await container.teaching.teach(teach_request("How do I add 1/2 and 1/4?"))

        assert response.success
        teacher = response.teacher_response
        assert teacher.agent_name == "math_specialist"
        assert teacher.display_text == "Use **4** as the denominator."
        assert teacher.handoff_message == "Over to math!"
        assert response.routing.reason == "Fractions question"
        assert base64.b64decode(teacher.audio_base64) == b"Find a common denominator.Then add the tops."
        assert sorted(text for text, _ in speech.calls) == ["Find a common denominator.", "Then add the tops."]
        assert {voice for _, voice in speech.calls} == {"voice-math_specialist"}

        assert "How do I add 1/2 and 1/4?" in llms["router-model"].prompts[0]
        prompt = llms["tutor-model"].prompts[0]
        assert prompt.startswith("You are a patient math teacher.")
        assert "handed off to you from coordinator" in prompt
        assert 'Student: "How do I add 1/2 and 1/4?"' in prompt

        await container.runner.drain(timeout=5)

        rows = interactions(session_factory)
        assert [(r.agent_name, r.user_message, r.agent_response) for r in rows] == [
            ("math_specialist", "How do I add 1/2 and 1/4?", "Use **4** as the denominator."),
        ]
        assert rows[0].routing_reason == "Fractions question"
        with session_factory() as db:
            assert db.query(AdaptationLog).count() == 1
            assert db.query(MasteryEvidence).one().evidence_type == "correct_answer"
            assert db.query(ValidationFailure).count() == 0
        assert "You check teaching responses for errors." in llms["validator-model"].prompts[0]
        assert container.context_cache.get_handle("tutor-model") == "tutor-model#1"

    @pytest.mark.asyncio
    async def test_next_turn_stays_with_specialist_and_uses_warm_instructions(self, container, llms):
        llms["router-model"].replies.append(route("math", "Fractions question"))
        llms["tutor-model"].fragments.append(streamed(reply("Let's start with halves.")))
        await container.teaching.teach(teach_request("Can you help with fractions?"))
        await container.runner.drain(timeout=5)

        llms["tutor-model"].fragments.append(streamed(reply("Two quarters make a half.")))
        response = await container.teaching.teach(teach_request("Is 2/4 the same as 1/2?"))

        assert response.teacher_response.agent_name == "math_specialist"
        assert response.routing.reason == "Continuing with math_specialist"
        assert len(llms["router-model"].prompts) == 1

        prompt = llms["tutor-model"].prompts[1]
        assert "AGENT: coordinator" in prompt
        assert "AGENT: math_specialist" in prompt
        assert "RECENT CONVERSATION:" in prompt
        assert "Student: Can you help with fractions?" in prompt

    @pytest.mark.asyncio
    async def test_unregistered_target_falls_back_to_subject_specialist(self, container, llms):
        llms["router-model"].replies.append(route("history", "Wants a story"))
        llms["tutor-model"].fragments.append(streamed(reply("Fractions first, stories later.")))

        response = await container.teaching.teach(teach_request("Tell me about Rome"))

        assert response.success
        assert response.teacher_response.agent_name == "math_specialist"
        assert response.routing.reason == "Wants a story"

    @pytest.mark.asyncio
    async def test_text_only_turn_skips_speech(self, container, llms, speech):
        llms["router-model"].replies.append(route("math", "Fractions question"))
        llms["tutor-model"].replies.append(reply("Add the numerators.", svg="<svg><circle/></svg>"))

        response = await container.teaching.teach(teach_request("What next?", synthesize_audio=False))

        assert response.teacher_response.audio_base64 is None
        assert response.teacher_response.svg == "<svg><circle/></svg>"
        assert speech.calls == []

    @pytest.mark.asyncio
    async def test_audio_only_turn_goes_to_lesson_specialist(self, container, llms, session_factory):
        llms["tutor-model"].fragments.append(streamed(reply("I heard you say three quarters.")))

        response = await container.teaching.teach(teach_request(audio_base64="UklGRg==", audio_mime_type="audio/wav"))

        assert response.teacher_response.agent_name == "math_specialist"
        assert response.routing.reason == "Media input routed to math_specialist for math lesson"
        assert llms["router-model"].prompts == []
        assert llms["tutor-model"].parts[0] == [InlinePart("audio/wav", "UklGRg==")]
        assert "Student (via voice)" in llms["tutor-model"].prompts[0]

        await container.runner.drain(timeout=5)
        assert interactions(session_factory)[0].user_message == MEDIA_PLACEHOLDER
        assert llms["evidence-model"].prompts == []


@pytest.mark.integration
class TestCoordinatorTurns:
    @pytest.mark.asyncio
    async def test_auto_start_introduces_lesson(self, container, llms, session_factory):
        llms["tutor-model"].fragments.append(streamed(reply("Hi Maya! Today we add fractions.")))

        response = await container.teaching.teach(teach_request("[AUTO_START] begin lesson"))

        assert response.teacher_response.agent_name == "coordinator"
        assert response.routing.reason == AUTO_START_REASON
        assert response.teacher_response.audio_base64 is not None
        assert llms["router-model"].prompts == []

        await container.runner.drain(timeout=5)
        assert [r.agent_name for r in interactions(session_factory)] == ["coordinator"]
        assert llms["validator-model"].prompts == []
        assert llms["evidence-model"].prompts == []

    @pytest.mark.asyncio
    async def test_self_route_answers_directly(self, container, llms, session_factory):
        llms["router-model"].replies.append(route("self", "Greeting", response="Hello Maya, ready to learn?"))

        response = await container.teaching.teach(teach_request("hello"))

        assert response.teacher_response.agent_name == "coordinator"
        assert response.teacher_response.display_text == "Hello Maya, ready to learn?"
        assert response.teacher_response.audio_base64 is not None
        assert response.routing.reason == "Greeting"
        assert llms["tutor-model"].prompts == []

        await container.runner.drain(timeout=5)
        assert [r.agent_name for r in interactions(session_factory)] == ["coordinator"]
        with session_factory() as db:
            assert db.query(AdaptationLog).count() == 0
        assert llms["validator-model"].prompts == []

    @pytest.mark.asyncio
    async def test_self_route_survives_speech_crash(self, container, llms, speech):
        async def crash(text, voice):
            raise RuntimeError("voice backend unreachable")

        speech.synthesize = crash
        llms["router-model"].replies.append(route("self", "Greeting", response="Hello Maya, ready to learn?"))

        response = await container.teaching.teach(teach_request("hello"))

        assert response.success
        assert response.teacher_response.display_text == "Hello Maya, ready to learn?"
        assert response.teacher_response.audio_base64 is None

    @pytest.mark.asyncio
    async def test_router_failure_answers_with_static_reply(self, container, llms):
        llms["router-model"].replies.append(RuntimeError("model offline"))

        response = await container.teaching.teach(teach_request("hello"))

        assert response.success
        assert response.teacher_response.agent_name == "coordinator"
        assert response.teacher_response.display_text == FALLBACK_RESPONSE
        assert response.routing.reason == FALLBACK_REASON


@pytest.mark.integration
class TestSelfCorrection:
    @pytest.mark.asyncio
    async def test_rejected_reply_is_corrected_on_next_turn(self, container, llms, session_factory):
        corrections = PendingCorrectionStore(session_factory)
        llms["router-model"].replies.append(route("math", "Fractions question"))
        llms["tutor-model"].fragments.append(streamed(reply("One half plus one quarter is two sixths.")))
        llms["validator-model"].structured.append(ValidationVerdict(
            approved=False,
            confidence_score=0.9,
            issues=["1/2 + 1/4 is 3/4, not 2/6"],
            required_fixes=["State that the answer is 3/4"],
        ))

        await container.teaching.teach(teach_request("What is 1/2 + 1/4?"))
        await container.runner.drain(timeout=5)

        pending = corrections.get_pending("session-1")
        assert pending is not None
        assert pending.specialist_name == "math_specialist"
        with session_factory() as db:
            assert db.query(ValidationFailure).one().issues == ["1/2 + 1/4 is 3/4, not 2/6"]

        llms["tutor-model"].fragments.append(streamed(reply("Sorry, I made a mistake. It is three quarters.")))
        await container.teaching.teach(teach_request("Are you sure?"))

        prompt = llms["tutor-model"].prompts[1]
        assert "[SELF-CORRECTION REQUIRED]" in prompt
        assert "- 1/2 + 1/4 is 3/4, not 2/6" in prompt
        assert prompt.index("[SELF-CORRECTION REQUIRED]") < prompt.index('Student: "Are you sure?"')

        await container.runner.drain(timeout=5)
        assert corrections.get_pending("session-1") is None


@pytest.mark.integration
class TestAssessorHandoff:
    @pytest.mark.asyncio
    async def test_mastery_verdict_hands_off_to_assessor(self, container, llms, session_factory):
        for _ in range(3):
            container.mastery.record_evidence("user-1", "lesson-1", "session-1", "correct_answer",
                                              quality_score=90, confidence=0.9)
        llms["router-model"].replies.append(route("math", "Fractions question"))
        llms["tutor-model"].fragments.append(streamed(reply("Exactly right, three quarters.")))
        llms["tutor-model"].fragments.append(streamed(reply("Question one. What is 1/3 plus 1/3?")))

        response = await container.teaching.teach(teach_request("So 1/2 + 1/4 = 3/4?"))

        assert response.teacher_response.agent_name == "assessor"
        assert response.teacher_response.display_text == "Question one. What is 1/3 plus 1/3?"
        assert response.teacher_response.handoff_message == ASSESSOR_HANDOFF_MESSAGE
        assert response.routing.reason == ASSESSOR_REASON
        assert response.lesson_complete is True
        assert "handed off to you from math_specialist" in llms["tutor-model"].prompts[1]

        await container.runner.drain(timeout=5)
        assert [r.agent_name for r in interactions(session_factory)] == ["assessor"]
        assert llms["validator-model"].prompts == []

    @pytest.mark.asyncio
    async def test_self_reported_completion_hands_off(self, container, llms):
        llms["router-model"].replies.append(route("math", "Fractions question"))
        llms["tutor-model"].fragments.append(streamed(reply("You finished every phase!", lesson_complete=True)))
        llms["tutor-model"].fragments.append(streamed(reply("Quiz time.")))

        response = await container.teaching.teach(teach_request("Done!"))

        assert response.teacher_response.agent_name == "assessor"
        assert response.lesson_complete is True

    @pytest.mark.asyncio
    async def test_without_assessor_specialist_reply_stands(self, container, llms, session_factory):
        with session_factory() as db:
            db.query(AIAgent).filter(AIAgent.name == "assessor").update({AIAgent.status: "disabled"})
            db.commit()
        llms["router-model"].replies.append(route("math", "Fractions question", handoff_message="Math time"))
        llms["tutor-model"].fragments.append(streamed(reply("You finished every phase!", lesson_complete=True)))

        response = await container.teaching.teach(teach_request("Done!"))

        assert response.teacher_response.agent_name == "math_specialist"
        assert response.teacher_response.handoff_message == "Math time"
        assert response.lesson_complete is True


@pytest.mark.integration
class TestFailures:
    @pytest.mark.asyncio
    async def test_generation_failure_returns_apology(self, container, llms, session_factory):
        llms["router-model"].replies.append(route("math", "Fractions question"))

        response = await container.teaching.teach(teach_request("How do I add fractions?"))

        assert response.success is False
        assert response.teacher_response.display_text == APOLOGY_TEXT
        assert response.teacher_response.agent_name == "math_specialist"

        await container.runner.drain(timeout=5)
        assert interactions(session_factory) == []

    @pytest.mark.asyncio
    async def test_missing_lesson_aborts_turn(self, container, llms):
        with pytest.raises(LessonNotFoundError):
            await container.teaching.teach(teach_request("hello", lesson_id="no-such-lesson"))
        assert llms["router-model"].prompts == []

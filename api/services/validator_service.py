"""
Post-delivery review of specialist replies.

The validator model runs off the critical path against a timeout. Timeouts and
errors approve the reply with a low-confidence marker. An explicit rejection
queues a PendingCorrection for the session (picked up by the next turn) and
writes an audit row to validation_failures.
"""

from __future__ import annotations

import asyncio
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from agents.core.llm import LLM
from agents.core.registry import AgentRegistry
from agents.core.teaching_agent import ASSESSOR_NAME, COORDINATOR_NAME, VALIDATOR_NAME
from api.models.models import ValidationFailure
from api.prompt_builders.review import build_validation_prompt
from api.schemas.teaching_schemas import AgentReply, ValidationVerdict
from api.services.correction_service import PendingCorrectionStore
from api.utils.logger import configure_logging

logger = configure_logging()

VALIDATION_TIMEOUT_SECONDS = 10.0
APPROVAL_THRESHOLD = 0.80
FAIL_OPEN_CONFIDENCE = 0.5
FAIL_OPEN_ISSUE = "Validation system error - auto-approved as fail-safe"
PREVIEW_CHARS = 500

# Roles whose replies are conversational rather than instructional.
UNVALIDATED_AGENTS = frozenset({COORDINATOR_NAME, ASSESSOR_NAME, "motivator"})

DEFAULT_VALIDATOR_PROMPT = (
    "You are a meticulous reviewer of tutoring responses for school students. "
    "You check answers for factual errors, contradictions and age-inappropriate explanations."
)


def fail_open_verdict() -> ValidationVerdict:
    return ValidationVerdict(approved=True, confidence_score=FAIL_OPEN_CONFIDENCE, issues=[FAIL_OPEN_ISSUE])


def should_validate(agent_name: str) -> bool:
    return agent_name not in UNVALIDATED_AGENTS


class ValidationFailureStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(self, session_id: str, agent_name: str, verdict: ValidationVerdict, response_text: str) -> str:
        failure_id = str(uuid4())
        with self._session_factory() as db:
            db.add(ValidationFailure(
                id=failure_id,
                session_id=session_id,
                agent_name=agent_name,
                confidence_score=verdict.confidence_score,
                issues=list(verdict.issues),
                required_fixes=list(verdict.required_fixes or []),
                response_preview=(response_text or "")[:PREVIEW_CHARS],
            ))
            db.commit()
        return failure_id


class ResponseValidator:
    def __init__(
        self,
        llm: LLM,
        registry: AgentRegistry,
        corrections: PendingCorrectionStore,
        failures: ValidationFailureStore,
        timeout_seconds: float = VALIDATION_TIMEOUT_SECONDS,
        approval_threshold: float = APPROVAL_THRESHOLD,
    ):
        self._llm = llm
        self._registry = registry
        self._corrections = corrections
        self._failures = failures
        self.timeout_seconds = timeout_seconds
        self.approval_threshold = approval_threshold

    def _validator_prompt(self) -> str:
        agent = self._registry.find(VALIDATOR_NAME)
        return agent.system_prompt if agent else DEFAULT_VALIDATOR_PROMPT

    async def validate(self, reply: AgentReply, agent_name: str, profile, lesson) -> ValidationVerdict:
        """Never raises. A call still running at the timeout is left to finish and its result discarded."""
        try:
            prompt = build_validation_prompt(
                validator_prompt=self._validator_prompt(),
                reply=reply,
                agent_name=agent_name,
                profile=profile,
                lesson=lesson,
                threshold=self.approval_threshold,
            )
        except Exception as e:
            logger.error("validation prompt failed agent=%s: %s", agent_name, e)
            return fail_open_verdict()

        task = asyncio.ensure_future(self._llm.generate_structured(prompt, ValidationVerdict))
        done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        if not done:
            task.add_done_callback(_discard_result)
            logger.warning("validation timed out after %ss agent=%s, auto-approving", self.timeout_seconds, agent_name)
            return fail_open_verdict()

        try:
            verdict = task.result()
        except Exception as e:
            logger.error("validation failed agent=%s, auto-approving: %s", agent_name, e)
            return fail_open_verdict()

        logger.info("validation agent=%s approved=%s confidence=%.2f issues=%s",
                    agent_name, verdict.approved, verdict.confidence_score, len(verdict.issues))
        return verdict

    async def review(
        self,
        session_id: str,
        agent_name: str,
        reply: AgentReply,
        profile,
        lesson,
    ) -> ValidationVerdict:
        """Validate and, on rejection, queue a correction for the session's next turn."""
        verdict = await self.validate(reply, agent_name, profile, lesson)
        if verdict.approved:
            return verdict

        logger.warning("validation rejected agent=%s session=%s issues=%s", agent_name, session_id, verdict.issues)
        await asyncio.to_thread(
            self._corrections.save_correction,
            session_id,
            agent_name,
            {"audio_text": reply.audio_text, "display_text": reply.display_text, "svg": reply.svg},
            verdict.issues,
            verdict.required_fixes,
        )
        try:
            await asyncio.to_thread(self._failures.record, session_id, agent_name, verdict, reply.display_text)
        except Exception as e:
            logger.error("validation failure audit write failed session=%s: %s", session_id, e)
        return verdict


def _discard_result(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("late validation call ended with error: %s", task.exception())

"""
Agent reply generation.

Teaching agents answer with a JSON object (see AgentReply). The generator either
waits for the whole object or streams it through the progressive synthesis
pipeline, then normalises the reply: literal escape sequences are repaired
(LaTeX-safe) and diagram markup is moved out of the text into `svg`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from agents.core.llm import LLM, InlinePart
from agents.core.speech import SpeechSynthesizer
from agents.core.teaching_agent import TeachingAgent
from api.errors import TutorError
from api.schemas.teaching_schemas import AgentReply
from api.services.speech_service import synthesize_full
from api.services.synthesis_pipeline import (
    MAX_PARALLEL_TTS_CHUNKS,
    MAX_TTS_FAILURE_THRESHOLD,
    ProgressiveSynthesisPipeline,
)
from api.utils.logger import configure_logging, log_request
from api.utils.parsing import parse_model_as, strip_code_fences
from api.utils.text import extract_svg, unescape_model_text

logger = configure_logging()


@dataclass
class SpokenReply:
    reply: AgentReply
    audio: Optional[bytes] = None
    used_progressive: bool = False
    parse_strategy: str = "strict"


def normalize_reply(reply: AgentReply) -> AgentReply:
    display = unescape_model_text(reply.display_text)
    audio = unescape_model_text(reply.audio_text)
    svg = reply.svg

    extracted = extract_svg(display)
    if extracted.svg is not None:
        svg = svg or extracted.svg
        display = extracted.cleaned_text
    if "[SVG]" in audio.upper() or "<svg" in audio.lower():
        audio = extract_svg(audio).cleaned_text

    return reply.model_copy(update={"display_text": display, "audio_text": audio, "svg": svg or None})


def reply_from_text(raw: str) -> tuple[AgentReply, str]:
    """Parse a raw model payload; unparseable text is used as both speakable and display text."""
    if not raw or not raw.strip():
        raise TutorError("empty response from agent")

    result = parse_model_as(raw, AgentReply)
    if result.ok:
        return normalize_reply(result.value), result.strategy

    logger.warning("agent reply not valid JSON, using raw text: %s", "; ".join(result.attempts))
    text = strip_code_fences(raw)
    extracted = extract_svg(unescape_model_text(text))
    reply = AgentReply(audio_text=extracted.cleaned_text, display_text=extracted.cleaned_text, svg=extracted.svg)
    return reply, "raw"


class ResponseGenerator:
    def __init__(
        self,
        llm_for: Callable[[str], LLM],
        tts: Optional[SpeechSynthesizer] = None,
        max_parallel: int = MAX_PARALLEL_TTS_CHUNKS,
        failure_threshold: int = MAX_TTS_FAILURE_THRESHOLD,
    ):
        self._llm_for = llm_for
        self._tts = tts
        self.max_parallel = max_parallel
        self.failure_threshold = failure_threshold

    async def generate(
        self,
        agent: TeachingAgent,
        prompt: str,
        parts: Optional[Sequence[InlinePart]] = None,
    ) -> SpokenReply:
        """Whole-payload generation, no audio."""
        llm = self._llm_for(agent.model)
        with log_request(logger, f"generate agent={agent.name}"):
            raw = await llm.agenerate(prompt, parts)
        reply, strategy = reply_from_text(raw)
        return SpokenReply(reply=reply, parse_strategy=strategy)

    async def generate_with_audio(
        self,
        agent: TeachingAgent,
        prompt: str,
        voice: str,
        parts: Optional[Sequence[InlinePart]] = None,
    ) -> SpokenReply:
        """
        Stream the reply through the progressive pipeline. When progressive extraction
        fails the finished audio_text is synthesized in one pass; a failure there leaves
        the reply without audio rather than failing the turn.
        """
        if self._tts is None:
            return await self.generate(agent, prompt, parts)

        llm = self._llm_for(agent.model)
        pipeline = ProgressiveSynthesisPipeline(
            self._tts, voice, max_parallel=self.max_parallel, failure_threshold=self.failure_threshold
        )
        with log_request(logger, f"stream agent={agent.name}"):
            raw = await pipeline.consume(llm.stream(prompt, parts))
            progressive = await pipeline.finish()

        reply, strategy = reply_from_text(raw)
        if progressive.used_progressive:
            logger.info(
                "progressive audio agent=%s sentences=%s chunks=%s failures=%s",
                agent.name, len(progressive.sentences), progressive.chunks, progressive.failures,
            )
            return SpokenReply(reply=reply, audio=progressive.audio, used_progressive=True, parse_strategy=strategy)

        audio = await self.synthesize(reply.audio_text, voice)
        return SpokenReply(reply=reply, audio=audio, parse_strategy=strategy)

    async def synthesize(self, text: str, voice: str) -> Optional[bytes]:
        if self._tts is None or not text.strip():
            return None
        try:
            return await synthesize_full(self._tts, text, voice)
        except Exception as e:
            logger.error("full synthesis failed voice=%s: %s", voice, e)
            return None

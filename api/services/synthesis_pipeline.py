"""
Progressive synthesis: speak the reply while the model is still writing it.

The model streams a JSON object. On every fragment the pipeline looks for the
(possibly still open) "audio_text" string, pulls out sentences completed since the
last look and dispatches each one, split to the speech chunk limit, to the synthesizer.
Dispatch is bounded by a semaphore; extraction waits when the cap is reached.
Every chunk carries its dispatch index so audio is reassembled in sentence order
whatever order the calls finish in.

Too many synthesis failures stop further dispatch and flag the turn for a single
full-text synthesis pass instead.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional

from agents.core.speech import SpeechSynthesizer
from api.services.speech_service import MAX_CHUNK_LENGTH, split_long_sentence
from api.utils.logger import configure_logging
from api.utils.parsing import complete_escape_prefix, unescape_json_string

logger = configure_logging()

MAX_PARALLEL_TTS_CHUNKS = 6
MAX_TTS_FAILURE_THRESHOLD = 3

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


def _field_pattern(name: str) -> re.Pattern:
    return re.compile(r'"%s"\s*:\s*"((?:[^"\\]|\\.)*)(")?' % re.escape(name))


AUDIO_FIELD_RE = _field_pattern("audio_text")


class PipelineState(str, Enum):
    ACCUMULATING = "accumulating"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    SYNTHESIZING = "synthesizing"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class Extraction:
    sentences: List[str]
    extracted_length: int
    field_complete: bool


@dataclass
class ProgressiveResult:
    audio: Optional[bytes]
    full_text: str
    sentences: List[str] = field(default_factory=list)
    failures: int = 0
    chunks: int = 0

    @property
    def used_progressive(self) -> bool:
        return self.audio is not None

    @property
    def fallback_required(self) -> bool:
        return self.audio is None


def try_extract_next_sentences(
    buffer: str,
    extracted_length: int,
    field_re: re.Pattern = AUDIO_FIELD_RE,
) -> Extraction:
    """
    Sentences of the speakable field completed after `extracted_length` characters.

    `extracted_length` counts unescaped characters of the field already handed out.
    Once the closing quote has arrived, text after the last terminal punctuation is
    returned as a final sentence.
    """
    match = field_re.search(buffer)
    if match is None:
        return Extraction([], extracted_length, False)

    field_complete = match.group(2) == '"'
    body = match.group(1) if field_complete else complete_escape_prefix(match.group(1))
    text = unescape_json_string(body)
    new_text = text[extracted_length:]
    if not new_text:
        return Extraction([], extracted_length, field_complete)

    sentences: List[str] = []
    consumed = 0
    for m in _SENTENCE_RE.finditer(new_text):
        sentence = m.group(0).strip()
        if sentence:
            sentences.append(sentence)
        consumed = m.end()

    if field_complete:
        tail = new_text[consumed:].strip()
        if tail:
            sentences.append(tail)
        consumed = len(new_text)

    return Extraction(sentences, extracted_length + consumed, field_complete)


class ProgressiveSynthesisPipeline:
    """One instance per turn."""

    def __init__(
        self,
        tts: SpeechSynthesizer,
        voice: str,
        max_parallel: int = MAX_PARALLEL_TTS_CHUNKS,
        failure_threshold: int = MAX_TTS_FAILURE_THRESHOLD,
        max_chunk_length: int = MAX_CHUNK_LENGTH,
    ):
        self._tts = tts
        self._voice = voice
        self._semaphore = asyncio.Semaphore(max_parallel)
        self.failure_threshold = failure_threshold
        self.max_chunk_length = max_chunk_length

        self.state = PipelineState.ACCUMULATING
        self.buffer = ""
        self.sentences: List[str] = []
        self.failures = 0
        self._extracted_length = 0
        self._field_complete = False
        self._next_index = 0
        self._tasks: List[asyncio.Task] = []
        self._audio: Dict[int, bytes] = {}

    @property
    def accepting(self) -> bool:
        return self.failures < self.failure_threshold

    async def feed(self, fragment: str) -> None:
        if fragment:
            self.buffer += fragment
        if self._field_complete or not self.accepting:
            return

        self.state = PipelineState.EXTRACTING
        extraction = try_extract_next_sentences(self.buffer, self._extracted_length)
        self._extracted_length = extraction.extracted_length
        self._field_complete = extraction.field_complete
        for sentence in extraction.sentences:
            self.sentences.append(sentence)
            await self._dispatch_sentence(sentence)
        self.state = PipelineState.ACCUMULATING

    async def consume(self, stream: AsyncIterator[str]) -> str:
        """Feed a whole stream; returns the accumulated raw buffer."""
        async for fragment in stream:
            await self.feed(fragment)
        return self.buffer

    async def _dispatch_sentence(self, sentence: str) -> None:
        self.state = PipelineState.CHUNKING
        for chunk in split_long_sentence(sentence, self.max_chunk_length):
            await self._semaphore.acquire()
            if not self.accepting:
                self._semaphore.release()
                return
            self.state = PipelineState.SYNTHESIZING
            index = self._next_index
            self._next_index += 1
            self._tasks.append(asyncio.create_task(self._synthesize(index, chunk)))

    async def _synthesize(self, index: int, text: str) -> None:
        try:
            self._audio[index] = await self._tts.synthesize(text, self._voice)
        except Exception as e:
            self.failures += 1
            logger.warning(
                "progressive tts chunk failed (%s/%s): %s", self.failures, self.failure_threshold, e
            )
            if not self.accepting:
                logger.error("progressive tts failure threshold reached, full synthesis fallback")
        finally:
            self._semaphore.release()

    def _trailing_text(self) -> str:
        if self._field_complete:
            return ""
        match = AUDIO_FIELD_RE.search(self.buffer)
        if match is None:
            return ""
        return unescape_json_string(complete_escape_prefix(match.group(1)))[self._extracted_length:].strip()

    async def finish(self) -> ProgressiveResult:
        """Synthesize any unterminated tail, wait for in-flight calls and reassemble in order."""
        trailing = self._trailing_text()
        if trailing and self.accepting:
            self.sentences.append(trailing)
            self._extracted_length += len(trailing)
            await self._dispatch_sentence(trailing)

        self.state = PipelineState.DRAINING
        if self._tasks:
            await asyncio.gather(*self._tasks)
        self.state = PipelineState.DONE

        pieces = [self._audio[i] for i in sorted(self._audio)]
        audio: Optional[bytes] = None
        if pieces and self.accepting:
            audio = b"".join(pieces)
        else:
            logger.warning(
                "progressive extraction failed sentences=%s failures=%s", len(self.sentences), self.failures
            )
        return ProgressiveResult(
            audio=audio,
            full_text=" ".join(self.sentences),
            sentences=list(self.sentences),
            failures=self.failures,
            chunks=self._next_index,
        )

"""
Sentence chunking and chunked synthesis for the single-shot speech path.

The progressive pipeline reuses `split_long_sentence`; `synthesize_chunked` is what
the caller falls back to when progressive extraction fails.
"""

from __future__ import annotations

import asyncio
import re
from typing import List

from agents.core.speech import SpeechSynthesizer
from api.utils.logger import configure_logging

logger = configure_logging()

MAX_CHUNK_LENGTH = 200
MIN_CHUNK_LENGTH = 20
MAX_PARALLEL_CHUNKS = 6
NATURAL_BREAK_RATIO = 0.7

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+\s*")


def split_long_sentence(sentence: str, max_length: int = MAX_CHUNK_LENGTH) -> List[str]:
    """
    Break a sentence into pieces of at most `max_length` characters.

    Prefers the last comma, semicolon or " - " when it sits at or past 70% of the
    limit, otherwise the last space; a piece with no space at all is hard cut.
    """
    if len(sentence) <= max_length:
        return [sentence]

    chunks: List[str] = []
    remaining = sentence
    while len(remaining) > max_length:
        window = remaining[:max_length]
        dash = window.rfind(" - ")
        split_at = max(window.rfind(","), window.rfind(";"), dash + 1 if dash != -1 else -1)
        if split_at == -1 or split_at < max_length * NATURAL_BREAK_RATIO:
            split_at = window.rfind(" ")
        if split_at <= 0:
            chunks.append(window)
            remaining = remaining[max_length:].strip()
            continue
        chunks.append(remaining[: split_at + 1].strip())
        remaining = remaining[split_at + 1:].strip()

    if remaining:
        chunks.append(remaining)
    return chunks


def split_into_sentences(text: str) -> List[str]:
    """Sentences at terminal punctuation; fragments shorter than MIN_CHUNK_LENGTH merge with a neighbour."""
    if not text or not text.strip():
        return []

    found = _SENTENCE_RE.findall(text)
    if not found:
        return [text.strip()]

    consumed = sum(len(s) for s in found)
    cleaned = [s.strip() for s in found if s.strip()]
    tail = text[consumed:].strip()
    if tail:
        cleaned.append(tail)

    merged: List[str] = []
    buffer = ""
    for sentence in cleaned:
        buffer = f"{buffer} {sentence}" if buffer else sentence
        if len(buffer) >= MIN_CHUNK_LENGTH:
            merged.append(buffer)
            buffer = ""

    if buffer:
        if merged:
            merged[-1] = f"{merged[-1]} {buffer}"
        else:
            merged.append(buffer)
    return merged


async def synthesize_full(tts: SpeechSynthesizer, text: str, voice: str) -> bytes:
    """One call when the text fits, otherwise chunked."""
    if len(text) <= tts.max_chars:
        return await tts.synthesize(text, voice)
    return await synthesize_chunked(tts, text, voice)


async def synthesize_chunked(
    tts: SpeechSynthesizer,
    text: str,
    voice: str,
    max_parallel: int = MAX_PARALLEL_CHUNKS,
) -> bytes:
    """
    Split into sentences, bound each piece to the synthesizer's chunk limit, synthesize
    with at most `max_parallel` calls in flight and concatenate in order.
    Errors propagate: this is the last-resort path.
    """
    pieces: List[str] = []
    for sentence in split_into_sentences(text):
        pieces.extend(split_long_sentence(sentence, tts.max_chars))
    if not pieces:
        return b""

    semaphore = asyncio.Semaphore(max_parallel)

    async def _one(piece: str) -> bytes:
        async with semaphore:
            return await tts.synthesize(piece, voice)

    audio = await asyncio.gather(*(_one(p) for p in pieces))
    logger.info("chunked synthesis chunks=%s bytes=%s", len(pieces), sum(len(a) for a in audio))
    return b"".join(audio)

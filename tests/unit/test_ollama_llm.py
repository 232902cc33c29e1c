"""Unit tests for OllamaLLM (agenerate, stream, generate_structured)."""
from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel
from unittest.mock import AsyncMock, MagicMock, patch

from agents.core.llm import LLM, InlinePart
from infra.llm.ollama import OllamaLLM, DEFAULT_STRUCTURED_TIMEOUT


# Minimal test schema for generate_structured
class GreetingSchema(BaseModel):
    """Test schema: one greeting and a score."""
    message: str
    score: int


@pytest.mark.unit
class TestOllamaLLMGenerateStructured:
    """Test generate_structured API with a mocked ChatOllama."""

    @pytest.mark.asyncio
    async def test_generate_structured_returns_schema_instance(self):
        """generate_structured calls ChatOllama.with_structured_output and returns the parsed schema."""
        # Mock return value — arbitrary; we only assert we get back a valid schema instance.
        expected = GreetingSchema(message="ok", score=0)

        mock_runnable = MagicMock()
        mock_runnable.ainvoke = AsyncMock(return_value=expected)

        mock_chat = MagicMock()
        mock_chat.with_structured_output.return_value = mock_runnable

        with patch("infra.llm.ollama.ChatOllama", return_value=mock_chat):
            llm = OllamaLLM(model="test-model")
            result = await llm.generate_structured(
                "Say hello in a structured way.",
                GreetingSchema,
                timeout=10.0,
            )

        assert result == expected
        assert isinstance(result, GreetingSchema)
        assert result.message == "ok" and result.score == 0
        mock_chat.with_structured_output.assert_called_once_with(GreetingSchema)
        mock_runnable.ainvoke.assert_called_once_with("Say hello in a structured way.")

    @pytest.mark.asyncio
    async def test_generate_structured_passes_timeout(self):
        """generate_structured passes timeout to asyncio.wait_for."""
        expected = GreetingSchema(message="Hi", score=1)
        mock_runnable = MagicMock()
        mock_runnable.ainvoke = AsyncMock(return_value=expected)
        mock_chat = MagicMock()
        mock_chat.with_structured_output.return_value = mock_runnable

        with patch("infra.llm.ollama.ChatOllama", return_value=mock_chat):
            llm = OllamaLLM(model="test")
            await llm.generate_structured(
                "prompt",
                GreetingSchema,
                timeout=5.0,
            )

        mock_runnable.ainvoke.assert_called_once_with("prompt")
        # Timeout is applied by asyncio.wait_for inside generate_structured (5.0s)

    @pytest.mark.asyncio
    async def test_generate_structured_uses_default_timeout(self):
        """When timeout is omitted, default is used (no exception = wait_for accepted it)."""
        expected = GreetingSchema(message="OK", score=0)
        mock_runnable = MagicMock()
        mock_runnable.ainvoke = AsyncMock(return_value=expected)
        mock_chat = MagicMock()
        mock_chat.with_structured_output.return_value = mock_runnable

        with patch("infra.llm.ollama.ChatOllama", return_value=mock_chat):
            llm = OllamaLLM(model="test")
            result = await llm.generate_structured("prompt", GreetingSchema)

        assert result == expected
        assert result.message == "OK"

    @pytest.mark.asyncio
    async def test_generate_structured_timeout_raises(self):
        """A call that outlives the timeout surfaces as TimeoutError."""
        async def slow(prompt):
            await asyncio.sleep(1)

        mock_runnable = MagicMock()
        mock_runnable.ainvoke = slow
        mock_chat = MagicMock()
        mock_chat.with_structured_output.return_value = mock_runnable

        with patch("infra.llm.ollama.ChatOllama", return_value=mock_chat):
            llm = OllamaLLM(model="test")
            with pytest.raises(TimeoutError):
                await llm.generate_structured("prompt", GreetingSchema, timeout=0.01)


@pytest.mark.unit
class TestOllamaLLMGenerate:
    """Text generation, streaming and inline parts."""

    @pytest.mark.asyncio
    async def test_agenerate_text_only_uses_completion_model(self):
        completion = MagicMock()
        completion.ainvoke = AsyncMock(return_value='{"audio_text": "hi"}')
        chat = MagicMock()

        with patch("infra.llm.ollama.LangChainOllamaLLM", return_value=completion), \
                patch("infra.llm.ollama.ChatOllama", return_value=chat):
            llm = OllamaLLM(model="test", json_mode=True)
            result = await llm.agenerate("prompt")

        assert result == '{"audio_text": "hi"}'
        completion.ainvoke.assert_called_once_with("prompt")
        chat.ainvoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_json_mode_sets_format(self):
        with patch("infra.llm.ollama.LangChainOllamaLLM") as completion_cls, \
                patch("infra.llm.ollama.ChatOllama") as chat_cls:
            OllamaLLM(model="test", json_mode=True)

        assert completion_cls.call_args.kwargs["format"] == "json"
        assert chat_cls.call_args.kwargs["format"] == "json"

    @pytest.mark.asyncio
    async def test_agenerate_with_image_sends_multimodal_message(self):
        chat = MagicMock()
        chat.ainvoke = AsyncMock(return_value=MagicMock(content="seen"))

        with patch("infra.llm.ollama.ChatOllama", return_value=chat):
            llm = OllamaLLM(model="test")
            result = await llm.agenerate("What is this?", [InlinePart("image/png", "aGVsbG8=")])

        assert result == "seen"
        message = chat.ainvoke.call_args.args[0][0]
        assert message.content[0] == {"type": "text", "text": "What is this?"}
        assert message.content[1]["image_url"] == "data:image/png;base64,aGVsbG8="

    @pytest.mark.asyncio
    async def test_audio_part_dropped_with_note(self):
        chat = MagicMock()
        chat.ainvoke = AsyncMock(return_value=MagicMock(content="ok"))

        with patch("infra.llm.ollama.ChatOllama", return_value=chat):
            llm = OllamaLLM(model="test")
            await llm.agenerate("Listen", [InlinePart("audio/webm", "AAAA")])

        message = chat.ainvoke.call_args.args[0][0]
        assert len(message.content) == 1
        assert "audio/webm" in message.content[0]["text"]

    @pytest.mark.asyncio
    async def test_stream_yields_plain_text(self):
        async def fake_astream(prompt):
            for piece in ['{"audio_', 'text": "Hi."}']:
                yield piece

        completion = MagicMock()
        completion.astream = fake_astream

        with patch("infra.llm.ollama.LangChainOllamaLLM", return_value=completion), \
                patch("infra.llm.ollama.ChatOllama"):
            llm = OllamaLLM(model="test")
            fragments = [f async for f in llm.stream("prompt")]

        assert "".join(fragments) == '{"audio_text": "Hi."}'


@pytest.mark.unit
class TestLLMContract:
    def test_contract_is_async_only(self):
        assert LLM.__abstractmethods__ == frozenset({"agenerate", "stream", "generate_structured"})
        assert not hasattr(OllamaLLM, "generate")

import asyncio
import time
from typing import AsyncIterator, List, Optional, Sequence, Type, TypeVar

from langchain_core.messages import HumanMessage
from langchain_ollama import OllamaLLM as LangChainOllamaLLM
from langchain_ollama import ChatOllama
from pydantic import BaseModel

from agents.core.llm import LLM, InlinePart
from api.utils.logger import configure_logging

logger = configure_logging()

T = TypeVar("T", bound=BaseModel)

DEFAULT_STRUCTURED_TIMEOUT = 120.0
SLOW_CALL_SECONDS = 60.0


class OllamaLLM(LLM):
    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        base_url: str = "http://localhost:11434",
        json_mode: bool = False,
    ):
        self.model = model
        extra = {"format": "json"} if json_mode else {}
        # The wrapper shares its name with the LangChain class, hence the alias.
        self._llm = LangChainOllamaLLM(model=model, temperature=temperature, base_url=base_url, **extra)
        # Chat model: structured output and multimodal (image) messages.
        self._chat_llm = ChatOllama(model=model, temperature=temperature, base_url=base_url, **extra)

    async def agenerate(self, prompt: str, parts: Optional[Sequence[InlinePart]] = None) -> str:
        if parts:
            message = await self._chat_llm.ainvoke([self._multimodal_message(prompt, parts)])
            return _chunk_text(message)
        return await self._llm.ainvoke(prompt)

    async def stream(self, prompt: str, parts: Optional[Sequence[InlinePart]] = None) -> AsyncIterator[str]:
        # Normalize LangChain chunk objects to plain text fragments.
        if parts:
            async for chunk in self._chat_llm.astream([self._multimodal_message(prompt, parts)]):
                yield _chunk_text(chunk)
            return
        async for chunk in self._llm.astream(prompt):
            yield _chunk_text(chunk)

    async def generate_structured(
        self,
        prompt: str,
        schema: Type[T],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Call ChatOllama.with_structured_output(schema) and return the parsed schema instance.
        Raises TimeoutError after `timeout` seconds (DEFAULT_STRUCTURED_TIMEOUT when omitted).
        """
        timeout_seconds = float(timeout if timeout is not None else DEFAULT_STRUCTURED_TIMEOUT)
        runnable = self._chat_llm.with_structured_output(schema)

        start = time.monotonic()
        input_tokens = len(prompt) // 4
        try:
            result = await asyncio.wait_for(runnable.ainvoke(prompt), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "structured call timed out model=%s schema=%s timeout=%.1fs",
                self.model, schema.__name__, timeout_seconds,
            )
            raise TimeoutError(f"{schema.__name__} generation timed out after {timeout_seconds}s") from None
        except Exception as e:
            logger.error("structured call failed model=%s schema=%s after %.2fs: %s",
                         self.model, schema.__name__, time.monotonic() - start, e)
            raise

        elapsed = time.monotonic() - start
        logger.info("structured call ok model=%s schema=%s in %.2fs (~%s tokens in)",
                    self.model, schema.__name__, elapsed, input_tokens)
        if elapsed > SLOW_CALL_SECONDS:
            logger.warning("structured call slow model=%s elapsed=%.2fs", self.model, elapsed)
        return result

    def _multimodal_message(self, prompt: str, parts: Sequence[InlinePart]) -> HumanMessage:
        content: List[dict] = [{"type": "text", "text": prompt}]
        for part in parts:
            if part.is_image:
                content.append({
                    "type": "image_url",
                    "image_url": f"data:{part.mime_type};base64,{part.data_base64}",
                })
            else:
                # Ollama models take text and images only.
                logger.warning("dropping unsupported inline part mime_type=%s model=%s", part.mime_type, self.model)
                content[0]["text"] += f"\n\n[The student attached {part.mime_type} content that could not be forwarded.]"
        return HumanMessage(content=content)


def _chunk_text(chunk) -> str:
    if isinstance(chunk, str):
        return chunk
    text = getattr(chunk, "content", None)
    return text if isinstance(text, str) else str(chunk)

import hashlib
from typing import Dict, Optional, Tuple

import httpx

from agents.core.instruction_cache import InstructionCacheProvider
from api.utils.logger import configure_logging

logger = configure_logging()


class OllamaInstructionCache(InstructionCacheProvider):
    """
    Keeps an instruction prefix warm on an Ollama server.

    Ollama reuses the KV cache of a loaded model for a matching prompt prefix, so
    "creating" a cache means evaluating the prefix once with keep_alive set to the
    TTL; renewing repeats the call to extend keep_alive; deleting unloads the model.
    """

    def __init__(self, base_url: str = "http://localhost:11434", timeout: float = 120.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._handles: Dict[str, Tuple[str, str]] = {}  # handle -> (model, text)

    @staticmethod
    def handle_for(model: str, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
        return f"{model}#{digest}"

    async def _warm(self, model: str, text: str, ttl_seconds: int) -> None:
        response = await self._client.post(
            f"{self.base_url}/api/generate",
            json={
                "model": model,
                "prompt": text,
                "raw": True,
                "stream": False,
                "keep_alive": f"{ttl_seconds}s",
                "options": {"num_predict": 1},
            },
        )
        response.raise_for_status()

    async def create(self, model: str, text: str, ttl_seconds: int) -> str:
        await self._warm(model, text, ttl_seconds)
        handle = self.handle_for(model, text)
        self._handles[handle] = (model, text)
        logger.info("instruction cache created handle=%s (~%s tokens) ttl=%ss", handle, len(text) // 4, ttl_seconds)
        return handle

    async def renew(self, handle: str, ttl_seconds: int) -> str:
        if handle not in self._handles:
            raise KeyError(f"unknown cache handle {handle}")
        model, text = self._handles[handle]
        await self._warm(model, text, ttl_seconds)
        logger.info("instruction cache renewed handle=%s ttl=%ss", handle, ttl_seconds)
        return handle

    async def delete(self, handle: str) -> None:
        entry = self._handles.pop(handle, None)
        if entry is None:
            return
        model, _ = entry
        response = await self._client.post(
            f"{self.base_url}/api/generate",
            json={"model": model, "keep_alive": 0},
        )
        response.raise_for_status()
        logger.info("instruction cache deleted handle=%s", handle)

from typing import Optional

import httpx

from agents.core.speech import SpeechSynthesizer
from api.errors import SynthesisError
from api.utils.logger import configure_logging
from api.utils.retry import retry_with_backoff

logger = configure_logging()


class HttpSpeechSynthesizer(SpeechSynthesizer):
    """
    Speech over a plain HTTP endpoint: POST {base_url}/api/tts {"text", "voice"} -> audio bytes.
    Agent names map to voices through `voices`; unknown names use `default_voice`.
    """

    def __init__(
        self,
        base_url: str,
        default_voice: str = "default",
        voices: Optional[dict[str, str]] = None,
        max_chars: int = 200,
        timeout: float = 30.0,
        max_retries: int = 2,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_voice = default_voice
        self.voices = voices or {}
        self.max_chars = max_chars
        self.max_retries = max_retries
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def voice_for(self, agent_name: Optional[str]) -> str:
        return self.voices.get(agent_name or "", self.default_voice)

    async def synthesize(self, text: str, voice: str) -> bytes:
        text = (text or "").strip()
        if not text:
            return b""
        if len(text) > self.max_chars:
            logger.warning("tts text over budget chars=%s max=%s", len(text), self.max_chars)

        async def _call() -> bytes:
            response = await self._client.post(
                f"{self.base_url}/api/tts",
                json={"text": text, "voice": voice or self.default_voice},
            )
            response.raise_for_status()
            return response.content

        try:
            return await retry_with_backoff(_call, max_retries=self.max_retries, initial_delay=0.5)
        except httpx.HTTPError as e:
            raise SynthesisError(f"speech synthesis failed: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()

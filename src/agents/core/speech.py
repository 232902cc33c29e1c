from abc import ABC, abstractmethod
from typing import Optional


class SpeechSynthesizer(ABC):
    """
    Text -> audio. Implementations must accept at most `max_chars` characters per call;
    callers split longer text before synthesizing.
    """
    max_chars: int = 200
    default_voice: str = "default"

    def voice_for(self, agent_name: Optional[str]) -> str:
        return self.default_voice

    @abstractmethod
    async def synthesize(self, text: str, voice: str) -> bytes:
        raise NotImplementedError

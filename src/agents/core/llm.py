from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class InlinePart:
    """Binary payload sent next to the prompt (student audio, photo of homework ...)."""
    mime_type: str
    data_base64: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class LLM(ABC):
    """
    Defines the contract for all LLMs.
    """
    @abstractmethod
    async def agenerate(self, prompt: str, parts: Optional[Sequence[InlinePart]] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def stream(self, prompt: str, parts: Optional[Sequence[InlinePart]] = None) -> AsyncIterator[str]:
        raise NotImplementedError

    @abstractmethod
    async def generate_structured(self, prompt: str, schema: Type[T], timeout: Optional[float] = None) -> T:
        raise NotImplementedError

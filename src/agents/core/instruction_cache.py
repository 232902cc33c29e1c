from abc import ABC, abstractmethod


class InstructionCacheProvider(ABC):
    """
    Server-side cache of static instruction text for one model.
    Handles are opaque strings owned by the provider.
    """

    @abstractmethod
    async def create(self, model: str, text: str, ttl_seconds: int) -> str:
        raise NotImplementedError

    @abstractmethod
    async def renew(self, handle: str, ttl_seconds: int) -> str:
        """Reset the TTL of an existing handle. Raises if the handle is unknown or expired upstream."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, handle: str) -> None:
        raise NotImplementedError

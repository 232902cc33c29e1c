"""
Context cache manager.

Static instruction text (lesson header, curriculum, every agent's system prompt)
is cached per model group. Before each use the entry's age decides what happens:

    age < renewal threshold        -> reuse as is
    renewal threshold <= age < TTL -> reuse, renew in the background
    age >= TTL or no entry         -> proceed without a cache, warm up in the background

A failed renewal recreates the cache from scratch. `invalidate` deletes every handle
so the next use rebuilds from current content. Entries are written check-then-act
with the clock reading; a duplicate concurrent refresh just overwrites an equally
valid entry.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from agents.core.instruction_cache import InstructionCacheProvider
from agents.core.teaching_agent import TeachingAgent
from api.prompt_builders.instructions import build_combined_instructions
from api.services.profile_service import LessonStore
from api.utils.background import BackgroundTaskRunner
from api.utils.logger import configure_logging

logger = configure_logging()

CACHE_TTL_SECONDS = 2 * 60 * 60
RENEWAL_THRESHOLD_SECONDS = 90 * 60


@dataclass
class CachedInstructionSet:
    model_group: str
    text: str
    handle: str
    updated_at: float


class ContextCacheManager:
    def __init__(
        self,
        provider: InstructionCacheProvider,
        agent_loader: Callable[[], List[TeachingAgent]],
        lessons: Optional[LessonStore] = None,
        runner: Optional[BackgroundTaskRunner] = None,
        clock: Callable[[], float] = time.monotonic,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        renewal_seconds: float = RENEWAL_THRESHOLD_SECONDS,
    ):
        self._provider = provider
        self._agent_loader = agent_loader
        self._lessons = lessons
        self._runner = runner or BackgroundTaskRunner()
        self._clock = clock
        self.ttl_seconds = ttl_seconds
        self.renewal_seconds = renewal_seconds
        self._entries: Dict[str, CachedInstructionSet] = {}
        self._warmup_task: Optional[asyncio.Task] = None
        self._renewing: set[str] = set()

    # ----- read path -----

    def _age(self, entry: CachedInstructionSet) -> float:
        return self._clock() - entry.updated_at

    async def ensure_fresh(self, model_group: str) -> Optional[str]:
        """Handle to use for this request, or None. Never waits on upstream cache calls."""
        entry = self._entries.get(model_group)
        if entry is None:
            self._schedule_warmup()
            return None

        age = self._age(entry)
        if age >= self.ttl_seconds:
            logger.info("instruction cache expired group=%s age_min=%s", model_group, round(age / 60))
            self._entries.pop(model_group, None)
            self._schedule_warmup()
            return None
        if age > self.renewal_seconds and model_group not in self._renewing:
            logger.info("instruction cache renewing group=%s age_min=%s", model_group, round(age / 60))
            self._renewing.add(model_group)
            self._runner.spawn(f"cache-renew:{model_group}", self._renew_in_background(model_group, entry))
        return entry.handle

    def instruction_text(self, model_group: str) -> Optional[str]:
        entry = self._entries.get(model_group)
        if entry is None or self._age(entry) >= self.ttl_seconds:
            return None
        return entry.text

    def get_handle(self, model_group: str) -> Optional[str]:
        entry = self._entries.get(model_group)
        return entry.handle if entry else None

    # ----- warmup / renewal -----

    def _schedule_warmup(self, lesson_id: Optional[str] = None) -> asyncio.Task:
        task = self._warmup_task
        if task is None or task.done():
            task = self._runner.spawn("cache-warmup", self._run_warmup(lesson_id))
            self._warmup_task = task
        return task

    async def warmup_all(self, lesson_id: Optional[str] = None) -> None:
        """Create or renew every model group's cache. Concurrent callers share one run."""
        await asyncio.shield(self._schedule_warmup(lesson_id))

    async def _run_warmup(self, lesson_id: Optional[str]) -> None:
        try:
            await self._warmup(lesson_id)
        except Exception as e:
            logger.error("instruction cache warmup failed: %s", e, exc_info=True)

    async def _warmup(self, lesson_id: Optional[str]) -> None:
        agents = await asyncio.to_thread(self._agent_loader)
        lesson, curriculum = None, None
        if lesson_id and self._lessons is not None:
            lesson, curriculum = await asyncio.gather(
                asyncio.to_thread(self._lessons.find_lesson, lesson_id),
                asyncio.to_thread(self._lessons.get_curriculum, lesson_id),
            )

        groups: Dict[str, List[TeachingAgent]] = defaultdict(list)
        for agent in agents:
            groups[agent.model].append(agent)

        for model_group, members in groups.items():
            entry = self._entries.get(model_group)
            if entry is not None and self._age(entry) < self.renewal_seconds:
                logger.debug("instruction cache fresh group=%s, skipping warmup", model_group)
                continue
            text = build_combined_instructions(members, lesson, curriculum)
            if entry is not None:
                try:
                    await self._renew(model_group, entry)
                    continue
                except Exception as e:
                    logger.warning("instruction cache renewal failed group=%s, recreating: %s", model_group, e)
            await self._create(model_group, text)

    async def _create(self, model_group: str, text: str) -> CachedInstructionSet:
        handle = await self._provider.create(model_group, text, self.ttl_seconds)
        entry = CachedInstructionSet(model_group=model_group, text=text, handle=handle, updated_at=self._clock())
        self._entries[model_group] = entry
        return entry

    async def _renew(self, model_group: str, entry: CachedInstructionSet) -> None:
        handle = await self._provider.renew(entry.handle, self.ttl_seconds)
        self._entries[model_group] = CachedInstructionSet(
            model_group=model_group, text=entry.text, handle=handle, updated_at=self._clock()
        )

    async def _renew_in_background(self, model_group: str, entry: CachedInstructionSet) -> None:
        try:
            await self._renew(model_group, entry)
        except Exception as e:
            logger.warning("background renewal failed group=%s, recreating: %s", model_group, e)
            await self._create(model_group, entry.text)
        finally:
            self._renewing.discard(model_group)

    # ----- invalidation / status -----

    async def invalidate(self) -> int:
        """Delete every cache handle. Returns how many entries were dropped."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            try:
                await self._provider.delete(entry.handle)
            except Exception as e:
                logger.error("instruction cache delete failed group=%s: %s", entry.model_group, e)
        if not entries:
            logger.info("instruction cache invalidate: nothing cached")
        return len(entries)

    def status(self) -> Dict[str, dict]:
        result: Dict[str, dict] = {}
        for group, entry in self._entries.items():
            age = self._age(entry)
            result[group] = {
                "cached": True,
                "cache_name": entry.handle,
                "age_minutes": round(age / 60),
                "will_renew_soon": age > self.renewal_seconds,
            }
        return result

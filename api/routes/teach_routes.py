"""
Tutoring routes: one teaching turn, instruction cache admin and adaptation analytics.
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request

from api.bootstrap import TutorContainer
from api.schemas.teaching_schemas import AdaptationStats, TeachRequest, TeachResponse
from api.utils.logger import configure_logging

teach_routes = APIRouter()
logger = configure_logging()


def get_container(request: Request) -> TutorContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Tutor service not initialised")
    return container


@teach_routes.post("/teach", response_model=TeachResponse)
async def teach(body: TeachRequest, container: TutorContainer = Depends(get_container)) -> TeachResponse:
    if not ((body.message or "").strip() or body.audio_base64 or body.media_base64):
        raise HTTPException(status_code=400, detail="message, audio or media input is required")
    return await container.teaching.teach(body)


@teach_routes.get("/cache/status")
async def cache_status(container: TutorContainer = Depends(get_container)) -> dict:
    return {
        "instruction_cache": container.context_cache.status(),
        "agents": container.registry.cache_status(),
    }


@teach_routes.post("/cache/invalidate")
async def cache_invalidate(container: TutorContainer = Depends(get_container)) -> dict:
    dropped = await container.context_cache.invalidate()
    container.registry.invalidate()
    logger.info("caches invalidated instruction_sets=%s", dropped)
    return {"success": True, "invalidated": dropped}


@teach_routes.get("/adaptations/{user_id}", response_model=AdaptationStats)
async def adaptation_stats(user_id: str, container: TutorContainer = Depends(get_container)) -> AdaptationStats:
    return await asyncio.to_thread(container.adaptations.adaptation_stats, user_id)

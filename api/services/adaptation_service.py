"""
Adaptation analytics: one row per turn describing how teaching was adapted.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from api.models.models import AdaptationLog
from api.schemas.teaching_schemas import AdaptationStats
from api.services.adaptive_directives import AdaptiveDirectives
from api.services.mastery_service import round_half_up
from api.utils.logger import configure_logging

logger = configure_logging()

PREVIEW_CHARS = 200


class AdaptationLogStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def log_adaptation(
        self,
        user_id: str,
        lesson_id: str,
        session_id: str,
        directives: AdaptiveDirectives,
        learning_style: Optional[str],
        response_text: str,
        has_svg: bool,
    ) -> str:
        log_id = str(uuid4())
        with self._session_factory() as db:
            db.add(AdaptationLog(
                id=log_id,
                user_id=user_id,
                lesson_id=lesson_id,
                session_id=session_id,
                mastery_level=directives.current_mastery,
                learning_style=learning_style,
                difficulty_level=directives.difficulty_level,
                scaffolding_level=directives.encouragement_level,
                response_preview=(response_text or "")[:PREVIEW_CHARS],
                has_svg=has_svg,
                directive_count=directives.directive_count,
            ))
            db.commit()
        logger.info(
            "adaptation logged user=%s lesson=%s mastery=%s difficulty=%s scaffolding=%s svg=%s",
            user_id, lesson_id, directives.current_mastery, directives.difficulty_level,
            directives.encouragement_level, has_svg,
        )
        return log_id

    def adaptation_stats(self, user_id: str) -> AdaptationStats:
        with self._session_factory() as db:
            rows = db.query(AdaptationLog).filter(AdaptationLog.user_id == user_id).all()
            logs = [(r.mastery_level, r.difficulty_level, r.scaffolding_level, r.learning_style, r.has_svg) for r in rows]

        if not logs:
            return AdaptationStats(
                total_adaptations=0,
                avg_mastery=0,
                difficulty_distribution={},
                scaffolding_distribution={},
                svg_generation_rate=None,
            )

        difficulty = Counter(d for _, d, _, _, _ in logs)
        scaffolding = Counter(s for _, _, s, _, _ in logs)
        visual = [svg for _, _, _, style, svg in logs if style == "visual"]
        return AdaptationStats(
            total_adaptations=len(logs),
            avg_mastery=round_half_up(sum(m for m, *_ in logs) / len(logs)),
            difficulty_distribution={k: difficulty.get(k, 0) for k in ("simplified", "standard", "accelerated")},
            scaffolding_distribution={k: scaffolding.get(k, 0) for k in ("minimal", "standard", "high")},
            svg_generation_rate=(sum(1 for v in visual if v) / len(visual)) if visual else None,
        )

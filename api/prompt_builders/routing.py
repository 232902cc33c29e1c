"""Coordinator routing prompt."""

from __future__ import annotations

from typing import Optional

from agents.core.prompt_builder import build_from_template

TEMPLATE_ROUTING = """{system_prompt}

STUDENT INFO:
- Name: {name}
- Age: {age}
- Grade: {grade_level}{lesson_line}

STUDENT MESSAGE: "{message}"

Analyze this message and respond with your routing decision as JSON:
{{"route_to": "<agent name or self>", "reason": "<why>", "handoff_message": "<optional>", "response": "<your answer when route_to is self>"}}"""


def build_routing_prompt(
    *,
    coordinator_prompt: str,
    message: str,
    profile=None,
    lesson_title: Optional[str] = None,
    lesson_subject: Optional[str] = None,
) -> str:
    lesson_line = f"\n- Current Lesson: {lesson_title} ({lesson_subject})" if lesson_title else ""
    return build_from_template(
        TEMPLATE_ROUTING,
        system_prompt=coordinator_prompt,
        name=getattr(profile, "name", None) or "unknown",
        age=getattr(profile, "age", None) or "unknown",
        grade_level=getattr(profile, "grade_level", None) or "unknown",
        lesson_line=lesson_line,
        message=message,
    )

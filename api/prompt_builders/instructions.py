"""Combined static instruction text shared by every agent of one model group."""

from __future__ import annotations

from typing import Optional, Sequence

from agents.core.prompt_builder import banner
from agents.core.teaching_agent import TeachingAgent

AGENT_SEPARATOR = "\n\n---\n\n"


def build_combined_instructions(
    agents: Sequence[TeachingAgent],
    lesson=None,
    curriculum: Optional[str] = None,
) -> str:
    """
    Lesson header and curriculum (when known) followed by every agent's system prompt.
    Agents are sorted by name so the text, and therefore the cache key, is stable.
    """
    sections: list[str] = []
    if lesson is not None:
        sections.append(
            banner("CURRENT LESSON")
            + f"\nTitle: {lesson.title}\nSubject: {lesson.subject}\nLearning Objective: {lesson.learning_objective}"
        )
    if curriculum:
        sections.append(banner("LESSON CURRICULUM (Follow this plan exactly)") + "\n\n" + curriculum)
    if sections:
        sections.append(banner("AI AGENT SYSTEM PROMPTS"))

    for agent in sorted(agents, key=lambda a: a.name):
        sections.append(f"AGENT: {agent.name}\nSYSTEM_PROMPT:\n{agent.system_prompt}")
    return AGENT_SEPARATOR.join(sections)

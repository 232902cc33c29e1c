"""Per-turn context for a teaching agent. Uses library core template helpers."""

from __future__ import annotations

from typing import Optional, Sequence

from agents.core.prompt_builder import build_from_template, join_sections
from agents.core.teaching_agent import TeachingAgent

HISTORY_TURNS_IN_PROMPT = 3
HISTORY_REPLY_CHARS = 200

TEMPLATE_ROLE = 'You are acting as the "{agent_name}" agent. Follow the "{agent_name}" instructions above.'

TEMPLATE_PROFILE = """STUDENT PROFILE:
- Name: {name}
- Age: {age}
- Grade Level: {grade_level}{style_line}{strengths_line}{struggles_line}"""

TEMPLATE_LESSON = """CURRENT LESSON:
- Title: {title}
- Subject: {subject}
- Objective: {objective}"""

TEMPLATE_MASTERY_TAG = "[MASTERY STATUS: {mastery}% - {band}]"

FIELD_GUIDANCE = """Respond ONLY with a JSON object with these fields:
- "audio_text": natural spoken language, what you SAY to the student. No code, symbols or markup.
- "display_text": written board notes with markdown, what you WRITE. No SVG code here.
- "svg": a complete SVG diagram string, or null. SVG markup goes only here.
- "teaching_phase": your current teaching phase (1-5).
- "lesson_complete": true ONLY after Phase 5 when the student has shown mastery."""


def mastery_band(mastery: int) -> str:
    if mastery < 50:
        return "needs support"
    if mastery < 80:
        return "developing"
    return "proficient"


def build_mastery_tag(mastery: int) -> str:
    return build_from_template(TEMPLATE_MASTERY_TAG, mastery=mastery, band=mastery_band(mastery))


def build_profile_section(profile) -> str:
    return build_from_template(
        TEMPLATE_PROFILE,
        name=profile.name,
        age=f"{profile.age} years old" if profile.age else "unknown",
        grade_level=profile.grade_level if profile.grade_level is not None else "unknown",
        style_line=f"\n- Learning Style: {profile.learning_style}" if profile.learning_style else "",
        strengths_line=f"\n- Strengths: {', '.join(profile.strengths)}" if profile.strengths else "",
        struggles_line=f"\n- Areas to improve: {', '.join(profile.struggles)}" if profile.struggles else "",
    )


def build_history_section(history: Sequence) -> str:
    if not history:
        return ""
    lines = ["RECENT CONVERSATION:"]
    for item in list(history)[-HISTORY_TURNS_IN_PROMPT:]:
        lines.append(f"Student: {item.user_message}")
        lines.append(f"Teacher: {item.ai_response[:HISTORY_REPLY_CHARS]}...")
        lines.append("")
    return "\n".join(lines).rstrip()


def build_lesson_section(lesson) -> str:
    return build_from_template(
        TEMPLATE_LESSON,
        title=lesson.title,
        subject=lesson.subject,
        objective=lesson.learning_objective,
    )


def build_teaching_prompt(
    *,
    agent: TeachingAgent,
    instructions: str,
    profile,
    lesson,
    history: Sequence,
    mastery: int,
    adaptive_block: str,
    correction_block: Optional[str] = None,
    previous_agent: Optional[str] = None,
    handoff_message: Optional[str] = None,
    user_message: str = "",
    has_audio: bool = False,
) -> str:
    """
    Order matters: static instructions first (so a warm prefix can be reused), then
    mastery tag, self-correction, adaptive directives, profile, history, lesson and
    finally the student's message.
    """
    handoff = ""
    if previous_agent:
        handoff = f"NOTE: The student was just handed off to you from {previous_agent}. Make a smooth transition."
        if handoff_message:
            handoff += f"\nHandoff note: {handoff_message}"

    if has_audio and not user_message:
        student = "Student (via voice): see the attached audio."
    else:
        student = f'Student: "{user_message}"'

    return join_sections([
        instructions,
        build_from_template(TEMPLATE_ROLE, agent_name=agent.name),
        build_mastery_tag(mastery),
        correction_block,
        adaptive_block,
        build_profile_section(profile),
        build_history_section(history),
        build_lesson_section(lesson),
        handoff,
        FIELD_GUIDANCE,
        student,
    ])

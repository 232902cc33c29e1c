"""Prompts for the secondary model passes: response validation and evidence extraction."""

from __future__ import annotations

from agents.core.prompt_builder import build_from_template

TEMPLATE_VALIDATION = """{validator_prompt}

VALIDATE THE FOLLOWING TEACHING RESPONSE:

CONTEXT:
- Student Grade: {grade_level}
- Student Age: {age}
- Lesson: {lesson_title} ({lesson_subject})
- Learning Objective: {objective}
- Specialist: {agent_name}

RESPONSE TO VALIDATE:
Audio Text (spoken):
{audio_text}

Display Text (on screen):
{display_text}

{svg_block}

YOUR TASK:
Check factual consistency, curriculum alignment, internal consistency, pedagogical soundness
and, when a diagram is present, that the diagram matches the text.
Approve only when your confidence is at least {threshold:.2f}. List concrete issues and required fixes when you reject."""

TEMPLATE_EVIDENCE = """You are analyzing a student's learning evidence during a lesson.

CONCEPT BEING TAUGHT: {concept}

STUDENT RESPONSE: "{student}"

TEACHER RESPONSE: "{teacher}"

Classify the student's response:
- correct_answer: answered correctly (quality 100 fully correct, 80 mostly correct)
- incorrect_answer: answered incorrectly (quality 0-30, closer to correct is higher)
- explanation: explained a concept (rate clarity and completeness 0-100)
- application: applied knowledge to a problem (rate success 0-100)
- struggle: showed confusion or asked for help (quality 0)

Return evidence_type, quality_score (0-100), confidence (0-1) and a short reasoning."""


def build_validation_prompt(*, validator_prompt: str, reply, agent_name: str, profile, lesson, threshold: float) -> str:
    return build_from_template(
        TEMPLATE_VALIDATION,
        validator_prompt=validator_prompt,
        grade_level=profile.grade_level if profile.grade_level is not None else "unknown",
        age=f"{profile.age} years old" if profile.age else "unknown",
        lesson_title=lesson.title,
        lesson_subject=lesson.subject,
        objective=lesson.learning_objective,
        agent_name=agent_name,
        audio_text=reply.audio_text,
        display_text=reply.display_text,
        svg_block=f"SVG Diagram:\n{reply.svg}" if reply.svg else "SVG: None",
        threshold=threshold,
    )


def build_evidence_prompt(*, student_message: str, teacher_response: str, concept: str) -> str:
    return build_from_template(
        TEMPLATE_EVIDENCE,
        concept=concept,
        student=student_message,
        teacher=teacher_response,
    )

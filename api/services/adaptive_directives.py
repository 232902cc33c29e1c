"""
Adaptive teaching directives.

A pure function of (profile, recent history, current mastery). Three independent
axes (learning style, difficulty, scaffolding) each contribute a block of
instructions; profile strengths/struggles and phase pacing are appended on top.
The result lives for one turn: it is formatted into the prompt, logged for
analytics and dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from agents.core.prompt_builder import RULE
from api.services.interaction_service import HistoryItem
from api.services.profile_service import StudentProfile

EncouragementLevel = Literal["minimal", "standard", "high"]
DifficultyLevel = Literal["simplified", "standard", "accelerated"]

LOW_MASTERY_THRESHOLD = 50
HIGH_MASTERY_THRESHOLD = 80
EXTENDED_PHASE_THRESHOLD = 30
HIGH_STRUGGLE_RATIO = 0.4
MODERATE_STRUGGLE_RATIO = 0.2

STRUGGLE_INDICATORS: Tuple[str, ...] = (
    "not quite",
    "incorrect",
    "try again",
    "let me explain again",
    "let's break this down",
    "having trouble",
    "struggling",
)

SIMPLIFICATION_HEADER = "LOW MASTERY (<50%) - SIMPLIFICATION MODE:"
STANDARD_HEADER = "MEDIUM MASTERY (50-80%) - STANDARD TEACHING:"
ACCELERATION_HEADER = "HIGH MASTERY (>80%) - ACCELERATION MODE:"
MAX_SCAFFOLDING_HEADER = "HIGH STRUGGLE DETECTED - MAXIMUM SCAFFOLDING:"
STANDARD_SCAFFOLDING_HEADER = "MODERATE STRUGGLE - STANDARD SCAFFOLDING:"
MIN_SCAFFOLDING_HEADER = "LOW STRUGGLE - MINIMAL SCAFFOLDING:"

_VISUAL = [
    "VISUAL LEARNER ADAPTATIONS:",
    "- CRITICAL: Generate an SVG diagram for EVERY major concept explained",
    "- Use visual metaphors and spatial words (top/bottom, left/right, inside/outside)",
    "- Refer to colors, shapes, sizes and visual patterns",
    "- Lay information out spatially: lists, tables, hierarchies",
    '- Use phrases like "picture this", "imagine", "see how"',
]
_AUDITORY = [
    "AUDITORY LEARNER ADAPTATIONS:",
    "- Use conversational, rhythmic language with a natural flow",
    "- Use sound-based metaphors (rhythm, echoes, harmony)",
    "- Repeat key ideas in different phrasings",
    '- Use verbal cues like "listen to this", "hear how", "sounds like"',
    "- Tell explanations like a spoken story with clear signposts",
]
_KINESTHETIC = [
    "KINESTHETIC LEARNER ADAPTATIONS:",
    '- Describe physical actions and hands-on activities ("try this", "build", "move")',
    "- Use movement metaphors (walking, building, handling objects)",
    "- Suggest concrete manipulatives or physical demonstrations",
    '- Invite active engagement ("draw it out", "act it out", "count on your fingers")',
    "- Tie concepts to physical experience",
]
_READING_WRITING = [
    "READING/WRITING LEARNER ADAPTATIONS:",
    "- Give detailed written explanations",
    "- Use lists, bullet points and well-structured text",
    "- Encourage note-taking and written summaries",
    "- Include vocabulary definitions and written examples",
    "- Suggest short writing exercises about the concept",
]
_LOGICAL = [
    "LOGICAL/MATHEMATICAL LEARNER ADAPTATIONS:",
    "- Present ideas as logical sequences with clear cause and effect",
    "- Use numbered steps, formulas and systematic problem solving",
    "- Show patterns, classifications and categories",
    '- Make reasoning chains explicit: "if...then", "therefore", "because"',
    "- Connect concepts to puzzles and equations",
]
_SOCIAL = [
    "SOCIAL/INTERPERSONAL LEARNER ADAPTATIONS:",
    "- Frame concepts through people and group scenarios",
    "- Use dialogue and collaborative examples",
    "- Show how the idea applies when working with others",
    '- Encourage "explain it to a friend"',
    "- Connect learning to social situations",
]
_SOLITARY = [
    "SOLITARY/INTRAPERSONAL LEARNER ADAPTATIONS:",
    "- Support independent reflection and self-paced discovery",
    '- Ask for personal connections: "How does this relate to your experience?"',
    "- Leave room for thinking before asking for an answer",
    "- Frame learning as personal growth",
    '- Use reflective prompts: "What do you think?", "In your own words"',
]

STYLE_BUNDLES: Dict[str, List[str]] = {
    "visual": _VISUAL,
    "auditory": _AUDITORY,
    "kinesthetic": _KINESTHETIC,
    "reading/writing": _READING_WRITING,
    "reading-writing": _READING_WRITING,
    "logical": _LOGICAL,
    "mathematical": _LOGICAL,
    "social": _SOCIAL,
    "interpersonal": _SOCIAL,
    "solitary": _SOLITARY,
    "intrapersonal": _SOLITARY,
}

_SIMPLIFICATION = [
    SIMPLIFICATION_HEADER,
    "- SLOW DOWN: break every concept into the smallest possible steps",
    "- Use simple, grade-appropriate vocabulary; avoid jargon",
    "- Give MORE examples: at least 3 concrete examples per concept",
    '- Check understanding after EVERY step before moving on ("Got it?")',
    "- Use analogies from everyday life",
    "- If a step causes trouble, break it down further",
    "- PHASE GUIDANCE: Do NOT compress any phases. Use the maximum turns per phase.",
    "- In Phase 2, give at least 2 worked examples before Phase 3",
    "- In Phase 3, guide every single step explicitly",
]
_STANDARD_PACE = [
    STANDARD_HEADER,
    "- Balanced pace: explain clearly with 1-2 examples per concept",
    "- Introduce concepts progressively with logical connections",
    "- Check understanding periodically, not after every step",
    "- Use grade-level vocabulary with occasional challenges",
    "- Build on what the student already knows",
]
_ACCELERATION = [
    ACCELERATION_HEADER,
    "- ACCELERATE: the student is ready for more depth",
    "- Introduce advanced vocabulary and richer concepts",
    "- Ask questions that need synthesis and critical thinking",
    '- Offer extensions: "What if...", "How would you...", "Can you apply this to..."',
    "- Move quickly through basics; spend time on nuance and application",
    "- PHASE GUIDANCE: Compress Phases 1-3.",
    "- In Phase 2, recap briefly and probe with a challenging question",
    "- In Phase 3, one guided problem at most, then Phase 4 if correct",
    "- Phases 4 and 5 CANNOT be compressed",
]

_MAX_SCAFFOLDING = [
    MAX_SCAFFOLDING_HEADER,
    "- Follow the teaching progression strictly: NO phase compression",
    "- Phase 2 (I DO): show COMPLETE worked examples, at least 2",
    "- Phase 3 (WE DO): guide EVERY step, offer sentence starters and templates",
    "- Phase 4 (YOU DO): start with an easier problem than expected",
    "- CORRECTION LOOP: after a 2nd failure, drop back one phase",
    "- Celebrate small wins at every phase transition",
    "- If stuck in a phase for 5+ turns, suggest a break (handoff to motivator)",
    "- Be patient and encouraging; confidence matters more than speed",
]
_STANDARD_SCAFFOLDING = [
    STANDARD_SCAFFOLDING_HEADER,
    "- Give hints when the student gets stuck, not full solutions",
    '- Ask guiding questions: "What do you know?", "What is the first step?"',
    "- Offer partial examples or analogies",
    "- Check in regularly without over-helping",
]
_MIN_SCAFFOLDING = [
    MIN_SCAFFOLDING_HEADER,
    "- The student is confident; reduce scaffolding",
    "- Let the student work independently",
    "- Step in only when asked",
    "- Pose open-ended questions that invite exploration",
]

_PHASE_ACCELERATION = [
    "PHASE ACCELERATION ENABLED:",
    "- Compress Phases 1-3",
    "- Move quickly to Phases 4 and 5",
    "- Spend the saved time on transfer questions in Phase 5",
]
_EXTENDED_PHASES = [
    "EXTENDED PHASE MODE:",
    "- Maximum time in each phase",
    "- Phase 2: 3+ worked examples before moving on",
    "- Phase 3: guide through 2-3 problems before Phase 4",
    "- Phase 4: start with the simplest possible problem",
    "- Watch for frustration; hand off to the motivator if needed",
]
_CORRECTION_HEAVY = [
    "CORRECTION-HEAVY MODE:",
    "- The student knows some material but makes frequent errors",
    "- Verify every step in Phase 3 before the next one",
    "- In Phase 4, return briefly to guided practice after each error",
    "- In Phase 5, circle back to the struggle points",
]


@dataclass
class AdaptiveDirectives:
    style_adjustments: List[str] = field(default_factory=list)
    difficulty_adjustments: List[str] = field(default_factory=list)
    scaffolding_needs: List[str] = field(default_factory=list)
    phase_guidance: List[str] = field(default_factory=list)
    encouragement_level: EncouragementLevel = "standard"
    current_mastery: int = 50
    struggle_ratio: float = 0.0

    @property
    def directive_count(self) -> int:
        return len(self.style_adjustments) + len(self.difficulty_adjustments) + len(self.scaffolding_needs)

    @property
    def difficulty_level(self) -> DifficultyLevel:
        text = " ".join(self.difficulty_adjustments).lower()
        if "simplification mode" in text or "low mastery" in text:
            return "simplified"
        if "acceleration mode" in text or "high mastery" in text:
            return "accelerated"
        return "standard"


def struggle_ratio(history: Sequence[HistoryItem]) -> float:
    """Fraction of recent agent replies that contain a struggle indicator."""
    if not history:
        return 0.0
    hits = sum(
        1 for item in history
        if any(indicator in (item.ai_response or "").lower() for indicator in STRUGGLE_INDICATORS)
    )
    return hits / len(history)


def style_bundle(learning_style: Optional[str]) -> List[str]:
    if not learning_style:
        return []
    return list(STYLE_BUNDLES.get(learning_style.strip().lower(), []))


def difficulty_bundle(mastery: int) -> List[str]:
    if mastery < LOW_MASTERY_THRESHOLD:
        return list(_SIMPLIFICATION)
    if mastery < HIGH_MASTERY_THRESHOLD:
        return list(_STANDARD_PACE)
    return list(_ACCELERATION)


def scaffolding_bundle(ratio: float) -> Tuple[List[str], EncouragementLevel]:
    if ratio > HIGH_STRUGGLE_RATIO:
        return list(_MAX_SCAFFOLDING), "high"
    if ratio > MODERATE_STRUGGLE_RATIO:
        return list(_STANDARD_SCAFFOLDING), "standard"
    return list(_MIN_SCAFFOLDING), "minimal"


def phase_bundle(mastery: int, ratio: float) -> List[str]:
    if mastery >= HIGH_MASTERY_THRESHOLD and ratio < MODERATE_STRUGGLE_RATIO:
        return list(_PHASE_ACCELERATION)
    if mastery < EXTENDED_PHASE_THRESHOLD:
        return list(_EXTENDED_PHASES)
    if ratio > HIGH_STRUGGLE_RATIO and mastery >= LOW_MASTERY_THRESHOLD:
        return list(_CORRECTION_HEAVY)
    return []


def profile_bundle(profile: StudentProfile) -> List[str]:
    lines: List[str] = []
    if profile.strengths:
        lines += [
            f"LEVERAGE STRENGTHS: Student excels at {', '.join(profile.strengths)}.",
            "- Use these strengths as bridges to new concepts",
            f'- Reference them: "You\'re good at {profile.strengths[0]}, this is similar..."',
        ]
    if profile.struggles:
        lines += [
            f"KNOWN STRUGGLES: Student has difficulty with {', '.join(profile.struggles)}.",
            "- Anticipate confusion here and pre-explain the connections",
            "- Review basics first; do not assume prior knowledge in these areas",
        ]
    return lines


def generate_adaptive_directives(
    profile: StudentProfile,
    recent_history: Sequence[HistoryItem],
    current_mastery: int,
) -> AdaptiveDirectives:
    ratio = struggle_ratio(recent_history)
    scaffolding, encouragement = scaffolding_bundle(ratio)
    return AdaptiveDirectives(
        style_adjustments=style_bundle(profile.learning_style),
        difficulty_adjustments=difficulty_bundle(current_mastery),
        scaffolding_needs=scaffolding + profile_bundle(profile),
        phase_guidance=phase_bundle(current_mastery, ratio),
        encouragement_level=encouragement,
        current_mastery=current_mastery,
        struggle_ratio=ratio,
    )


def format_directives_for_prompt(directives: AdaptiveDirectives) -> str:
    lines = [
        RULE,
        "ADAPTIVE TEACHING DIRECTIVES",
        "CRITICAL: Follow these instructions to personalize teaching",
        RULE,
    ]
    for block in (
        directives.style_adjustments,
        directives.difficulty_adjustments,
        directives.scaffolding_needs,
        directives.phase_guidance,
    ):
        if block:
            lines.append("")
            lines.extend(block)

    lines += ["", f"ENCOURAGEMENT LEVEL: {directives.encouragement_level.upper()}",
              "- Adjust tone and enthusiasm accordingly"]
    if directives.encouragement_level == "high":
        lines.append("- Be VERY encouraging, celebrate every small success")
    elif directives.encouragement_level == "minimal":
        lines.append("- Be supportive but not overbearing; the student is doing well")

    lines += ["", RULE, f"Current Mastery: {directives.current_mastery}%", RULE]
    return "\n".join(lines)

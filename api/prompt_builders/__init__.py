"""
App prompt builders: all prompt text and templates live here; services pass in data
and the builders render it with the library core template helpers.
"""

from api.prompt_builders.teaching import build_teaching_prompt, build_mastery_tag
from api.prompt_builders.routing import build_routing_prompt
from api.prompt_builders.review import build_validation_prompt, build_evidence_prompt
from api.prompt_builders.instructions import build_combined_instructions

__all__ = [
    "build_teaching_prompt",
    "build_mastery_tag",
    "build_routing_prompt",
    "build_validation_prompt",
    "build_evidence_prompt",
    "build_combined_instructions",
]

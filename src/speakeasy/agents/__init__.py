"""
Agents module.

Contains the LLM-backed tutor that answers the learner.
"""

from speakeasy.agents.response_generator import (
    Correction,
    GenerationError,
    GenerationErrorKind,
    ResponseGenerator,
    TutorReply,
    TutorRequest,
    TutorResponseGenerator,
)

__all__ = [
    "Correction",
    "GenerationError",
    "GenerationErrorKind",
    "ResponseGenerator",
    "TutorReply",
    "TutorRequest",
    "TutorResponseGenerator",
]

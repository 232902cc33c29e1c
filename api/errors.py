"""
Domain errors raised by the tutoring services.

Only failures that must stop a turn are raised; analytics, evidence and validation
problems are logged and absorbed where they happen.
"""


class TutorError(Exception):
    """Base class for tutoring errors."""


class LessonNotFoundError(TutorError):
    def __init__(self, lesson_id: str):
        super().__init__(f"Lesson {lesson_id} not found")
        self.lesson_id = lesson_id


class ProfileNotFoundError(TutorError):
    def __init__(self, user_id: str):
        super().__init__(f"User profile {user_id} not found")
        self.user_id = user_id


class AgentNotFoundError(TutorError):
    def __init__(self, name: str):
        super().__init__(f"Agent {name} is not registered or not active")
        self.name = name


class CorrectionStateError(TutorError):
    """Raised when a pending correction is asked to make a transition it does not allow."""


class SynthesisError(TutorError):
    """Speech synthesis failed for a chunk or a whole response."""

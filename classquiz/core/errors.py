"""Exception types raised by the quiz core."""

from __future__ import annotations


class QuizError(Exception):
    """Base class for every error raised by the quiz core."""


class QuizNotFoundError(QuizError):
    """Raised when a quiz id does not resolve to a stored quiz."""

    def __init__(self, quiz_id: str) -> None:
        super().__init__(f"Quiz {quiz_id} not found.")
        self.quiz_id = quiz_id


class DocumentNotFoundError(QuizError):
    """Raised by a document store when a record does not exist."""


class StoreUnavailableError(QuizError):
    """Transient failure talking to the document store. Safe to retry manually."""


class AttemptNotAllowedError(QuizError):
    """Raised when a student may not start a new attempt."""

    def __init__(self, reason: str) -> None:
        messages = {
            "max_attempts": "Maximum attempts reached.",
            "not_published": "Quiz is not open for submissions.",
        }
        super().__init__(messages.get(reason, reason))
        self.reason = reason


class InvalidStatusTransitionError(QuizError):
    """Raised when a quiz status change is not in the transition table."""


class QuizLockedError(QuizError):
    """Raised when editing questions of a published or closed quiz."""


class QuestionValidationError(QuizError):
    """Raised when a question violates the edit-time shape rules."""


class ScoringKeyError(QuizError):
    """Raised when a question carries no usable answer key."""


class SessionStateError(QuizError):
    """Raised when a session operation is invalid in the current state."""


class FinalizeInProgressError(SessionStateError):
    """Raised when finalize is called while another finalize is in flight."""


class FinalizeGuardError(QuizError):
    """Raised when a voluntary finalize is attempted with no answers."""

"""Quiz status transitions and attempt gating."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging

from classquiz.core.errors import AttemptNotAllowedError, InvalidStatusTransitionError
from classquiz.core.models import Quiz, QuizStatus, Submission, utc_now
from classquiz.core.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: frozenset[tuple[QuizStatus, QuizStatus]] = frozenset(
    {
        (QuizStatus.DRAFT, QuizStatus.APPROVED),
        (QuizStatus.APPROVED, QuizStatus.PUBLISHED),
        (QuizStatus.PUBLISHED, QuizStatus.CLOSED),
    }
)

REASON_MAX_ATTEMPTS = "max_attempts"
REASON_NOT_PUBLISHED = "not_published"


@dataclass(frozen=True, slots=True)
class AttemptDecision:
    allowed: bool
    reason: str | None = None


def can_start_attempt(quiz: Quiz, prior_submissions: Sequence[Submission]) -> AttemptDecision:
    """Decide whether a student with ``prior_submissions`` may start another attempt."""
    if quiz.status is not QuizStatus.PUBLISHED:
        return AttemptDecision(allowed=False, reason=REASON_NOT_PUBLISHED)
    max_attempts = quiz.settings.max_attempts
    if max_attempts and len(prior_submissions) >= max_attempts:
        return AttemptDecision(allowed=False, reason=REASON_MAX_ATTEMPTS)
    return AttemptDecision(allowed=True)


def check_status_transition(quiz: Quiz, target: QuizStatus) -> None:
    """Raise InvalidStatusTransitionError unless ``quiz`` may move to ``target``."""
    if (quiz.status, target) not in ALLOWED_TRANSITIONS:
        raise InvalidStatusTransitionError(
            f"Cannot move quiz from {quiz.status.value} to {target.value}."
        )
    if target in (QuizStatus.APPROVED, QuizStatus.PUBLISHED) and not quiz.questions:
        raise InvalidStatusTransitionError(
            f"A quiz without questions cannot be {target.value}."
        )


class LifecycleController:
    """Gate for new submissions and quiz status changes."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def can_start_attempt(
        self, quiz: Quiz, prior_submissions: Sequence[Submission]
    ) -> AttemptDecision:
        return can_start_attempt(quiz, prior_submissions)

    async def create_attempt(self, quiz: Quiz, student_id: str) -> Submission:
        """Create a new in-progress submission after re-checking the attempt count.

        The count is re-read from the store right before the insert. Two tabs
        starting at the same moment can still both pass against an eventually
        consistent store; only a server-side constraint closes that gap.
        """
        prior = await self._store.list_submissions(quiz.id, student_id)
        decision = can_start_attempt(quiz, prior)
        if not decision.allowed:
            logger.info(
                "Attempt denied for student %s on quiz %s: %s",
                student_id,
                quiz.id,
                decision.reason,
            )
            raise AttemptNotAllowedError(decision.reason or "denied")

        submission = await self._store.create_submission(
            quiz.id,
            student_id,
            attempt_number=len(prior) + 1,
            total_points=quiz.total_points,
        )
        logger.info(
            "Started attempt %d for student %s on quiz %s",
            submission.attempt_number,
            student_id,
            quiz.id,
        )
        return submission

    async def advance_quiz_status(self, quiz: Quiz, target: QuizStatus) -> Quiz:
        """Validate and persist a status change. Returns the updated quiz."""
        check_status_transition(quiz, target)
        await self._store.update_quiz_status(quiz.id, target)
        previous = quiz.status
        quiz.status = target
        quiz.updated_at = utc_now()
        if target is QuizStatus.PUBLISHED and quiz.published_at is None:
            quiz.published_at = quiz.updated_at
        logger.info("Quiz %s moved from %s to %s", quiz.id, previous.value, target.value)
        return quiz

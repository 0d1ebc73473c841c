"""Resumable, optionally timed quiz-taking session for one student."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum
import logging
import time
from typing import Any

from classquiz.constants.quiz_constants import COUNTDOWN_INTERVAL_SECONDS
from classquiz.core.errors import (
    FinalizeGuardError,
    FinalizeInProgressError,
    QuizNotFoundError,
    SessionStateError,
)
from classquiz.core.models import Question, Quiz, Submission, utc_now
from classquiz.core.question_rules import normalize_response
from classquiz.core.services.document_store import DocumentStore
from classquiz.core.services.resume_cache import ResumeCache, ResumeSnapshot, resume_key
from classquiz.core.services.submission_service import SubmissionService

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    ERROR = "error"


class QuizSession:
    """Drives one student through one quiz attempt.

    ``loading -> active -> submitting -> completed``. A failed load parks the
    session in ``error``; a failed finalize drops back to ``active`` with the
    answers intact. Every change while active is mirrored to the resume cache
    so a reopened session continues where it stopped.
    """

    def __init__(
        self,
        quiz_id: str,
        student_id: str,
        *,
        store: DocumentStore,
        submissions: SubmissionService,
        cache: ResumeCache,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._quiz_id = quiz_id
        self._student_id = student_id
        self._store = store
        self._submissions = submissions
        self._cache = cache
        self._cache_key = resume_key(quiz_id)
        self._clock = clock

        self._state = SessionState.LOADING
        self._quiz: Quiz | None = None
        self._submission: Submission | None = None
        self._error: Exception | None = None

        self._answers: dict[str, Any] = {}
        self._answered_at: dict[str, datetime] = {}
        self._time_spent: dict[str, float] = {}
        self._current_index: int = 0
        self._entered_at: float | None = None

        self._remaining_seconds: int | None = None
        self._expired: bool = False
        self._countdown_task: asyncio.Task | None = None

        self._finalizing: bool = False

    # --- Loading ---

    async def load(self, start_countdown: bool = True) -> None:
        """Fetch the quiz and adopt or create the student's attempt.

        Any failure moves the session to ``error`` and is re-raised; the
        session does not retry on its own.
        """
        if self._state is not SessionState.LOADING:
            raise SessionStateError(f"Session already loaded (state: {self._state.value}).")

        snapshot = self._read_snapshot()
        if snapshot is not None:
            self._answers = dict(snapshot.answers)
            self._current_index = snapshot.current_index
            self._remaining_seconds = snapshot.remaining_seconds

        try:
            quiz = await self._store.get_quiz(self._quiz_id)
            if quiz is None:
                raise QuizNotFoundError(self._quiz_id)
            submission, resumed = await self._submissions.start_or_resume(quiz, self._student_id)
        except Exception as exc:
            self._state = SessionState.ERROR
            self._error = exc
            logger.warning("Could not load quiz %s for student %s: %s", self._quiz_id, self._student_id, exc)
            raise

        self._quiz = quiz
        self._submission = submission
        self._reconcile_snapshot(snapshot if resumed else None)
        if snapshot is not None and not resumed:
            self._delete_snapshot()

        self._state = SessionState.ACTIVE
        self._entered_at = self._clock()
        self._write_snapshot()
        logger.info(
            "Session %s for student %s on quiz %s (%d answers restored)",
            "resumed" if resumed else "started",
            self._student_id,
            self._quiz_id,
            len(self._answers),
        )

        if self._remaining_seconds is not None and self._remaining_seconds <= 0:
            # Resumed after the time ran out while the student was away.
            try:
                await self._expire()
            except Exception:
                logger.exception("Timed finalize failed for quiz %s", self._quiz_id)
        elif start_countdown:
            self.start_countdown()

    def _reconcile_snapshot(self, snapshot: ResumeSnapshot | None) -> None:
        """Keep only the snapshot state that still fits the loaded quiz."""
        quiz = self._quiz
        limit = quiz.settings.time_limit_seconds
        if snapshot is None:
            self._answers = {}
            self._current_index = 0
            self._remaining_seconds = limit
            return

        restored: dict[str, Any] = {}
        for question_id, response in snapshot.answers.items():
            question = quiz.find_question(question_id)
            if question is None:
                continue
            try:
                restored[question_id] = normalize_response(question, response)
            except ValueError:
                logger.warning("Dropping unreadable cached answer for question %s", question_id)
        self._answers = restored

        last_index = max(0, len(quiz.questions) - 1)
        self._current_index = min(max(0, snapshot.current_index), last_index)

        if limit is None:
            self._remaining_seconds = None
        elif snapshot.remaining_seconds is None:
            self._remaining_seconds = limit
        else:
            self._remaining_seconds = max(0, min(snapshot.remaining_seconds, limit))

    # --- Read access ---

    def get_state(self) -> SessionState:
        return self._state

    def get_error(self) -> Exception | None:
        return self._error

    def get_quiz(self) -> Quiz | None:
        return self._quiz

    def get_submission(self) -> Submission | None:
        return self._submission

    def get_questions(self) -> list[Question]:
        if self._quiz is None:
            return []
        return sorted(self._quiz.questions, key=lambda q: q.order)

    def get_question_count(self) -> int:
        return len(self._quiz.questions) if self._quiz else 0

    def get_current_index(self) -> int:
        return self._current_index

    def get_current_question(self) -> Question | None:
        questions = self.get_questions()
        if not questions:
            return None
        return questions[self._current_index]

    def get_answers(self) -> dict[str, Any]:
        return dict(self._answers)

    def get_answered_count(self) -> int:
        return len(self._answers)

    def get_remaining_seconds(self) -> int | None:
        return self._remaining_seconds

    def is_expired(self) -> bool:
        return self._expired

    def is_completed(self) -> bool:
        return self._state is SessionState.COMPLETED

    def get_progress(self) -> float:
        """Position of the current question as a percentage of the quiz.

        This tracks navigation, not completion; use ``get_answered_count`` for
        how many questions have an answer.
        """
        count = self.get_question_count()
        if count == 0:
            return 0.0
        return (self._current_index + 1) / count * 100

    # --- Answering and navigation ---

    def set_answer(self, response: Any, question_id: str | None = None) -> None:
        """Record a response for ``question_id`` (default: the current question)."""
        self._ensure_answerable()
        question = self._resolve_question(question_id)
        self._answers[question.id] = normalize_response(question, response)
        self._answered_at[question.id] = utc_now()
        self._write_snapshot()

    def clear_answer(self, question_id: str | None = None) -> None:
        self._ensure_answerable()
        question = self._resolve_question(question_id)
        if self._answers.pop(question.id, None) is not None:
            self._answered_at.pop(question.id, None)
            self._write_snapshot()

    def next_question(self) -> int:
        self._ensure_active()
        if self._current_index < self.get_question_count() - 1:
            self._move_to(self._current_index + 1)
        return self._current_index

    def previous_question(self) -> int:
        self._ensure_active()
        if self._current_index > 0:
            self._move_to(self._current_index - 1)
        return self._current_index

    def go_to(self, index: int) -> int:
        self._ensure_active()
        if not 0 <= index < self.get_question_count():
            raise IndexError(f"Question index {index} out of range")
        self._move_to(index)
        return self._current_index

    def _move_to(self, index: int) -> None:
        if index == self._current_index:
            return
        self._record_time_on_current()
        self._current_index = index
        self._write_snapshot()

    def _record_time_on_current(self) -> None:
        now = self._clock()
        question = self.get_current_question()
        if question is not None and self._entered_at is not None:
            self._time_spent[question.id] = self._time_spent.get(question.id, 0.0) + (now - self._entered_at)
        self._entered_at = now

    def _resolve_question(self, question_id: str | None) -> Question:
        if question_id is None:
            question = self.get_current_question()
        else:
            question = self._quiz.find_question(question_id)
        if question is None:
            raise KeyError(f"Question {question_id} is not part of this quiz.")
        return question

    def _ensure_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise SessionStateError(f"Session is {self._state.value}, not active.")

    def _ensure_answerable(self) -> None:
        self._ensure_active()
        if self._expired:
            raise SessionStateError("Time is up; answers can no longer change.")

    # --- Countdown ---

    def start_countdown(self) -> None:
        """Start the one-second countdown on the running event loop."""
        if self._remaining_seconds is None or self._countdown_task is not None:
            return
        self._countdown_task = asyncio.get_running_loop().create_task(self._run_countdown())

    def stop_countdown(self) -> None:
        task = self._countdown_task
        self._countdown_task = None
        if task is None or task is asyncio.current_task():
            return
        if self._expired and self._state is SessionState.SUBMITTING:
            # The task is running the timed finalize; it exits once that settles.
            return
        task.cancel()

    async def _run_countdown(self) -> None:
        while not self._expired and self._state in (SessionState.ACTIVE, SessionState.SUBMITTING):
            await asyncio.sleep(COUNTDOWN_INTERVAL_SECONDS)
            try:
                await self.tick()
            except Exception:
                logger.exception("Timed finalize failed for quiz %s", self._quiz_id)

    async def tick(self) -> None:
        """Advance the countdown by one second; at zero the session is finalized."""
        if self._state is not SessionState.ACTIVE or self._remaining_seconds is None or self._expired:
            return
        self._remaining_seconds = max(0, self._remaining_seconds - 1)
        if self._remaining_seconds > 0:
            self._write_snapshot()
            return
        await self._expire()

    async def _expire(self) -> None:
        self._expired = True
        self._write_snapshot()
        logger.info("Time limit reached for student %s on quiz %s", self._student_id, self._quiz_id)
        await self.finalize(timed_out=True)

    # --- Finalization ---

    async def finalize(self, timed_out: bool = False) -> Submission:
        """Score and submit the attempt exactly once.

        Voluntary finalization needs at least one answer. On failure the
        session returns to ``active`` and the error is re-raised so the
        student can retry.
        """
        if self._finalizing:
            raise FinalizeInProgressError("Submission is already being sent.")
        self._ensure_active()
        forced = timed_out or self._expired
        if not forced and not self._answers:
            raise FinalizeGuardError("Answer at least one question before finishing the quiz.")

        self._finalizing = True
        self._state = SessionState.SUBMITTING
        self._error = None
        try:
            self._record_time_on_current()
            submission = await self._submissions.finalize(
                self._quiz,
                self._submission,
                dict(self._answers),
                answered_at=dict(self._answered_at),
                time_spent=dict(self._time_spent),
            )
        except Exception as exc:
            self._error = exc
            logger.warning("Finalize failed for submission %s: %s", self._submission.id, exc)
            raise
        else:
            self._submission = submission
            self._state = SessionState.COMPLETED
            self._delete_snapshot()
            self.stop_countdown()
            return submission
        finally:
            self._finalizing = False
            if self._state is SessionState.SUBMITTING:
                self._state = SessionState.ACTIVE

    # --- Resume snapshot ---

    def _read_snapshot(self) -> ResumeSnapshot | None:
        try:
            snapshot = self._cache.load(self._cache_key)
        except (OSError, ValueError) as exc:
            logger.warning("Resume snapshot for quiz %s unavailable: %s", self._quiz_id, exc)
            return None
        if snapshot is not None and snapshot.quiz_id != self._quiz_id:
            return None
        return snapshot

    def _write_snapshot(self) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        snapshot = ResumeSnapshot(
            quiz_id=self._quiz_id,
            answers=dict(self._answers),
            current_index=self._current_index,
            remaining_seconds=self._remaining_seconds,
        )
        try:
            self._cache.save(self._cache_key, snapshot)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Could not write resume snapshot for quiz %s: %s", self._quiz_id, exc)

    def _delete_snapshot(self) -> None:
        try:
            self._cache.delete(self._cache_key)
        except OSError as exc:
            logger.warning("Could not delete resume snapshot for quiz %s: %s", self._quiz_id, exc)

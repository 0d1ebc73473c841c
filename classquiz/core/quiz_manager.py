"""Business logic shared between the HTTP layer and the quiz services."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
import logging
from typing import Any

from classquiz.core.draft_importer import DraftGenerator, DraftImportResult, import_draft_questions
from classquiz.core.errors import SessionStateError
from classquiz.core.models import Difficulty, Question, Quiz, QuizSettings, QuizStatus, Submission
from classquiz.core.services.document_store import DocumentStore, InMemoryDocumentStore
from classquiz.core.services.lifecycle import LifecycleController
from classquiz.core.services.quiz_editor import QuizEditor
from classquiz.core.services.quiz_session import QuizSession, SessionState
from classquiz.core.services.resume_cache import MemoryResumeCache, ResumeCache
from classquiz.core.services.submission_service import ManualGrade, SubmissionService

logger = logging.getLogger(__name__)


class QuizManager:
    """Facade for quiz services: editor, lifecycle, submissions and live sessions."""

    def __init__(
        self,
        store: DocumentStore | None = None,
        cache_factory: Callable[[str], ResumeCache] | None = None,
        start_countdowns: bool = True,
    ) -> None:
        self._store = store if store is not None else InMemoryDocumentStore()
        self._lifecycle = LifecycleController(self._store)
        self._submissions = SubmissionService(self._store, self._lifecycle)
        self._editor = QuizEditor(self._store)

        # One resume cache per student, like one browser profile per student.
        self._cache_factory = cache_factory or (lambda _student_id: MemoryResumeCache())
        self._caches: dict[str, ResumeCache] = {}
        self._sessions: dict[tuple[str, str], QuizSession] = {}
        self._session_lock = asyncio.Lock()
        self._start_countdowns = start_countdowns

    # --- Quiz Authoring Delegation ---

    async def create_quiz(
        self,
        teacher_id: str,
        title: str,
        *,
        description: str = "",
        settings: QuizSettings | None = None,
        class_ids: Iterable[str] = (),
        questions: Iterable[Question] = (),
    ) -> Quiz:
        return await self._editor.create_quiz(
            teacher_id,
            title,
            description=description,
            settings=settings,
            class_ids=class_ids,
            questions=questions,
        )

    async def get_quiz(self, quiz_id: str) -> Quiz:
        return await self._editor.get_quiz(quiz_id)

    async def list_quizzes(self, teacher_id: str | None = None) -> list[Quiz]:
        return await self._store.list_quizzes(teacher_id)

    async def add_question(self, quiz_id: str, question: Question) -> Quiz:
        return await self._editor.add_question(quiz_id, question)

    async def update_question(self, quiz_id: str, question: Question) -> Quiz:
        return await self._editor.update_question(quiz_id, question)

    async def delete_question(self, quiz_id: str, question_id: str) -> Quiz:
        return await self._editor.delete_question(quiz_id, question_id)

    async def move_question(self, quiz_id: str, question_id: str, new_index: int) -> Quiz:
        return await self._editor.move_question(quiz_id, question_id, new_index)

    async def update_settings(self, quiz_id: str, **changes: Any) -> Quiz:
        return await self._editor.update_settings(quiz_id, **changes)

    async def import_draft(
        self,
        quiz_id: str,
        raw_items: Iterable[Any],
        default_difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> DraftImportResult:
        """Add the usable draft questions to a quiz and report the rest."""
        result = import_draft_questions(raw_items, default_difficulty)
        if result.questions:
            await self._editor.add_questions(quiz_id, result.questions)
        logger.info(
            "Imported %d draft questions into quiz %s (%d rejected)",
            len(result.questions),
            quiz_id,
            len(result.rejected),
        )
        return result

    async def generate_draft(
        self,
        quiz_id: str,
        generator: DraftGenerator,
        source: str,
        default_difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> DraftImportResult:
        raw_items = await generator.generate_draft(source)
        return await self.import_draft(quiz_id, raw_items, default_difficulty)

    # --- Lifecycle Delegation ---

    async def advance_quiz_status(self, quiz_id: str, target: QuizStatus) -> Quiz:
        quiz = await self._editor.get_quiz(quiz_id)
        return await self._lifecycle.advance_quiz_status(quiz, target)

    # --- Session Delegation ---

    async def open_session(self, student_id: str, quiz_id: str) -> QuizSession:
        """Return the student's live session for ``quiz_id``, loading a new one if needed."""
        key = (student_id, quiz_id)
        async with self._session_lock:
            session = self._sessions.get(key)
            if session is not None and session.get_state() in (
                SessionState.ACTIVE,
                SessionState.SUBMITTING,
            ):
                return session

            session = QuizSession(
                quiz_id,
                student_id,
                store=self._store,
                submissions=self._submissions,
                cache=self._cache_for(student_id),
            )
            await session.load(start_countdown=self._start_countdowns)
            self._sessions[key] = session
            return session

    def get_session(self, student_id: str, quiz_id: str) -> QuizSession:
        session = self._sessions.get((student_id, quiz_id))
        if session is None:
            raise SessionStateError(f"No open session for quiz {quiz_id}.")
        return session

    async def finalize_session(self, student_id: str, quiz_id: str) -> Submission:
        return await self.get_session(student_id, quiz_id).finalize()

    def close_session(self, student_id: str, quiz_id: str) -> None:
        """Forget a session; its resume snapshot stays in the cache."""
        session = self._sessions.pop((student_id, quiz_id), None)
        if session is not None:
            session.stop_countdown()
            logger.debug("Closed session of student %s on quiz %s", student_id, quiz_id)

    def _cache_for(self, student_id: str) -> ResumeCache:
        cache = self._caches.get(student_id)
        if cache is None:
            cache = self._cache_factory(student_id)
            self._caches[student_id] = cache
        return cache

    # --- Submission Delegation ---

    async def get_submission(self, submission_id: str) -> Submission:
        return await self._submissions.get_submission(submission_id)

    async def list_submissions(self, quiz_id: str, student_id: str) -> list[Submission]:
        return await self._store.list_submissions(quiz_id, student_id)

    async def grade_submission(
        self, submission_id: str, grades: Iterable[ManualGrade]
    ) -> Submission:
        return await self._submissions.apply_manual_grades(submission_id, grades)

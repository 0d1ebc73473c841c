"""Teacher-side authoring of quiz documents."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import fields, replace
from uuid import uuid4

from classquiz.core.errors import QuestionValidationError, QuizLockedError, QuizNotFoundError
from classquiz.core.models import Question, Quiz, QuizSettings, QuizStatus, utc_now
from classquiz.core.question_rules import validate_question, validate_settings
from classquiz.core.services.document_store import DocumentStore

EDITABLE_STATUSES = (QuizStatus.DRAFT, QuizStatus.APPROVED)


def new_question_id() -> str:
    return f"q_{uuid4().hex[:12]}"


class QuizEditor:
    """Creates quizzes and mutates their question lists.

    Questions can only change while the quiz is a draft or approved; every
    change is validated and the ``order`` field is renumbered to match the
    list position.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

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
        cleaned_title = title.strip()
        if not cleaned_title:
            raise ValueError("Quiz title must not be empty.")
        quiz = Quiz(
            id=uuid4().hex,
            title=cleaned_title,
            teacher_id=teacher_id,
            description=description.strip(),
            settings=validate_settings(replace(settings) if settings else QuizSettings()),
            class_ids=list(class_ids),
        )
        for question in questions:
            self._insert(quiz, question, len(quiz.questions))
        await self._store.save_quiz(quiz)
        return quiz

    async def get_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self._store.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(quiz_id)
        return quiz

    async def add_question(self, quiz_id: str, question: Question) -> Quiz:
        return await self.add_questions(quiz_id, [question])

    async def add_questions(self, quiz_id: str, questions: Iterable[Question]) -> Quiz:
        quiz = await self._editable_quiz(quiz_id)
        for question in questions:
            self._insert(quiz, question, len(quiz.questions))
        return await self._save(quiz)

    async def update_question(self, quiz_id: str, question: Question) -> Quiz:
        quiz = await self._editable_quiz(quiz_id)
        index = self._index_of(quiz, question.id)
        validate_question(question)
        quiz.questions[index] = question
        return await self._save(quiz)

    async def delete_question(self, quiz_id: str, question_id: str) -> Quiz:
        quiz = await self._editable_quiz(quiz_id)
        quiz.questions.pop(self._index_of(quiz, question_id))
        return await self._save(quiz)

    async def move_question(self, quiz_id: str, question_id: str, new_index: int) -> Quiz:
        quiz = await self._editable_quiz(quiz_id)
        if not 0 <= new_index < len(quiz.questions):
            raise IndexError(f"Question index {new_index} out of range")
        question = quiz.questions.pop(self._index_of(quiz, question_id))
        quiz.questions.insert(new_index, question)
        return await self._save(quiz)

    async def update_settings(self, quiz_id: str, **changes: object) -> Quiz:
        quiz = await self.get_quiz(quiz_id)
        if quiz.status is QuizStatus.CLOSED:
            raise QuizLockedError("Settings of a closed quiz cannot change.")
        known = {f.name for f in fields(QuizSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown quiz settings: {', '.join(sorted(unknown))}")
        quiz.settings = validate_settings(replace(quiz.settings, **changes))
        return await self._save(quiz)

    async def _editable_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self.get_quiz(quiz_id)
        if quiz.status not in EDITABLE_STATUSES:
            raise QuizLockedError(
                f"Questions of a {quiz.status.value} quiz can no longer be edited."
            )
        return quiz

    async def _save(self, quiz: Quiz) -> Quiz:
        for position, question in enumerate(quiz.questions):
            question.order = position
        quiz.updated_at = utc_now()
        await self._store.save_quiz(quiz)
        return quiz

    @staticmethod
    def _insert(quiz: Quiz, question: Question, position: int) -> None:
        if not question.id:
            question.id = new_question_id()
        if quiz.find_question(question.id) is not None:
            raise QuestionValidationError(f"Question id {question.id} already exists in this quiz.")
        validate_question(question)
        question.order = position
        quiz.questions.insert(position, question)

    @staticmethod
    def _index_of(quiz: Quiz, question_id: str) -> int:
        for index, question in enumerate(quiz.questions):
            if question.id == question_id:
                return index
        raise KeyError(f"Question {question_id} is not part of quiz {quiz.id}.")

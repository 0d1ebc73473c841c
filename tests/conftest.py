from __future__ import annotations

import asyncio

import pytest

from classquiz.core.models import (
    BlankSlot,
    FillBlankQuestion,
    MatchingPair,
    MatchingQuestion,
    MultipleChoiceOption,
    MultipleChoiceQuestion,
    OpenEndedQuestion,
    Quiz,
    QuizSettings,
    QuizStatus,
    TrueFalseQuestion,
)
from classquiz.core.services.document_store import InMemoryDocumentStore
from classquiz.core.services.lifecycle import LifecycleController
from classquiz.core.services.resume_cache import MemoryResumeCache
from classquiz.core.services.submission_service import SubmissionService


def multiple_choice(question_id: str = "q_mc", correct: tuple[str, ...] = ("b",), points: int = 10, order: int = 0):
    return MultipleChoiceQuestion(
        id=question_id,
        prompt="Pick the right one",
        points=points,
        order=order,
        options=[
            MultipleChoiceOption(id=option_id, text=f"Option {option_id}", is_correct=option_id in correct)
            for option_id in ("a", "b", "c")
        ],
    )


def true_false(question_id: str = "q_tf", answer: bool = True, points: int = 10, order: int = 0):
    return TrueFalseQuestion(
        id=question_id,
        prompt="The sky is blue",
        points=points,
        order=order,
        correct_answer=answer,
    )


def fill_blank(question_id: str = "q_fb", points: int = 10, order: int = 0):
    return FillBlankQuestion(
        id=question_id,
        prompt="Complete the sentence",
        points=points,
        order=order,
        text_with_blanks="The capital of France is {{b1}} and of Italy is {{b2}}.",
        blanks=[
            BlankSlot(id="b1", correct_answer="Paris"),
            BlankSlot(id="b2", correct_answer="Rome", alternatives=["Roma"], case_sensitive=True),
        ],
    )


def matching(question_id: str = "q_mt", points: int = 10, order: int = 0):
    return MatchingQuestion(
        id=question_id,
        prompt="Match the animals to their sounds",
        points=points,
        order=order,
        pairs=[
            MatchingPair(id="p1", left="Dog", right="Bark"),
            MatchingPair(id="p2", left="Cat", right="Meow"),
        ],
    )


def open_ended(question_id: str = "q_oe", points: int = 10, order: int = 0):
    return OpenEndedQuestion(
        id=question_id,
        prompt="Explain photosynthesis",
        points=points,
        order=order,
        sample_answer="Plants turn light into sugar.",
    )


def make_quiz(
    questions=None,
    *,
    quiz_id: str = "quiz-1",
    status: QuizStatus = QuizStatus.PUBLISHED,
    **settings,
) -> Quiz:
    if questions is None:
        questions = [multiple_choice(order=0), true_false(order=1)]
    return Quiz(
        id=quiz_id,
        title="Science check",
        teacher_id="teacher-1",
        questions=list(questions),
        settings=QuizSettings(**settings),
        status=status,
    )


def run(coroutine):
    return asyncio.run(coroutine)


class CountingStore(InMemoryDocumentStore):
    """In-memory store that counts finalize calls and can be told to fail them."""

    def __init__(self) -> None:
        super().__init__()
        self.finalize_calls = 0
        self.fail_next_finalize: Exception | None = None
        self.finalize_delay = 0.0

    async def finalize_submission(self, submission_id, answers, *, summary, submitted_at):
        self.finalize_calls += 1
        if self.finalize_delay:
            await asyncio.sleep(self.finalize_delay)
        if self.fail_next_finalize is not None:
            error, self.fail_next_finalize = self.fail_next_finalize, None
            raise error
        await super().finalize_submission(
            submission_id, answers, summary=summary, submitted_at=submitted_at
        )


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def lifecycle(store):
    return LifecycleController(store)


@pytest.fixture
def submissions(store, lifecycle):
    return SubmissionService(store, lifecycle)


@pytest.fixture
def cache():
    return MemoryResumeCache()

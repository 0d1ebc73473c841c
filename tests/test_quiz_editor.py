from __future__ import annotations

import pytest

from classquiz.core.errors import QuestionValidationError, QuizLockedError, QuizNotFoundError
from classquiz.core.models import (
    AnswerVisibility,
    MultipleChoiceOption,
    QuizSettings,
    QuizStatus,
    Submission,
    SubmissionStatus,
)
from classquiz.core.services.quiz_editor import QuizEditor
from classquiz.core.services.submission_service import answers_visible

from conftest import matching, multiple_choice, run, true_false


@pytest.fixture
def editor(store):
    return QuizEditor(store)


def test_create_quiz_starts_as_draft(editor, store):
    quiz = run(editor.create_quiz("teacher-1", "  Fractions  ", questions=[multiple_choice(), true_false()]))
    assert quiz.title == "Fractions"
    assert quiz.status is QuizStatus.DRAFT
    assert [q.order for q in quiz.questions] == [0, 1]
    assert quiz.total_points == 20
    assert run(store.get_quiz(quiz.id)).title == "Fractions"


def test_blank_title_is_rejected(editor):
    with pytest.raises(ValueError):
        run(editor.create_quiz("teacher-1", "   "))


def test_added_question_gets_an_id(editor):
    quiz = run(editor.create_quiz("teacher-1", "Quiz"))
    question = true_false(question_id="")
    quiz = run(editor.add_question(quiz.id, question))
    assert quiz.questions[0].id.startswith("q_")


def test_invalid_question_is_rejected(editor):
    quiz = run(editor.create_quiz("teacher-1", "Quiz"))
    question = multiple_choice()
    question.options = [MultipleChoiceOption(id="a", text="Only", is_correct=True)]
    with pytest.raises(QuestionValidationError):
        run(editor.add_question(quiz.id, question))
    assert run(editor.get_quiz(quiz.id)).questions == []


def test_duplicate_question_id_is_rejected(editor):
    quiz = run(editor.create_quiz("teacher-1", "Quiz", questions=[true_false()]))
    with pytest.raises(QuestionValidationError):
        run(editor.add_question(quiz.id, true_false()))


def test_move_and_delete_renumber_order(editor):
    quiz = run(
        editor.create_quiz(
            "teacher-1",
            "Quiz",
            questions=[multiple_choice(), true_false(), matching()],
        )
    )
    quiz = run(editor.move_question(quiz.id, "q_mt", 0))
    assert [(q.id, q.order) for q in quiz.questions] == [("q_mt", 0), ("q_mc", 1), ("q_tf", 2)]
    quiz = run(editor.delete_question(quiz.id, "q_mc"))
    assert [(q.id, q.order) for q in quiz.questions] == [("q_mt", 0), ("q_tf", 1)]
    with pytest.raises(KeyError):
        run(editor.delete_question(quiz.id, "q_mc"))


def test_update_question_replaces_in_place(editor):
    quiz = run(editor.create_quiz("teacher-1", "Quiz", questions=[multiple_choice(), true_false()]))
    quiz = run(editor.update_question(quiz.id, true_false(answer=False, points=5)))
    updated = quiz.find_question("q_tf")
    assert updated.correct_answer is False
    assert updated.order == 1
    assert quiz.total_points == 15


def test_published_quiz_questions_are_locked(editor, store):
    quiz = run(editor.create_quiz("teacher-1", "Quiz", questions=[true_false()]))
    run(store.update_quiz_status(quiz.id, QuizStatus.PUBLISHED))
    with pytest.raises(QuizLockedError):
        run(editor.add_question(quiz.id, multiple_choice()))
    updated = run(editor.update_settings(quiz.id, time_limit_minutes=15))
    assert updated.settings.time_limit_minutes == 15


def test_closed_quiz_settings_are_locked(editor, store):
    quiz = run(editor.create_quiz("teacher-1", "Quiz", questions=[true_false()]))
    run(store.update_quiz_status(quiz.id, QuizStatus.CLOSED))
    with pytest.raises(QuizLockedError):
        run(editor.update_settings(quiz.id, max_attempts=3))


def test_unknown_setting_is_rejected(editor):
    quiz = run(editor.create_quiz("teacher-1", "Quiz"))
    with pytest.raises(ValueError):
        run(editor.update_settings(quiz.id, colour="blue"))


def test_missing_quiz(editor):
    with pytest.raises(QuizNotFoundError):
        run(editor.get_quiz("nope"))


def test_settings_strings_are_coerced_to_visibility_policy(editor):
    quiz = run(editor.create_quiz("teacher-1", "Quiz", questions=[true_false()]))
    quiz = run(editor.update_settings(quiz.id, show_correct_answers="never"))

    assert quiz.settings.show_correct_answers is AnswerVisibility.NEVER
    submitted = Submission(
        id="s1",
        quiz_id=quiz.id,
        student_id="student-1",
        total_points=10,
        attempt_number=1,
        status=SubmissionStatus.SUBMITTED,
    )
    assert answers_visible(run(editor.get_quiz(quiz.id)), submitted) is False


@pytest.mark.parametrize(
    "changes",
    [
        {"max_attempts": 0},
        {"passing_score": 101},
        {"passing_score": -1},
        {"time_limit_minutes": 0},
        {"max_attempts": True},
        {"show_correct_answers": "sometimes"},
    ],
)
def test_out_of_range_settings_are_rejected(editor, changes):
    quiz = run(editor.create_quiz("teacher-1", "Quiz", questions=[true_false()]))
    with pytest.raises(ValueError):
        run(editor.update_settings(quiz.id, **changes))
    stored = run(editor.get_quiz(quiz.id))
    assert stored.settings.max_attempts == 1
    assert stored.settings.passing_score == 60
    assert stored.settings.show_correct_answers is AnswerVisibility.AFTER_SUBMISSION


def test_create_quiz_validates_settings(editor):
    with pytest.raises(ValueError):
        run(editor.create_quiz("teacher-1", "Quiz", settings=QuizSettings(max_attempts=0)))

from __future__ import annotations

import pytest

from classquiz.core.errors import SessionStateError
from classquiz.core.models import AnswerVisibility, SubmissionStatus
from classquiz.core.services.submission_service import ManualGrade, answers_visible

from conftest import make_quiz, multiple_choice, open_ended, run


def _submitted(store, submissions, quiz, answers):
    run(store.save_quiz(quiz))
    submission, _ = run(submissions.start_or_resume(quiz, "student-1"))
    return run(submissions.finalize(quiz, submission, answers))


def test_start_creates_then_resumes_same_submission(store, submissions):
    quiz = make_quiz()
    first, resumed_first = run(submissions.start_or_resume(quiz, "student-1"))
    again, resumed_again = run(submissions.start_or_resume(quiz, "student-1"))
    assert resumed_first is False
    assert resumed_again is True
    assert again.id == first.id
    assert len(run(store.list_submissions(quiz.id, "student-1"))) == 1


def test_finalize_records_scored_answers_in_quiz_order(store, submissions):
    quiz = make_quiz(passing_score=60)
    result = _submitted(store, submissions, quiz, {"q_tf": True, "q_mc": ["a"]})

    assert result.status is SubmissionStatus.SUBMITTED
    assert [answer.question_id for answer in result.answers] == ["q_mc", "q_tf"]
    assert result.score == 10
    assert result.percentage == 50
    assert result.passed is False
    assert result.submitted_at is not None

    stored = run(store.get_submission(result.id))
    assert stored.status is SubmissionStatus.SUBMITTED
    assert stored.score == 10
    assert store.finalize_calls == 1


def test_finalize_twice_is_rejected(store, submissions):
    quiz = make_quiz()
    result = _submitted(store, submissions, quiz, {"q_mc": ["b"]})
    with pytest.raises(SessionStateError):
        run(submissions.finalize(quiz, result, {"q_mc": ["b"]}))


def test_manual_grading_updates_totals(store, submissions):
    quiz = make_quiz([multiple_choice(order=0), open_ended(order=1)], passing_score=60)
    result = _submitted(store, submissions, quiz, {"q_mc": ["a"], "q_oe": "Sunlight feeds plants"})
    open_answer = next(a for a in result.answers if a.question_id == "q_oe")
    assert open_answer.is_correct is None

    graded = run(
        submissions.apply_manual_grades(
            result.id, [ManualGrade(question_id="q_oe", points_earned=7, feedback="Mostly right")]
        )
    )

    assert graded.status is SubmissionStatus.GRADED
    assert graded.graded_at is not None
    assert graded.score == 7
    assert graded.percentage == 35
    assert graded.passed is False
    graded_answer = next(a for a in graded.answers if a.question_id == "q_oe")
    assert graded_answer.is_correct is False
    assert graded_answer.feedback == "Mostly right"


def test_manual_grade_out_of_bounds_is_rejected(store, submissions):
    quiz = make_quiz([open_ended()])
    result = _submitted(store, submissions, quiz, {"q_oe": "text"})
    with pytest.raises(ValueError):
        run(submissions.apply_manual_grades(result.id, [ManualGrade(question_id="q_oe", points_earned=11)]))


def test_in_progress_submission_cannot_be_graded(store, submissions):
    quiz = make_quiz([open_ended()])
    run(store.save_quiz(quiz))
    submission, _ = run(submissions.start_or_resume(quiz, "student-1"))
    with pytest.raises(SessionStateError):
        run(submissions.apply_manual_grades(submission.id, []))


def test_answer_visibility_policies(store, submissions):
    quiz = make_quiz()
    submission, _ = run(submissions.start_or_resume(quiz, "student-1"))

    quiz.settings.show_correct_answers = AnswerVisibility.AFTER_SUBMISSION
    assert answers_visible(quiz, submission) is False
    submission.status = SubmissionStatus.SUBMITTED
    assert answers_visible(quiz, submission) is True

    quiz.settings.show_correct_answers = AnswerVisibility.NEVER
    assert answers_visible(quiz, submission) is False

    quiz.settings.show_correct_answers = AnswerVisibility.IMMEDIATELY
    assert answers_visible(quiz, None) is True

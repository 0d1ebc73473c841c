from __future__ import annotations

import asyncio

import pytest

from classquiz.core.errors import (
    AttemptNotAllowedError,
    FinalizeGuardError,
    FinalizeInProgressError,
    QuizNotFoundError,
    SessionStateError,
    StoreUnavailableError,
)
from classquiz.core.models import Submission, SubmissionStatus
from classquiz.core.services import quiz_session as quiz_session_module
from classquiz.core.services.quiz_session import QuizSession, SessionState
from classquiz.core.services.resume_cache import ResumeSnapshot, resume_key

from conftest import fill_blank, make_quiz, matching, multiple_choice, open_ended, run, true_false


def _session(store, submissions, cache, quiz_id="quiz-1", **kwargs) -> QuizSession:
    return QuizSession(quiz_id, "student-1", store=store, submissions=submissions, cache=cache, **kwargs)


def _saved_quiz(store, *args, **kwargs):
    quiz = make_quiz(*args, **kwargs)
    run(store.save_quiz(quiz))
    return quiz


def test_load_starts_a_new_attempt(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        return session

    session = run(scenario())
    assert session.get_state() is SessionState.ACTIVE
    assert session.get_submission().attempt_number == 1
    assert session.get_current_index() == 0
    assert session.get_remaining_seconds() is None
    assert resume_key("quiz-1") in cache


def test_time_limit_expiry_finalizes_without_answers(store, submissions, cache):
    _saved_quiz(store, time_limit_minutes=1)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        assert session.get_remaining_seconds() == 60
        for _ in range(59):
            await session.tick()
        assert session.get_state() is SessionState.ACTIVE
        assert session.get_remaining_seconds() == 1
        await session.tick()
        await session.tick()
        return session

    session = run(scenario())
    assert session.is_completed()
    assert session.is_expired()
    assert session.get_remaining_seconds() == 0
    assert store.finalize_calls == 1
    submission = session.get_submission()
    assert submission.status is SubmissionStatus.SUBMITTED
    assert submission.answers == []
    assert resume_key("quiz-1") not in cache


def test_running_countdown_finalizes_on_its_own(store, submissions, cache, monkeypatch):
    monkeypatch.setattr(quiz_session_module, "COUNTDOWN_INTERVAL_SECONDS", 0.001)
    _saved_quiz(store, time_limit_minutes=1)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load()
        session.set_answer(["b"])
        for _ in range(1000):
            if session.is_completed():
                break
            await asyncio.sleep(0.01)
        return session

    session = run(scenario())
    assert session.is_completed()
    assert session.get_submission().score == 10
    assert store.finalize_calls == 1


def test_reentering_resumes_the_same_submission(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        first = _session(store, submissions, cache)
        await first.load(start_countdown=False)
        first.set_answer(["b"])
        first.next_question()

        second = _session(store, submissions, cache)
        await second.load(start_countdown=False)
        return first, second

    first, second = run(scenario())
    assert second.get_submission().id == first.get_submission().id
    assert second.get_answers() == {"q_mc": ["b"]}
    assert second.get_current_index() == 1
    assert len(run(store.list_submissions("quiz-1", "student-1"))) == 1


def test_every_answer_shape_survives_a_resume(store, submissions, cache):
    questions = [
        multiple_choice(order=0),
        true_false(order=1),
        fill_blank(order=2),
        matching(order=3),
        open_ended(order=4),
    ]
    _saved_quiz(store, questions)
    answers = {
        "q_mc": ["b"],
        "q_tf": False,
        "q_fb": {"b1": "Paris", "b2": "Rome"},
        "q_mt": {"p1": "p1", "p2": "p2"},
        "q_oe": "Light to sugar",
    }

    async def scenario():
        first = _session(store, submissions, cache)
        await first.load(start_countdown=False)
        for question_id, response in answers.items():
            first.set_answer(response, question_id=question_id)
        second = _session(store, submissions, cache)
        await second.load(start_countdown=False)
        return second

    assert run(scenario()).get_answers() == answers


def test_concurrent_finalize_hits_the_store_once(store, submissions, cache):
    _saved_quiz(store)
    store.finalize_delay = 0.01

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        session.set_answer(["b"])
        return await asyncio.gather(session.finalize(), session.finalize(), return_exceptions=True)

    results = run(scenario())
    assert store.finalize_calls == 1
    assert sum(isinstance(result, Submission) for result in results) == 1
    assert sum(isinstance(result, FinalizeInProgressError) for result in results) == 1


def test_voluntary_finalize_needs_an_answer(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        with pytest.raises(FinalizeGuardError):
            await session.finalize()
        return session

    session = run(scenario())
    assert session.get_state() is SessionState.ACTIVE
    assert store.finalize_calls == 0


def test_failed_finalize_returns_to_active_and_can_retry(store, submissions, cache):
    _saved_quiz(store)
    store.fail_next_finalize = StoreUnavailableError("database offline")

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        session.set_answer(["b"])
        session.set_answer(True, question_id="q_tf")
        with pytest.raises(StoreUnavailableError):
            await session.finalize()
        assert session.get_state() is SessionState.ACTIVE
        assert isinstance(session.get_error(), StoreUnavailableError)
        assert session.get_answers() == {"q_mc": ["b"], "q_tf": True}
        assert resume_key("quiz-1") in cache
        return await session.finalize()

    submission = run(scenario())
    assert submission.score == 20
    assert store.finalize_calls == 2


def test_completed_session_rejects_changes(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        session.set_answer(["b"])
        await session.finalize()
        with pytest.raises(SessionStateError):
            session.set_answer(["a"])
        with pytest.raises(SessionStateError):
            await session.finalize()
        return session

    assert run(scenario()).is_completed()


def test_answers_are_locked_after_expiry(store, submissions, cache):
    _saved_quiz(store, time_limit_minutes=1)
    store.fail_next_finalize = StoreUnavailableError("database offline")

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        for _ in range(59):
            await session.tick()
        with pytest.raises(StoreUnavailableError):
            await session.tick()
        assert session.is_expired()
        assert session.get_state() is SessionState.ACTIVE
        with pytest.raises(SessionStateError):
            session.set_answer(["b"])
        return await session.finalize()

    submission = run(scenario())
    assert submission.status is SubmissionStatus.SUBMITTED
    assert store.finalize_calls == 2


def test_snapshot_with_no_time_left_finalizes_on_load(store, submissions, cache):
    _saved_quiz(store, time_limit_minutes=5)

    async def scenario():
        first = _session(store, submissions, cache)
        await first.load(start_countdown=False)
        first.set_answer(["b"])
        cache.save(
            resume_key("quiz-1"),
            ResumeSnapshot(quiz_id="quiz-1", answers={"q_mc": ["b"]}, remaining_seconds=0),
        )
        second = _session(store, submissions, cache)
        await second.load(start_countdown=False)
        return second

    session = run(scenario())
    assert session.is_completed()
    assert session.get_submission().score == 10


def test_resumed_snapshot_is_reconciled_with_the_quiz(store, submissions, cache):
    _saved_quiz(store, time_limit_minutes=2)

    async def scenario():
        first = _session(store, submissions, cache)
        await first.load(start_countdown=False)
        cache.save(
            resume_key("quiz-1"),
            ResumeSnapshot(
                quiz_id="quiz-1",
                answers={"q_mc": ["c"], "q_tf": "yes", "removed": ["a"]},
                current_index=9,
                remaining_seconds=999,
            ),
        )
        second = _session(store, submissions, cache)
        await second.load(start_countdown=False)
        return second

    session = run(scenario())
    assert session.get_answers() == {"q_mc": ["c"]}
    assert session.get_current_index() == 1
    assert session.get_remaining_seconds() == 120


def test_stale_snapshot_is_discarded_for_a_new_attempt(store, submissions, cache):
    _saved_quiz(store)
    cache.save(resume_key("quiz-1"), ResumeSnapshot(quiz_id="quiz-1", answers={"q_mc": ["a"]}, current_index=1))

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        return session

    session = run(scenario())
    assert session.get_answers() == {}
    assert session.get_current_index() == 0


def test_missing_quiz_puts_session_in_error(store, submissions, cache):
    async def scenario():
        session = _session(store, submissions, cache, quiz_id="missing")
        with pytest.raises(QuizNotFoundError):
            await session.load()
        return session

    session = run(scenario())
    assert session.get_state() is SessionState.ERROR
    assert isinstance(session.get_error(), QuizNotFoundError)


def test_exhausted_attempts_put_session_in_error(store, submissions, cache):
    _saved_quiz(store, max_attempts=1)

    async def scenario():
        first = _session(store, submissions, cache)
        await first.load(start_countdown=False)
        first.set_answer(["b"])
        await first.finalize()
        second = _session(store, submissions, cache)
        with pytest.raises(AttemptNotAllowedError):
            await second.load()
        return second

    session = run(scenario())
    assert session.get_state() is SessionState.ERROR
    assert session.get_error().reason == "max_attempts"


def test_navigation_stays_in_bounds(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        assert session.previous_question() == 0
        assert session.next_question() == 1
        assert session.next_question() == 1
        assert session.get_progress() == 100
        with pytest.raises(IndexError):
            session.go_to(2)
        assert session.go_to(0) == 0
        return session

    run(scenario())


def test_invalid_response_shape_is_rejected(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        with pytest.raises(ValueError):
            session.set_answer("true", question_id="q_tf")
        with pytest.raises(KeyError):
            session.set_answer(True, question_id="nope")
        session.set_answer(True, question_id="q_tf")
        session.clear_answer(question_id="q_tf")
        return session

    assert run(scenario()).get_answers() == {}


def test_time_spent_is_recorded_per_question(store, submissions, cache):
    _saved_quiz(store)
    now = [0.0]

    async def scenario():
        session = _session(store, submissions, cache, clock=lambda: now[0])
        await session.load(start_countdown=False)
        session.set_answer(["b"])
        now[0] = 5.0
        session.next_question()
        session.set_answer(True)
        now[0] = 8.0
        return await session.finalize()

    submission = run(scenario())
    spent = {answer.question_id: answer.time_spent for answer in submission.answers}
    assert spent == {"q_mc": 5.0, "q_tf": 3.0}


def test_progress_follows_position_not_answers(store, submissions, cache):
    _saved_quiz(store)

    async def scenario():
        session = _session(store, submissions, cache)
        await session.load(start_countdown=False)
        session.set_answer(["b"])
        session.set_answer(True, question_id="q_tf")
        return session

    session = run(scenario())
    assert session.get_answered_count() == 2
    assert session.get_progress() == 50

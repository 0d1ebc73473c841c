"""FastAPI server exposing teacher authoring and student quiz-taking endpoints."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from classquiz.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from classquiz.core.draft_importer import parse_draft_question
from classquiz.core.errors import (
    AttemptNotAllowedError,
    DocumentNotFoundError,
    FinalizeGuardError,
    InvalidStatusTransitionError,
    QuestionValidationError,
    QuizError,
    QuizLockedError,
    QuizNotFoundError,
    SessionStateError,
    StoreUnavailableError,
)
from classquiz.core.models import (
    AnswerVisibility,
    Difficulty,
    FillBlankQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    OpenEndedQuestion,
    Question,
    Quiz,
    QuizSettings,
    QuizStatus,
    Submission,
)
from classquiz.core.quiz_manager import QuizManager
from classquiz.core.services.quiz_session import QuizSession
from classquiz.core.services.submission_service import ManualGrade, answers_visible

_ERROR_STATUS: list[tuple[type[QuizError], int]] = [
    (QuizNotFoundError, 404),
    (DocumentNotFoundError, 404),
    (AttemptNotAllowedError, 403),
    (QuestionValidationError, 422),
    (InvalidStatusTransitionError, 409),
    (QuizLockedError, 409),
    (FinalizeGuardError, 409),
    (SessionStateError, 409),
    (StoreUnavailableError, 503),
]


class SettingsPayload(BaseModel):
    time_limit_minutes: int | None = Field(default=None, ge=1)
    passing_score: int | None = Field(default=60, ge=0, le=100)
    show_correct_answers: AnswerVisibility = AnswerVisibility.AFTER_SUBMISSION
    max_attempts: int | None = Field(default=1, ge=1)

    def to_settings(self) -> QuizSettings:
        return QuizSettings(**self.model_dump())


class QuizCreatePayload(BaseModel):
    """Payload schema for creating a draft quiz."""

    teacher_id: str
    title: str
    description: str = ""
    class_ids: list[str] = Field(default_factory=list)
    settings: SettingsPayload | None = None
    questions: list[dict[str, Any]] = Field(default_factory=list)


class DraftPayload(BaseModel):
    """Raw generator output to import into a quiz."""

    questions: list[Any]
    difficulty: Difficulty = Difficulty.MEDIUM


class StatusPayload(BaseModel):
    status: QuizStatus


class AnswerPayload(BaseModel):
    """Payload schema for submitted answers."""

    response: Any


class NavigatePayload(BaseModel):
    index: int


class GradePayload(BaseModel):
    question_id: str
    points_earned: int = Field(ge=0)
    feedback: str | None = None
    is_correct: bool | None = None


class GradesPayload(BaseModel):
    grades: list[GradePayload]


def question_payload(question: Question) -> dict[str, Any]:
    """Full question including its answer key."""
    data = asdict(question)
    data["type"] = question.question_type.value
    return data


def public_question_payload(question: Question) -> dict[str, Any]:
    """Question as shown to a student taking the quiz, without answer keys."""
    data: dict[str, Any] = {
        "id": question.id,
        "type": question.question_type.value,
        "prompt": question.prompt,
        "points": question.points,
        "difficulty": question.difficulty.value,
        "hint": question.hint,
        "order": question.order,
    }
    if isinstance(question, MultipleChoiceQuestion):
        data["options"] = [{"id": option.id, "text": option.text} for option in question.options]
        data["allow_multiple"] = len(question.correct_option_ids()) > 1
    elif isinstance(question, FillBlankQuestion):
        data["text_with_blanks"] = question.text_with_blanks
        data["blank_ids"] = [blank.id for blank in question.blanks]
    elif isinstance(question, MatchingQuestion):
        data["left"] = [{"id": pair.id, "text": pair.left} for pair in question.pairs]
        data["right"] = sorted(
            ({"id": pair.id, "text": pair.right} for pair in question.pairs),
            key=lambda item: item["text"].casefold(),
        )
        data["left_column_title"] = question.left_column_title
        data["right_column_title"] = question.right_column_title
    elif isinstance(question, OpenEndedQuestion):
        data["min_length"] = question.min_length
        data["max_length"] = question.max_length
    return data


def quiz_payload(quiz: Quiz) -> dict[str, Any]:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "teacher_id": quiz.teacher_id,
        "status": quiz.status.value,
        "class_ids": list(quiz.class_ids),
        "settings": asdict(quiz.settings),
        "questions": [question_payload(q) for q in quiz.questions],
        "total_points": quiz.total_points,
        "estimated_duration_minutes": quiz.estimated_duration_minutes,
        "created_at": quiz.created_at.isoformat(),
        "updated_at": quiz.updated_at.isoformat(),
        "published_at": quiz.published_at.isoformat() if quiz.published_at else None,
    }


def session_payload(session: QuizSession) -> dict[str, Any]:
    submission = session.get_submission()
    current = session.get_current_question()
    error = session.get_error()
    return {
        "state": session.get_state().value,
        "submission_id": submission.id if submission else None,
        "attempt_number": submission.attempt_number if submission else None,
        "current_index": session.get_current_index(),
        "question_count": session.get_question_count(),
        "answered_count": session.get_answered_count(),
        "remaining_seconds": session.get_remaining_seconds(),
        "expired": session.is_expired(),
        "progress": session.get_progress(),
        "answers": session.get_answers(),
        "current_question": public_question_payload(current) if current else None,
        "questions": [public_question_payload(q) for q in session.get_questions()],
        "error": str(error) if error else None,
    }


def submission_payload(submission: Submission, quiz: Quiz | None = None) -> dict[str, Any]:
    reveal = quiz is not None and answers_visible(quiz, submission)
    answers = []
    for answer in submission.answers:
        entry = {
            "question_id": answer.question_id,
            "question_type": answer.question_type.value,
            "response": answer.response,
            "is_correct": answer.is_correct,
            "points_earned": answer.points_earned,
            "time_spent": answer.time_spent,
            "feedback": answer.feedback,
        }
        if reveal:
            question = quiz.find_question(answer.question_id)
            if question is not None:
                entry["question"] = question_payload(question)
        answers.append(entry)
    return {
        "id": submission.id,
        "quiz_id": submission.quiz_id,
        "student_id": submission.student_id,
        "status": submission.status.value,
        "attempt_number": submission.attempt_number,
        "score": submission.score,
        "total_points": submission.total_points,
        "percentage": submission.percentage,
        "passed": submission.passed,
        "answers": answers,
        "answers_revealed": reveal,
        "started_at": submission.started_at.isoformat(),
        "submitted_at": submission.submitted_at.isoformat() if submission.submitted_at else None,
        "graded_at": submission.graded_at.isoformat() if submission.graded_at else None,
        "duration_seconds": submission.duration_seconds,
    }


def _status_for(exc: QuizError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def create_api_app(quiz_manager: QuizManager) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager."""
    app = FastAPI(title="ClassQuiz API", version="0.1.0")
    quiz_manager_dep = _get_quiz_manager_dependency(quiz_manager)

    @app.exception_handler(QuizError)
    async def handle_quiz_error(request: Request, exc: QuizError) -> JSONResponse:
        content: dict[str, Any] = {"detail": str(exc)}
        if isinstance(exc, AttemptNotAllowedError):
            content["reason"] = exc.reason
        return JSONResponse(status_code=_status_for(exc), content=content)

    # --- Teacher endpoints ---

    @app.post("/quizzes", status_code=201)
    async def create_quiz(
        payload: QuizCreatePayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        questions = [parse_draft_question(raw) for raw in payload.questions]
        try:
            quiz = await manager.create_quiz(
                payload.teacher_id,
                payload.title,
                description=payload.description,
                settings=payload.settings.to_settings() if payload.settings else None,
                class_ids=payload.class_ids,
                questions=questions,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return quiz_payload(quiz)

    @app.get("/quizzes")
    async def list_quizzes(
        teacher_id: str | None = None,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, Any]]:
        return [quiz_payload(quiz) for quiz in await manager.list_quizzes(teacher_id)]

    @app.get("/quizzes/{quiz_id}")
    async def get_quiz(
        quiz_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        return quiz_payload(await manager.get_quiz(quiz_id))

    @app.post("/quizzes/{quiz_id}/questions", status_code=201)
    async def add_question(
        quiz_id: str,
        payload: dict[str, Any],
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        question = parse_draft_question(payload)
        return quiz_payload(await manager.add_question(quiz_id, question))

    @app.put("/quizzes/{quiz_id}/questions/{question_id}")
    async def update_question(
        quiz_id: str,
        question_id: str,
        payload: dict[str, Any],
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        question = parse_draft_question({**payload, "id": question_id})
        try:
            quiz = await manager.update_question(quiz_id, question)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return quiz_payload(quiz)

    @app.delete("/quizzes/{quiz_id}/questions/{question_id}")
    async def delete_question(
        quiz_id: str,
        question_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        try:
            quiz = await manager.delete_question(quiz_id, question_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return quiz_payload(quiz)

    @app.post("/quizzes/{quiz_id}/drafts")
    async def import_draft(
        quiz_id: str,
        payload: DraftPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        result = await manager.import_draft(quiz_id, payload.questions, payload.difficulty)
        return {
            "accepted": [question_payload(q) for q in result.questions],
            "rejected": [asdict(rejection) for rejection in result.rejected],
        }

    @app.post("/quizzes/{quiz_id}/status")
    async def change_status(
        quiz_id: str,
        payload: StatusPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        return quiz_payload(await manager.advance_quiz_status(quiz_id, payload.status))

    @app.post("/submissions/{submission_id}/grades")
    async def grade_submission(
        submission_id: str,
        payload: GradesPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        grades = [ManualGrade(**grade.model_dump()) for grade in payload.grades]
        try:
            submission = await manager.grade_submission(submission_id, grades)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return submission_payload(submission)

    # --- Student endpoints ---

    @app.post("/quizzes/{quiz_id}/sessions/{student_id}")
    async def open_session(
        quiz_id: str,
        student_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        session = await manager.open_session(student_id, quiz_id)
        return session_payload(session)

    @app.get("/quizzes/{quiz_id}/sessions/{student_id}")
    async def get_session(
        quiz_id: str,
        student_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        return session_payload(manager.get_session(student_id, quiz_id))

    @app.delete("/quizzes/{quiz_id}/sessions/{student_id}", status_code=204)
    async def leave_session(
        quiz_id: str,
        student_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> None:
        manager.close_session(student_id, quiz_id)

    @app.put("/quizzes/{quiz_id}/sessions/{student_id}/answers/{question_id}")
    async def submit_answer(
        quiz_id: str,
        student_id: str,
        question_id: str,
        payload: AnswerPayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        session = manager.get_session(student_id, quiz_id)
        try:
            session.set_answer(payload.response, question_id=question_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return session_payload(session)

    @app.delete("/quizzes/{quiz_id}/sessions/{student_id}/answers/{question_id}")
    async def clear_answer(
        quiz_id: str,
        student_id: str,
        question_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        session = manager.get_session(student_id, quiz_id)
        try:
            session.clear_answer(question_id=question_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return session_payload(session)

    @app.post("/quizzes/{quiz_id}/sessions/{student_id}/navigate")
    async def navigate(
        quiz_id: str,
        student_id: str,
        payload: NavigatePayload,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        session = manager.get_session(student_id, quiz_id)
        try:
            session.go_to(payload.index)
        except IndexError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return session_payload(session)

    @app.post("/quizzes/{quiz_id}/sessions/{student_id}/finalize")
    async def finalize_session(
        quiz_id: str,
        student_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        session = manager.get_session(student_id, quiz_id)
        submission = await session.finalize()
        return submission_payload(submission, session.get_quiz())

    @app.get("/submissions/{submission_id}")
    async def get_submission(
        submission_id: str,
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, Any]:
        submission = await manager.get_submission(submission_id)
        quiz = await manager.get_quiz(submission.quiz_id)
        return submission_payload(submission, quiz)

    return app


def run_api_server(
    quiz_manager: QuizManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the API until interrupted."""
    app = create_api_app(quiz_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()

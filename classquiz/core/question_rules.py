"""Edit-time validation of questions and quiz settings, and shape checks for student responses."""

from __future__ import annotations

from collections.abc import Mapping
import re
from typing import Any

from classquiz.constants.quiz_constants import (
    MAX_MULTIPLE_CHOICE_OPTIONS,
    MIN_FILL_BLANK_SLOTS,
    MIN_MATCHING_PAIRS,
    MIN_MULTIPLE_CHOICE_OPTIONS,
)
from classquiz.core.errors import QuestionValidationError
from classquiz.core.models import (
    AnswerVisibility,
    FillBlankQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    OpenEndedQuestion,
    Question,
    QuizSettings,
    TrueFalseQuestion,
)

_BLANK_MARKER = re.compile(r"\{\{\s*([\w-]+)\s*\}\}")


def validate_question(question: Question) -> Question:
    """Check bounds and normalize text fields in place.

    Returns the same question so callers can chain it into an insert.
    """
    prompt = question.prompt.strip()
    if not prompt:
        raise QuestionValidationError("Question text must not be empty.")
    question.prompt = prompt
    if not isinstance(question.points, int) or isinstance(question.points, bool):
        raise QuestionValidationError("Question points must be an integer.")
    if question.points <= 0:
        raise QuestionValidationError("Question points must be positive.")

    if isinstance(question, MultipleChoiceQuestion):
        _validate_multiple_choice(question)
    elif isinstance(question, TrueFalseQuestion):
        if not isinstance(question.correct_answer, bool):
            raise QuestionValidationError("True/false answer key must be a boolean.")
    elif isinstance(question, MatchingQuestion):
        _validate_matching(question)
    elif isinstance(question, FillBlankQuestion):
        _validate_fill_blank(question)
    elif isinstance(question, OpenEndedQuestion):
        _validate_open_ended(question)
    else:
        raise QuestionValidationError(f"Unsupported question object: {type(question).__name__}")
    return question


def validate_settings(settings: QuizSettings) -> QuizSettings:
    """Coerce the visibility policy and bounds-check the numeric settings in place."""
    try:
        settings.show_correct_answers = AnswerVisibility(settings.show_correct_answers)
    except ValueError as exc:
        raise ValueError(f"Unknown answer visibility: {settings.show_correct_answers!r}") from exc
    _check_optional_int("time_limit_minutes", settings.time_limit_minutes, minimum=1)
    _check_optional_int("passing_score", settings.passing_score, minimum=0, maximum=100)
    _check_optional_int("max_attempts", settings.max_attempts, minimum=1)
    return settings


def _check_optional_int(name: str, value: object, *, minimum: int, maximum: int | None = None) -> None:
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be an integer or None.")
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}.")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be at most {maximum}.")


def _validate_multiple_choice(question: MultipleChoiceQuestion) -> None:
    count = len(question.options)
    if not MIN_MULTIPLE_CHOICE_OPTIONS <= count <= MAX_MULTIPLE_CHOICE_OPTIONS:
        raise QuestionValidationError(
            f"Multiple choice questions need between {MIN_MULTIPLE_CHOICE_OPTIONS} "
            f"and {MAX_MULTIPLE_CHOICE_OPTIONS} options (got {count})."
        )
    for option in question.options:
        option.text = option.text.strip()
        if not option.text:
            raise QuestionValidationError("Option text cannot be empty.")
    _ensure_unique([option.id for option in question.options], "option")
    if not question.correct_option_ids():
        raise QuestionValidationError("At least one option must be marked correct.")


def _validate_matching(question: MatchingQuestion) -> None:
    if len(question.pairs) < MIN_MATCHING_PAIRS:
        raise QuestionValidationError(
            f"Matching questions need at least {MIN_MATCHING_PAIRS} pairs."
        )
    for pair in question.pairs:
        pair.left = pair.left.strip()
        pair.right = pair.right.strip()
        if not pair.left or not pair.right:
            raise QuestionValidationError("Both sides of a matching pair need text.")
    _ensure_unique([pair.id for pair in question.pairs], "pair")


def _validate_fill_blank(question: FillBlankQuestion) -> None:
    if len(question.blanks) < MIN_FILL_BLANK_SLOTS:
        raise QuestionValidationError("Fill-in-the-blank questions need at least one blank.")
    blank_ids = [blank.id for blank in question.blanks]
    _ensure_unique(blank_ids, "blank")
    for blank in question.blanks:
        if not blank.correct_answer.strip():
            raise QuestionValidationError(f"Blank {blank.id} has no correct answer.")
    if question.text_with_blanks:
        referenced = set(_BLANK_MARKER.findall(question.text_with_blanks))
        missing = referenced - set(blank_ids)
        if missing:
            raise QuestionValidationError(
                f"Text references undefined blanks: {', '.join(sorted(missing))}."
            )


def _validate_open_ended(question: OpenEndedQuestion) -> None:
    if (
        question.min_length is not None
        and question.max_length is not None
        and question.min_length > question.max_length
    ):
        raise QuestionValidationError("Minimum length cannot exceed maximum length.")


def _ensure_unique(ids: list[str], label: str) -> None:
    if any(not item for item in ids):
        raise QuestionValidationError(f"Every {label} needs an id.")
    if len(set(ids)) != len(ids):
        raise QuestionValidationError(f"Duplicate {label} ids are not allowed.")


def normalize_response(question: Question, response: Any) -> Any:
    """Coerce a raw response into the shape expected for the question type.

    Raises ValueError when the payload cannot represent an answer to the
    question. The result is JSON-serializable so it can go into a resume
    snapshot unchanged.
    """
    if isinstance(question, MultipleChoiceQuestion):
        if isinstance(response, str):
            return [response]
        if isinstance(response, (list, tuple, set)) and all(isinstance(i, str) for i in response):
            return list(dict.fromkeys(response))
        raise ValueError("Multiple choice answers must be an option id or a list of option ids.")
    if isinstance(question, TrueFalseQuestion):
        if isinstance(response, bool):
            return response
        raise ValueError("True/false answers must be a boolean.")
    if isinstance(question, OpenEndedQuestion):
        if isinstance(response, str):
            return response
        raise ValueError("Open ended answers must be text.")
    if isinstance(question, (FillBlankQuestion, MatchingQuestion)):
        if isinstance(response, Mapping) and all(
            isinstance(k, str) and isinstance(v, str) for k, v in response.items()
        ):
            return dict(response)
        raise ValueError("Answer must map ids to text.")
    raise ValueError(f"Unsupported question object: {type(question).__name__}")

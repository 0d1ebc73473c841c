"""Turning generated quiz drafts into validated questions.

The AI generator returns loosely shaped JSON: camelCase keys, multiple
choice options as bare strings with a separate ``correctAnswer`` index,
missing ids and points. This module parses that JSON with pydantic, repairs
the shapes it knows about and runs the same edit-time rules as the quiz
editor. Anything it cannot repair is rejected with a reason and never reaches
a quiz.

Example draft item::

    {
        "type": "multiple_choice",
        "question": "Which planet is largest?",
        "options": ["Mars", "Jupiter", "Venus"],
        "correctAnswer": 1,
        "explanation": "Jupiter is the largest planet."
    }
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from classquiz.constants.quiz_constants import DEFAULT_QUESTION_POINTS
from classquiz.core.errors import QuestionValidationError
from classquiz.core.models import (
    BlankSlot,
    Difficulty,
    FillBlankQuestion,
    MatchingPair,
    MatchingQuestion,
    MultipleChoiceOption,
    MultipleChoiceQuestion,
    OpenEndedQuestion,
    Question,
    QuestionType,
    TrueFalseQuestion,
)
from classquiz.core.question_rules import validate_question

logger = logging.getLogger(__name__)

_OPTION_LETTERS = "ABCDEFGH"


class DraftGenerator(Protocol):
    """Black-box source of draft questions (topic text, lesson transcript...)."""

    async def generate_draft(self, source: str) -> list[dict[str, Any]]: ...


class _DraftModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class DraftOption(_DraftModel):
    id: str | None = None
    text: str
    is_correct: bool = False


class DraftBlank(_DraftModel):
    id: str | None = None
    correct_answer: str
    alternatives: list[str] = Field(default_factory=list)
    case_sensitive: bool = False


class DraftPair(_DraftModel):
    id: str | None = None
    left: str
    right: str


class DraftQuestion(_DraftModel):
    """Loose representation of one generated or posted question."""

    id: str | None = None
    type: QuestionType
    prompt: str = Field(validation_alias=AliasChoices("prompt", "question", "text"))
    points: int | None = None
    difficulty: Difficulty | None = None
    explanation: str | None = None
    hint: str | None = None

    options: list[DraftOption | str] = Field(default_factory=list)
    correct_answer: bool | int | str | None = None
    shuffle_options: bool = False

    text_with_blanks: str | None = None
    blanks: list[DraftBlank] = Field(default_factory=list)

    pairs: list[DraftPair] = Field(default_factory=list)
    left_column_title: str | None = None
    right_column_title: str | None = None

    sample_answer: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    keywords: list[str] = Field(default_factory=list)

    def to_question(self, default_difficulty: Difficulty = Difficulty.MEDIUM) -> Question:
        """Build the domain question, repairing known generator quirks."""
        common = dict(
            id=self.id or "",
            prompt=self.prompt,
            points=self.points if self.points is not None else DEFAULT_QUESTION_POINTS,
            difficulty=self.difficulty or default_difficulty,
            explanation=self.explanation,
            hint=self.hint,
        )
        if self.type is QuestionType.MULTIPLE_CHOICE:
            return MultipleChoiceQuestion(
                **common,
                options=self._repair_options(),
                shuffle_options=self.shuffle_options,
            )
        if self.type is QuestionType.TRUE_FALSE:
            return TrueFalseQuestion(**common, correct_answer=self._boolean_key())
        if self.type is QuestionType.FILL_BLANK:
            return FillBlankQuestion(
                **common,
                text_with_blanks=self.text_with_blanks or "",
                blanks=[
                    BlankSlot(
                        id=blank.id or f"blank_{position}",
                        correct_answer=blank.correct_answer,
                        alternatives=list(blank.alternatives),
                        case_sensitive=blank.case_sensitive,
                    )
                    for position, blank in enumerate(self.blanks, start=1)
                ],
            )
        if self.type is QuestionType.MATCHING:
            return MatchingQuestion(
                **common,
                pairs=[
                    MatchingPair(id=pair.id or f"pair_{position}", left=pair.left, right=pair.right)
                    for position, pair in enumerate(self.pairs, start=1)
                ],
                left_column_title=self.left_column_title,
                right_column_title=self.right_column_title,
            )
        sample = self.sample_answer
        if sample is None and isinstance(self.correct_answer, str):
            sample = self.correct_answer
        return OpenEndedQuestion(
            **common,
            sample_answer=sample,
            min_length=self.min_length,
            max_length=self.max_length,
            keywords=list(self.keywords),
        )

    def _repair_options(self) -> list[MultipleChoiceOption]:
        options = [
            MultipleChoiceOption(id=f"opt_{index}", text=item)
            if isinstance(item, str)
            else MultipleChoiceOption(id=item.id or f"opt_{index}", text=item.text, is_correct=item.is_correct)
            for index, item in enumerate(self.options)
        ]
        if any(option.is_correct for option in options):
            return options
        correct_index = self._correct_option_index(options)
        if correct_index is not None:
            options[correct_index].is_correct = True
        return options

    def _correct_option_index(self, options: list[MultipleChoiceOption]) -> int | None:
        key = self.correct_answer
        if key is None or isinstance(key, bool):
            return None
        if isinstance(key, int):
            return key if 0 <= key < len(options) else None
        cleaned = key.strip()
        if cleaned.isdigit():
            index = int(cleaned)
            return index if 0 <= index < len(options) else None
        if len(cleaned) == 1 and cleaned.upper() in _OPTION_LETTERS:
            index = _OPTION_LETTERS.index(cleaned.upper())
            return index if index < len(options) else None
        for index, option in enumerate(options):
            if option.text.casefold() == cleaned.casefold() or option.id == cleaned:
                return index
        return None

    def _boolean_key(self) -> bool:
        key = self.correct_answer
        if isinstance(key, bool):
            return key
        if isinstance(key, str) and key.strip().lower() in ("true", "false"):
            return key.strip().lower() == "true"
        raise QuestionValidationError("True/false question is missing its answer key.")


@dataclass(slots=True)
class DraftRejection:
    index: int
    reason: str


@dataclass(slots=True)
class DraftImportResult:
    questions: list[Question] = field(default_factory=list)
    rejected: list[DraftRejection] = field(default_factory=list)


def parse_draft_question(
    raw: Mapping[str, Any],
    default_difficulty: Difficulty = Difficulty.MEDIUM,
) -> Question:
    """Parse, repair and validate one draft item.

    Raises QuestionValidationError describing why the item is unusable.
    """
    try:
        draft = DraftQuestion.model_validate(dict(raw))
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'item'}: {error['msg']}"
            for error in exc.errors()
        )
        raise QuestionValidationError(f"Malformed draft question: {problems}") from exc
    return validate_question(draft.to_question(default_difficulty))


def import_draft_questions(
    raw_items: Iterable[Any],
    default_difficulty: Difficulty = Difficulty.MEDIUM,
) -> DraftImportResult:
    """Convert generator output into questions, collecting rejections instead of raising."""
    result = DraftImportResult()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            result.rejected.append(DraftRejection(index=index, reason="Draft item is not an object."))
            continue
        try:
            result.questions.append(parse_draft_question(raw, default_difficulty))
        except QuestionValidationError as exc:
            result.rejected.append(DraftRejection(index=index, reason=str(exc)))

    if result.rejected:
        logger.warning(
            "Rejected %d of %d draft questions",
            len(result.rejected),
            len(result.questions) + len(result.rejected),
        )
    return result

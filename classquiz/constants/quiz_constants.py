"""Quiz-related constants shared across the core and server layers."""

DEFAULT_QUESTION_POINTS: int = 10

MIN_MULTIPLE_CHOICE_OPTIONS: int = 2
MAX_MULTIPLE_CHOICE_OPTIONS: int = 8
MIN_MATCHING_PAIRS: int = 2
MIN_FILL_BLANK_SLOTS: int = 1

DEFAULT_PASSING_SCORE: int = 60
DEFAULT_MAX_ATTEMPTS: int | None = 1

# Minutes a student is expected to spend on each question type.
QUESTION_DURATION_MINUTES: dict[str, float] = {
    "multiple_choice": 1,
    "true_false": 0.5,
    "open_ended": 3,
    "matching": 2,
    "fill_blank": 1.5,
}

RESUME_KEY_PREFIX: str = "quiz_session_"
RESUME_SNAPSHOT_TTL_SECONDS: int = 7 * 24 * 60 * 60
COUNTDOWN_INTERVAL_SECONDS: float = 1.0

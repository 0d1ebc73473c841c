"""Application entry point for the ClassQuiz service."""

from __future__ import annotations

import argparse
import re
from pathlib import Path

from classquiz.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, RESUME_CACHE_DIR
from classquiz.core.quiz_manager import QuizManager
from classquiz.core.services.resume_cache import FileResumeCache
from classquiz.server.api_server import run_api_server
from classquiz.utils.logging_config import configure_logging


def _student_dir(student_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]", "_", student_id) or "_"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the ClassQuiz API server.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument(
        "--resume-dir",
        type=Path,
        default=Path(RESUME_CACHE_DIR),
        help="Directory for per-student resume snapshots.",
    )
    return parser.parse_args()


def main() -> None:
    """Initialize logging, build the quiz manager, and serve the API."""
    args = _parse_args()
    logger = configure_logging()
    logger.info("Starting ClassQuiz on %s:%d", args.host, args.port)

    resume_dir: Path = args.resume_dir
    quiz_manager = QuizManager(
        cache_factory=lambda student_id: FileResumeCache(resume_dir / _student_dir(student_id)),
    )
    run_api_server(quiz_manager=quiz_manager, host=args.host, port=args.port)


if __name__ == "__main__":
    main()

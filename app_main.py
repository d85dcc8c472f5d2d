"""Application entry point for the timed exam service."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

from exam_app.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION
from exam_app.core.exam_importer import ExamImportError
from exam_app.core.exam_manager import ExamManager
from exam_app.core.errors import ExamError
from exam_app.core.services.exam_store import ExamStore
from exam_app.server.api_server import run_api_server
from exam_app.utils.logging_config import configure_logging
from exam_app.utils.settings import AppSettings


def _build_parser(settings: AppSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timed-exam", description=APP_ABOUT_TEXT)
    parser.add_argument("exam_files", nargs="*", type=Path, help="Exam text files to import at start-up.")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--data-path", type=Path, default=settings.data_path, help="JSON snapshot file.")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Initialize logging, import exam files and serve the API."""
    settings = AppSettings.from_env()
    args = _build_parser(settings).parse_args(argv)
    logger = configure_logging(settings.log_level)
    logger.info("Starting %s %s", APP_NAME, APP_VERSION)

    manager = ExamManager(ExamStore(args.data_path), start_timers=settings.start_timers)
    manager.ensure_default_creator()
    for exam_file in args.exam_files:
        try:
            test = manager.import_exam_file(exam_file)
        except (OSError, ExamImportError, ExamError) as exc:
            logger.error("Could not import %s: %s", exam_file, exc)
            return 1
        logger.info("Test '%s' is available with share code %s", test.title, test.share_code)

    try:
        run_api_server(manager, host=args.host, port=args.port, log_level=settings.log_level.lower())
    finally:
        manager.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())

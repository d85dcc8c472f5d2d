"""Static metadata describing the exam service."""

APP_NAME = "TimedExam"
APP_VERSION = "0.1.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "TimedExam lets an author share a timed test by code. Takers answer under a countdown, "
    "answers are scored on submission and essay scores can be contested through review requests."
)

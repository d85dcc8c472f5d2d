"""Exam-related constants shared across the core and server layers."""

TICK_INTERVAL_SECONDS: int = 1
SECONDS_PER_MINUTE: int = 60
MIN_DURATION_MINUTES: int = 1
MIN_QUESTION_POINTS: int = 1
MIN_MCQ_CHOICES: int = 2

SHARE_CODE_LENGTH: int = 8
SHARE_CODE_ALPHABET: str = (
    "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz_-"
)
SHARE_CODE_MAX_ATTEMPTS: int = 16

DEFAULT_CREATOR_USERNAME: str = "default_creator"
DEFAULT_CREATOR_NAME: str = "Default Creator"

# Allowed lead of a recorded end time over the recorder's own clock.
SUBMISSION_CLOCK_SKEW_SECONDS: int = 5

# How long a finished session stays readable before the manager drops it.
SESSION_RETENTION_SECONDS: int = 15 * 60

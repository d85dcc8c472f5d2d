"""Error taxonomy shared by the exam services and the API layer."""

from __future__ import annotations


class ExamError(Exception):
    """Base class for errors that are reported back to the caller."""


class ValidationError(ExamError):
    """Raised when input is malformed or violates a contract precondition."""


class NotFoundError(ExamError):
    """Raised when a referenced test, submission or review request does not exist."""


class TransientIOError(ExamError):
    """Raised when the catalog or the persistence store cannot be reached."""

    user_message = "The exam service is temporarily unavailable. Please try again."


class ProgrammingContractViolation(RuntimeError):
    """Raised when test and answer data are out of sync.

    Not an ExamError: it must never be mapped to a user-facing response.
    """

"""Utilities for importing tests from a human-friendly text file.

File format: a header block followed by question blocks. Blocks are separated
by blank lines or '---'.

    TITLE: Physics basics
    DESCRIPTION: Optional one-line description
    DURATION: 15            (minutes)

    TYPE: MCQ
    POINTS: 5               (optional, defaults to 1)
    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    A: First choice
    B: Second choice
    C: ...                  (two to ten choices, A-J)
    CORRECT: B

    TYPE: TF
    Q: Light travels faster than sound.
    CORRECT: TRUE

    TYPE: ESSAY
    Q: Who formulated the law of universal gravitation?
    MODEL: Newton           (one or more)

Question ids are assigned in file order as q1, q2, ...
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from exam_app.core.models import EssayQuestion, McqQuestion, Question, TrueFalseQuestion


class ExamImportError(Exception):
    """Raised when a test definition cannot be parsed."""


@dataclass(slots=True)
class ImportedExam:
    """Container for imported test metadata and questions."""

    source_path: Path | None
    title: str
    duration_minutes: int
    questions: list[Question]
    description: str | None = None


_CHOICE_LETTERS = "ABCDEFGHIJ"
_HEADER_KEYS = ("TITLE:", "DESCRIPTION:", "DURATION:")
_TRUE_WORDS = {"TRUE", "T", "YES"}
_FALSE_WORDS = {"FALSE", "F", "NO"}


def load_exam_from_file(file_path: Path) -> ImportedExam:
    text = file_path.read_text(encoding="utf-8")
    exam = parse_exam_text(text)
    exam.source_path = file_path
    return exam


def parse_exam_text(text: str) -> ImportedExam:
    blocks = _split_blocks(text)
    if not blocks:
        raise ExamImportError("Exam file is empty.")

    header = blocks[0]
    if not header.upper().startswith(_HEADER_KEYS):
        raise ExamImportError("Exam file must start with a TITLE/DURATION header block.")
    title, description, duration = _parse_header(header)

    questions = [
        _parse_block(block, f"q{position}")
        for position, block in enumerate(blocks[1:], start=1)
    ]
    if not questions:
        raise ExamImportError("Exam file did not contain any questions.")
    return ImportedExam(
        source_path=None,
        title=title,
        description=description,
        duration_minutes=duration,
        questions=questions,
    )


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            # Blank line encountered after content - finalize current block
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())
    return [block for block in blocks if block]


def _parse_header(block: str) -> tuple[str, str | None, int]:
    title: str | None = None
    description: str | None = None
    duration: int | None = None
    for raw_line in block.splitlines():
        line = raw_line.strip()
        key, _, value = line.partition(":")
        key = key.strip().upper()
        value = value.strip()
        if key == "TITLE":
            title = value
        elif key == "DESCRIPTION":
            description = value or None
        elif key == "DURATION":
            duration = _parse_positive_int(value, "DURATION")
        else:
            raise ExamImportError(f"Unknown header line: '{line}'.")
    if not title:
        raise ExamImportError("TITLE is required.")
    if duration is None:
        raise ExamImportError("DURATION is required.")
    return title, description, duration


def _parse_block(block: str, question_id: str) -> Question:
    question_type: str | None = None
    points = 1
    question_lines: list[str] = []
    choices: dict[str, str] = {}
    correct: str | None = None
    model_answers: list[str] = []
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        upper = line.upper()
        if upper.startswith("TYPE:"):
            question_type = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("POINTS:"):
            points = _parse_positive_int(line.split(":", 1)[1].strip(), "POINTS")
            current_section = None
            continue

        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("CORRECT:"):
            correct = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("MODEL:"):
            model_answers.append(line.split(":", 1)[1].strip())
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in _CHOICE_LETTERS and line[1] == ":":
            letter = line[0].upper()
            choices[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section is not None and current_section in choices:
            choices[current_section] = choices[current_section] + f"\n{line}"
        else:
            raise ExamImportError(
                f"Encountered text outside of a known section: '{line}'."
            )

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise ExamImportError("Question text missing (Q: ...)")

    if question_type == "MCQ":
        return _build_mcq(question_id, question_text, points, choices, correct)
    if question_type == "TF":
        return _build_true_false(question_id, question_text, points, correct)
    if question_type == "ESSAY":
        if not model_answers or any(not model for model in model_answers):
            raise ExamImportError("ESSAY questions need at least one non-empty MODEL line.")
        return EssayQuestion(
            id=question_id,
            text=question_text,
            points=points,
            model_answers=tuple(model_answers),
        )
    raise ExamImportError("TYPE must be one of MCQ, TF or ESSAY.")


def _build_mcq(
    question_id: str,
    question_text: str,
    points: int,
    choices: dict[str, str],
    correct: str | None,
) -> McqQuestion:
    expected_letters = _CHOICE_LETTERS[: len(choices)]
    if len(choices) < 2 or set(choices) != set(expected_letters):
        raise ExamImportError("MCQ choices must be consecutive letters starting at A (at least two).")
    choice_list = tuple(choices[letter].strip() for letter in expected_letters)
    if any(not choice for choice in choice_list):
        raise ExamImportError("Choice text cannot be empty.")
    if correct is None or correct not in choices:
        raise ExamImportError(f"CORRECT must name one of the choices {', '.join(expected_letters)}.")
    return McqQuestion(
        id=question_id,
        text=question_text,
        points=points,
        choices=choice_list,
        correct_choice_index=expected_letters.index(correct),
    )


def _build_true_false(
    question_id: str,
    question_text: str,
    points: int,
    correct: str | None,
) -> TrueFalseQuestion:
    if correct in _TRUE_WORDS:
        value = True
    elif correct in _FALSE_WORDS:
        value = False
    else:
        raise ExamImportError("CORRECT must be TRUE or FALSE for TF questions.")
    return TrueFalseQuestion(id=question_id, text=question_text, points=points, correct_answer=value)


def _parse_positive_int(raw_value: str, label: str) -> int:
    if not raw_value:
        raise ExamImportError(f"{label} must include an integer value.")
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise ExamImportError(f"{label} must be an integer.") from exc
    if parsed_value <= 0:
        raise ExamImportError(f"{label} must be a positive integer.")
    return parsed_value

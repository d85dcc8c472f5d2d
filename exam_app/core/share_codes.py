"""Utility for allocating opaque share codes that resolve to a test."""

from __future__ import annotations

import random
from threading import Lock

from exam_app.constants.exam_constants import SHARE_CODE_ALPHABET, SHARE_CODE_LENGTH


class ShareCodeGenerator:
    """Produces random, URL-safe share codes."""

    def __init__(
        self,
        length: int = SHARE_CODE_LENGTH,
        alphabet: str = SHARE_CODE_ALPHABET,
        seed: int | None = None,
    ) -> None:
        if length <= 0:
            raise ValueError("Share code length must be positive.")
        if len(set(alphabet)) < 2:
            raise ValueError("Share code alphabet needs at least two distinct characters.")
        self._length = length
        self._alphabet = alphabet
        self._lock = Lock()
        # SystemRandom unless a seed is requested for reproducible runs.
        self._rng: random.Random = random.Random(seed) if seed is not None else random.SystemRandom()

    def next_code(self) -> str:
        with self._lock:
            return "".join(self._rng.choice(self._alphabet) for _ in range(self._length))

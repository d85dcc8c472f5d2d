"""Service for registering test creators and takers."""

from __future__ import annotations

import logging

from exam_app.constants.exam_constants import DEFAULT_CREATOR_NAME, DEFAULT_CREATOR_USERNAME
from exam_app.core.errors import NotFoundError, ValidationError
from exam_app.core.models import Creator, Taker
from exam_app.core.services.exam_store import ExamStore

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """Registers creators and takers; identities are not authenticated."""

    def __init__(self, store: ExamStore) -> None:
        self._store = store

    def register_creator(self, name: str, username: str, user_id: str | None = None) -> Creator:
        cleaned_name = self._clean(name, "Creator name")
        cleaned_username = self._clean(username, "Username")
        return self._store.create_creator(cleaned_name, cleaned_username, user_id)

    def ensure_default_creator(self) -> Creator:
        """Return the default creator, creating it on first use."""
        existing = self._store.get_creator_by_username(DEFAULT_CREATOR_USERNAME)
        if existing is not None:
            return existing
        creator = self._store.create_creator(DEFAULT_CREATOR_NAME, DEFAULT_CREATOR_USERNAME)
        logger.info("Created default creator %s", creator.id)
        return creator

    def get_creator(self, creator_id: int) -> Creator:
        creator = self._store.get_creator(creator_id)
        if creator is None:
            raise NotFoundError(f"Creator {creator_id} not found.")
        return creator

    def get_creator_by_username(self, username: str) -> Creator:
        creator = self._store.get_creator_by_username(username)
        if creator is None:
            raise NotFoundError(f"Creator '{username}' not found.")
        return creator

    def register_taker(self, name: str, user_id: str | None = None) -> Taker:
        return self._store.create_taker(self._clean(name, "Taker name"), user_id)

    def get_taker(self, taker_id: int) -> Taker:
        taker = self._store.get_taker(taker_id)
        if taker is None:
            raise NotFoundError(f"Taker {taker_id} not found.")
        return taker

    @staticmethod
    def _clean(value: str, label: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValidationError(f"{label} must not be empty.")
        return cleaned

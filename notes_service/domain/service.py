"""Note service orchestrating persistence for the HTTP layer."""

from __future__ import annotations

import logging

from .contracts import NoteInput
from .note import Note
from ..repository import NoteRepository

logger = logging.getLogger(__name__)


class NoteService:
    """Note workflows backed by Postgres storage."""

    def __init__(self, repository: NoteRepository) -> None:
        """Store the repository used for all note reads and writes."""
        self._repository = repository

    def list_notes(self) -> list[Note]:
        return self._repository.list_notes()

    def get_note(self, note_id: str) -> Note | None:
        return self._repository.get_note(note_id)

    def create_note(self, payload: NoteInput) -> Note:
        """Persist a new note."""
        note = self._repository.create_note(payload)
        logger.info("note created note_id=%s", note.note_id)
        return note

    def update_note(self, note_id: str, payload: NoteInput) -> Note | None:
        """Replace a note's title and content, returning ``None`` when it does not exist."""
        note = self._repository.update_note(note_id, payload)
        if note is not None:
            logger.info("note updated note_id=%s", note_id)
        return note

    def delete_note(self, note_id: str) -> bool:
        """Remove a note permanently."""
        deleted = self._repository.delete_note(note_id)
        if deleted:
            logger.info("note deleted note_id=%s", note_id)
        return deleted

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class Note:
    """A titled piece of free-form text with creation and update timestamps."""

    note_id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime

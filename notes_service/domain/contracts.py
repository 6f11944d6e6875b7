"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class NoteInput:
    """Validated fields required to create or replace a note."""

    title: str
    content: str

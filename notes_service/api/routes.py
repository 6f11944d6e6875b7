"""HTTP route definitions for the notes API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..domain.contracts import NoteInput
from ..domain.note import Note
from ..domain.service import NoteService

router = APIRouter(prefix="/api/notes", tags=["notes"])


class NoteResponse(BaseModel):
    """Serialised representation of a `Note`."""

    note_id: str
    title: str
    content: str
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, note: Note) -> "NoteResponse":
        """Build a response model from the domain object."""
        return cls(
            note_id=note.note_id,
            title=note.title,
            content=note.content,
            created_at=note.created_at.isoformat(),
            updated_at=note.updated_at.isoformat(),
        )


class NoteRequest(BaseModel):
    """Payload accepted when creating or replacing a note."""

    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)

    def to_input(self) -> NoteInput:
        return NoteInput(title=self.title, content=self.content)


class MessageResponse(BaseModel):
    message: str


def get_service(request: Request) -> NoteService:
    """Resolve the `NoteService` stored on the FastAPI application state."""
    service: NoteService = request.app.state.note_service
    return service


@router.get("", response_model=list[NoteResponse])
def list_notes(service: NoteService = Depends(get_service)) -> list[NoteResponse]:
    """Return every note, newest first."""
    return [NoteResponse.from_domain(note) for note in service.list_notes()]


@router.get("/{note_id}", response_model=NoteResponse)
def get_note(note_id: str, service: NoteService = Depends(get_service)) -> NoteResponse:
    note = service.get_note(note_id)
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return NoteResponse.from_domain(note)


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
def create_note(payload: NoteRequest, service: NoteService = Depends(get_service)) -> NoteResponse:
    """Create a note from the submitted title and content."""
    return NoteResponse.from_domain(service.create_note(payload.to_input()))


@router.put("/{note_id}", response_model=NoteResponse)
def update_note(
    note_id: str,
    payload: NoteRequest,
    service: NoteService = Depends(get_service),
) -> NoteResponse:
    """Replace the title and content of an existing note."""
    note = service.update_note(note_id, payload.to_input())
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return NoteResponse.from_domain(note)


@router.delete("/{note_id}", response_model=MessageResponse)
def delete_note(note_id: str, service: NoteService = Depends(get_service)) -> MessageResponse:
    if not service.delete_note(note_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return MessageResponse(message="Note deleted successfully!")

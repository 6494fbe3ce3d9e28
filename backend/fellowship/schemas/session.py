"""
Schémas Pydantic pour les sessions de check-in.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from fellowship.schemas.payload import CheckinPayload, EventType, as_utc


class SessionCreate(BaseModel):
    """Données nécessaires pour ouvrir une session de pointage."""
    event_name: str = Field(max_length=255)
    event_type: EventType = "weekly"
    event_id: Optional[str] = None
    duration_minutes: Optional[int] = None  # None → DEFAULT_SESSION_MINUTES

    @field_validator("event_name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom de l'événement ne peut pas être vide.")
        return v.strip()

    @field_validator("duration_minutes")
    @classmethod
    def duration_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("La durée de la session doit être strictement positive.")
        return v


class SessionRecord(BaseModel):
    """Session telle que lue depuis le store (frontière de validation)."""
    id: str
    event_id: Optional[str] = None
    event_name: str
    event_type: EventType
    word_of_day: str
    generated_at: datetime
    expires_at: datetime
    active: bool
    closed_at: Optional[datetime] = None
    attendance_count: int = 0
    qr_code_data: str
    created_by: Optional[str] = None

    @field_validator("generated_at", "expires_at", "closed_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None


class SessionResponse(BaseModel):
    """Vue publique d'une session (le mot du jour n'est pas exposé)."""
    id: str
    event_id: Optional[str]
    event_name: str
    event_type: str
    generated_at: datetime
    expires_at: datetime
    active: bool
    usable: bool
    closed_at: Optional[datetime]
    attendance_count: int


class SessionCreated(BaseModel):
    """Résultat de create_session : la session, sa charge utile et le code à afficher."""
    session: SessionRecord
    payload: CheckinPayload
    code: str


class SessionCreatedResponse(BaseModel):
    session: SessionResponse
    payload: CheckinPayload
    code: str
    word_of_day: str  # Affiché à l'organisateur pour annonce orale

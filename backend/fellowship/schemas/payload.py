"""
Schémas Pydantic des charges utiles embarquées dans les QR codes de présence.

Les clés JSON sont en camelCase (format d'échange fixe, partagé avec les appareils
de scan) ; les attributs Python restent en snake_case via les alias.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EVENT_TYPES = ("weekly", "special", "retreat", "holiday", "outreach", "other")
EventType = Literal["weekly", "special", "retreat", "holiday", "outreach", "other"]


def as_utc(v: datetime) -> datetime:
    """Interprète un datetime naïf comme UTC (SQLite ne conserve pas le fuseau)."""
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class CheckinPayload(BaseModel):
    """Contenu du QR code d'une session : immuable une fois émis."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    event_name: str = Field(alias="eventName")
    event_type: EventType = Field(alias="eventType")
    word_of_day: str = Field(alias="wordOfDay", min_length=1)
    issued_token: str = Field(alias="issuedToken", min_length=1)  # Identifie ce QR code, pas l'utilisateur
    issued_at: datetime = Field(alias="issuedAt")
    expires_at: datetime = Field(alias="expiresAt")

    @field_validator("issued_at", "expires_at")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class OfflineToken(BaseModel):
    """Jeton synthétique d'un pointage manuel enregistré sans réseau (pas de préfixe)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(alias="userId", min_length=1)
    event_name: str = Field(alias="eventName", min_length=1)
    timestamp: datetime
    offline: Literal[True]
    issued_token: str = Field(alias="issuedToken", min_length=1)

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class MalformedToken(BaseModel):
    """Signal de décodage impossible : le décodeur ne lève jamais d'exception."""

    model_config = ConfigDict(frozen=True)

    detail: str

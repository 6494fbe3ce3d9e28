"""
Service métier pour les sessions de check-in.
Création (avec émission du QR code), désactivation et règles d'utilisabilité.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fellowship.schemas.payload import CheckinPayload
from fellowship.schemas.session import SessionCreate, SessionCreated, SessionRecord
from fellowship.services.token_codec import encode_payload, generate_token
from fellowship.services.word_of_day import word_of_day
from fellowship.store import ATTENDANCE, SESSIONS, DocumentStore

logger = logging.getLogger(__name__)


def create_session(
    store: DocumentStore,
    data: SessionCreate,
    secret: Optional[str],
    default_minutes: int = 180,
    now: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> SessionCreated:
    """
    Ouvre une session de pointage et émet sa charge utile QR.

    - expires_at = now + durée ; la charge utile porte exactement la même expiration
    - le mot du jour est calculé pour la date de création
    - plusieurs sessions peuvent être actives en même temps

    Lève ValueError si la durée n'est pas strictement positive.
    """
    duration = data.duration_minutes if data.duration_minutes is not None else default_minutes
    if duration <= 0:
        raise ValueError("La durée de la session doit être strictement positive.")

    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=duration)
    session_id = str(uuid.uuid4())
    word = word_of_day(now, secret)

    payload = CheckinPayload(
        session_id=session_id,
        event_name=data.event_name,
        event_type=data.event_type,
        word_of_day=word,
        issued_token=generate_token(16),
        issued_at=now,
        expires_at=expires_at,
    )
    code = encode_payload(payload)

    session = SessionRecord(
        id=session_id,
        event_id=data.event_id,
        event_name=data.event_name,
        event_type=data.event_type,
        word_of_day=word,
        generated_at=now,
        expires_at=expires_at,
        active=True,
        closed_at=None,
        attendance_count=0,
        qr_code_data=code,
        created_by=created_by,
    )
    store.insert(SESSIONS, session.model_dump())

    logger.info(
        "Session créée : %s (%s, %s), expire à %s",
        session.id, session.event_name, session.event_type, session.expires_at.isoformat(),
    )
    return SessionCreated(session=session, payload=payload, code=code)


def get_session(store: DocumentStore, session_id: str) -> Optional[SessionRecord]:
    """Retourne une session par son ID, ou None si elle n'existe pas."""
    doc = store.get(SESSIONS, session_id)
    if doc is None:
        return None
    return SessionRecord.model_validate(doc)


def list_sessions(store: DocumentStore, active_only: bool = False) -> List[SessionRecord]:
    """Retourne les sessions, de la plus récente à la plus ancienne."""
    filters = {"active": True} if active_only else {}
    sessions = [SessionRecord.model_validate(d) for d in store.query(SESSIONS, filters)]
    return sorted(sessions, key=lambda s: s.generated_at, reverse=True)


def deactivate_session(
    store: DocumentStore,
    session_id: str,
    now: Optional[datetime] = None,
) -> SessionRecord:
    """
    Ferme une session avant son expiration naturelle.
    Idempotent : une session déjà fermée est retournée telle quelle (closed_at inchangé).
    Lève ValueError si la session est introuvable.
    """
    session = get_session(store, session_id)
    if session is None:
        raise ValueError(f"Session {session_id} introuvable.")
    if not session.active:
        return session

    closed_at = now or datetime.now(timezone.utc)
    store.update(SESSIONS, session_id, {"active": False, "closed_at": closed_at})
    logger.info("Session désactivée : %s (%s)", session_id, session.event_name)
    return session.model_copy(update={"active": False, "closed_at": closed_at})


def is_usable(session: SessionRecord, now: datetime) -> bool:
    """Une session accepte des pointages ssi elle est active ET non expirée."""
    return session.active and now <= session.expires_at


def was_open_at(session: SessionRecord, when: datetime) -> bool:
    """
    Utilisabilité à un instant passé (rejeu offline) : non expirée à cet instant,
    et encore active ou fermée après cet instant.
    """
    if when > session.expires_at:
        return False
    if session.active:
        return True
    return session.closed_at is not None and when <= session.closed_at


def refresh_attendance_count(store: DocumentStore, session_id: str) -> int:
    """
    Recalcule le compteur informatif d'une session depuis les présences enregistrées.
    Le compteur ne décroît jamais, même si deux recalculs concurrents se croisent.
    """
    count = store.count(ATTENDANCE, {"session_id": session_id})
    current = store.get(SESSIONS, session_id)
    if current is not None:
        count = max(count, current.get("attendance_count") or 0)
    store.update(SESSIONS, session_id, {"attendance_count": count})
    return count

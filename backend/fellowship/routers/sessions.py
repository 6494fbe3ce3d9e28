"""
Router pour les sessions de check-in.
Ouverture (avec émission du QR code), consultation, fermeture et rendu du QR code.
"""

from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from fellowship.auth import require_admin
from fellowship.config import settings
from fellowship.schemas.attendance import CurrentUser
from fellowship.schemas.session import (
    SessionCreate,
    SessionCreatedResponse,
    SessionRecord,
    SessionResponse,
)
from fellowship.services import qr_service, session_service
from fellowship.store import DocumentStore, get_store

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions de check-in"])


def to_response(session: SessionRecord) -> SessionResponse:
    return SessionResponse(
        **session.model_dump(exclude={"word_of_day", "qr_code_data", "created_by"}),
        usable=session_service.is_usable(session, datetime.now(timezone.utc)),
    )


@router.post("", response_model=SessionCreatedResponse, status_code=201, summary="Ouvrir une session de check-in")
def create_session(
    data: SessionCreate,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
):
    """
    Ouvre une session de pointage pour un événement et émet son QR code.

    - Durée par défaut : DEFAULT_SESSION_MINUTES (3 h)
    - Le mot du jour est retourné pour être annoncé oralement
    - Plusieurs sessions peuvent être ouvertes en même temps
    """
    try:
        created = session_service.create_session(
            store, data, settings.ATTENDANCE_SECRET,
            default_minutes=settings.DEFAULT_SESSION_MINUTES,
            created_by=admin.user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SessionCreatedResponse(
        session=to_response(created.session),
        payload=created.payload,
        code=created.code,
        word_of_day=created.session.word_of_day,
    )


@router.get("", response_model=List[SessionResponse], summary="Lister les sessions")
def list_sessions(active_only: bool = False, store: DocumentStore = Depends(get_store)):
    """Retourne les sessions, de la plus récente à la plus ancienne."""
    return [to_response(s) for s in session_service.list_sessions(store, active_only)]


@router.get("/{session_id}", response_model=SessionResponse, summary="Détail d'une session")
def get_session(session_id: str, store: DocumentStore = Depends(get_store)):
    session = session_service.get_session(store, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session introuvable.")
    return to_response(session)


@router.post("/{session_id}/deactivate", response_model=SessionResponse, summary="Fermer une session")
def deactivate_session(
    session_id: str,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
):
    """
    Ferme la session avant son expiration : plus aucun pointage n'est accepté.
    Idempotent : fermer une session déjà fermée ne change rien.
    """
    try:
        return to_response(session_service.deactivate_session(store, session_id))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get(
    "/{session_id}/qrcode",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
    summary="QR code de la session (PNG)",
)
def get_session_qrcode(session_id: str, store: DocumentStore = Depends(get_store)):
    """Image PNG du code émis à l'ouverture, à afficher à l'entrée de la salle."""
    try:
        png = qr_service.session_qr_png(store, session_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(content=png, media_type="image/png")

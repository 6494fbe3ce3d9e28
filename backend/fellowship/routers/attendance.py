"""
Router pour les pointages de présence.
Check-in par scan (membre ou visiteur), pointage manuel par un responsable,
rapport et export CSV des présences d'une session, historique et statistiques.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse

from fellowship.auth import get_current_user, require_admin
from fellowship.config import settings
from fellowship.schemas.attendance import (
    AdminCheckInRequest,
    AttendanceRecord,
    AttendanceStats,
    CheckInRequest,
    CheckInResponse,
    CurrentUser,
    RejectReason,
    SessionReport,
    VisitorCheckInRequest,
)
from fellowship.services import checkin_service, report_service, session_service
from fellowship.services.checkin_service import CheckInOutcome
from fellowship.services.offline_queue import OfflineQueue, get_offline_queue
from fellowship.store import DocumentStore, get_store

router = APIRouter(prefix="/api/v1", tags=["Présences"])

REASON_STATUS = {
    RejectReason.MALFORMED_TOKEN: 400,
    RejectReason.WORD_MISMATCH: 400,
    RejectReason.EXPIRED_TOKEN: 410,
    RejectReason.STALE_TOKEN: 410,
    RejectReason.SESSION_INACTIVE: 409,
    RejectReason.DUPLICATE_CHECK_IN: 409,
}


def _respond(outcome: CheckInOutcome, response: Response) -> CheckInResponse:
    """Accepté → 201, mis en file offline → 202, refusé → code HTTP du motif."""
    if outcome.status == "rejected":
        raise HTTPException(
            status_code=REASON_STATUS[outcome.reason],
            detail={"reason": outcome.reason.value, "message": outcome.message},
        )
    if outcome.status == "queued":
        response.status_code = 202
    return CheckInResponse(
        status=outcome.status,
        attendance_id=outcome.attendance_id,
        local_id=outcome.local_id,
        record=outcome.record,
    )


@router.post("/attendance/checkin", response_model=CheckInResponse, status_code=201,
             summary="Pointer sa présence (scan du QR code)")
def check_in(
    data: CheckInRequest,
    response: Response,
    store: DocumentStore = Depends(get_store),
    user: CurrentUser = Depends(get_current_user),
    queue: Optional[OfflineQueue] = Depends(get_offline_queue),
):
    """
    Enregistre la présence du membre connecté à partir du code scanné.

    - 201 : présence enregistrée
    - 202 : base injoignable, pointage mis en file offline (synchronisé plus tard)
    - 400 / 409 / 410 : refus avec {reason, message}
    """
    outcome = checkin_service.check_in(
        store, data.code,
        secret=settings.ATTENDANCE_SECRET,
        user=user,
        max_age=settings.qr_max_age,
        queue=queue,
    )
    return _respond(outcome, response)


@router.post("/attendance/visitor", response_model=CheckInResponse, status_code=201,
             summary="Pointer un visiteur")
def check_in_visitor(
    data: VisitorCheckInRequest,
    response: Response,
    store: DocumentStore = Depends(get_store),
    queue: Optional[OfflineQueue] = Depends(get_offline_queue),
):
    """
    Enregistre un visiteur (sans compte) à partir du code scanné.
    Les visiteurs ne sont jamais dédupliqués : deux visiteurs peuvent pointer sur le même appareil.
    """
    outcome = checkin_service.check_in(
        store, data.code,
        secret=settings.ATTENDANCE_SECRET,
        visitor_info=data.visitor_info,
        max_age=settings.qr_max_age,
        queue=queue,
    )
    return _respond(outcome, response)


@router.get("/attendance/me", response_model=List[AttendanceRecord],
            summary="Historique de mes présences")
def my_attendance_history(
    limit: int = Query(50, ge=1, le=500),
    store: DocumentStore = Depends(get_store),
    user: CurrentUser = Depends(get_current_user),
):
    """Présences du membre connecté, de la plus récente à la plus ancienne."""
    return report_service.get_user_history(store, user.user_id, limit=limit)


@router.get("/attendance/today", response_model=List[AttendanceRecord],
            summary="Présences du jour")
def today_attendance(
    event_name: Optional[str] = None,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
):
    return report_service.get_today_attendance(store, event_name=event_name)


@router.get("/attendance/stats", response_model=AttendanceStats,
            summary="Statistiques de présence sur une période")
def attendance_stats(
    start: date,
    end: date,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
):
    """
    Total, membres distincts, visiteurs, moyenne par jour et répartition par événement,
    du jour start au jour end inclus (UTC).
    """
    try:
        return report_service.get_attendance_stats(store, start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/sessions/{session_id}/attendance", response_model=CheckInResponse, status_code=201,
             summary="Pointage manuel par un responsable")
def admin_check_in(
    session_id: str,
    data: AdminCheckInRequest,
    response: Response,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
    queue: Optional[OfflineQueue] = Depends(get_offline_queue),
):
    """
    Pointe un membre ou un visiteur sans scan, avec le code émis à l'ouverture de la session.
    allow_multiple=true autorise un pointage supplémentaire du même membre.
    """
    session = session_service.get_session(store, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session introuvable.")

    outcome = checkin_service.check_in(
        store, session.qr_code_data,
        secret=settings.ATTENDANCE_SECRET,
        user=CurrentUser(user_id=data.user_id, name=data.user_name or "") if data.user_id else None,
        visitor_info=data.visitor_info,
        method="admin",
        allow_multiple=data.allow_multiple,
        queue=queue,
    )
    return _respond(outcome, response)


@router.get("/sessions/{session_id}/attendance", response_model=SessionReport,
            summary="Rapport de présence d'une session")
def get_session_report(
    session_id: str,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
):
    """Liste des présences (membres et visiteurs) triées par heure de pointage."""
    try:
        return report_service.get_session_report(store, session_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/sessions/{session_id}/attendance/export", summary="Exporter les présences en CSV")
def export_attendance(
    session_id: str,
    store: DocumentStore = Depends(get_store),
    admin: CurrentUser = Depends(require_admin),
):
    """
    Exporte les présences d'une session en CSV (UTF-8 BOM, séparateur ;).
    Compatible Excel.
    """
    try:
        csv_content = report_service.export_attendance_csv(store, session_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return StreamingResponse(
        iter([csv_content]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename=presences_{session_id}.csv"},
    )

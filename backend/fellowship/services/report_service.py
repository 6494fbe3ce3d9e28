"""
Rapports de présence : liste détaillée et export CSV d'une session,
historique d'un membre, présences du jour et statistiques sur une période.
"""

import csv
import io
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional

from fellowship.schemas.attendance import AttendanceRecord, AttendanceStats, SessionReport
from fellowship.services.session_service import get_session
from fellowship.store import ATTENDANCE, DocumentStore

logger = logging.getLogger(__name__)


def get_session_report(store: DocumentStore, session_id: str) -> SessionReport:
    """
    Retourne les présences d'une session, triées par heure de pointage.
    Lève ValueError si la session est introuvable.
    """
    session = get_session(store, session_id)
    if session is None:
        raise ValueError(f"Session {session_id} introuvable.")

    records = [AttendanceRecord.model_validate(d) for d in store.query(ATTENDANCE, {"session_id": session_id})]
    records.sort(key=lambda r: r.check_in_time)
    visitors = sum(1 for r in records if r.is_visitor)

    return SessionReport(
        session_id=session.id,
        event_name=session.event_name,
        attendance_count=len(records),
        member_count=len(records) - visitors,
        visitor_count=visitors,
        records=records,
    )


def export_attendance_csv(store: DocumentStore, session_id: str) -> str:
    """
    Génère le CSV des présences d'une session.
    Retourne le contenu CSV sous forme de string (UTF-8 BOM pour Excel).
    """
    report = get_session_report(store, session_id)

    output = io.StringIO()
    writer = csv.writer(output, delimiter=";")
    writer.writerow([
        "user_id", "user_name", "check_in_time", "check_in_method",
        "is_visitor", "visitor_phone", "visitor_email", "invited_by", "first_time",
    ])

    for r in report.records:
        info = r.visitor_info
        writer.writerow([
            "" if r.is_visitor else r.user_id,
            r.user_name or "",
            r.check_in_time.strftime("%Y-%m-%d %H:%M:%S"),
            r.check_in_method,
            "oui" if r.is_visitor else "non",
            (info.phone_number or "") if info else "",
            (info.email or "") if info else "",
            (info.invited_by or "") if info else "",
            ("oui" if info.is_first_time else "non") if info else "",
        ])

    logger.info("Export CSV de la session %s : %d présences", session_id, len(report.records))
    return "\ufeff" + output.getvalue()  # BOM pour compatibilité Excel


def get_user_history(store: DocumentStore, user_id: str, limit: int = 50) -> List[AttendanceRecord]:
    """Présences d'un membre, de la plus récente à la plus ancienne."""
    docs = store.query(
        ATTENDANCE, {"user_id": user_id, "is_visitor": False},
        order_by="check_in_time", descending=True, limit=limit,
    )
    return [AttendanceRecord.model_validate(d) for d in docs]


def get_today_attendance(
    store: DocumentStore,
    now: Optional[datetime] = None,
    event_name: Optional[str] = None,
) -> List[AttendanceRecord]:
    """Présences du jour UTC courant, les plus récentes d'abord."""
    now = now or datetime.now(timezone.utc)
    start = _day_start(now.astimezone(timezone.utc).date())
    filters = {"event_name": event_name} if event_name else {}
    docs = store.query(
        ATTENDANCE, filters,
        between=("check_in_time", start, start + timedelta(days=1)),
        order_by="check_in_time", descending=True,
    )
    return [AttendanceRecord.model_validate(d) for d in docs]


def get_attendance_stats(store: DocumentStore, start: date, end: date) -> AttendanceStats:
    """
    Statistiques de présence du jour `start` au jour `end` inclus.

    - unique_members : membres distincts (les visiteurs n'ont pas d'identifiant)
    - average_per_day : présences / nombre de jours de la période, arrondi à 2 décimales
    - event_breakdown : présences par nom d'événement

    Lève ValueError si la période est inversée.
    """
    if end < start:
        raise ValueError("La date de fin précède la date de début.")

    docs = store.query(
        ATTENDANCE, between=("check_in_time", _day_start(start), _day_start(end + timedelta(days=1))),
    )
    records = [AttendanceRecord.model_validate(d) for d in docs]

    breakdown: Dict[str, int] = {}
    for r in records:
        key = r.event_name or r.event_type or "inconnu"
        breakdown[key] = breakdown.get(key, 0) + 1

    days = (end - start).days + 1
    return AttendanceStats(
        start=start,
        end=end,
        total_attendance=len(records),
        unique_members=len({r.user_id for r in records if not r.is_visitor}),
        visitors=sum(1 for r in records if r.is_visitor),
        average_per_day=round(len(records) / days, 2),
        event_breakdown=breakdown,
    )


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)

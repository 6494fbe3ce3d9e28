"""
Service de pointage en ligne.

Flux :
  1. Le validateur décide (lectures de la session et des pointages existants via le store)
  2. Accepté → insertion atomique : la contrainte unique dedup_key refuse un second
     pointage concurrent du même membre sur la même session (pas de lecture puis écriture séparées)
  3. Store injoignable → contrôles autonomes de la charge utile, puis mise en file offline
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from fellowship.schemas.attendance import (
    AttendanceRecord,
    CheckInMethod,
    CurrentUser,
    RejectReason,
    VisitorInfo,
)
from fellowship.schemas.sync import OfflineOperation
from fellowship.services import checkin_validator
from fellowship.services.checkin_validator import Reject, reject
from fellowship.services.offline_queue import OfflineQueue
from fellowship.services.session_service import get_session, refresh_attendance_count
from fellowship.services.token_codec import decode_payload
from fellowship.services.word_of_day import word_of_day
from fellowship.store import ATTENDANCE, DocumentStore, DuplicateKeyError, StoreError, StoreUnavailable

logger = logging.getLogger(__name__)


class CheckInOutcome(BaseModel):
    """Résultat d'un pointage : accepté, mis en file offline, ou refusé avec un motif."""
    status: Literal["accepted", "queued", "rejected"]
    attendance_id: Optional[str] = None
    local_id: Optional[str] = None
    record: Optional[AttendanceRecord] = None
    reason: Optional[RejectReason] = None
    message: Optional[str] = None


def prior_attendance_lookup(store: DocumentStore):
    """Construit la fonction de recherche de pointage membre existant pour le validateur."""
    def lookup(user_id: str, session_id: str) -> Optional[AttendanceRecord]:
        docs = store.query(ATTENDANCE, {"user_id": user_id, "session_id": session_id, "is_visitor": False})
        return AttendanceRecord.model_validate(docs[0]) if docs else None
    return lookup


def session_lookup(store: DocumentStore):
    return lambda session_id: get_session(store, session_id)


def dedup_key_for(record: AttendanceRecord, allow_multiple: bool = False) -> Optional[str]:
    """Clé d'unicité membre ↔ session ; None pour un visiteur ou un pointage multiple autorisé."""
    if record.is_visitor or allow_multiple or not record.session_id:
        return None
    return f"{record.session_id}:{record.user_id}"


def persist_attendance(store: DocumentStore, record: AttendanceRecord, allow_multiple: bool = False) -> str:
    """
    Insère la présence acceptée et met à jour le compteur de la session.
    Lève DuplicateKeyError si un pointage concurrent (ou le même local_id) a gagné la course.

    Une fois l'insertion validée, un échec de mise à jour du compteur est journalisé
    sans remettre en cause la présence enregistrée.
    """
    doc = record.model_dump(exclude={"id"})
    doc["dedup_key"] = dedup_key_for(record, allow_multiple)
    attendance_id = store.insert(ATTENDANCE, doc)
    if record.session_id:
        try:
            refresh_attendance_count(store, record.session_id)
        except (StoreError, SQLAlchemyError) as exc:
            store.db.rollback()
            logger.warning("Compteur de la session %s non mis à jour : %s", record.session_id, exc)
    return attendance_id


def check_in(
    store: DocumentStore,
    raw_code: str,
    *,
    secret: Optional[str],
    user: Optional[CurrentUser] = None,
    method: CheckInMethod = "qrcode",
    visitor_info: Optional[VisitorInfo] = None,
    allow_multiple: bool = False,
    max_age: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    queue: Optional[OfflineQueue] = None,
) -> CheckInOutcome:
    """
    Enregistre un pointage à partir du code brut scanné.

    Retourne un CheckInOutcome ; ne lève que pour une panne d'infrastructure
    (StoreUnavailable sans file offline disponible).
    """
    now = now or datetime.now(timezone.utc)
    current_word = word_of_day(now, secret)

    try:
        decision = checkin_validator.validate(
            raw_code,
            current_word,
            now,
            prior_attendance_lookup(store),
            user=user,
            method=method,
            visitor_info=visitor_info,
            max_age=max_age,
            allow_multiple=allow_multiple,
            lookup_session=session_lookup(store),
        )
        if isinstance(decision, Reject):
            return _rejected(decision, user)
        attendance_id = persist_attendance(store, decision.record, allow_multiple)
    except DuplicateKeyError:
        # Un pointage concurrent a été inséré entre la vérification et l'insertion
        return _rejected(reject(RejectReason.DUPLICATE_CHECK_IN), user)
    except StoreUnavailable:
        if queue is None:
            raise
        return _queue_offline(queue, raw_code, current_word, now, user, method, visitor_info, max_age)

    logger.info(
        "Pointage accepté : %s → session %s (%s)",
        decision.record.user_id, decision.record.session_id, method,
    )
    return CheckInOutcome(status="accepted", attendance_id=attendance_id, record=decision.record)


def _queue_offline(
    queue: OfflineQueue,
    raw_code: str,
    current_word: str,
    now: datetime,
    user: Optional[CurrentUser],
    method: CheckInMethod,
    visitor_info: Optional[VisitorInfo],
    max_age: Optional[timedelta],
) -> CheckInOutcome:
    """Store injoignable : seuls les contrôles autonomes s'appliquent, le reste à la synchronisation."""
    decision = checkin_validator.validate(
        raw_code,
        current_word,
        now,
        lambda user_id, session_id: None,
        user=user,
        method=method,
        visitor_info=visitor_info,
        max_age=max_age,
    )
    if isinstance(decision, Reject):
        return _rejected(decision, user)

    payload = decode_payload(raw_code)
    local_id = queue.enqueue(OfflineOperation(
        user_id=decision.record.user_id,
        user_name=decision.record.user_name,
        session_id=payload.session_id,
        event_name=payload.event_name,
        check_in_time=now,
        payload=raw_code,
        is_visitor=decision.record.is_visitor,
        visitor_info=visitor_info,
    ))
    logger.warning("Store injoignable : pointage %s mis en file offline (%s)", local_id, decision.record.user_id)
    record = decision.record.model_copy(update={"local_id": local_id})
    return CheckInOutcome(status="queued", local_id=local_id, record=record)


def _rejected(decision: Reject, user: Optional[CurrentUser]) -> CheckInOutcome:
    logger.warning(
        "Pointage refusé (%s) pour %s",
        decision.reason.value, user.user_id if user else "visiteur",
    )
    return CheckInOutcome(status="rejected", reason=decision.reason, message=decision.message)

"""
Validateur de pointage : l'unique machine à états d'admission d'un check-in.

Pur : aucune écriture, aucune lecture directe du store. Les seuls accès extérieurs
sont les fonctions de lecture fournies par l'appelant (lookup_prior_attendance,
lookup_session). Retourne Accept (avec la présence à persister) ou Reject
(motif + message), jamais d'exception pour une entrée invalide.

Ordre des contrôles (arrêt au premier échec) :
1. décodage du code                → MALFORMED_TOKEN
2. expiration de la charge utile   → EXPIRED_TOKEN (fait foi, indépendamment de la session)
3. session introuvable ou fermée   → SESSION_INACTIVE
4. mot du jour                     → WORD_MISMATCH
5. ancienneté d'émission (option)  → STALE_TOKEN
6. pointage déjà existant          → DUPLICATE_CHECK_IN (sauf visiteur / multiple autorisé)
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Literal, Optional, Union

from pydantic import BaseModel

from fellowship.schemas.attendance import (
    VISITOR_USER_ID,
    AttendanceRecord,
    CheckInMethod,
    CurrentUser,
    RejectReason,
    VisitorInfo,
)
from fellowship.schemas.payload import MalformedToken
from fellowship.schemas.session import SessionRecord
from fellowship.services.session_service import was_open_at
from fellowship.services.token_codec import decode_offline_token, decode_payload

logger = logging.getLogger(__name__)

LookupPriorAttendance = Callable[[str, str], Optional[AttendanceRecord]]
LookupSession = Callable[[str], Optional[SessionRecord]]

MESSAGES = {
    RejectReason.MALFORMED_TOKEN: "QR code illisible ou invalide. Scannez à nouveau le code affiché.",
    RejectReason.EXPIRED_TOKEN: "Ce QR code a expiré. Demandez à l'organisateur le code en cours.",
    RejectReason.STALE_TOKEN: "Ce QR code est trop ancien. Scannez le code actuellement affiché.",
    RejectReason.WORD_MISMATCH: "Le mot du jour ne correspond pas : ce code n'a pas été émis aujourd'hui.",
    RejectReason.DUPLICATE_CHECK_IN: "Vous avez déjà pointé pour cette session.",
    RejectReason.SESSION_INACTIVE: "Cette session de pointage est fermée.",
}


class Accept(BaseModel):
    accepted: Literal[True] = True
    record: AttendanceRecord


class Reject(BaseModel):
    accepted: Literal[False] = False
    reason: RejectReason
    message: str


Decision = Union[Accept, Reject]


def reject(reason: RejectReason, message: Optional[str] = None) -> Reject:
    return Reject(reason=reason, message=message or MESSAGES[reason])


def validate(
    raw_code: str,
    current_word: str,
    now: datetime,
    lookup_prior_attendance: LookupPriorAttendance,
    *,
    user: Optional[CurrentUser] = None,
    method: CheckInMethod = "qrcode",
    visitor_info: Optional[VisitorInfo] = None,
    max_age: Optional[timedelta] = None,
    allow_multiple: bool = False,
    lookup_session: Optional[LookupSession] = None,
    local_id: Optional[str] = None,
) -> Decision:
    """
    Décide si un code "FC-ATTEND:..." scanné à l'instant `now` donne lieu à une présence.

    current_word est le mot du jour calculé par le valideur lui-même.
    visitor_info non nul → pointage visiteur (jamais dédupliqué).
    lookup_session : lecture de la session émettrice ; None quand le store est
    injoignable (seuls les contrôles autonomes de la charge utile s'appliquent).
    """
    payload = decode_payload(raw_code)
    if isinstance(payload, MalformedToken):
        logger.debug("Code rejeté : %s", payload.detail)
        return reject(RejectReason.MALFORMED_TOKEN)

    if now > payload.expires_at:
        return reject(RejectReason.EXPIRED_TOKEN)

    session = None
    if lookup_session is not None:
        session = lookup_session(payload.session_id)
        if session is None:
            return reject(RejectReason.SESSION_INACTIVE, "Session de pointage introuvable.")
        if not was_open_at(session, now):
            return reject(RejectReason.SESSION_INACTIVE)

    if payload.word_of_day != current_word:
        return reject(RejectReason.WORD_MISMATCH)

    if max_age is not None and now - payload.issued_at > max_age:
        return reject(RejectReason.STALE_TOKEN)

    return _admit(
        session_id=payload.session_id,
        event_name=payload.event_name,
        event_type=payload.event_type,
        event_id=session.event_id if session is not None else None,
        now=now,
        lookup_prior_attendance=lookup_prior_attendance,
        user=user,
        method=method,
        visitor_info=visitor_info,
        allow_multiple=allow_multiple,
        local_id=local_id,
    )


def validate_offline(
    raw_token: str,
    session_id: Optional[str],
    now: datetime,
    lookup_prior_attendance: LookupPriorAttendance,
    lookup_session: LookupSession,
    *,
    user: Optional[CurrentUser] = None,
    visitor_info: Optional[VisitorInfo] = None,
    allow_multiple: bool = False,
    local_id: Optional[str] = None,
) -> Decision:
    """
    Variante pour le jeton offline synthétique (pointage manuel sans scan).

    Le jeton ne porte ni expiration ni mot du jour : la fenêtre est celle de la
    session visée par l'opération, évaluée à l'heure réelle du pointage.
    """
    token = decode_offline_token(raw_token)
    if isinstance(token, MalformedToken):
        logger.debug("Jeton offline rejeté : %s", token.detail)
        return reject(RejectReason.MALFORMED_TOKEN)

    if visitor_info is None and (user is None or token.user_id != user.user_id):
        return reject(RejectReason.MALFORMED_TOKEN, "Le jeton offline ne correspond pas à cet utilisateur.")

    session = lookup_session(session_id) if session_id else None
    if session is None:
        return reject(RejectReason.SESSION_INACTIVE, "Session de pointage introuvable.")

    if now > session.expires_at:
        return reject(RejectReason.EXPIRED_TOKEN, "La session avait expiré au moment du pointage.")

    if not was_open_at(session, now):
        return reject(RejectReason.SESSION_INACTIVE)

    return _admit(
        session_id=session.id,
        event_name=session.event_name,
        event_type=session.event_type,
        event_id=session.event_id,
        now=now,
        lookup_prior_attendance=lookup_prior_attendance,
        user=user,
        method="offline",
        visitor_info=visitor_info,
        allow_multiple=allow_multiple,
        local_id=local_id,
    )


def _admit(
    *,
    session_id: str,
    event_name: Optional[str],
    event_type: Optional[str],
    event_id: Optional[str],
    now: datetime,
    lookup_prior_attendance: LookupPriorAttendance,
    user: Optional[CurrentUser],
    method: CheckInMethod,
    visitor_info: Optional[VisitorInfo],
    allow_multiple: bool,
    local_id: Optional[str],
) -> Decision:
    """Dernière étape commune : contrôle de doublon puis construction de la présence."""
    is_visitor = visitor_info is not None
    if not is_visitor and user is None:
        raise ValueError("Un pointage membre exige un utilisateur identifié.")

    if not is_visitor and not allow_multiple:
        prior = lookup_prior_attendance(user.user_id, session_id)
        if prior is not None and not prior.is_visitor:
            return reject(RejectReason.DUPLICATE_CHECK_IN)

    record = AttendanceRecord(
        session_id=session_id,
        event_id=event_id,
        event_name=event_name,
        event_type=event_type,
        user_id=VISITOR_USER_ID if is_visitor else user.user_id,
        user_name=visitor_info.name if is_visitor else (user.name or None),
        check_in_time=now,
        check_in_method=method,
        is_visitor=is_visitor,
        visitor_info=visitor_info,
        local_id=local_id,
    )
    return Accept(record=record)

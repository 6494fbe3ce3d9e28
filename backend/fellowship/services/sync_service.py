"""
Service de synchronisation offline → online.

Rejoue chaque opération de la file, dans l'ordre d'insertion, par le même chemin
de validation et de persistance qu'un pointage en ligne :
- Idempotence via local_id : une opération déjà enregistrée est ignorée et retirée
- Personne déjà créditée (DUPLICATE_CHECK_IN ou conflit d'unicité) → ignorée et retirée
- Validation évaluée à l'heure réelle du pointage (check_in_time), pas à l'heure de sync
- Échec de validation ou d'écriture → l'opération reste en file, la passe continue
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from fellowship.schemas.attendance import CurrentUser, RejectReason
from fellowship.schemas.sync import STORAGE_ERROR, OfflineOperation, SyncFailure, SyncSummary
from fellowship.services import checkin_validator
from fellowship.services.checkin_service import (
    persist_attendance,
    prior_attendance_lookup,
    session_lookup,
)
from fellowship.services.checkin_validator import Decision, Reject
from fellowship.services.token_codec import QR_PREFIX
from fellowship.services.word_of_day import word_of_day
from fellowship.store import ATTENDANCE, DocumentStore, DuplicateKeyError, StoreError

logger = logging.getLogger(__name__)


def reconcile(
    queue,
    store: DocumentStore,
    secret: Optional[str],
    max_age: Optional[timedelta] = None,
    device_id: str = "",
) -> SyncSummary:
    """
    Vide la file offline dans le store.
    Chaque opération doit porter son local_id (attribué à l'enqueue).

    queue : OfflineQueue (appareil) ou BatchQueue (lot reçu par HTTP).
    Lève StoreUnavailable si le store est injoignable au début de la passe ;
    toute autre erreur est rapportée par opération dans le résumé.
    """
    store.ping()

    summary = SyncSummary()
    operations = queue.drain()

    for op in operations:
        if not op.local_id:
            # Une recherche sur local_id NULL correspondrait à tous les pointages en ligne
            summary.failed.append(SyncFailure(
                local_id="", reason=RejectReason.MALFORMED_TOKEN.value, message="Opération sans local_id.",
            ))
            logger.warning("Opération sans local_id ignorée (utilisateur %s)", op.user_id)
            continue

        try:
            # Déjà synchronisée (passe précédente ou doublon dans le lot)
            if store.query(ATTENDANCE, {"local_id": op.local_id}):
                summary.skipped.append(op.local_id)
                queue.remove(op.local_id)
                logger.debug("Opération déjà synchronisée, ignorée : %s", op.local_id)
                continue

            decision = _replay(op, store, secret, max_age)
            if isinstance(decision, Reject):
                if decision.reason == RejectReason.DUPLICATE_CHECK_IN:
                    summary.skipped.append(op.local_id)
                    queue.remove(op.local_id)
                    logger.debug("Personne déjà créditée, opération %s ignorée", op.local_id)
                else:
                    summary.failed.append(SyncFailure(
                        local_id=op.local_id, reason=decision.reason.value, message=decision.message,
                    ))
                    logger.warning("Opération %s refusée à la synchronisation (%s)", op.local_id, decision.reason.value)
                continue

            persist_attendance(store, decision.record)
        except DuplicateKeyError:
            # Pointage concurrent (sync parallèle ou pointage en ligne) arrivé avant
            summary.skipped.append(op.local_id)
            queue.remove(op.local_id)
            logger.debug("Conflit d'unicité, opération %s ignorée", op.local_id)
            continue
        except (StoreError, SQLAlchemyError) as exc:
            store.db.rollback()
            summary.failed.append(SyncFailure(
                local_id=op.local_id, reason=STORAGE_ERROR, message="Lecture ou écriture impossible, nouvelle tentative à la prochaine synchronisation.",
            ))
            logger.error("Échec de stockage pour l'opération %s : %s", op.local_id, exc)
            continue

        summary.synced.append(op.local_id)
        queue.remove(op.local_id)

    logger.info(
        "Sync device=%s : %d reçues, %d synchronisées, %d ignorées, %d en attente",
        device_id or "local", len(operations), summary.synced_count, summary.skipped_count, summary.failed_count,
    )
    return summary


def _replay(op: OfflineOperation, store: DocumentStore, secret: Optional[str], max_age: Optional[timedelta]) -> Decision:
    """Valide une opération offline comme si elle était reçue à son heure de pointage."""
    user = None if op.is_visitor else CurrentUser(user_id=op.user_id, name=op.user_name or "")
    if op.is_visitor and op.visitor_info is None:
        return checkin_validator.reject(RejectReason.MALFORMED_TOKEN, "Informations du visiteur manquantes.")

    if op.payload.startswith(QR_PREFIX):
        return checkin_validator.validate(
            op.payload,
            word_of_day(op.check_in_time, secret),
            op.check_in_time,
            prior_attendance_lookup(store),
            user=user,
            method="offline",
            visitor_info=op.visitor_info,
            max_age=max_age,
            lookup_session=session_lookup(store),
            local_id=op.local_id,
        )

    return checkin_validator.validate_offline(
        op.payload,
        op.session_id,
        op.check_in_time,
        prior_attendance_lookup(store),
        session_lookup(store),
        user=user,
        visitor_info=op.visitor_info,
        local_id=op.local_id,
    )

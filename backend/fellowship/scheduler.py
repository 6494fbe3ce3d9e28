"""
Planificateur APScheduler pour la synchronisation automatique de la file offline.

Le job s'exécute toutes les OFFLINE_SYNC_INTERVAL_SECONDS secondes et rejoue les
pointages mis en file pendant une coupure de la base. Une passe n'est jamais
lancée tant que la précédente tourne (max_instances=1).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from fellowship.config import settings
from fellowship.database import SessionLocal
from fellowship.services.offline_queue import OfflineQueue
from fellowship.services.sync_service import reconcile
from fellowship.store import DocumentStore, StoreUnavailable

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def sync_offline_queue(queue: OfflineQueue) -> None:
    """Tâche planifiée : vide la file offline dans la base si elle est joignable."""
    if len(queue) == 0:
        return

    db = SessionLocal()
    try:
        summary = reconcile(queue, DocumentStore(db), settings.ATTENDANCE_SECRET, max_age=settings.qr_max_age)
        if summary.failed_count:
            logger.warning("%d pointages offline toujours en attente", summary.failed_count)
    except StoreUnavailable:
        logger.info("Base injoignable : %d pointages offline en attente", len(queue))
    except Exception as exc:
        logger.error("Erreur lors de la synchronisation offline : %s", exc)
    finally:
        db.close()


def start_scheduler(queue: OfflineQueue) -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    interval = settings.OFFLINE_SYNC_INTERVAL_SECONDS
    if interval <= 0:
        logger.info("Synchronisation offline automatique désactivée.")
        return
    scheduler.add_job(
        sync_offline_queue,
        trigger="interval",
        seconds=interval,
        args=[queue],
        id="offline_queue_sync",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler démarré : synchronisation offline toutes les %d s.", interval)


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")

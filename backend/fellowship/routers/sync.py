"""
Router pour la synchronisation offline → online.
Reçoit la file de pointages d'un appareil et la rejoue avec idempotence.
"""

from fastapi import APIRouter, Depends

from fellowship.config import settings
from fellowship.schemas.sync import SyncRequest, SyncSummary
from fellowship.services import sync_service
from fellowship.services.offline_queue import BatchQueue
from fellowship.store import DocumentStore, get_store

router = APIRouter(prefix="/api/sync", tags=["Synchronisation offline"])


@router.post(
    "/attendances",
    response_model=SyncSummary,
    summary="Synchroniser les pointages offline",
)
def sync_attendances(data: SyncRequest, store: DocumentStore = Depends(get_store)):
    """
    Reçoit un batch de pointages enregistrés hors-ligne et les rejoue.

    Comportement :
    - Idempotent : un local_id déjà synchronisé est ignoré (skipped)
    - Personne déjà créditée pour la session → skipped
    - Chaque pointage est validé à son heure réelle (check_in_time)
    - Les opérations en échec sont rapportées dans failed : l'appareil les garde
      et les renverra à la prochaine synchronisation
    """
    return sync_service.reconcile(
        BatchQueue(data.operations),
        store,
        settings.ATTENDANCE_SECRET,
        max_age=settings.qr_max_age,
        device_id=data.device_id,
    )

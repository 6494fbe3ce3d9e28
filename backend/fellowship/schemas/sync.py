"""
Schémas Pydantic pour la file offline et la synchronisation offline → online.
Endpoint : POST /api/sync/attendances
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, computed_field, field_validator

from fellowship.schemas.attendance import VisitorInfo
from fellowship.schemas.payload import as_utc

MAX_BATCH_SIZE = 500
STORAGE_ERROR = "STORAGE_ERROR"  # Motif d'échec hors validation (écriture impossible)


class OfflineOperation(BaseModel):
    """Un pointage créé sur l'appareil sans réseau."""

    local_id: Optional[str] = None        # Généré à l'enqueue s'il est absent : clé d'idempotence
    user_id: str
    user_name: Optional[str] = None
    session_id: Optional[str] = None
    event_name: Optional[str] = None
    check_in_time: datetime               # Heure réelle du pointage (pas l'heure de sync)
    payload: str                          # Code "FC-ATTEND:..." ou jeton offline base64
    is_visitor: bool = False
    visitor_info: Optional[VisitorInfo] = None

    @field_validator("check_in_time")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class SyncRequest(BaseModel):
    """Corps de la requête batch de synchronisation."""

    operations: List[OfflineOperation]
    device_id: str = ""

    @field_validator("operations")
    @classmethod
    def operations_not_too_large(cls, v: List[OfflineOperation]) -> List[OfflineOperation]:
        if len(v) > MAX_BATCH_SIZE:
            raise ValueError(f"Batch trop grand : maximum {MAX_BATCH_SIZE} opérations par requête.")
        for op in v:
            if not op.local_id:
                raise ValueError("Chaque opération synchronisée doit porter son local_id.")
        return v


class SyncFailure(BaseModel):
    """Opération laissée dans la file pour une prochaine tentative."""
    local_id: str
    reason: str           # RejectReason ou STORAGE_ERROR
    message: str


class SyncSummary(BaseModel):
    """Rapport d'une passe de réconciliation."""

    synced: List[str] = []
    skipped: List[str] = []     # Déjà synchronisées ou personne déjà créditée
    failed: List[SyncFailure] = []

    @computed_field
    @property
    def synced_count(self) -> int:
        return len(self.synced)

    @computed_field
    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @computed_field
    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @computed_field
    @property
    def status(self) -> Literal["ok", "partial_failure"]:
        return "partial_failure" if self.failed else "ok"

"""
File offline des pointages, résidente sur l'appareil de pointage.

Stockage durable dans une base SQLite locale (SQLAlchemy). La file est « bête » :
ni validation ni déduplication sémantique : tout est délégué à la réconciliation.
L'ordre d'insertion est l'ordre de rejeu.
"""

import logging
import uuid
from typing import Iterable, List, Optional

from fastapi import Request
from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fellowship.models.offline import PendingCheckIn, QueueBase
from fellowship.schemas.sync import OfflineOperation

logger = logging.getLogger(__name__)


class OfflineQueue:
    """File durable adossée à une base SQLite locale."""

    def __init__(self, url: str = "sqlite:///./offline_queue.db"):
        # Utilisée depuis les threads des requêtes et du scheduler
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # Base en mémoire : une seule connexion partagée, sinon chaque connexion verrait une base vide
            kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        QueueBase.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, autoflush=False)

    def enqueue(self, operation: OfflineOperation) -> str:
        """Ajoute une opération en fin de file et retourne son local_id (généré si absent)."""
        local_id = operation.local_id or str(uuid.uuid4())
        row = PendingCheckIn(
            local_id=local_id,
            user_id=operation.user_id,
            user_name=operation.user_name,
            session_id=operation.session_id,
            event_name=operation.event_name,
            check_in_time=operation.check_in_time,
            payload=operation.payload,
            is_visitor=operation.is_visitor,
            visitor_info=operation.visitor_info.model_dump() if operation.visitor_info else None,
        )
        with self._sessions() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Même local_id déjà en file : l'opération y est déjà
                db.rollback()
                logger.debug("Opération %s déjà présente dans la file offline", local_id)
                return local_id

        logger.info("Pointage mis en file offline : %s (utilisateur %s)", local_id, operation.user_id)
        return local_id

    def drain(self) -> List[OfflineOperation]:
        """Retourne les opérations en attente, dans l'ordre d'insertion, sans les retirer."""
        with self._sessions() as db:
            rows = db.execute(select(PendingCheckIn).order_by(PendingCheckIn.seq)).scalars().all()
            return [_to_operation(r) for r in rows]

    def remove(self, local_id: str) -> None:
        with self._sessions() as db:
            db.execute(delete(PendingCheckIn).where(PendingCheckIn.local_id == local_id))
            db.commit()

    def clear(self) -> None:
        with self._sessions() as db:
            db.execute(delete(PendingCheckIn))
            db.commit()

    def __len__(self) -> int:
        with self._sessions() as db:
            return db.execute(select(func.count()).select_from(PendingCheckIn)).scalar() or 0


class BatchQueue:
    """
    File en mémoire avec la même interface, pour un lot reçu par HTTP.
    """

    def __init__(self, operations: Iterable[OfflineOperation]):
        self._operations: List[OfflineOperation] = []
        for op in operations:
            self.enqueue(op)

    def enqueue(self, operation: OfflineOperation) -> str:
        if not operation.local_id:
            operation = operation.model_copy(update={"local_id": str(uuid.uuid4())})
        self._operations.append(operation)
        return operation.local_id

    def drain(self) -> List[OfflineOperation]:
        return list(self._operations)

    def remove(self, local_id: str) -> None:
        self._operations = [op for op in self._operations if op.local_id != local_id]

    def __len__(self) -> int:
        return len(self._operations)


def _to_operation(row: PendingCheckIn) -> OfflineOperation:
    return OfflineOperation(
        local_id=row.local_id,
        user_id=row.user_id,
        user_name=row.user_name,
        session_id=row.session_id,
        event_name=row.event_name,
        check_in_time=row.check_in_time,
        payload=row.payload,
        is_visitor=row.is_visitor,
        visitor_info=row.visitor_info,
    )


def get_offline_queue(request: Request) -> Optional[OfflineQueue]:
    """Dépendance FastAPI : file offline de l'appareil, ouverte au démarrage de l'API."""
    return getattr(request.app.state, "offline_queue", None)

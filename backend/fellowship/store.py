"""
Store documentaire au-dessus de SQLAlchemy.

Le cœur métier n'utilise que quatre opérations (get, query, insert, update) sur
deux collections ("sessions", "attendance"). Les documents sont de simples dicts ;
les services les valident en entités Pydantic dès la lecture.

Une insertion qui viole une contrainte d'unicité lève DuplicateKeyError : c'est ce
qui rend le « vérifier puis insérer » d'un pointage atomique.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy import func, inspect, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from fellowship.database import get_db
from fellowship.models.attendance import Attendance
from fellowship.models.session import AttendanceSession

logger = logging.getLogger(__name__)

SESSIONS = "sessions"
ATTENDANCE = "attendance"

COLLECTIONS = {
    SESSIONS: AttendanceSession,
    ATTENDANCE: Attendance,
}

# Colonnes techniques jamais renvoyées dans les documents
_HIDDEN_COLUMNS = {"created_at", "dedup_key"}


class StoreError(Exception):
    """Erreur d'infrastructure du store."""


class DuplicateKeyError(StoreError):
    """Insertion refusée : une contrainte d'unicité est violée."""


class StoreUnavailable(StoreError):
    """La base de données est injoignable."""


class DocumentStore:
    """Accès aux collections via une session SQLAlchemy injectée (jamais créée ici)."""

    def __init__(self, db: Session):
        self.db = db

    def ping(self) -> None:
        """Vérifie que la base répond ; lève StoreUnavailable sinon."""
        try:
            self.db.execute(text("SELECT 1"))
        except OperationalError as exc:
            self.db.rollback()
            raise StoreUnavailable(str(exc)) from exc

    def get(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        model = _model(collection)
        row = self._run(lambda: self.db.get(model, id))
        return _to_document(row) if row is not None else None

    def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        between: Optional[Tuple[str, Any, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Filtres d'égalité sur les colonnes ; résultat trié par ordre de création
        (ou par order_by).

        between=(champ, début, fin) : début <= champ < fin.
        """
        model = _model(collection)
        stmt = _where(select(model), model, collection, filters, between)
        if order_by is not None:
            column = _column(model, collection, order_by)
            stmt = stmt.order_by(column.desc() if descending else column, model.id)
        else:
            stmt = stmt.order_by(model.created_at, model.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = self._run(lambda: self.db.execute(stmt).scalars().all())
        return [_to_document(r) for r in rows]

    def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Nombre de documents correspondant aux filtres, compté par la base."""
        model = _model(collection)
        stmt = _where(select(func.count()).select_from(model), model, collection, filters)
        return self._run(lambda: self.db.execute(stmt).scalar()) or 0

    def insert(self, collection: str, record: Dict[str, Any]) -> str:
        """Insère un document et retourne son id. Lève DuplicateKeyError en cas de conflit."""
        model = _model(collection)
        data = dict(record)
        data.setdefault("id", str(uuid.uuid4()))
        row = model(**data)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.debug("Insertion refusée dans %s (contrainte d'unicité) : %s", collection, exc.orig)
            raise DuplicateKeyError(str(exc.orig)) from exc
        except OperationalError as exc:
            self.db.rollback()
            raise StoreUnavailable(str(exc)) from exc
        return data["id"]

    def update(self, collection: str, id: str, patch: Dict[str, Any]) -> None:
        """Applique un patch partiel. Lève ValueError si le document est introuvable."""
        model = _model(collection)
        row = self._run(lambda: self.db.get(model, id))
        if row is None:
            raise ValueError(f"Document {collection}/{id} introuvable.")
        for field, value in patch.items():
            setattr(row, field, value)
        try:
            self.db.commit()
        except OperationalError as exc:
            self.db.rollback()
            raise StoreUnavailable(str(exc)) from exc

    def _run(self, fn):
        try:
            return fn()
        except OperationalError as exc:
            self.db.rollback()
            raise StoreUnavailable(str(exc)) from exc


def _model(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Collection inconnue : {collection}") from None


def _column(model, collection: str, field: str):
    column = getattr(model, field, None)
    if column is None:
        raise ValueError(f"Champ inconnu pour la collection {collection} : {field}")
    return column


def _where(stmt, model, collection: str, filters: Optional[Dict[str, Any]], between=None):
    for field, value in (filters or {}).items():
        column = _column(model, collection, field)
        stmt = stmt.where(column.is_(None) if value is None else column == value)
    if between is not None:
        field, start, end = between
        column = _column(model, collection, field)
        stmt = stmt.where(column >= start, column < end)
    return stmt


def _to_document(row) -> Dict[str, Any]:
    return {
        attr.key: getattr(row, attr.key)
        for attr in inspect(row).mapper.column_attrs
        if attr.key not in _HIDDEN_COLUMNS
    }


def get_store(db: Session = Depends(get_db)) -> DocumentStore:
    """Dépendance FastAPI : store adossé à la session BDD de la requête."""
    return DocumentStore(db)

"""
Modèle SQLAlchemy de la file offline, stockée dans la base SQLite locale de l'appareil.
Base déclarative distincte : cette table ne vit jamais dans la base canonique.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, func
from sqlalchemy.orm import declarative_base

QueueBase = declarative_base()


class PendingCheckIn(QueueBase):
    """Intention de pointage créée sans réseau, en attente de synchronisation."""
    __tablename__ = "pending_checkins"

    seq = Column(Integer, primary_key=True, autoincrement=True)  # Ordre d'insertion = ordre de rejeu
    local_id = Column(String(64), unique=True, nullable=False)
    user_id = Column(String(128), nullable=False)
    user_name = Column(String(255), nullable=True)
    session_id = Column(String(36), nullable=True)
    event_name = Column(String(255), nullable=True)
    check_in_time = Column(DateTime(timezone=True), nullable=False)
    payload = Column(Text, nullable=False)               # Code "FC-ATTEND:..." ou jeton offline
    is_visitor = Column(Boolean, nullable=False, default=False)
    visitor_info = Column(JSON, nullable=True)
    queued_at = Column(DateTime, server_default=func.now())

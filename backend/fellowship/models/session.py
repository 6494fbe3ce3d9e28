"""
Modèle SQLAlchemy pour les sessions de check-in (fenêtre de pointage d'un événement).
Une session n'est jamais supprimée : elle est conservée pour l'historique.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func

from fellowship.database import Base


class AttendanceSession(Base):
    """Fenêtre limitée dans le temps pendant laquelle les présences d'un événement sont acceptées."""
    __tablename__ = "attendance_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(100), nullable=True)              # Référence externe optionnelle
    event_name = Column(String(255), nullable=False)
    event_type = Column(String(20), nullable=False)            # weekly, special, retreat, holiday, outreach, other

    word_of_day = Column(String(50), nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    active = Column(Boolean, nullable=False, default=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)  # Première désactivation
    attendance_count = Column(Integer, nullable=False, default=0)

    qr_code_data = Column(Text, nullable=False)                 # Code "FC-ATTEND:..." émis à la création
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

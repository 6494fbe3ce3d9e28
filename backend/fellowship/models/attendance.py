"""
Modèle SQLAlchemy pour les présences enregistrées (en ligne ou depuis la file offline).

Unicité garantie par la base :
- dedup_key : "<session_id>:<user_id>" pour un membre, NULL pour un visiteur
  ou un pointage multiple autorisé par un admin → un seul pointage par membre et par session
- local_id  : généré côté appareil, clé d'idempotence de la synchronisation offline
"""

import uuid
from sqlalchemy import JSON, Boolean, Column, DateTime, String, func

from fellowship.database import Base


class Attendance(Base):
    """Preuve durable d'un pointage : immuable une fois créée."""
    __tablename__ = "attendance"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(36), nullable=True, index=True)   # NULL pour un pointage hors QR (event_id + date)
    event_id = Column(String(100), nullable=True)
    event_name = Column(String(255), nullable=True)
    event_type = Column(String(20), nullable=True)

    user_id = Column(String(128), nullable=False, index=True)    # "visitor" pour un visiteur
    user_name = Column(String(255), nullable=True)

    check_in_time = Column(DateTime(timezone=True), nullable=False)  # Heure réelle du pointage
    check_in_method = Column(String(20), nullable=False)              # qrcode, admin, self, offline

    is_visitor = Column(Boolean, nullable=False, default=False)
    visitor_info = Column(JSON, nullable=True)

    local_id = Column(String(64), unique=True, nullable=True)     # Clé d'idempotence (offline)
    dedup_key = Column(String(200), unique=True, nullable=True)   # Unicité membre ↔ session

    created_at = Column(DateTime, server_default=func.now())

"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL ;
les tests de services utilisent une base SQLite en mémoire.
"""

import os

# Avant tout import de l'application : file offline en mémoire, pas de job planifié
os.environ.setdefault("OFFLINE_QUEUE_URL", "sqlite://")
os.environ.setdefault("OFFLINE_SYNC_INTERVAL_SECONDS", "0")

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import fellowship.models  # noqa: E402,F401
from fellowship.database import Base, get_db  # noqa: E402
from fellowship.main import app  # noqa: E402
from fellowship.services.offline_queue import OfflineQueue  # noqa: E402
from fellowship.store import DocumentStore  # noqa: E402


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def store():
    """Store documentaire sur une base SQLite en mémoire, recréée pour chaque test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    db = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield DocumentStore(db)
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def queue():
    """File offline sur une base SQLite en mémoire."""
    q = OfflineQueue("sqlite://")
    yield q
    q.engine.dispose()

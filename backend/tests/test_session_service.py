"""
Tests unitaires pour le service des sessions de check-in.
Couverture : création (durée, mot du jour, charge utile), désactivation idempotente,
utilisabilité, compteur de présences. Base SQLite en mémoire.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from fellowship.schemas.session import SessionCreate
from fellowship.services import session_service
from fellowship.services.token_codec import decode_payload
from fellowship.services.word_of_day import word_of_day
from fellowship.store import ATTENDANCE, SESSIONS

SECRET = "test-secret"
T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def open_session(store, minutes=180, now=T0, **kwargs):
    data = SessionCreate(event_name=kwargs.get("event_name", "Culte du dimanche"),
                         event_type=kwargs.get("event_type", "weekly"),
                         duration_minutes=minutes)
    return session_service.create_session(store, data, SECRET, now=now, created_by="admin-1")


# ============================================================
# create_session
# ============================================================

def test_create_session_champs(store):
    created = open_session(store)
    session = created.session

    assert session.active is True
    assert session.generated_at == T0
    assert session.expires_at == T0 + timedelta(minutes=180)
    assert session.word_of_day == word_of_day(T0, SECRET) == "SERVE"
    assert session.attendance_count == 0
    assert session.created_by == "admin-1"


def test_create_session_charge_utile_coherente(store):
    """La charge utile porte la même expiration et le même mot que la session."""
    created = open_session(store, minutes=60)
    payload = decode_payload(created.code)

    assert payload == created.payload
    assert payload.session_id == created.session.id
    assert payload.expires_at == created.session.expires_at
    assert payload.word_of_day == created.session.word_of_day
    assert len(payload.issued_token) == 16


def test_create_session_persistee(store):
    created = open_session(store)
    stored = session_service.get_session(store, created.session.id)

    assert stored is not None
    assert stored.expires_at == created.session.expires_at
    assert stored.qr_code_data == created.code


def test_create_session_duree_par_defaut(store):
    data = SessionCreate(event_name="Prière")
    created = session_service.create_session(store, data, SECRET, default_minutes=90, now=T0)
    assert created.session.expires_at == T0 + timedelta(minutes=90)


def test_create_session_duree_defaut_invalide():
    """Une durée par défaut nulle est refusée avant toute écriture."""
    store = MagicMock()
    with pytest.raises(ValueError, match="strictement positive"):
        session_service.create_session(store, SessionCreate(event_name="x"), SECRET, default_minutes=0)
    store.insert.assert_not_called()


def test_create_session_duree_negative_refusee_par_schema():
    with pytest.raises(ValueError):
        SessionCreate(event_name="x", duration_minutes=-5)


def test_create_session_nom_vide():
    with pytest.raises(ValueError):
        SessionCreate(event_name="   ")


def test_sessions_simultanees(store):
    """Plusieurs sessions actives en même temps (ex. deux salles)."""
    a = open_session(store, event_name="Salle A")
    b = open_session(store, event_name="Salle B")

    actives = session_service.list_sessions(store, active_only=True)
    assert {s.id for s in actives} == {a.session.id, b.session.id}
    assert a.payload.issued_token != b.payload.issued_token


def test_list_sessions_plus_recente_en_premier(store):
    old = open_session(store, now=T0 - timedelta(days=7))
    new = open_session(store)
    assert [s.id for s in session_service.list_sessions(store)] == [new.session.id, old.session.id]


# ============================================================
# deactivate_session
# ============================================================

def test_deactivate_session(store):
    created = open_session(store)
    closed_at = T0 + timedelta(minutes=30)

    session = session_service.deactivate_session(store, created.session.id, now=closed_at)

    assert session.active is False
    assert session.closed_at == closed_at
    stored = session_service.get_session(store, created.session.id)
    assert stored.active is False
    assert stored.closed_at == closed_at


def test_deactivate_session_idempotent(store):
    """Deuxième désactivation : rien ne change, closed_at conservé."""
    created = open_session(store)
    first = T0 + timedelta(minutes=30)
    session_service.deactivate_session(store, created.session.id, now=first)

    again = session_service.deactivate_session(store, created.session.id, now=first + timedelta(minutes=10))

    assert again.active is False
    assert again.closed_at == first


def test_deactivate_session_introuvable(store):
    with pytest.raises(ValueError, match="introuvable"):
        session_service.deactivate_session(store, "inexistante")


def test_deactivate_une_seule_session(store):
    a = open_session(store, event_name="Salle A")
    b = open_session(store, event_name="Salle B")
    session_service.deactivate_session(store, a.session.id, now=T0)
    assert [s.id for s in session_service.list_sessions(store, active_only=True)] == [b.session.id]


# ============================================================
# is_usable / was_open_at
# ============================================================

def test_is_usable(store):
    session = open_session(store, minutes=60).session
    assert session_service.is_usable(session, T0 + timedelta(minutes=30))
    assert session_service.is_usable(session, T0 + timedelta(minutes=60))
    assert not session_service.is_usable(session, T0 + timedelta(minutes=61))


def test_is_usable_session_fermee(store):
    created = open_session(store, minutes=60)
    session = session_service.deactivate_session(store, created.session.id, now=T0 + timedelta(minutes=5))
    assert not session_service.is_usable(session, T0 + timedelta(minutes=10))


def test_was_open_at_avant_fermeture(store):
    """Un pointage offline antérieur à la fermeture reste recevable."""
    created = open_session(store, minutes=60)
    session = session_service.deactivate_session(store, created.session.id, now=T0 + timedelta(minutes=20))

    assert session_service.was_open_at(session, T0 + timedelta(minutes=10))
    assert not session_service.was_open_at(session, T0 + timedelta(minutes=25))


# ============================================================
# refresh_attendance_count
# ============================================================

def test_refresh_attendance_count(store):
    session = open_session(store).session
    for i in range(3):
        store.insert(ATTENDANCE, {
            "session_id": session.id, "user_id": f"user-{i}", "check_in_time": T0,
            "check_in_method": "qrcode", "is_visitor": False,
        })

    assert session_service.refresh_attendance_count(store, session.id) == 3
    assert store.get(SESSIONS, session.id)["attendance_count"] == 3


def test_refresh_attendance_count_ne_decroit_jamais(store):
    session = open_session(store).session
    store.update(SESSIONS, session.id, {"attendance_count": 5})
    assert session_service.refresh_attendance_count(store, session.id) == 5


def test_refresh_attendance_count_compte_en_base(store):
    """Le compteur est calculé par la base, sans charger les présences de la session."""
    session = open_session(store).session
    store.insert(ATTENDANCE, {
        "session_id": session.id, "user_id": "user-1", "check_in_time": T0,
        "check_in_method": "qrcode", "is_visitor": False,
    })

    with patch.object(store, "query", side_effect=AssertionError("présences chargées")):
        assert session_service.refresh_attendance_count(store, session.id) == 1

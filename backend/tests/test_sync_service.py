"""
Tests du service de synchronisation offline → online (base SQLite en mémoire).
Couverture : rejeu à l'heure réelle, idempotence via local_id, personne déjà créditée,
échecs conservés en file, erreurs d'écriture, jeton offline, base injoignable.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from fellowship.schemas.attendance import CurrentUser, RejectReason, VisitorInfo
from fellowship.schemas.session import SessionCreate
from fellowship.schemas.sync import STORAGE_ERROR, OfflineOperation
from fellowship.services import checkin_service, session_service
from fellowship.services.offline_queue import BatchQueue
from fellowship.services.sync_service import reconcile
from fellowship.services.token_codec import encode_offline_token
from fellowship.services.word_of_day import word_of_day
from fellowship.store import ATTENDANCE, StoreError, StoreUnavailable

SECRET = "test-secret"
T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


# --- Helpers ---

def open_session(store, minutes=180):
    data = SessionCreate(event_name="Culte du dimanche", duration_minutes=minutes)
    return session_service.create_session(store, data, SECRET, now=T0)


def make_op(created, local_id="op-1", user_id="user-42", minutes_after=10, **kwargs) -> OfflineOperation:
    return OfflineOperation(
        local_id=local_id,
        user_id=user_id,
        user_name=kwargs.get("user_name", "Marie Dupont"),
        session_id=created.session.id,
        event_name=created.session.event_name,
        check_in_time=T0 + timedelta(minutes=minutes_after),
        payload=kwargs.get("payload", created.code),
        is_visitor=kwargs.get("is_visitor", False),
        visitor_info=kwargs.get("visitor_info"),
    )


def attendance(store, session_id):
    return store.query(ATTENDANCE, {"session_id": session_id})


# ============================================================
# Scénario 5 : pointage offline puis synchronisation
# ============================================================

def test_pointage_offline_synchronise(store, queue):
    """Mis en file à T0+10 min, synchronisé plus tard : une présence à l'heure réelle."""
    created = open_session(store)
    queue.enqueue(make_op(created))

    summary = reconcile(queue, store, SECRET)

    assert summary.synced == ["op-1"]
    assert summary.synced_count == 1
    assert summary.status == "ok"
    assert len(queue) == 0

    docs = attendance(store, created.session.id)
    assert len(docs) == 1
    assert docs[0]["local_id"] == "op-1"
    assert docs[0]["check_in_method"] == "offline"
    assert docs[0]["check_in_time"].replace(tzinfo=timezone.utc) == T0 + timedelta(minutes=10)


def test_double_synchronisation_une_seule_presence(store):
    """Le même lot envoyé deux fois (réponse perdue) → une seule présence."""
    created = open_session(store)
    op = make_op(created)

    first = reconcile(BatchQueue([op]), store, SECRET)
    second = reconcile(BatchQueue([op]), store, SECRET)

    assert first.synced == ["op-1"]
    assert second.synced == []
    assert second.skipped == ["op-1"]
    assert len(attendance(store, created.session.id)) == 1


def test_meme_local_id_deux_fois_dans_le_lot(store):
    created = open_session(store)
    summary = reconcile(BatchQueue([make_op(created), make_op(created)]), store, SECRET)

    assert summary.synced_count == 1
    assert summary.skipped_count == 1
    assert len(attendance(store, created.session.id)) == 1


def test_rejeu_evalue_a_l_heure_du_pointage(store, queue):
    """Session expirée au moment de la sync, mais pas au moment du pointage → acceptée."""
    created = open_session(store, minutes=60)
    queue.enqueue(make_op(created, minutes_after=50))

    with patch("fellowship.services.sync_service.word_of_day", wraps=word_of_day) as wod:
        summary = reconcile(queue, store, SECRET)

    assert summary.synced_count == 1
    wod.assert_called_once_with(T0 + timedelta(minutes=50), SECRET)


def test_pointage_apres_fermeture_refuse(store, queue):
    """Session fermée avant l'heure du pointage → échec, l'opération reste en file."""
    created = open_session(store)
    session_service.deactivate_session(store, created.session.id, now=T0 + timedelta(minutes=5))
    queue.enqueue(make_op(created, minutes_after=10))

    summary = reconcile(queue, store, SECRET)

    assert summary.status == "partial_failure"
    assert summary.failed[0].reason == RejectReason.SESSION_INACTIVE.value
    assert len(queue) == 1


def test_pointage_avant_fermeture_accepte(store, queue):
    created = open_session(store)
    session_service.deactivate_session(store, created.session.id, now=T0 + timedelta(minutes=20))
    queue.enqueue(make_op(created, minutes_after=10))

    assert reconcile(queue, store, SECRET).synced_count == 1


# ============================================================
# Personne déjà créditée
# ============================================================

def test_deja_pointe_en_ligne_ignore(store, queue):
    """Membre déjà pointé en ligne : l'opération offline est ignorée et retirée."""
    created = open_session(store)
    checkin_service.check_in(store, created.code, secret=SECRET,
                             user=CurrentUser(user_id="user-42"), now=T0 + timedelta(minutes=5))
    queue.enqueue(make_op(created))

    summary = reconcile(queue, store, SECRET)

    assert summary.skipped == ["op-1"]
    assert summary.failed == []
    assert len(queue) == 0
    assert len(attendance(store, created.session.id)) == 1


def test_conflit_d_unicite_a_l_insertion_ignore(store, queue):
    """Une insertion concurrente gagne la course : DuplicateKeyError → skipped."""
    created = open_session(store)
    checkin_service.check_in(store, created.code, secret=SECRET,
                             user=CurrentUser(user_id="user-42"), now=T0 + timedelta(minutes=5))
    queue.enqueue(make_op(created))

    with patch("fellowship.services.sync_service.prior_attendance_lookup", return_value=lambda uid, sid: None):
        summary = reconcile(queue, store, SECRET)

    assert summary.skipped == ["op-1"]
    assert len(queue) == 0


# ============================================================
# Échecs : conservés en file, la passe continue
# ============================================================

def test_echec_conserve_et_passe_continue(store, queue):
    created = open_session(store, minutes=30)
    queue.enqueue(make_op(created, local_id="trop-tard", user_id="user-1", minutes_after=45))
    queue.enqueue(make_op(created, local_id="ok", user_id="user-2", minutes_after=10))

    summary = reconcile(queue, store, SECRET)

    assert summary.synced == ["ok"]
    assert [f.local_id for f in summary.failed] == ["trop-tard"]
    assert summary.failed[0].reason == "EXPIRED_TOKEN"
    assert summary.failed[0].message
    assert [op.local_id for op in queue.drain()] == ["trop-tard"]


def test_code_illisible_en_echec(store, queue):
    created = open_session(store)
    queue.enqueue(make_op(created, payload="FC-ATTEND:corrompu"))

    summary = reconcile(queue, store, SECRET)

    assert summary.failed[0].reason == "MALFORMED_TOKEN"


def test_erreur_d_ecriture_en_echec(store, queue):
    created = open_session(store)
    queue.enqueue(make_op(created))

    with patch("fellowship.services.sync_service.persist_attendance", side_effect=StoreError("disque plein")):
        summary = reconcile(queue, store, SECRET)

    assert summary.failed[0].reason == STORAGE_ERROR
    assert summary.status == "partial_failure"
    assert len(queue) == 1


def test_lecture_en_echec_n_interrompt_pas_la_passe(store, queue):
    """Coupure pendant la recherche du local_id de l'opération du milieu : les autres passent."""
    created = open_session(store)
    for local_id, user_id in [("a", "user-1"), ("b", "user-2"), ("c", "user-3")]:
        queue.enqueue(make_op(created, local_id=local_id, user_id=user_id))

    real_query = store.query

    def flaky_query(collection, filters=None, **kwargs):
        if filters == {"local_id": "b"}:
            raise StoreUnavailable("coupure")
        return real_query(collection, filters, **kwargs)

    with patch.object(store, "query", side_effect=flaky_query):
        summary = reconcile(queue, store, SECRET)

    assert summary.synced == ["a", "c"]
    assert [f.local_id for f in summary.failed] == ["b"]
    assert summary.failed[0].reason == STORAGE_ERROR
    assert [op.local_id for op in queue.drain()] == ["b"]
    assert len(attendance(store, created.session.id)) == 2


def test_base_injoignable_au_debut_leve(queue):
    store = MagicMock()
    store.ping.side_effect = StoreUnavailable("connexion refusée")

    with pytest.raises(StoreUnavailable):
        reconcile(queue, store, SECRET)


# ============================================================
# local_id manquant
# ============================================================

def test_lot_sans_local_id_synchronise(store):
    """Un lot sans local_id reçoit un identifiant : jamais confondu avec un pointage en ligne."""
    created = open_session(store)
    checkin_service.check_in(store, created.code, secret=SECRET, now=T0 + timedelta(minutes=5),
                             user=CurrentUser(user_id="user-1", name="Luc"))
    queue = BatchQueue([make_op(created, local_id=None, user_id="user-9")])

    summary = reconcile(queue, store, SECRET)

    assert summary.synced_count == 1
    assert summary.skipped == []
    assert len(queue) == 0
    assert len(store.query(ATTENDANCE, {"user_id": "user-9"})) == 1


def test_operation_sans_local_id_en_echec(store):
    created = open_session(store)
    queue = MagicMock()
    queue.drain.return_value = [make_op(created, local_id=None)]

    summary = reconcile(queue, store, SECRET)

    assert summary.failed_count == 1
    assert summary.skipped == []
    queue.remove.assert_not_called()
    assert attendance(store, created.session.id) == []


def test_file_vide(store, queue):
    summary = reconcile(queue, store, SECRET)
    assert summary.synced_count == summary.skipped_count == summary.failed_count == 0
    assert summary.status == "ok"


# ============================================================
# Visiteurs et jeton offline
# ============================================================

def test_visiteurs_synchronises(store):
    created = open_session(store)
    ops = [
        make_op(created, local_id=f"v{i}", user_id="visitor", is_visitor=True,
                visitor_info=VisitorInfo(name=name))
        for i, name in enumerate(["Paul", "Anne"])
    ]

    summary = reconcile(BatchQueue(ops), store, SECRET)

    assert summary.synced == ["v0", "v1"]
    docs = attendance(store, created.session.id)
    assert sorted(d["user_name"] for d in docs) == ["Anne", "Paul"]
    assert all(d["is_visitor"] for d in docs)


def test_visiteur_sans_infos_en_echec(store):
    created = open_session(store)
    op = make_op(created, user_id="visitor", is_visitor=True)
    summary = reconcile(BatchQueue([op]), store, SECRET)
    assert summary.failed[0].reason == "MALFORMED_TOKEN"


def test_jeton_offline_synchronise(store):
    created = open_session(store)
    when = T0 + timedelta(minutes=15)
    token = encode_offline_token("user-42", created.session.event_name, when)

    summary = reconcile(BatchQueue([make_op(created, payload=token, minutes_after=15)]), store, SECRET)

    assert summary.synced_count == 1
    docs = attendance(store, created.session.id)
    assert docs[0]["check_in_method"] == "offline"

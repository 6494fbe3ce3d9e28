"""
Tests d'intégration API pour la synchronisation offline → online.
Endpoint : POST /api/sync/attendances
"""

import uuid
from unittest.mock import patch

from fellowship.schemas.sync import SyncFailure, SyncSummary
from fellowship.services.offline_queue import BatchQueue
from fellowship.store import StoreUnavailable


# --- Helper ---

def make_operation(**kwargs) -> dict:
    return {
        "local_id": kwargs.get("local_id", str(uuid.uuid4())),
        "user_id": kwargs.get("user_id", "user-42"),
        "user_name": "Marie Dupont",
        "session_id": kwargs.get("session_id", "sess-1"),
        "event_name": "Culte du dimanche",
        "check_in_time": kwargs.get("check_in_time", "2026-03-01T10:10:00Z"),
        "payload": kwargs.get("payload", "FC-ATTEND:abc"),
    }


# ============================================================
# POST /api/sync/attendances
# ============================================================

def test_sync_succes(client):
    """Lot valide → 200 avec le rapport et les compteurs."""
    op1, op2 = make_operation(), make_operation(user_id="user-7")

    with patch("fellowship.routers.sync.sync_service.reconcile") as mock:
        mock.return_value = SyncSummary(synced=[op1["local_id"], op2["local_id"]])
        response = client.post("/api/sync/attendances", json={
            "operations": [op1, op2],
            "device_id": "tablette-accueil",
        })

    assert response.status_code == 200
    data = response.json()
    assert data["synced_count"] == 2
    assert data["skipped_count"] == 0
    assert data["status"] == "ok"

    queue = mock.call_args.args[0]
    assert isinstance(queue, BatchQueue)
    assert [op.local_id for op in queue.drain()] == [op1["local_id"], op2["local_id"]]
    assert mock.call_args.kwargs["device_id"] == "tablette-accueil"


def test_sync_echec_partiel(client):
    op = make_operation(local_id="op-1")
    with patch("fellowship.routers.sync.sync_service.reconcile") as mock:
        mock.return_value = SyncSummary(
            failed=[SyncFailure(local_id="op-1", reason="EXPIRED_TOKEN", message="Ce QR code a expiré.")],
        )
        response = client.post("/api/sync/attendances", json={"operations": [op]})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "partial_failure"
    assert data["failed"][0]["local_id"] == "op-1"
    assert data["failed_count"] == 1


def test_sync_lot_vide(client):
    with patch("fellowship.routers.sync.sync_service.reconcile") as mock:
        mock.return_value = SyncSummary()
        response = client.post("/api/sync/attendances", json={"operations": []})

    assert response.status_code == 200
    assert response.json()["synced_count"] == 0


def test_sync_lot_trop_grand(client):
    """Plus de 500 opérations → 422."""
    ops = [make_operation() for _ in range(501)]
    response = client.post("/api/sync/attendances", json={"operations": ops})
    assert response.status_code == 422


def test_sync_local_id_manquant(client):
    op = make_operation()
    del op["local_id"]
    response = client.post("/api/sync/attendances", json={"operations": [op]})
    assert response.status_code == 422


def test_sync_date_invalide(client):
    response = client.post("/api/sync/attendances", json={
        "operations": [make_operation(check_in_time="hier soir")],
    })
    assert response.status_code == 422


def test_sync_base_injoignable(client):
    with patch("fellowship.routers.sync.sync_service.reconcile") as mock:
        mock.side_effect = StoreUnavailable("connexion refusée")
        response = client.post("/api/sync/attendances", json={"operations": [make_operation()]})
    assert response.status_code == 503

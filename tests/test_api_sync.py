"""
Tests d'intégration API pour la réception des synchronisations.
Endpoints : POST /api/sync/{events,activities,attendance,media,reports}, GET /api/health
"""

import base64
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx

from saksham.database import get_db
from saksham.main import app
from saksham.schemas.records import MediaItem
from saksham.schemas.sync import SyncAck
from saksham.services.report_api_client import ReportApiClient


# --- Helpers ---

SITE = {"latitude": 19.0760, "longitude": 72.8777, "accuracy": None}


def make_event_payload(**kwargs) -> dict:
    return {
        "id": kwargs.get("id", "evt-1"),
        "name": kwargs.get("name", "Exercice incendie"),
        "training_type": kwargs.get("training_type", "Fire Drill"),
        "status": "active",
        "location_name": "Caserne centrale",
        "location": SITE,
        "allowed_location": SITE,
        "description": None,
        "expected_trainees": 20,
        "start_time": "2026-03-10T09:30:00Z",
        "end_time": None,
        "last_updated": "2026-03-10T09:30:00Z",
        "synced": False,
    }


def make_report_payload(**kwargs) -> dict:
    return {
        "id": "report-evt-1-d0",
        "event_id": "evt-1",
        "day_index": 0,
        "submitted_at": "2026-03-10T17:00:00Z",
        "attendance_count": kwargs.get("attendance_count", 18),
        "notes": "",
        "photos": [],
        "location": SITE,
        "is_geofence_valid": True,
        "distance_m": 12.5,
        "synced": False,
    }


# ============================================================
# GET /api/health
# ============================================================

def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ============================================================
# POST /api/sync/events
# ============================================================

def test_sync_evenement_succes(client):
    with patch("saksham.routers.sync.sync_service.receive_event") as mock:
        mock.return_value = SyncAck(accepted=True, id="evt-1")
        response = client.post("/api/sync/events", json=make_event_payload())

    assert response.status_code == 200
    assert response.json() == {"accepted": True, "id": "evt-1", "duplicate": False, "reason": None}
    event = mock.call_args[0][1]
    assert event.allowed_location.latitude == SITE["latitude"]


def test_sync_evenement_type_invalide(client):
    """Type de formation inconnu → 422, le service n'est pas appelé."""
    with patch("saksham.routers.sync.sync_service.receive_event") as mock:
        response = client.post("/api/sync/events", json=make_event_payload(training_type="Volcano"))

    assert response.status_code == 422
    mock.assert_not_called()


def test_sync_evenement_doublon(client):
    with patch("saksham.routers.sync.sync_service.receive_event") as mock:
        mock.return_value = SyncAck(accepted=True, id="evt-1", duplicate=True)
        response = client.post("/api/sync/events", json=make_event_payload())

    assert response.status_code == 200
    assert response.json()["duplicate"] is True


# ============================================================
# POST /api/sync/activities, /attendance, /media
# ============================================================

def test_sync_activite(client):
    with patch("saksham.routers.sync.sync_service.receive_activity") as mock:
        mock.return_value = SyncAck(accepted=True, id="act-1")
        response = client.post("/api/sync/activities", json={
            "id": "act-1",
            "event_id": "evt-1",
            "label": "Briefing",
            "timestamp": "2026-03-10T10:00:00Z",
            "location": None,
            "synced": False,
        })

    assert response.status_code == 200
    mock.assert_called_once()


def test_sync_presence(client):
    with patch("saksham.routers.sync.sync_service.receive_attendance") as mock:
        mock.return_value = SyncAck(accepted=True, id="t-1")
        response = client.post("/api/sync/attendance", json={
            "trainee": {"id": "t-1", "name": "Asha", "photo": None, "status": "present",
                        "last_seen": "2026-03-10T10:05:00Z"},
            "records": [],
        })

    assert response.status_code == 200
    assert mock.call_args[0][1].trainee.status == "present"


def test_sync_media_base64(client):
    content = b"\xff\xd8\xff\xe0 jpeg"
    with patch("saksham.routers.sync.sync_service.receive_media") as mock:
        mock.return_value = SyncAck(accepted=True, id="media-1")
        response = client.post("/api/sync/media", json={
            "id": "media-1",
            "event_id": "evt-1",
            "media_type": "photo",
            "content": base64.b64encode(content).decode(),
            "content_type": "image/jpeg",
            "thumbnail": None,
            "timestamp": "2026-03-10T10:10:00Z",
            "location": None,
            "size_bytes": len(content),
            "sync_status": "pending",
        })

    assert response.status_code == 200
    assert mock.call_args[0][1].content == content


async def test_media_envoye_par_le_client_decode_a_l_identique():
    """Un MediaItem sérialisé par l'appareil arrive intact côté serveur, octets non ASCII compris."""
    media = MediaItem(
        id="media-1",
        event_id="evt-1",
        content=bytes(range(256)),
        thumbnail=b"\xfb\xff\xfe",
        timestamp=datetime(2026, 3, 10, 10, 10, tzinfo=timezone.utc),
        size_bytes=256,
    )
    app.dependency_overrides[get_db] = lambda: MagicMock()
    http = httpx.AsyncClient(base_url="http://testserver/api", transport=httpx.ASGITransport(app=app))
    api = ReportApiClient("http://testserver/api", client=http)
    try:
        with patch("saksham.routers.sync.sync_service.receive_media") as mock:
            mock.return_value = SyncAck(accepted=True, id="media-1")
            ack = await api.deliver("photo", media.model_dump(mode="json"))
    finally:
        await http.aclose()
        app.dependency_overrides.clear()

    assert ack.accepted is True
    received = mock.call_args[0][1]
    assert received.content == bytes(range(256))
    assert received.thumbnail == b"\xfb\xff\xfe"


def test_sync_media_base64_invalide(client):
    response = client.post("/api/sync/media", json={
        "id": "media-1",
        "event_id": "evt-1",
        "content": "pas du base64 !",
        "timestamp": "2026-03-10T10:10:00Z",
        "size_bytes": 3,
    })
    assert response.status_code == 422


# ============================================================
# POST /api/sync/reports
# ============================================================

def test_sync_rapport_succes(client):
    with patch("saksham.routers.sync.sync_service.receive_report") as mock:
        mock.return_value = SyncAck(accepted=True, id="report-evt-1-d0")
        response = client.post("/api/sync/reports", json=make_report_payload())

    assert response.status_code == 200
    assert response.json()["id"] == "report-evt-1-d0"


def test_sync_rapport_evenement_inconnu_409(client):
    with patch("saksham.routers.sync.sync_service.receive_report") as mock:
        mock.side_effect = LookupError("Événement evt-1 pas encore reçu")
        response = client.post("/api/sync/reports", json=make_report_payload())

    assert response.status_code == 409
    assert "pas encore reçu" in response.json()["detail"]


def test_sync_rapport_hors_zone_422(client):
    with patch("saksham.routers.sync.sync_service.receive_report") as mock:
        mock.side_effect = ValueError("Vous êtes à 480 m du lieu de formation.")
        response = client.post("/api/sync/reports", json=make_report_payload())

    assert response.status_code == 422
    assert "480 m" in response.json()["detail"]


def test_sync_rapport_compte_negatif_422(client):
    with patch("saksham.routers.sync.sync_service.receive_report") as mock:
        response = client.post("/api/sync/reports", json=make_report_payload(attendance_count=-3))

    assert response.status_code == 422
    mock.assert_not_called()

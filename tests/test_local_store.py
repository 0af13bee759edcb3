"""
Tests du stockage local (SQLite asynchrone réel, fichier temporaire).
Couverture : put/get, put_all, remplacement, index secondaires, get_all_unsynced,
mark_synced, update_if, préférences, migration, échec d'écriture.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from saksham.errors import StorageWriteFailure
from saksham.schemas.records import (
    ActivityLog,
    EventRecord,
    GeoPoint,
    MediaItem,
    Trainee,
)
from saksham.store.local_store import (
    ACTIVITIES,
    EVENTS,
    MEDIA,
    SYNC_QUEUE,
    TRAINEES,
    LocalStore,
)
from saksham.store.models import SCHEMA_VERSION


# --- Helpers ---

NOW = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
SITE = GeoPoint(latitude=19.0760, longitude=72.8777, accuracy=8.0)


def make_event(event_id="evt-1", status="active", synced=False) -> EventRecord:
    return EventRecord(
        id=event_id,
        name="Exercice incendie",
        training_type="Fire Drill",
        status=status,
        location_name="Caserne centrale",
        location=SITE,
        allowed_location=SITE,
        expected_trainees=25,
        start_time=NOW,
        last_updated=NOW,
        synced=synced,
    )


def make_media(media_id="media-1", event_id="evt-1") -> MediaItem:
    return MediaItem(
        id=media_id,
        event_id=event_id,
        content=b"\x89PNG fake",
        timestamp=NOW,
        size_bytes=9,
    )


# ============================================================
# Écriture / lecture
# ============================================================

async def test_put_puis_get_identique(store):
    event = make_event()
    await store.put(EVENTS, event)

    loaded = await store.get(EVENTS, "evt-1")
    assert loaded == event
    assert loaded.start_time.tzinfo is not None
    assert loaded.allowed_location == SITE


async def test_get_inconnu_retourne_none(store):
    assert await store.get(EVENTS, "absent") is None


async def test_put_remplace_existant(store):
    await store.put(EVENTS, make_event())
    await store.put(EVENTS, make_event().model_copy(update={"status": "completed"}))

    events = await store.list(EVENTS)
    assert len(events) == 1
    assert events[0].status == "completed"


async def test_put_mauvais_type_leve_type_error(store):
    with pytest.raises(TypeError):
        await store.put(EVENTS, Trainee(id="t-1", name="Asha"))


async def test_collection_inconnue_leve_value_error(store):
    with pytest.raises(ValueError):
        await store.list("inconnue")


async def test_media_binaire_conserve(store):
    await store.put(MEDIA, make_media())
    loaded = await store.get(MEDIA, "media-1")
    assert loaded.content == b"\x89PNG fake"
    assert loaded.thumbnail is None


async def test_put_many_tout_ou_rien(store):
    trainees = [Trainee(id=f"t-{i}", name=f"Stagiaire {i}") for i in range(3)]
    await store.put_many(TRAINEES, trainees)
    assert len(await store.list(TRAINEES)) == 3


async def test_put_all_plusieurs_collections(store):
    await store.put_all([(MEDIA, make_media()), (EVENTS, make_event())])

    assert (await store.get(MEDIA, "media-1")).event_id == "evt-1"
    assert (await store.get(EVENTS, "evt-1")).name == "Exercice incendie"


async def test_put_all_echec_n_ecrit_rien(store):
    """Une écriture en échec annule aussi celles des autres collections."""
    error = OperationalError("INSERT", {}, Exception("database or disk is full"))
    with patch("sqlalchemy.ext.asyncio.AsyncSession.merge", side_effect=[None, error]):
        with pytest.raises(StorageWriteFailure):
            await store.put_all([(MEDIA, make_media()), (EVENTS, make_event())])

    assert await store.get(MEDIA, "media-1") is None
    assert await store.get(EVENTS, "evt-1") is None


async def test_put_all_mauvais_type_n_ecrit_rien(store):
    with pytest.raises(TypeError):
        await store.put_all([(MEDIA, make_media()), (EVENTS, make_media("media-2"))])
    assert await store.get(MEDIA, "media-1") is None


async def test_echec_ecriture_leve_storage_write_failure(store):
    """Erreur SQLite pendant l'écriture → StorageWriteFailure, rien n'est écrit."""
    error = OperationalError("INSERT", {}, Exception("database or disk is full"))
    with patch("sqlalchemy.ext.asyncio.AsyncSession.merge", side_effect=error):
        with pytest.raises(StorageWriteFailure):
            await store.put(EVENTS, make_event())

    assert await store.get(EVENTS, "evt-1") is None


async def test_store_non_ouvert_leve_runtime_error(tmp_path):
    local = LocalStore(f"sqlite+aiosqlite:///{tmp_path / 'closed.db'}")
    with pytest.raises(RuntimeError):
        await local.get(EVENTS, "evt-1")


# ============================================================
# Index secondaires
# ============================================================

async def test_list_by_index(store):
    await store.put(ACTIVITIES, ActivityLog(id="a-1", event_id="evt-1", label="Briefing", timestamp=NOW))
    await store.put(ACTIVITIES, ActivityLog(id="a-2", event_id="evt-2", label="Évacuation", timestamp=NOW))

    result = await store.list_by_index(ACTIVITIES, "event_id", "evt-1")
    assert [a.id for a in result] == ["a-1"]


async def test_list_by_index_inexistant(store):
    with pytest.raises(ValueError, match="inexistant"):
        await store.list_by_index(ACTIVITIES, "label", "Briefing")


# ============================================================
# Synchronisation
# ============================================================

async def test_get_all_unsynced(store):
    await store.put(EVENTS, make_event("evt-1", synced=False))
    await store.put(EVENTS, make_event("evt-2", synced=True))

    result = await store.get_all_unsynced(EVENTS)
    assert [e.id for e in result] == ["evt-1"]


async def test_get_all_unsynced_media_par_statut(store):
    await store.put(MEDIA, make_media("media-1"))
    await store.put(MEDIA, make_media("media-2").model_copy(update={"sync_status": "synced"}))

    result = await store.get_all_unsynced(MEDIA)
    assert [m.id for m in result] == ["media-1"]


async def test_get_all_unsynced_sans_indicateur(store):
    with pytest.raises(ValueError):
        await store.get_all_unsynced(TRAINEES)


async def test_mark_synced_evenement(store):
    await store.put(EVENTS, make_event())

    assert await store.mark_synced(EVENTS, "evt-1") is True
    loaded = await store.get(EVENTS, "evt-1")
    assert loaded.synced is True
    assert loaded.status == "active"


async def test_mark_synced_media_echec(store):
    await store.put(MEDIA, make_media())

    assert await store.mark_synced(MEDIA, "media-1", failed=True) is True
    assert (await store.get(MEDIA, "media-1")).sync_status == "failed"


async def test_mark_synced_inconnu(store):
    assert await store.mark_synced(EVENTS, "absent") is False


async def test_mark_synced_sans_indicateur(store):
    await store.put(TRAINEES, Trainee(id="t-1", name="Asha"))
    assert await store.mark_synced(TRAINEES, "t-1") is False


async def test_update_if_condition_remplie(store):
    await store.put(EVENTS, make_event())

    assert await store.update_if(EVENTS, "evt-1", {"status": "active"}, {"status": "completed"}) is True
    assert (await store.get(EVENTS, "evt-1")).status == "completed"


async def test_update_if_condition_non_remplie(store):
    await store.put(EVENTS, make_event(status="completed"))

    assert await store.update_if(EVENTS, "evt-1", {"status": "active"}, {"synced": True}) is False
    loaded = await store.get(EVENTS, "evt-1")
    assert loaded.status == "completed"
    assert loaded.synced is False


async def test_file_de_synchronisation_vide_au_depart(store):
    assert await store.list(SYNC_QUEUE) == []


# ============================================================
# Préférences et migration
# ============================================================

async def test_version_du_schema_enregistree(store):
    assert await store.get_setting("schema_version") == SCHEMA_VERSION


async def test_preference_valeur_par_defaut(store):
    assert await store.get_setting("absente", "défaut") == "défaut"


async def test_preference_json(store):
    await store.set_setting("dernier_evenement", {"id": "evt-1", "jour": 2})
    assert await store.get_setting("dernier_evenement") == {"id": "evt-1", "jour": 2}


async def test_open_idempotent(store):
    assert await store.open() is store


async def test_donnees_conservees_apres_reouverture(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'field.db'}"
    async with LocalStore(url) as first:
        await first.put(EVENTS, make_event())

    async with LocalStore(url) as second:
        assert (await second.get(EVENTS, "evt-1")).name == "Exercice incendie"


async def test_base_en_memoire(tmp_path):
    async with LocalStore("sqlite+aiosqlite:///:memory:") as local:
        await local.put(EVENTS, make_event())
        assert len(await local.list(EVENTS)) == 1

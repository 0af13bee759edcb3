"""
Service de réception des synchronisations (côté serveur).

Chaque enregistrement est stocké comme document JSON unique par (type, identifiant) :
- renvoi identique → accepté, signalé comme doublon (idempotence)
- renvoi modifié → le document est remplacé (dernière écriture gagnante)

Les rapports journaliers sont revalidés contre le lieu autorisé de l'événement :
le contrôle de l'appareil n'est qu'un garde-fou d'ergonomie.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from saksham.config import settings
from saksham.errors import GeofenceViolation
from saksham.models.received_record import ReceivedRecord
from saksham.schemas.records import ActivityLog, DailyReport, EventRecord, MediaItem
from saksham.schemas.sync import AttendanceSyncPayload, SyncAck
from saksham.services.geofence_service import validate_geofence

logger = logging.getLogger(__name__)


def _find(db: Session, kind: str, record_id: str) -> Optional[ReceivedRecord]:
    return db.execute(
        select(ReceivedRecord).where(
            ReceivedRecord.kind == kind,
            ReceivedRecord.record_id == record_id,
        )
    ).scalar()


def _upsert(
    db: Session,
    kind: str,
    record_id: str,
    event_id: Optional[str],
    payload: Dict[str, Any],
) -> SyncAck:
    existing = _find(db, kind, record_id)

    if existing is None:
        db.add(ReceivedRecord(kind=kind, record_id=record_id, event_id=event_id, payload=payload))
        db.commit()
        logger.info("Reçu %s %s", kind, record_id)
        return SyncAck(accepted=True, id=record_id)

    if existing.payload == payload:
        logger.debug("Doublon ignoré : %s %s", kind, record_id)
        return SyncAck(accepted=True, id=record_id, duplicate=True)

    existing.payload = payload
    existing.event_id = event_id
    db.commit()
    logger.info("Mis à jour %s %s", kind, record_id)
    return SyncAck(accepted=True, id=record_id)


def receive_event(db: Session, event: EventRecord) -> SyncAck:
    return _upsert(db, "event", event.id, event.id, event.model_dump(mode="json"))


def receive_activity(db: Session, activity: ActivityLog) -> SyncAck:
    return _upsert(db, "activity", activity.id, activity.event_id, activity.model_dump(mode="json"))


def receive_attendance(db: Session, data: AttendanceSyncPayload) -> SyncAck:
    """Fiche stagiaire + pointages : un document par stagiaire."""
    return _upsert(db, "attendance", data.trainee.id, None, data.model_dump(mode="json"))


def receive_media(db: Session, media: MediaItem) -> SyncAck:
    return _upsert(db, "photo", media.id, media.event_id, media.model_dump(mode="json"))


def receive_report(db: Session, report: DailyReport, radius_m: Optional[float] = None) -> SyncAck:
    """
    Revalide puis stocke un rapport journalier.

    Lève LookupError si l'événement n'a pas encore été reçu (l'appareil réessaiera),
    ValueError si le rapport est hors du rayon autorisé (rejet définitif).
    """
    radius_m = settings.GEOFENCE_RADIUS_M if radius_m is None else radius_m

    event_row = _find(db, "event", report.event_id)
    if event_row is None:
        raise LookupError(f"Événement {report.event_id} pas encore reçu : rapport à renvoyer plus tard.")
    event = EventRecord.model_validate(event_row.payload)

    if not report.is_geofence_valid:
        raise ValueError("Rapport marqué hors zone par l'appareil.")
    if event.allowed_location is None:
        raise ValueError(f"L'événement {event.id} n'a pas de lieu autorisé.")

    result = validate_geofence(report.location, event.allowed_location, radius_m)
    if not result.is_valid:
        logger.warning(
            "Rapport %s rejeté : %.0f m du lieu autorisé (rayon %.0f m)",
            report.id, result.distance_m, radius_m,
        )
        raise ValueError(str(GeofenceViolation(result.distance_m, radius_m)))

    return _upsert(db, "report", report.id, report.event_id, report.model_dump(mode="json"))

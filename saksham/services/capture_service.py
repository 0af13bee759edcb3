"""
Workflows de capture terrain (offline-first).

Chaque workflow est une courte transaction, toujours dans cet ordre :
    validation → (géorepérage) → écriture locale → mise en file de synchronisation

La capture réussit localement quel que soit l'état du réseau ; la livraison
à l'API distante est l'affaire de la file de synchronisation.
Le rapport journalier est le seul workflow sensible : aucune écriture n'a lieu
si la position est indisponible ou hors du rayon autorisé.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from saksham.config import settings
from saksham.errors import GeofenceViolation, ValidationError
from saksham.schemas.records import (
    ATTENDANCE_METHODS,
    ATTENDANCE_STATUSES,
    EVENT_STATUSES,
    MEDIA_TYPES,
    ActivityLog,
    AttendanceRecord,
    DailyReport,
    EventRecord,
    GeoPoint,
    MediaItem,
    Trainee,
    utcnow,
)
from saksham.services.geofence_service import validate_geofence
from saksham.services.location_service import LocationService
from saksham.services.media_service import create_thumbnail, parse_badge
from saksham.services.sync_queue_service import SyncQueueService
from saksham.store.local_store import (
    ACTIVITIES,
    ATTENDANCE,
    DAILY_REPORTS,
    EVENTS,
    MEDIA,
    TRAINEES,
    LocalStore,
)

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def attendance_record_id(event_id: str, trainee_id: str) -> str:
    """Un seul pointage par couple événement/stagiaire : le dernier écrase le précédent."""
    return f"att-{event_id}-{trainee_id}"


def daily_report_id(event_id: str, day_index: int) -> str:
    """Un seul rapport par jour d'événement : une nouvelle soumission remplace l'ancienne."""
    return f"report-{event_id}-d{day_index}"


def event_day_count(event: EventRecord) -> Optional[int]:
    """Nombre de jours couverts par l'événement (None si la date de fin est ouverte)."""
    if event.end_time is None:
        return None
    return (event.end_time.date() - event.start_time.date()).days + 1


def _build(model: type, **fields) -> BaseModel:
    """Construit un enregistrement ; les erreurs Pydantic deviennent des ValidationError métier."""
    try:
        return model(**fields)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        message = str(error["msg"]).removeprefix("Value error, ")
        raise ValidationError(f"{field} : {message}") from exc


class CaptureService:
    def __init__(
        self,
        store: LocalStore,
        sync_queue: SyncQueueService,
        locations: LocationService,
        radius_m: Optional[float] = None,
        thumbnail_max_edge: Optional[int] = None,
    ):
        self.store = store
        self.sync_queue = sync_queue
        self.locations = locations
        self.radius_m = settings.GEOFENCE_RADIUS_M if radius_m is None else radius_m
        self.thumbnail_max_edge = (
            settings.THUMBNAIL_MAX_EDGE if thumbnail_max_edge is None else thumbnail_max_edge
        )

    # ------------------------------------------------------------------
    # Événements
    # ------------------------------------------------------------------

    async def start_event(
        self,
        name: str,
        training_type: str,
        expected_trainees: int,
        location_name: str = "",
        gps: Optional[GeoPoint] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> EventRecord:
        """
        Crée un événement actif et verrouille son lieu autorisé (centre du géorepérage).

        Position utilisée, par ordre de préférence : `gps` fourni, position
        fraîche, dernière position connue. Sans aucune position → ValidationError.
        """
        if gps is None:
            gps = await self.locations.best_effort() or self.locations.last_known
        if gps is None:
            raise ValidationError(
                "Position GPS requise pour créer l'événement : activez la localisation "
                "ou saisissez les coordonnées du lieu."
            )

        now = utcnow()
        event = _build(
            EventRecord,
            id=_new_id("evt"),
            name=name,
            training_type=training_type,
            status="active",
            location_name=location_name,
            location=gps,
            allowed_location=gps,
            description=description,
            expected_trainees=expected_trainees,
            start_time=start_time or now,
            end_time=end_time,
            last_updated=now,
        )
        if event.end_time is not None and event.end_time < event.start_time:
            raise ValidationError("La date de fin doit suivre la date de début.")

        await self.store.put(EVENTS, event)
        await self.sync_queue.enqueue("event", event.id)
        logger.info("Événement démarré : %s (%s)", event.name, event.id)
        return event

    async def update_event_status(self, event_id: str, status: str) -> EventRecord:
        """
        Fait avancer le statut d'un événement (scheduled → active → completed).
        Le lieu autorisé n'est jamais modifié. Un retour en arrière lève ValidationError.
        """
        if status not in EVENT_STATUSES:
            raise ValidationError(f"Statut d'événement invalide : {status}")
        event = await self._require_event(event_id)
        if status == event.status:
            return event
        if EVENT_STATUSES.index(status) < EVENT_STATUSES.index(event.status):
            raise ValidationError(
                f"Transition impossible : un événement {event.status} ne peut pas redevenir {status}."
            )

        now = utcnow()
        changes = {"status": status, "last_updated": now, "synced": False}
        if status == "completed" and event.end_time is None:
            changes["end_time"] = now
        updated = event.model_copy(update=changes)

        await self.store.put(EVENTS, updated)
        await self.sync_queue.enqueue("event", updated.id)
        logger.info("Événement %s : %s → %s", event_id, event.status, status)
        return updated

    async def complete_event(self, event_id: str) -> EventRecord:
        return await self.update_event_status(event_id, "completed")

    async def _require_event(self, event_id: str) -> EventRecord:
        event = await self.store.get(EVENTS, event_id)
        if event is None:
            raise ValidationError(f"Événement {event_id} introuvable.")
        return event

    async def _require_active_event(self, event_id: str) -> EventRecord:
        event = await self._require_event(event_id)
        if event.status != "active":
            raise ValidationError(
                f"L'événement « {event.name} » n'est pas en cours (statut {event.status})."
            )
        return event

    # ------------------------------------------------------------------
    # Journal d'activité
    # ------------------------------------------------------------------

    async def log_activity(self, event_id: str, label: str) -> ActivityLog:
        """Note horodatée ; la position est ajoutée si disponible, sans jamais bloquer."""
        label = (label or "").strip()
        if not label:
            raise ValidationError("Le libellé de l'activité ne peut pas être vide.")
        await self._require_active_event(event_id)

        location = await self.locations.best_effort()
        activity = ActivityLog(
            id=_new_id("act"),
            event_id=event_id,
            label=label,
            timestamp=utcnow(),
            location=location,
        )
        await self.store.put(ACTIVITIES, activity)
        await self.sync_queue.enqueue("activity", activity.id)
        return activity

    # ------------------------------------------------------------------
    # Présences
    # ------------------------------------------------------------------

    async def register_trainees(self, trainees: Iterable[Trainee]) -> int:
        """Charge la liste des stagiaires sur l'appareil (une seule transaction)."""
        trainees = list(trainees)
        await self.store.put_many(TRAINEES, trainees)
        return len(trainees)

    async def mark_attendance(
        self,
        trainee_id: str,
        status: str,
        event_id: Optional[str] = None,
        method: str = "manual",
    ) -> Trainee:
        """
        Met à jour le statut du stagiaire sur place et horodate last_seen.

        Si event_id est fourni, le pointage de ce stagiaire pour cet événement
        est aussi écrit (remplacé s'il existait). Un seul élément de
        synchronisation par stagiaire.
        """
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError(f"Statut de présence invalide : {status}")
        if method not in ATTENDANCE_METHODS:
            raise ValidationError(f"Méthode de pointage invalide : {method}")

        trainee = await self.store.get(TRAINEES, trainee_id)
        if trainee is None:
            raise ValidationError(f"Stagiaire {trainee_id} introuvable.")
        if event_id is not None:
            await self._require_active_event(event_id)

        now = utcnow()
        updated = trainee.model_copy(update={"status": status, "last_seen": now})
        await self.store.put(TRAINEES, updated)

        if event_id is not None:
            await self.store.put(
                ATTENDANCE,
                AttendanceRecord(
                    id=attendance_record_id(event_id, trainee_id),
                    event_id=event_id,
                    trainee_id=trainee_id,
                    trainee_name=trainee.name,
                    status=status,
                    method=method,
                    timestamp=now,
                ),
            )

        await self.sync_queue.enqueue("attendance", trainee_id)
        return updated

    async def mark_attendance_from_qr(self, decoded_text: str, event_id: str) -> Trainee:
        """Pointe présent le stagiaire dont l'identifiant figure dans le QR code scanné."""
        decoded_text = (decoded_text or "").strip()
        badge_id = parse_badge(decoded_text)
        if badge_id is not None:
            trainee = await self.store.get(TRAINEES, badge_id)
        else:
            # QR d'un autre émetteur : recherche de l'identifiant dans le texte, le plus long d'abord
            candidates = sorted(await self.store.list(TRAINEES), key=lambda t: len(t.id), reverse=True)
            trainee = next((t for t in candidates if t.id in decoded_text), None)

        if trainee is None:
            raise ValidationError("QR code non reconnu : aucun stagiaire correspondant.")
        return await self.mark_attendance(trainee.id, "present", event_id=event_id, method="qr")

    # ------------------------------------------------------------------
    # Médias
    # ------------------------------------------------------------------

    async def capture_media(
        self,
        event_id: str,
        content: bytes,
        media_type: str = "photo",
        content_type: Optional[str] = None,
    ) -> MediaItem:
        """Enregistre une photo ou vidéo ; vignette et position sont facultatives."""
        if media_type not in MEDIA_TYPES:
            raise ValidationError(f"Type de média invalide : {media_type}")
        if not content:
            raise ValidationError("Le fichier capturé est vide.")
        await self._require_active_event(event_id)

        media = await self._build_media(event_id, content, media_type, content_type)
        await self.store.put(MEDIA, media)
        await self.sync_queue.enqueue("photo", media.id)
        return media

    async def _build_media(
        self, event_id: str, content: bytes, media_type: str, content_type: Optional[str],
    ) -> MediaItem:
        thumbnail = None
        if media_type == "photo":
            thumbnail = await asyncio.to_thread(create_thumbnail, content, self.thumbnail_max_edge)
        location = await self.locations.best_effort()
        return MediaItem(
            id=_new_id("media"),
            event_id=event_id,
            media_type=media_type,
            content=content,
            content_type=content_type,
            thumbnail=thumbnail,
            timestamp=utcnow(),
            location=location,
            size_bytes=len(content),
        )

    # ------------------------------------------------------------------
    # Rapport journalier (géorepéré)
    # ------------------------------------------------------------------

    async def submit_daily_report(
        self,
        event_id: str,
        day_index: int,
        attendance_count: int,
        notes: str = "",
        photos: Sequence[bytes] = (),
    ) -> DailyReport:
        """
        Soumet le rapport d'un jour de formation.

        1. Position fraîche (jamais la dernière connue) → LocationUnavailable sinon
        2. Vérification du rayon autour du lieu autorisé verrouillé
        3. Hors rayon → GeofenceViolation avec la distance réelle, rien n'est écrit
        4. Dans le rayon → photos et rapport écrits en une transaction, puis mis en file
        """
        event = await self._require_active_event(event_id)
        if event.allowed_location is None:
            raise ValidationError(
                "Aucun lieu autorisé n'est verrouillé pour cet événement : rapport impossible."
            )
        if day_index < 0:
            raise ValidationError("Le numéro de jour doit être positif.")
        if attendance_count < 0:
            raise ValidationError("Le nombre de présents doit être positif.")
        day_count = event_day_count(event)
        if day_count is not None and day_index >= day_count:
            raise ValidationError(
                f"Jour {day_index + 1} hors de l'événement (qui dure {day_count} jour(s))."
            )
        if any(not content for content in photos):
            raise ValidationError("Une des photos jointes est vide.")

        current = await self.locations.current()
        result = validate_geofence(current, event.allowed_location, self.radius_m)
        if not result.is_valid:
            logger.warning(
                "Rapport refusé pour %s (jour %d) : %.0f m du lieu autorisé (rayon %.0f m)",
                event_id, day_index, result.distance_m, self.radius_m,
            )
            raise GeofenceViolation(result.distance_m, self.radius_m)

        media_items: List[MediaItem] = []
        for content in photos:
            media_items.append(await self._build_media(event_id, content, "photo", None))

        report = DailyReport(
            id=daily_report_id(event_id, day_index),
            event_id=event_id,
            day_index=day_index,
            submitted_at=utcnow(),
            attendance_count=attendance_count,
            notes=notes or "",
            photos=[m.id for m in media_items],
            location=current,
            is_geofence_valid=True,
            distance_m=result.distance_m,
        )
        # Photos et rapport écrits ensemble ou pas du tout
        await self.store.put_all([(MEDIA, m) for m in media_items] + [(DAILY_REPORTS, report)])

        for media in media_items:
            await self.sync_queue.enqueue("photo", media.id)
        await self.sync_queue.enqueue("report", report.id)
        logger.info(
            "Rapport jour %d soumis pour %s : %d présents, %.0f m du lieu",
            day_index, event_id, attendance_count, result.distance_m,
        )
        return report

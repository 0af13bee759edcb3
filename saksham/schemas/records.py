"""
Schémas Pydantic des enregistrements terrain (offline-first).

Ces modèles sont à la fois :
- la forme des enregistrements du stockage local de l'appareil,
- le corps JSON envoyé à l'API distante par la file de synchronisation.

Les champs facultatifs sont toujours présents (None), jamais absents.
Tous les horodatages sont en UTC avec fuseau.
"""

import base64
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

TRAINING_TYPES = {
    "Fire Drill",
    "Earthquake Drill",
    "Flood Response",
    "Medical Emergency",
    "Evacuation",
    "Search & Rescue",
    "General Drill",
}
EVENT_STATUSES = ("scheduled", "active", "completed")  # ordre = sens des transitions
TRAINEE_STATUSES = {"present", "absent", "pending"}
ATTENDANCE_STATUSES = {"present", "absent"}
ATTENDANCE_METHODS = {"manual", "qr"}
MEDIA_TYPES = {"photo", "video"}
MEDIA_SYNC_STATUSES = {"pending", "synced", "failed"}
SYNC_KINDS = {"event", "activity", "attendance", "photo", "report"}
SYNC_STATUSES = {"pending", "syncing", "failed", "done"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Un horodatage naïf est considéré comme déjà exprimé en UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def _check_choice(value: str, choices, label: str) -> str:
    if value not in choices:
        raise ValueError(f"{label} invalide. Valeurs acceptées : {sorted(choices)}")
    return value


class GeoPoint(BaseModel):
    """Point GPS WGS84 ; accuracy = précision horizontale en mètres."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)


class EventRecord(BaseModel):
    """Séance de formation planifiée ou en cours."""

    id: str
    name: str
    training_type: str
    status: str = "active"
    location_name: str = ""
    location: GeoPoint
    allowed_location: Optional[GeoPoint] = None  # Centre du géorepérage, verrouillé à la création
    description: Optional[str] = None
    expected_trainees: int = Field(ge=0)
    start_time: UTCDatetime
    end_time: Optional[UTCDatetime] = None
    last_updated: UTCDatetime
    synced: bool = False

    model_config = ConfigDict(from_attributes=True)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le nom de l'événement ne peut pas être vide.")
        return v.strip()

    @field_validator("training_type")
    @classmethod
    def valid_training_type(cls, v: str) -> str:
        return _check_choice(v, TRAINING_TYPES, "Type de formation")

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check_choice(v, set(EVENT_STATUSES), "Statut d'événement")


class ActivityLog(BaseModel):
    """Note horodatée liée à un événement. Immuable une fois créée."""

    id: str
    event_id: str
    label: str
    timestamp: UTCDatetime
    location: Optional[GeoPoint] = None  # Position opportuniste, non géorepérée
    synced: bool = False

    model_config = ConfigDict(from_attributes=True)


class Trainee(BaseModel):
    """Stagiaire susceptible d'assister à une séance."""

    id: str
    name: str
    photo: Optional[str] = None
    status: str = "pending"
    last_seen: Optional[UTCDatetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check_choice(v, TRAINEE_STATUSES, "Statut de présence")


class AttendanceRecord(BaseModel):
    """Présence d'un stagiaire à un événement (une seule par couple événement/stagiaire)."""

    id: str
    event_id: str
    trainee_id: str
    trainee_name: str
    status: str
    method: str = "manual"
    timestamp: UTCDatetime
    synced: bool = False

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check_choice(v, ATTENDANCE_STATUSES, "Statut de présence")

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        return _check_choice(v, ATTENDANCE_METHODS, "Méthode de pointage")


class DailyReport(BaseModel):
    """
    Rapport journalier d'un événement multi-jours.
    N'est jamais persisté avec is_geofence_valid=False.
    """

    id: str
    event_id: str
    day_index: int = Field(ge=0)  # 0 = premier jour
    submitted_at: UTCDatetime
    attendance_count: int = Field(ge=0)
    notes: str = ""
    photos: List[str] = Field(default_factory=list)  # Identifiants MediaItem
    location: GeoPoint  # Position au moment de la soumission
    is_geofence_valid: bool
    distance_m: Optional[float] = None
    synced: bool = False

    model_config = ConfigDict(from_attributes=True)


class MediaItem(BaseModel):
    """Photo ou vidéo capturée ; le binaire voyage en base64 dans le JSON."""

    id: str
    event_id: str
    media_type: str = "photo"
    content: bytes
    content_type: Optional[str] = None
    thumbnail: Optional[bytes] = None  # JPEG réduit, absent si la génération a échoué
    timestamp: UTCDatetime
    location: Optional[GeoPoint] = None
    size_bytes: int = Field(ge=0)
    sync_status: str = "pending"

    model_config = ConfigDict(
        from_attributes=True,
        ser_json_bytes="base64",
    )

    @field_validator("content", "thumbnail", mode="before")
    @classmethod
    def decode_base64(cls, v):
        # Texte base64 du JSON reçu ; ser_json_bytes produit l'alphabet URL-safe
        if isinstance(v, str):
            try:
                return base64.b64decode(v.replace("-", "+").replace("_", "/"), validate=True)
            except ValueError as exc:
                raise ValueError("Contenu binaire attendu en base64.") from exc
        return v

    @field_validator("media_type")
    @classmethod
    def valid_media_type(cls, v: str) -> str:
        return _check_choice(v, MEDIA_TYPES, "Type de média")

    @field_validator("sync_status")
    @classmethod
    def valid_sync_status(cls, v: str) -> str:
        return _check_choice(v, MEDIA_SYNC_STATUSES, "Statut de synchronisation")


class SyncQueueItem(BaseModel):
    """Élément de la file de synchronisation, découplé de l'enregistrement métier."""

    id: str  # sync-{kind}-{ref_id}, déterministe
    kind: str
    ref_id: str
    status: str = "pending"
    retries: int = 0
    enqueued_at: UTCDatetime
    updated_at: UTCDatetime
    next_attempt_at: Optional[UTCDatetime] = None  # Fin du backoff pour un élément failed
    last_error: Optional[str] = None
    needs_attention: bool = False  # Échec terminal : intervention de l'utilisateur requise

    model_config = ConfigDict(from_attributes=True)

    @field_validator("kind")
    @classmethod
    def valid_kind(cls, v: str) -> str:
        return _check_choice(v, SYNC_KINDS, "Type d'élément de synchronisation")

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check_choice(v, SYNC_STATUSES, "Statut de synchronisation")

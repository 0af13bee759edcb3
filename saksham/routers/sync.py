"""
Router de réception des synchronisations offline → online.
Un endpoint par type d'élément de la file de l'appareil ; chaque appel est idempotent.

Codes d'erreur :
- 409 : dépendance pas encore reçue (l'appareil réessaiera)
- 422 : enregistrement invalide ou hors zone (rejet définitif)
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from saksham.database import get_db
from saksham.schemas.records import ActivityLog, DailyReport, EventRecord, MediaItem
from saksham.schemas.sync import AttendanceSyncPayload, SyncAck
from saksham.services import sync_service

router = APIRouter(prefix="/api/sync", tags=["Synchronisation offline"])


@router.post("/events", response_model=SyncAck, summary="Recevoir un événement de formation")
def sync_event(data: EventRecord, db: Session = Depends(get_db)):
    return sync_service.receive_event(db, data)


@router.post("/activities", response_model=SyncAck, summary="Recevoir une entrée du journal d'activité")
def sync_activity(data: ActivityLog, db: Session = Depends(get_db)):
    return sync_service.receive_activity(db, data)


@router.post("/attendance", response_model=SyncAck, summary="Recevoir l'état de présence d'un stagiaire")
def sync_attendance(data: AttendanceSyncPayload, db: Session = Depends(get_db)):
    return sync_service.receive_attendance(db, data)


@router.post("/media", response_model=SyncAck, summary="Recevoir une photo ou vidéo")
def sync_media(data: MediaItem, db: Session = Depends(get_db)):
    return sync_service.receive_media(db, data)


@router.post("/reports", response_model=SyncAck, summary="Recevoir un rapport journalier géorepéré")
def sync_report(data: DailyReport, db: Session = Depends(get_db)):
    """
    Le rapport est revalidé contre le lieu autorisé de l'événement :
    - événement inconnu → 409 (l'événement est peut-être encore en file sur l'appareil)
    - hors du rayon ou marqué invalide → 422
    """
    try:
        return sync_service.receive_report(db, data)
    except LookupError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

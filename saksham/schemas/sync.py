"""
Schémas Pydantic pour la synchronisation offline → online.
Endpoints : POST /api/sync/{events,activities,attendance,media,reports}
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from saksham.schemas.records import AttendanceRecord, Trainee


class AttendanceSyncPayload(BaseModel):
    """État de présence d'un stagiaire : fiche + pointages par événement."""

    trainee: Trainee
    records: List[AttendanceRecord] = Field(default_factory=list)


class SyncAck(BaseModel):
    """Réponse de l'API distante pour un enregistrement reçu."""

    accepted: bool
    id: Optional[str] = None
    duplicate: bool = False  # Déjà reçu avec un contenu identique (idempotence)
    reason: Optional[str] = None


class FlushReport(BaseModel):
    """Bilan d'un passage de la file de synchronisation."""

    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    needs_attention: int = 0
    delivered_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: Optional[datetime] = None

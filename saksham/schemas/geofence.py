"""Résultat de la validation de géorepérage."""

from typing import Optional

from pydantic import BaseModel


class GeofenceResult(BaseModel):
    is_valid: bool
    distance_m: Optional[float]  # None si une des positions est absente
    radius_m: float

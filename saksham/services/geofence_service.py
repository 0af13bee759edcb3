"""
Validation de géorepérage par la formule de haversine.

Un appareil est « dans » le géorepérage si sa distance au centre
(allowed_location de l'événement) est inférieure ou égale au rayon.
Fonctions pures, sans état ni cache.
"""

import math
from typing import Optional

from saksham.schemas.geofence import GeofenceResult
from saksham.schemas.records import GeoPoint

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_RADIUS_M = 200.0


def haversine_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Distance orthodromique en mètres entre deux points GPS."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # min() : les arrondis flottants peuvent dépasser 1 pour des points antipodaux
    c = 2 * math.atan2(math.sqrt(min(h, 1.0)), math.sqrt(max(1.0 - h, 0.0)))
    return EARTH_RADIUS_M * c


def validate_geofence(
    current: Optional[GeoPoint],
    allowed: Optional[GeoPoint],
    radius_m: float = DEFAULT_RADIUS_M,
) -> GeofenceResult:
    """
    Vérifie que `current` est à moins de `radius_m` mètres de `allowed`.

    Une position absente (actuelle ou autorisée) n'est jamais valide :
    la validation échoue fermée, distance_m vaut alors None.
    Lève ValueError si le rayon est négatif.
    """
    if radius_m < 0:
        raise ValueError("Le rayon du géorepérage doit être positif.")

    if current is None or allowed is None:
        return GeofenceResult(is_valid=False, distance_m=None, radius_m=radius_m)

    distance = haversine_distance(current, allowed)
    return GeofenceResult(
        is_valid=distance <= radius_m,
        distance_m=distance,
        radius_m=radius_m,
    )

"""
Taxonomie des erreurs du moteur de capture terrain.

Chaque message est destiné à l'utilisateur : il doit dire quoi faire,
pas seulement que l'opération a échoué.
"""

from typing import Optional


class SakshamError(Exception):
    """Racine de toutes les erreurs métier."""


class ValidationError(SakshamError, ValueError):
    """Entrée de workflow invalide, détectée avant toute écriture."""


class LocationUnavailable(SakshamError):
    """Position GPS non obtenue (délai dépassé ou permission refusée)."""

    def __init__(self, reason: str = "Position GPS indisponible."):
        super().__init__(
            f"{reason} Activez la localisation et réessayez."
        )
        self.reason = reason


class GeofenceViolation(SakshamError):
    """Position actuelle hors du rayon autorisé autour du lieu de formation."""

    def __init__(self, distance_m: float, radius_m: float):
        super().__init__(
            f"Vous êtes à {round(distance_m)} m du lieu de formation. "
            f"Vous devez être à moins de {round(radius_m)} m pour soumettre ce rapport."
        )
        self.distance_m = distance_m
        self.radius_m = radius_m


class StorageWriteFailure(SakshamError):
    """Écriture locale échouée : le workflow n'a pas abouti."""


class SyncDeliveryFailure(SakshamError):
    """
    Échec de livraison d'un élément à l'API distante.
    retryable=False pour un rejet de validation (4xx) : inutile de réessayer.
    """

    def __init__(self, reason: str, retryable: bool = True, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable
        self.status_code = status_code

"""
Acquisition de la position de l'appareil.

Le fournisseur GPS de la plateforme est un collaborateur externe : il suffit
qu'il respecte LocationProvider. LocationService borne chaque demande par un
délai et convertit tout échec en LocationUnavailable.

La dernière position connue ne sert qu'à pré-remplir la création d'un
événement, jamais à une vérification de géorepérage.
"""

import asyncio
import logging
from typing import Optional, Protocol

from saksham.config import settings
from saksham.errors import LocationUnavailable
from saksham.schemas.records import GeoPoint

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    async def get_current_location(self, high_accuracy: bool = True) -> GeoPoint:
        """Retourne la position actuelle ou lève LocationUnavailable."""
        ...


class StaticLocationProvider:
    """Fournisseur à position fixe (simulateur, tests). point=None → indisponible."""

    def __init__(self, point: Optional[GeoPoint] = None):
        self.point = point

    async def get_current_location(self, high_accuracy: bool = True) -> GeoPoint:
        if self.point is None:
            raise LocationUnavailable("Aucune position GPS disponible.")
        return self.point


class LocationService:
    def __init__(self, provider: LocationProvider, timeout_s: Optional[float] = None):
        self.provider = provider
        self.timeout_s = settings.GPS_TIMEOUT_S if timeout_s is None else timeout_s
        self._last_known: Optional[GeoPoint] = None

    @property
    def last_known(self) -> Optional[GeoPoint]:
        return self._last_known

    async def current(self) -> GeoPoint:
        """
        Position fraîche en haute précision, bornée par timeout_s.
        Lève LocationUnavailable en cas de délai dépassé ou de permission refusée.
        """
        try:
            point = await asyncio.wait_for(
                self.provider.get_current_location(high_accuracy=True),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            raise LocationUnavailable(
                f"Position GPS non obtenue en {self.timeout_s:g} s."
            ) from None
        except LocationUnavailable:
            raise
        except (PermissionError, OSError) as exc:
            raise LocationUnavailable(f"Accès à la localisation refusé ({exc}).") from exc

        if point is None:
            raise LocationUnavailable("Le capteur GPS n'a renvoyé aucune position.")
        self._last_known = point
        return point

    async def best_effort(self) -> Optional[GeoPoint]:
        """Position fraîche si possible, sinon None (horodatage GPS opportuniste)."""
        try:
            return await self.current()
        except LocationUnavailable as exc:
            logger.debug("Position opportuniste indisponible : %s", exc)
            return None

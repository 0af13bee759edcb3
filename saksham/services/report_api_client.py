"""
Client HTTP de l'API distante des rapports (cible de la file de synchronisation).

Classement des échecs :
- erreur réseau, délai, 5xx, 409… → réessayable
- 400 / 422 ou {"accepted": false} → terminal (enregistrement rejeté, inutile d'insister)
"""

import logging
from typing import Any, Dict, Optional

import httpx

from saksham.config import settings
from saksham.errors import SyncDeliveryFailure
from saksham.schemas.sync import SyncAck

logger = logging.getLogger(__name__)

SYNC_PATHS = {
    "event": "/sync/events",
    "activity": "/sync/activities",
    "attendance": "/sync/attendance",
    "photo": "/sync/media",
    "report": "/sync/reports",
}
TERMINAL_STATUS_CODES = {400, 422}


class ReportApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.REPORT_API_URL).rstrip("/")
        self.timeout = settings.SYNC_ITEM_TIMEOUT_S if timeout is None else timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def deliver(self, kind: str, payload: Dict[str, Any]) -> SyncAck:
        """
        Envoie un enregistrement (JSON déjà sérialisé) à l'endpoint de son type.
        Lève SyncDeliveryFailure en cas d'échec, avec retryable renseigné.
        """
        try:
            path = SYNC_PATHS[kind]
        except KeyError:
            raise SyncDeliveryFailure(f"Type d'élément inconnu : {kind}", retryable=False) from None

        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise SyncDeliveryFailure(f"Erreur réseau : {exc!r}") from exc

        if response.status_code in TERMINAL_STATUS_CODES:
            raise SyncDeliveryFailure(
                f"Rejeté par le serveur ({response.status_code}) : {_detail(response)}",
                retryable=False,
                status_code=response.status_code,
            )
        if not response.is_success:
            raise SyncDeliveryFailure(
                f"Erreur serveur ({response.status_code}) : {_detail(response)}",
                status_code=response.status_code,
            )

        try:
            ack = SyncAck.model_validate(response.json())
        except ValueError as exc:
            raise SyncDeliveryFailure(f"Réponse illisible du serveur : {exc}") from exc

        if not ack.accepted:
            raise SyncDeliveryFailure(
                f"Refusé par le serveur : {ack.reason or 'raison non précisée'}",
                retryable=False,
                status_code=response.status_code,
            )
        return ack

    async def ping(self) -> bool:
        """Vérifie que l'API est joignable (GET /health)."""
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as exc:
            logger.debug("API injoignable : %s", exc)
            return False
        return response.is_success


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or "sans détail"
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)[:200]

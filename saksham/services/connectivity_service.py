"""
Observation de la connectivité réseau.

La plateforme signale les changements d'état via set_online(). Au passage
hors-ligne → en ligne, un unique flush est déclenché après un court délai
d'anti-rebond : des coupures rapides successives ne provoquent pas de flushs
multiples, et aucun flush n'est lancé si un autre est déjà en cours.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from saksham.config import settings
from saksham.services.report_api_client import ReportApiClient
from saksham.services.sync_queue_service import SyncQueueService

logger = logging.getLogger(__name__)

TransitionListener = Callable[[bool, bool], None]


class ConnectivityObserver:
    def __init__(
        self,
        sync_queue: SyncQueueService,
        online: bool = False,
        debounce_s: Optional[float] = None,
    ):
        self.sync_queue = sync_queue
        self.debounce_s = settings.CONNECTIVITY_DEBOUNCE_S if debounce_s is None else debounce_s
        self._online = online
        self._listeners: List[TransitionListener] = []
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: TransitionListener) -> None:
        """listener(previous, current) est appelé à chaque transition."""
        self._listeners.append(listener)

    def set_online(self, online: bool) -> Optional[asyncio.Task]:
        """
        Enregistre l'état réseau signalé par la plateforme.
        Retourne la tâche de flush planifiée, le cas échéant.
        """
        previous = self._online
        if previous == online:
            return None

        self._online = online
        logger.info("Connectivité : %s", "en ligne" if online else "hors ligne")
        for listener in self._listeners:
            listener(previous, online)

        if online:
            return self._schedule_flush()
        return None

    def _schedule_flush(self) -> Optional[asyncio.Task]:
        if self._flush_task is not None and not self._flush_task.done():
            # Flush déjà planifié (anti-rebond en cours) ou en cours d'exécution
            return None
        self._flush_task = asyncio.get_running_loop().create_task(self._flush_when_settled())
        return self._flush_task

    async def _flush_when_settled(self) -> None:
        if self.debounce_s > 0:
            await asyncio.sleep(self.debounce_s)
        if not self._online:
            logger.debug("Reconnexion non confirmée après anti-rebond : flush annulé")
            return
        if self.sync_queue.is_flushing:
            return
        try:
            await self.sync_queue.flush()
        except Exception as exc:
            logger.error("Erreur lors du flush de reconnexion : %s", exc)

    async def wait_idle(self) -> None:
        """Attend la fin du flush déclenché par la dernière reconnexion."""
        if self._flush_task is not None:
            await self._flush_task

    async def probe(self, api: ReportApiClient) -> bool:
        """Déduit l'état réseau de la joignabilité de l'API distante."""
        reachable = await api.ping()
        self.set_online(reachable)
        return reachable

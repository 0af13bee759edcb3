"""
Planificateur APScheduler de l'appareil : flush périodique de la file de synchronisation.

Filet de sécurité en plus du flush déclenché à la reconnexion : les éléments
en attente de réessai (backoff) sont repris même sans changement de réseau.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from saksham.config import settings
from saksham.services.connectivity_service import ConnectivityObserver
from saksham.services.sync_queue_service import SyncQueueService

logger = logging.getLogger(__name__)

JOB_ID = "sync_queue_periodic_flush"

scheduler = AsyncIOScheduler()


async def flush_if_online(observer: ConnectivityObserver, sync_queue: SyncQueueService) -> bool:
    """
    Tâche planifiée : flush uniquement si l'appareil est en ligne et qu'il reste
    des éléments à livrer. Retourne True si un flush a été lancé.
    """
    if not observer.online:
        return False
    if await sync_queue.pending_count() == 0:
        return False
    try:
        await sync_queue.flush()
    except Exception as exc:
        logger.error("Erreur lors du flush planifié : %s", exc)
        return False
    return True


def start_scheduler(
    observer: ConnectivityObserver,
    sync_queue: SyncQueueService,
    interval_minutes: Optional[int] = None,
) -> None:
    """Démarre le flush périodique (doit être appelé depuis la boucle asyncio)."""
    interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
    scheduler.add_job(
        flush_if_online,
        trigger="interval",
        minutes=interval_minutes,
        args=[observer, sync_queue],
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("Scheduler démarré : flush de la file toutes les %d min.", interval_minutes)


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (fermeture de la session terrain)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")

"""
Session terrain : assemble les services de l'appareil autour d'un même stockage local.

    session = await FieldSession.open(location_provider=gps)
    await session.capture.start_event(...)
    session.connectivity.set_online(True)   # déclenche le flush
    await session.close()
"""

import logging
from typing import Optional

import httpx

from saksham.config import Settings, settings as default_settings
from saksham.scheduler import start_scheduler, stop_scheduler
from saksham.services.capture_service import CaptureService
from saksham.services.connectivity_service import ConnectivityObserver
from saksham.services.location_service import LocationProvider, LocationService
from saksham.services.report_api_client import ReportApiClient
from saksham.services.sync_queue_service import SyncQueueService
from saksham.store.local_store import LocalStore

logger = logging.getLogger(__name__)


class FieldSession:
    def __init__(
        self,
        store: LocalStore,
        api: ReportApiClient,
        sync_queue: SyncQueueService,
        locations: LocationService,
        connectivity: ConnectivityObserver,
        capture: CaptureService,
        periodic_flush: bool = False,
    ):
        self.store = store
        self.api = api
        self.sync_queue = sync_queue
        self.locations = locations
        self.connectivity = connectivity
        self.capture = capture
        self.periodic_flush = periodic_flush

    @classmethod
    async def open(
        cls,
        location_provider: LocationProvider,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        online: bool = False,
        periodic_flush: bool = True,
    ) -> "FieldSession":
        """
        Ouvre le stockage local, reprend les envois interrompus et remet en file
        les enregistrements orphelins, puis démarre le flush périodique.
        """
        config = config or default_settings

        store = await LocalStore(config.LOCAL_DATABASE_URL).open()
        api = ReportApiClient(config.REPORT_API_URL, config.SYNC_ITEM_TIMEOUT_S, client=http_client)
        sync_queue = SyncQueueService(
            store,
            api,
            max_retries=config.SYNC_MAX_RETRIES,
            backoff_base_s=config.SYNC_BACKOFF_BASE_S,
            backoff_max_s=config.SYNC_BACKOFF_MAX_S,
            item_timeout_s=config.SYNC_ITEM_TIMEOUT_S,
        )
        locations = LocationService(location_provider, config.GPS_TIMEOUT_S)
        connectivity = ConnectivityObserver(sync_queue, online=online, debounce_s=config.CONNECTIVITY_DEBOUNCE_S)
        capture = CaptureService(
            store,
            sync_queue,
            locations,
            radius_m=config.GEOFENCE_RADIUS_M,
            thumbnail_max_edge=config.THUMBNAIL_MAX_EDGE,
        )

        recovered = await sync_queue.recover_interrupted()
        requeued = await sync_queue.requeue_unsynced()
        logger.info(
            "Session terrain ouverte : %d envoi(s) repris, %d enregistrement(s) remis en file",
            recovered, requeued,
        )

        if periodic_flush:
            start_scheduler(connectivity, sync_queue, config.SYNC_INTERVAL_MINUTES)

        return cls(store, api, sync_queue, locations, connectivity, capture, periodic_flush)

    async def close(self) -> None:
        """Arrête le flush périodique, attend le flush en cours puis libère les ressources."""
        if self.periodic_flush:
            stop_scheduler()
        await self.connectivity.wait_idle()
        await self.api.aclose()
        await self.store.close()

    async def __aenter__(self) -> "FieldSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

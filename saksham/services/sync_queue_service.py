"""
File de synchronisation offline → online.

Machine à états par élément :
    pending → syncing → done
    pending → syncing → failed → pending (réessai après backoff exponentiel)
    failed + needs_attention (terminal : plafond de réessais atteint ou rejet de validation)

Garanties :
- un seul élément par couple (kind, ref_id) : l'identifiant est déterministe ;
- un seul flush à la fois ; un déclenchement pendant un flush est fusionné
  en une unique relance à la fin du flush en cours ;
- l'échec d'un élément n'interrompt jamais le reste du lot.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from saksham.config import settings
from saksham.errors import SyncDeliveryFailure, ValidationError
from saksham.schemas.records import SYNC_KINDS, SyncQueueItem, utcnow
from saksham.schemas.sync import AttendanceSyncPayload, FlushReport
from saksham.services.report_api_client import ReportApiClient
from saksham.store.local_store import (
    ACTIVITIES,
    ATTENDANCE,
    DAILY_REPORTS,
    EVENTS,
    MEDIA,
    SYNC_QUEUE,
    TRAINEES,
    LocalStore,
)

logger = logging.getLogger(__name__)

# Collection de l'enregistrement métier pour chaque type d'élément (attendance : voir _build_payload)
KIND_COLLECTIONS = {
    "event": EVENTS,
    "activity": ACTIVITIES,
    "photo": MEDIA,
    "report": DAILY_REPORTS,
}


def sync_item_id(kind: str, ref_id: str) -> str:
    return f"sync-{kind}-{ref_id}"


class SyncQueueService:
    def __init__(
        self,
        store: LocalStore,
        api: ReportApiClient,
        max_retries: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
        backoff_max_s: Optional[float] = None,
        item_timeout_s: Optional[float] = None,
    ):
        self.store = store
        self.api = api
        self.max_retries = settings.SYNC_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_base_s = settings.SYNC_BACKOFF_BASE_S if backoff_base_s is None else backoff_base_s
        self.backoff_max_s = settings.SYNC_BACKOFF_MAX_S if backoff_max_s is None else backoff_max_s
        self.item_timeout_s = settings.SYNC_ITEM_TIMEOUT_S if item_timeout_s is None else item_timeout_s
        self._lock = asyncio.Lock()
        self._rerun_requested = False

    @property
    def is_flushing(self) -> bool:
        return self._lock.locked()

    def backoff_delay(self, retries: int) -> float:
        """Délai avant le réessai n° `retries` : base · 2^(retries-1), plafonné."""
        return min(self.backoff_base_s * 2 ** max(retries - 1, 0), self.backoff_max_s)

    # ------------------------------------------------------------------
    # Mise en file
    # ------------------------------------------------------------------

    async def enqueue(self, kind: str, ref_id: str) -> SyncQueueItem:
        """
        Met un enregistrement en file (upsert par identifiant déterministe).

        - élément déjà pending → seul updated_at est rafraîchi
        - élément en cours d'envoi → repasse pending : le flush en cours ne le
          marquera pas done, le nouveau contenu sera renvoyé au prochain flush
        - sinon (absent, done, failed) → nouvel élément pending, compteurs remis à zéro
        """
        if kind not in SYNC_KINDS:
            raise ValidationError(f"Type d'élément de synchronisation inconnu : {kind}")

        now = utcnow()
        item_id = sync_item_id(kind, ref_id)
        existing = await self.store.get(SYNC_QUEUE, item_id)

        if existing is not None and existing.status in ("pending", "syncing"):
            item = existing.model_copy(update={"status": "pending", "updated_at": now})
        else:
            item = SyncQueueItem(
                id=item_id,
                kind=kind,
                ref_id=ref_id,
                status="pending",
                retries=0,
                enqueued_at=now,
                updated_at=now,
            )
        await self.store.put(SYNC_QUEUE, item)
        logger.debug("Mis en file : %s", item_id)
        return item

    # ------------------------------------------------------------------
    # Consultation
    # ------------------------------------------------------------------

    async def list_queue(self) -> List[SyncQueueItem]:
        items = await self.store.list(SYNC_QUEUE)
        return sorted(items, key=lambda i: i.enqueued_at)

    async def pending_count(self) -> int:
        """Éléments restant à livrer (pending, en cours ou en attente de réessai)."""
        items = await self.store.list(SYNC_QUEUE)
        return sum(
            1
            for i in items
            if i.status in ("pending", "syncing") or (i.status == "failed" and not i.needs_attention)
        )

    async def attention_count(self) -> int:
        """Éléments en échec terminal, à signaler à l'utilisateur."""
        items = await self.store.list_by_index(SYNC_QUEUE, "status", "failed")
        return sum(1 for i in items if i.needs_attention)

    # ------------------------------------------------------------------
    # Reprises
    # ------------------------------------------------------------------

    async def recover_interrupted(self) -> int:
        """Au démarrage : les éléments restés syncing (appli tuée en plein envoi) repassent pending."""
        stuck = await self.store.list_by_index(SYNC_QUEUE, "status", "syncing")
        now = utcnow()
        for item in stuck:
            await self.store.put(SYNC_QUEUE, item.model_copy(update={"status": "pending", "updated_at": now}))
        if stuck:
            logger.info("%d élément(s) interrompu(s) remis en file", len(stuck))
        return len(stuck)

    async def requeue_unsynced(self) -> int:
        """
        Au démarrage : remet en file les enregistrements non synchronisés qui
        n'ont aucun élément de file (écriture locale faite, mise en file interrompue).
        """
        known = {item.id for item in await self.store.list(SYNC_QUEUE)}
        orphans = []
        for kind, collection in KIND_COLLECTIONS.items():
            for record in await self.store.get_all_unsynced(collection):
                orphans.append((kind, record.id))
        for record in await self.store.get_all_unsynced(ATTENDANCE):
            orphans.append(("attendance", record.trainee_id))

        count = 0
        for kind, ref_id in dict.fromkeys(orphans):
            if sync_item_id(kind, ref_id) in known:
                continue
            await self.enqueue(kind, ref_id)
            count += 1
        if count:
            logger.info("%d enregistrement(s) non synchronisé(s) remis en file", count)
        return count

    async def retry_failed(self) -> int:
        """Action utilisateur « Réessayer » : les échecs terminaux repartent de zéro."""
        failed = await self.store.list_by_index(SYNC_QUEUE, "status", "failed")
        now = utcnow()
        count = 0
        for item in failed:
            if not item.needs_attention:
                continue
            await self.store.put(
                SYNC_QUEUE,
                item.model_copy(update={
                    "status": "pending",
                    "retries": 0,
                    "needs_attention": False,
                    "last_error": None,
                    "next_attempt_at": None,
                    "updated_at": now,
                }),
            )
            if item.kind == "photo":
                media = await self.store.get(MEDIA, item.ref_id)
                if media is not None and media.sync_status == "failed":
                    await self.store.put(MEDIA, media.model_copy(update={"sync_status": "pending"}))
            count += 1
        return count

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self) -> Optional[FlushReport]:
        """
        Livre tous les éléments dus, dans l'ordre de mise en file.

        Retourne None si un flush est déjà en cours : la demande est alors
        fusionnée en une seule relance exécutée à la fin du flush courant.
        """
        if self._lock.locked():
            self._rerun_requested = True
            logger.debug("Flush déjà en cours : relance programmée")
            return None

        async with self._lock:
            report = FlushReport(started_at=utcnow())
            await self._flush_once(report)
            while self._rerun_requested:
                self._rerun_requested = False
                await self._flush_once(report)
            report.finished_at = utcnow()

        if report.attempted:
            logger.info(
                "Synchronisation : %d tentés, %d livrés, %d échecs, %d à vérifier",
                report.attempted, report.delivered, report.failed, report.needs_attention,
            )
        return report

    def _is_retry_due(self, item: SyncQueueItem, now: datetime) -> bool:
        return (
            item.status == "failed"
            and not item.needs_attention
            and (item.next_attempt_at is None or item.next_attempt_at <= now)
        )

    async def _flush_once(self, report: FlushReport) -> None:
        now = utcnow()
        due: List[SyncQueueItem] = []
        for item in await self.store.list(SYNC_QUEUE):
            if self._is_retry_due(item, now):
                # failed → pending : le backoff est écoulé
                item = item.model_copy(update={"status": "pending", "updated_at": now})
                await self.store.put(SYNC_QUEUE, item)
            if item.status == "pending":
                due.append(item)

        for item in sorted(due, key=lambda i: i.enqueued_at):
            await self._deliver_item(item, report)

    async def _deliver_item(self, item: SyncQueueItem, report: FlushReport) -> None:
        report.attempted += 1
        sending = item.model_copy(update={"status": "syncing", "updated_at": utcnow()})
        await self.store.put(SYNC_QUEUE, sending)

        try:
            payload, synced_refs = await self._build_payload(sending)
            await asyncio.wait_for(
                self.api.deliver(sending.kind, payload),
                timeout=self.item_timeout_s,
            )
        except SyncDeliveryFailure as exc:
            await self._record_failure(sending, exc.reason, exc.retryable, report)
        except asyncio.TimeoutError:
            await self._record_failure(
                sending, f"Délai de {self.item_timeout_s:g} s dépassé.", True, report,
            )
        except Exception as exc:
            logger.exception("Erreur inattendue pendant l'envoi de %s", sending.id)
            await self._record_failure(sending, f"Erreur inattendue : {exc!r}", True, report)
        else:
            await self._record_success(sending, synced_refs, report)

    async def _build_payload(self, item: SyncQueueItem) -> Tuple[Dict[str, Any], List[Tuple[str, str]]]:
        """Corps JSON à envoyer + enregistrements à marquer synchronisés en cas de succès."""
        if item.kind == "attendance":
            trainee = await self.store.get(TRAINEES, item.ref_id)
            if trainee is None:
                raise SyncDeliveryFailure(f"Stagiaire {item.ref_id} introuvable localement.", retryable=False)
            records = await self.store.list_by_index(ATTENDANCE, "trainee_id", item.ref_id)
            payload = AttendanceSyncPayload(trainee=trainee, records=records)
            return payload.model_dump(mode="json"), [(ATTENDANCE, r.id) for r in records]

        collection = KIND_COLLECTIONS[item.kind]
        record = await self.store.get(collection, item.ref_id)
        if record is None:
            raise SyncDeliveryFailure(
                f"Enregistrement {item.ref_id} introuvable dans « {collection} ».", retryable=False,
            )
        return record.model_dump(mode="json"), [(collection, record.id)]

    async def _finish(self, item: SyncQueueItem, values: Dict[str, Any]) -> bool:
        """
        Applique l'état final uniquement si l'élément est toujours syncing.
        False : re-mis en file pendant l'envoi, il reste pending pour le prochain flush.
        """
        finished = await self.store.update_if(
            SYNC_QUEUE, item.id, {"status": "syncing"}, {**values, "updated_at": utcnow()},
        )
        if not finished:
            logger.debug("%s modifié pendant l'envoi : nouvel envoi au prochain flush", item.id)
        return finished

    async def _record_success(
        self, item: SyncQueueItem, synced_refs: List[Tuple[str, str]], report: FlushReport,
    ) -> None:
        report.delivered += 1
        report.delivered_ids.append(item.id)

        finished = await self._finish(
            item, {"status": "done", "next_attempt_at": None, "last_error": None},
        )
        if not finished:
            return
        for collection, record_id in synced_refs:
            await self.store.mark_synced(collection, record_id)

    async def _record_failure(
        self, item: SyncQueueItem, reason: str, retryable: bool, report: FlushReport,
    ) -> None:
        report.failed += 1
        report.failed_ids.append(item.id)

        retries = item.retries + 1
        terminal = not retryable or retries >= self.max_retries
        next_attempt = None if terminal else utcnow() + timedelta(seconds=self.backoff_delay(retries))

        finished = await self._finish(item, {
            "status": "failed",
            "retries": retries,
            "last_error": reason,
            "needs_attention": terminal,
            "next_attempt_at": next_attempt,
        })
        if not finished:
            return

        if terminal:
            report.needs_attention += 1
            logger.error("Échec définitif de %s après %d essai(s) : %s", item.id, retries, reason)
            if item.kind == "photo":
                await self.store.mark_synced(MEDIA, item.ref_id, failed=True)
        else:
            logger.warning(
                "Échec de %s (essai %d/%d), nouvel essai dans %.0f s : %s",
                item.id, retries, self.max_retries, self.backoff_delay(retries), reason,
            )

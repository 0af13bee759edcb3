"""
Stockage local persistant de l'appareil (SQLite asynchrone via aiosqlite).

Collections nommées, chacune indexée par un identifiant texte unique,
avec des index secondaires là où les workflows en ont besoin.
Chaque put() est une transaction à part entière : pas de lecture ni
d'écriture partielle, même quand plusieurs workflows s'entrelacent
sur la boucle asyncio.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from saksham.config import settings
from saksham.errors import StorageWriteFailure
from saksham.schemas.records import (
    ActivityLog,
    AttendanceRecord,
    DailyReport,
    EventRecord,
    MediaItem,
    SyncQueueItem,
    Trainee,
)
from saksham.store.models import (
    SCHEMA_VERSION,
    ActivityRow,
    AttendanceRow,
    DailyReportRow,
    EventRow,
    LocalBase,
    MediaRow,
    SettingRow,
    SyncQueueRow,
    TraineeRow,
)

logger = logging.getLogger(__name__)

EVENTS = "events"
ACTIVITIES = "activities"
TRAINEES = "trainees"
ATTENDANCE = "attendance"
DAILY_REPORTS = "daily_reports"
MEDIA = "media"
SYNC_QUEUE = "sync_queue"


class Collection(NamedTuple):
    model: type
    schema: type
    indexes: Tuple[str, ...]


COLLECTIONS: Dict[str, Collection] = {
    EVENTS: Collection(EventRow, EventRecord, ("status", "start_time")),
    ACTIVITIES: Collection(ActivityRow, ActivityLog, ("event_id", "timestamp")),
    TRAINEES: Collection(TraineeRow, Trainee, ("status",)),
    ATTENDANCE: Collection(AttendanceRow, AttendanceRecord, ("event_id", "trainee_id")),
    DAILY_REPORTS: Collection(DailyReportRow, DailyReport, ("event_id",)),
    MEDIA: Collection(MediaRow, MediaItem, ("event_id", "timestamp", "sync_status")),
    SYNC_QUEUE: Collection(SyncQueueRow, SyncQueueItem, ("kind", "status")),
}


class LocalStore:
    """
    Base locale de l'appareil.

    Usage :
        store = LocalStore("sqlite+aiosqlite:///./field.db")
        await store.open()
        await store.put(EVENTS, event)
        ...
        await store.close()
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.LOCAL_DATABASE_URL
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    # ------------------------------------------------------------------
    # Cycle de vie
    # ------------------------------------------------------------------

    async def open(self) -> "LocalStore":
        """Ouvre la base et applique la migration additive (tables manquantes seulement)."""
        if self._engine is not None:
            return self

        if ":memory:" in self.url or self.url.endswith("://"):
            # Base en mémoire : une seule connexion partagée, sinon chaque session voit une base vide
            self._engine = create_async_engine(
                self.url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self._engine = create_async_engine(self.url, poolclass=NullPool)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

        async with self._engine.begin() as conn:
            await conn.run_sync(LocalBase.metadata.create_all)

        previous = await self.get_setting("schema_version", 0)
        if previous < SCHEMA_VERSION:
            await self.set_setting("schema_version", SCHEMA_VERSION)
            logger.info("Stockage local migré : schéma v%s → v%s", previous, SCHEMA_VERSION)
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None

    async def __aenter__(self) -> "LocalStore":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _session(self) -> AsyncSession:
        if self._sessions is None:
            raise RuntimeError("Stockage local non ouvert : appeler open() d'abord.")
        return self._sessions()

    @staticmethod
    def _collection(name: str) -> Collection:
        try:
            return COLLECTIONS[name]
        except KeyError:
            raise ValueError(f"Collection inconnue : {name}") from None

    # ------------------------------------------------------------------
    # Écritures
    # ------------------------------------------------------------------

    async def put(self, collection: str, record: BaseModel) -> BaseModel:
        """
        Insère ou remplace un enregistrement par sa clé primaire (idempotent).
        Lève StorageWriteFailure si l'écriture échoue : rien n'est écrit.
        """
        await self.put_many(collection, [record])
        return record

    async def put_many(self, collection: str, records: Sequence[BaseModel]) -> None:
        """Écrit plusieurs enregistrements dans une seule transaction (tout ou rien)."""
        await self.put_all([(collection, record) for record in records])

    async def put_all(self, writes: Sequence[Tuple[str, BaseModel]]) -> None:
        """
        Écrit des enregistrements de plusieurs collections dans une seule transaction.
        Si une écriture échoue, aucune n'est conservée.
        """
        rows = []
        for collection, record in writes:
            spec = self._collection(collection)
            if not isinstance(record, spec.schema):
                raise TypeError(
                    f"{type(record).__name__} ne peut pas être stocké dans « {collection} »."
                )
            rows.append(spec.model(**record.model_dump()))

        collections = ", ".join(sorted({collection for collection, _ in writes}))
        try:
            async with self._session() as session:
                async with session.begin():
                    for row in rows:
                        await session.merge(row)
        except SQLAlchemyError as exc:
            logger.error("Écriture locale échouée (%s) : %s", collections, exc)
            raise StorageWriteFailure(
                f"Enregistrement local impossible dans « {collections} ». "
                "Libérez de l'espace sur l'appareil et réessayez."
            ) from exc

    async def update_if(
        self,
        collection: str,
        record_id: str,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> bool:
        """
        Mise à jour conditionnelle atomique (UPDATE ... WHERE id = :id AND col = :attendu).
        Retourne False si l'enregistrement a changé entre-temps : rien n'est écrit.
        """
        model = self._collection(collection).model
        stmt = update(model).where(model.id == record_id)
        for column, value in expected.items():
            stmt = stmt.where(getattr(model, column) == value)
        return await self._execute_update(collection, record_id, stmt.values(**values))

    async def _execute_update(self, collection: str, record_id: str, stmt) -> bool:
        try:
            async with self._session() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Mise à jour locale échouée (%s/%s) : %s", collection, record_id, exc)
            raise StorageWriteFailure(
                f"Mise à jour locale impossible dans « {collection} »."
            ) from exc
        return result.rowcount > 0

    async def mark_synced(self, collection: str, record_id: str, failed: bool = False) -> bool:
        """
        Met à jour uniquement l'indicateur de synchronisation d'un enregistrement.

        Les médias passent à synced/failed ; les autres collections à synced=True
        (un échec n'y change rien). Retourne False si rien n'a été modifié.
        """
        model = self._collection(collection).model
        if hasattr(model, "sync_status"):
            values = {"sync_status": "failed" if failed else "synced"}
        elif hasattr(model, "synced") and not failed:
            values = {"synced": True}
        else:
            return False

        return await self.update_if(collection, record_id, {}, values)

    # ------------------------------------------------------------------
    # Lectures
    # ------------------------------------------------------------------

    async def get(self, collection: str, record_id: str) -> Optional[BaseModel]:
        spec = self._collection(collection)
        async with self._session() as session:
            row = await session.get(spec.model, record_id)
            return spec.schema.model_validate(row) if row is not None else None

    async def list(self, collection: str) -> List[BaseModel]:
        spec = self._collection(collection)
        return await self._select(spec, select(spec.model))

    async def list_by_index(self, collection: str, index: str, value: Any) -> List[BaseModel]:
        """Enregistrements dont la colonne indexée `index` vaut `value`."""
        spec = self._collection(collection)
        if index not in spec.indexes:
            raise ValueError(
                f"Index « {index} » inexistant sur « {collection} ». Index disponibles : {list(spec.indexes)}"
            )
        column = getattr(spec.model, index)
        return await self._select(spec, select(spec.model).where(column == value))

    async def get_all_unsynced(self, collection: str) -> List[BaseModel]:
        """Enregistrements pas encore livrés à l'API distante."""
        spec = self._collection(collection)
        model = spec.model
        if hasattr(model, "synced"):
            condition = model.synced.is_(False)
        elif hasattr(model, "sync_status"):
            condition = model.sync_status != "synced"
        else:
            raise ValueError(f"La collection « {collection} » n'a pas d'indicateur de synchronisation.")
        return await self._select(spec, select(model).where(condition))

    async def _select(self, spec: Collection, stmt) -> List[BaseModel]:
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [spec.schema.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Préférences (clé / valeur JSON)
    # ------------------------------------------------------------------

    async def get_setting(self, key: str, default: Any = None) -> Any:
        async with self._session() as session:
            row = await session.get(SettingRow, key)
            return row.value if row is not None else default

    async def set_setting(self, key: str, value: Any) -> None:
        try:
            async with self._session() as session:
                async with session.begin():
                    await session.merge(SettingRow(key=key, value=value))
        except SQLAlchemyError as exc:
            logger.error("Écriture de la préférence %s échouée : %s", key, exc)
            raise StorageWriteFailure("Préférence non enregistrée.") from exc

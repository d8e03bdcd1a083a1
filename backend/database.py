"""
Local persistence for detections, known faces, notifications and settings.

SurveillanceStore is constructed explicitly and must be initialized before
use; every operation raises NotInitialized until initialize() has completed.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from errors import InvalidInput, NotInitialized, PersistenceFailure
from models import Base, Detection, KnownFace, Notification, Setting, StoreMeta
from schemas import (
    Collection, DetectionRecord, DetectionSettings, KnownFace as KnownFaceRecord, NotificationRecord,
)

logger = logging.getLogger("surveillance.database")

DB_VERSION = 2

# Collection -> (table, record schema)
COLLECTIONS: Dict[Collection, Tuple[Type, Type[BaseModel]]] = {
    Collection.DETECTIONS: (Detection, DetectionRecord),
    Collection.KNOWN_FACES: (KnownFace, KnownFaceRecord),
    Collection.NOTIFICATIONS: (Notification, NotificationRecord),
    Collection.SETTINGS: (Setting, DetectionSettings),
}

Record = Union[BaseModel, Mapping[str, Any]]


class SurveillanceStore:
    """
    Four independently addressed collections backed by SQLAlchemy.

    Operations are coroutines so callers can await each write before
    touching in-memory state.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = None
        self.SessionLocal = None

    @classmethod
    async def open(cls, database_url: str) -> "SurveillanceStore":
        """Create and initialize a store, returning a ready handle."""
        store = cls(database_url)
        await store.initialize()
        return store

    @property
    def initialized(self) -> bool:
        return self.SessionLocal is not None

    async def initialize(self):
        """Create missing tables and bump the schema version. Safe to repeat."""
        if self.initialized:
            return

        engine_kwargs: Dict[str, Any] = {}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}  # Needed for SQLite
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        try:
            engine = create_engine(self.database_url, **engine_kwargs)
            Base.metadata.create_all(bind=engine)
            self._migrate(engine)
        except SQLAlchemyError as e:
            logger.error("Failed to open database %s: %s", self.database_url, e)
            raise PersistenceFailure(f"Error opening database: {e}", operation="initialize")

        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        logger.info("✓ Database opened (schema v%d)", DB_VERSION)

    def _migrate(self, engine):
        # create_all only adds tables; existing collections are never dropped
        Session = sessionmaker(bind=engine)
        db = Session()
        try:
            meta = db.get(StoreMeta, "schema_version")
            if meta is None:
                db.add(StoreMeta(key="schema_version", value=DB_VERSION))
            elif meta.value < DB_VERSION:
                logger.info("Upgrading schema v%d -> v%d", meta.value, DB_VERSION)
                meta.value = DB_VERSION
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None

    def _session(self):
        if not self.initialized:
            raise NotInitialized()
        return self.SessionLocal()

    @staticmethod
    def _resolve(collection) -> Tuple[Type, Type[BaseModel]]:
        try:
            return COLLECTIONS[Collection(collection)]
        except ValueError:
            raise InvalidInput(f"Unknown collection: {collection}")

    @staticmethod
    def _validate(schema: Type[BaseModel], record: Record) -> BaseModel:
        if isinstance(record, schema):
            return record
        try:
            if isinstance(record, BaseModel):
                record = record.model_dump()
            return schema.model_validate(record)
        except ValidationError as e:
            raise InvalidInput(f"Malformed {schema.__name__}: {e}", details={"errors": e.errors()})

    # Session work runs in a worker thread so SQLite I/O never blocks the event loop

    def _put(self, collection, record: Record) -> str:
        table, schema = self._resolve(collection)
        record = self._validate(schema, record)
        db = self._session()
        try:
            db.merge(table.from_record(record))
            db.commit()
            return record.id
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceFailure(f"Error storing item in {collection}: {e}", operation="put")
        finally:
            db.close()

    async def put(self, collection, record: Record) -> str:
        """Insert or overwrite a record by id."""
        return await asyncio.to_thread(self._put, collection, record)

    async def put_many(self, collection, records: Iterable[Record]) -> int:
        """
        Store records one by one; a failing record does not abort the rest.

        Returns:
            Number of records stored
        """
        self._resolve(collection)
        if not self.initialized:
            raise NotInitialized()

        completed = 0
        for record in records:
            try:
                await self.put(collection, record)
                completed += 1
            except (InvalidInput, PersistenceFailure) as e:
                logger.error("Error storing item: %s", e)
        return completed

    def _get_all(self, collection) -> List[BaseModel]:
        table, _ = self._resolve(collection)
        db = self._session()
        try:
            return [row.to_record() for row in db.query(table).all()]
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error reading {collection}: {e}", operation="get_all")
        finally:
            db.close()

    async def get_all(self, collection) -> List[BaseModel]:
        return await asyncio.to_thread(self._get_all, collection)

    def _get_by_id(self, collection, record_id: str) -> Optional[BaseModel]:
        table, _ = self._resolve(collection)
        db = self._session()
        try:
            row = db.get(table, record_id)
            return row.to_record() if row else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error reading {collection}/{record_id}: {e}", operation="get_by_id")
        finally:
            db.close()

    async def get_by_id(self, collection, record_id: str) -> Optional[BaseModel]:
        return await asyncio.to_thread(self._get_by_id, collection, record_id)

    def _delete(self, collection, record_id: str) -> bool:
        table, _ = self._resolve(collection)
        db = self._session()
        try:
            db.query(table).filter(table.id == record_id).delete()
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceFailure(f"Error deleting {collection}/{record_id}: {e}", operation="delete")
        finally:
            db.close()

    async def delete(self, collection, record_id: str) -> bool:
        """Delete by id. Succeeds whether or not the id exists."""
        return await asyncio.to_thread(self._delete, collection, record_id)

    def _clear(self, collection) -> bool:
        table, _ = self._resolve(collection)
        db = self._session()
        try:
            db.query(table).delete()
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceFailure(f"Error clearing {collection}: {e}", operation="clear")
        finally:
            db.close()

    async def clear(self, collection) -> bool:
        return await asyncio.to_thread(self._clear, collection)

    def _count(self, collection) -> int:
        table, _ = self._resolve(collection)
        db = self._session()
        try:
            return db.query(table).count()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Error counting {collection}: {e}", operation="count")
        finally:
            db.close()

    async def count(self, collection) -> int:
        return await asyncio.to_thread(self._count, collection)

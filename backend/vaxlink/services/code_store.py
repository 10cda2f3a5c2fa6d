# code store — persistence for connection codes with an atomic redeem
# two interchangeable backends: mongodb (shared, transactional per document) and in-memory (local/testing)

import asyncio
import logging
from datetime import datetime
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from vaxlink.config import settings
from vaxlink.errors import (
    CodeAlreadyUsed,
    CodeExpired,
    CodeNotFound,
    DuplicateCode,
    StorageUnavailable,
)
from vaxlink.models.connection import ConnectionCode
from vaxlink.services.db import Database

logger = logging.getLogger(__name__)


class CodeStore:
    """interface every code store backend implements"""

    async def insert(self, record: ConnectionCode) -> ConnectionCode:
        """persist a new code, raises DuplicateCode if the code already exists"""
        raise NotImplementedError

    async def find_by_code(self, code: str) -> ConnectionCode:
        """point lookup, raises CodeNotFound on a miss"""
        raise NotImplementedError

    async def redeem(self, code: str, patient_id: str, now: datetime) -> ConnectionCode:
        """
        atomically claim a code for a patient.
        succeeds only if the code is unused and now <= expires_at, otherwise raises
        CodeAlreadyUsed, CodeExpired or CodeNotFound without mutating anything.
        """
        raise NotImplementedError

    async def list_for_doctor(self, doctor_id: str) -> list[ConnectionCode]:
        """codes issued by a doctor, newest first"""
        raise NotImplementedError


def check_redeemable(record: ConnectionCode, now: datetime) -> None:
    # used wins over expiry so that losing racers always see AlreadyUsed
    if record.used:
        raise CodeAlreadyUsed()
    if record.is_expired(now):
        raise CodeExpired()


class MongoCodeStore(CodeStore):
    """code store backed by the connection_codes collection"""

    def __init__(self, database: Database):
        self.database = database

    @property
    def collection(self):
        return self.database.connection_codes

    async def ensure_indexes(self):
        await self.collection.create_index("code", unique=True)
        await self.collection.create_index("doctor_id")
        logger.info("Created indexes on connection_codes collection")

    async def insert(self, record: ConnectionCode) -> ConnectionCode:
        try:
            await self.collection.insert_one(record.to_document())
        except DuplicateKeyError as e:
            raise DuplicateCode() from e
        except PyMongoError as e:
            logger.error(f"Failed to store connection code {record.code}: {e}")
            raise StorageUnavailable() from e
        return record

    async def find_by_code(self, code: str) -> ConnectionCode:
        try:
            doc = await self.collection.find_one({"code": code})
        except PyMongoError as e:
            logger.error(f"Failed to look up connection code {code}: {e}")
            raise StorageUnavailable() from e

        if not doc:
            raise CodeNotFound()
        return ConnectionCode.from_document(doc)

    async def redeem(self, code: str, patient_id: str, now: datetime) -> ConnectionCode:
        # the filter is the whole redeemability check, so mongodb's single-document
        # atomicity lets exactly one concurrent caller match it
        try:
            doc = await self.collection.find_one_and_update(
                {"code": code, "used": False, "expires_at": {"$gte": now}},
                {"$set": {"used": True, "used_at": now, "used_by": patient_id}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Failed to redeem connection code {code}: {e}")
            raise StorageUnavailable() from e

        if doc is not None:
            return ConnectionCode.from_document(doc)

        current = await self.find_by_code(code)
        check_redeemable(current, now)
        # the filter missed but the re-read looks redeemable: the stored expiry
        # does not compare cleanly with now (naive vs aware datetimes)
        logger.error(f"Connection code {code} could not be redeemed although it looks valid")
        raise StorageUnavailable("Connection code could not be redeemed. Please contact support.")

    async def list_for_doctor(self, doctor_id: str) -> list[ConnectionCode]:
        try:
            cursor = self.collection.find({"doctor_id": doctor_id}).sort("created_at", -1)
            return [ConnectionCode.from_document(doc) async for doc in cursor]
        except PyMongoError as e:
            logger.error(f"Failed to list connection codes for doctor {doctor_id}: {e}")
            raise StorageUnavailable() from e


class InMemoryCodeStore(CodeStore):
    """process-local code store, an asyncio lock serialises check-then-mutate"""

    def __init__(self):
        self._records: dict[str, ConnectionCode] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: ConnectionCode) -> ConnectionCode:
        async with self._lock:
            if record.code in self._records:
                raise DuplicateCode()
            self._records[record.code] = record.model_copy()
        return record

    async def find_by_code(self, code: str) -> ConnectionCode:
        record = self._records.get(code)
        if record is None:
            raise CodeNotFound()
        return record.model_copy()

    async def redeem(self, code: str, patient_id: str, now: datetime) -> ConnectionCode:
        async with self._lock:
            record = self._records.get(code)
            if record is None:
                raise CodeNotFound()
            check_redeemable(record, now)

            redeemed = record.model_copy(update={"used": True, "used_at": now, "used_by": patient_id})
            self._records[code] = redeemed
            return redeemed.model_copy()

    async def list_for_doctor(self, doctor_id: str) -> list[ConnectionCode]:
        records = [r.model_copy() for r in self._records.values() if r.doctor_id == doctor_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)


def build_code_store(database: Optional[Database] = None, backend: Optional[str] = None) -> CodeStore:
    """pick the code store backend once, at construction time"""
    backend = backend or settings.CODE_STORE_BACKEND

    if backend == "memory":
        return InMemoryCodeStore()
    if backend == "mongo":
        if database is None:
            raise ValueError("MongoCodeStore requires a database")
        return MongoCodeStore(database)
    raise ValueError(f"Unknown code store backend: {backend}")

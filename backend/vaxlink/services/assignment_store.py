# assignment store — the patient's doctor_id reference
# mongodb backend writes users.doctor_id, in-memory backend is for local runs and tests

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from vaxlink.errors import PatientNotFound, StorageUnavailable
from vaxlink.services.db import Database

logger = logging.getLogger(__name__)


class AssignmentStore:

    async def assign_doctor(self, patient_id: str, doctor_id: str) -> None:
        """set the patient's doctor_id, raises PatientNotFound for an unknown patient"""
        raise NotImplementedError

    async def get_doctor_id(self, patient_id: str) -> Optional[str]:
        raise NotImplementedError


def _patient_filter(patient_id: str) -> dict:
    try:
        oid = ObjectId(patient_id)
    except (InvalidId, TypeError) as e:
        raise PatientNotFound() from e
    return {"_id": oid, "role": "patient"}


class MongoAssignmentStore(AssignmentStore):

    def __init__(self, database: Database):
        self.database = database

    async def assign_doctor(self, patient_id: str, doctor_id: str) -> None:
        query = _patient_filter(patient_id)
        try:
            result = await self.database.users.update_one(
                query,
                {"$set": {
                    "doctor_id": doctor_id,
                    "doctor_assigned_at": datetime.now(timezone.utc),
                }},
            )
        except PyMongoError as e:
            logger.error(f"Failed to assign doctor {doctor_id} to patient {patient_id}: {e}")
            raise StorageUnavailable() from e

        if result.matched_count == 0:
            raise PatientNotFound()

    async def get_doctor_id(self, patient_id: str) -> Optional[str]:
        query = _patient_filter(patient_id)
        try:
            doc = await self.database.users.find_one(query, {"doctor_id": 1})
        except PyMongoError as e:
            raise StorageUnavailable() from e

        if not doc:
            raise PatientNotFound()
        return doc.get("doctor_id")


class InMemoryAssignmentStore(AssignmentStore):

    def __init__(self, patient_ids: Iterable[str] = ()):
        self._assignments: dict[str, Optional[str]] = {pid: None for pid in patient_ids}

    def add_patient(self, patient_id: str) -> None:
        self._assignments.setdefault(patient_id, None)

    async def assign_doctor(self, patient_id: str, doctor_id: str) -> None:
        if patient_id not in self._assignments:
            raise PatientNotFound()
        self._assignments[patient_id] = doctor_id

    async def get_doctor_id(self, patient_id: str) -> Optional[str]:
        if patient_id not in self._assignments:
            raise PatientNotFound()
        return self._assignments[patient_id]

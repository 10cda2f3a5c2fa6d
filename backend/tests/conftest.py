# shared fixtures for backend api tests
# provides mock db, test users, connection code docs, auth tokens, and httpx test client

import copy
import struct
import zlib
import pytest
import pytest_asyncio
from unittest.mock import MagicMock
from datetime import datetime, timezone, timedelta
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from httpx import AsyncClient, ASGITransport

from vaxlink.main import app
from vaxlink.services.db import get_db
from vaxlink.services.auth_service import create_access_token
from vaxlink.services.code_store import MongoCodeStore
from vaxlink.services.assignment_store import MongoAssignmentStore
from vaxlink.dependencies import get_current_user, get_code_store
from vaxlink.models.user import SessionContext


# test ids
DOCTOR_OID = ObjectId()
DOCTOR_2_OID = ObjectId()
PATIENT_OID = ObjectId()
PATIENT_2_OID = ObjectId()
CONNECTED_PATIENT_OID = ObjectId()
DOCTOR_ID = str(DOCTOR_OID)
DOCTOR_2_ID = str(DOCTOR_2_OID)
PATIENT_ID = str(PATIENT_OID)
PATIENT_2_ID = str(PATIENT_2_OID)
CONNECTED_PATIENT_ID = str(CONNECTED_PATIENT_OID)


# test user documents (as they'd appear from mongodb)

DOCTOR_DOC = {
    "_id": DOCTOR_OID,
    "email": "dr.mehta@vaxlink.dev",
    "name": "Dr. Priya Mehta",
    "role": "doctor",
    "phone": "+15550100",
    "created_at": "2024-06-15T00:00:00Z",
    "license": "MD-2021-44817",
    "specialization": "Pediatrics",
    "clinic": "Little Steps Pediatric Clinic",
}

DOCTOR_2_DOC = {
    "_id": DOCTOR_2_OID,
    "email": "dr.haas@vaxlink.dev",
    "name": "Dr. Felix Haas",
    "role": "doctor",
    "created_at": "2024-09-01T00:00:00Z",
    "license": "MD-2019-10293",
    "specialization": "Family Medicine",
    "clinic": "Riverside Family Practice",
}

PATIENT_DOC = {
    "_id": PATIENT_OID,
    "email": "maya.lopez@email.com",
    "name": "Maya Lopez",
    "role": "patient",
    "created_at": "2025-06-01T00:00:00Z",
    "date_of_birth": "2022-03-14",
    "parent_name": "Ana Lopez",
    "parent_phone": "+15550111",
    "doctor_id": None,
}

PATIENT_2_DOC = {
    "_id": PATIENT_2_OID,
    "email": "noah.park@email.com",
    "name": "Noah Park",
    "role": "patient",
    "created_at": "2025-05-15T00:00:00Z",
    "date_of_birth": "2021-11-02",
    "parent_name": "Jin Park",
    "parent_phone": "+15550112",
    "doctor_id": None,
}

CONNECTED_PATIENT_DOC = {
    "_id": CONNECTED_PATIENT_OID,
    "email": "liam.okafor@email.com",
    "name": "Liam Okafor",
    "role": "patient",
    "created_at": "2025-04-01T00:00:00Z",
    "date_of_birth": "2023-06-21",
    "parent_name": "Ada Okafor",
    "parent_phone": "+15550113",
    "doctor_id": DOCTOR_ID,
}


def make_code_doc(code, doctor_id=DOCTOR_ID, expires_in=timedelta(hours=24), used=False, used_by=None):
    """connection code document as stored in mongodb, expiry relative to now"""
    now = datetime.now(timezone.utc)
    return {
        "code": code,
        "doctor_id": doctor_id,
        "created_at": now,
        "expires_at": now + expires_in,
        "used": used,
        "used_at": now if used else None,
        "used_by": used_by,
    }


def make_png_header(width, height):
    """a png that declares a width x height grayscale canvas but carries no pixel data"""
    def chunk(kind, data):
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))

    ihdr = struct.pack(">IIBBBBB", width, height, 1, 0, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", ihdr)
        + chunk(b"IDAT", zlib.compress(b""))
        + chunk(b"IEND", b"")
    )


# async cursor mock

class AsyncCursorMock:
    """mock for motor's async cursor — supports async for and chained methods"""

    def __init__(self, data=None):
        self._data = data or []
        self._index = 0

    def sort(self, key, direction=1):
        self._data = sorted(self._data, key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def limit(self, n):
        self._data = self._data[:n]
        return self

    def __aiter__(self):
        self._index = 0
        return self

    async def __anext__(self):
        if self._index >= len(self._data):
            raise StopAsyncIteration
        item = self._data[self._index]
        self._index += 1
        return item

    async def to_list(self, length=None):
        if length is not None:
            return self._data[:length]
        return self._data


class MockCollection:
    """mock for a motor collection with async methods"""

    def __init__(self, data=None, unique=()):
        self._data = data or []
        self._unique = unique
        self.inserted = []
        # operation names that should raise PyMongoError, to simulate an outage
        self.failing = set()

    def _maybe_fail(self, op):
        if op in self.failing:
            raise PyMongoError(f"simulated failure in {op}")

    def find(self, query=None, projection=None):
        self._maybe_fail("find")
        results = self._data
        if query:
            results = [d for d in results if self._matches(d, query)]
        return AsyncCursorMock(list(results))

    async def find_one(self, query=None, projection=None):
        self._maybe_fail("find_one")
        if not query:
            return self._data[0] if self._data else None
        for doc in self._data:
            if self._matches(doc, query):
                return doc
        return None

    async def insert_one(self, doc):
        self._maybe_fail("insert_one")
        for field in self._unique:
            if any(d.get(field) == doc.get(field) for d in self._data):
                raise DuplicateKeyError(f"E11000 duplicate key error dup key: {{ {field}: {doc.get(field)!r} }}")
        oid = doc.get("_id", ObjectId())
        doc["_id"] = oid
        self._data.append(doc)
        self.inserted.append(doc)
        result = MagicMock()
        result.inserted_id = oid
        return result

    async def update_one(self, query, update, upsert=False):
        self._maybe_fail("update_one")
        result = MagicMock()
        result.matched_count = 0
        result.modified_count = 0
        for doc in self._data:
            if self._matches(doc, query):
                if "$set" in update:
                    doc.update(update["$set"])
                result.matched_count = 1
                result.modified_count = 1
                break
        return result

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        # no await between match and write, so this is atomic on the event loop like mongodb
        self._maybe_fail("find_one_and_update")
        for doc in self._data:
            if self._matches(doc, query):
                before = copy.deepcopy(doc)
                doc.update(update.get("$set", {}))
                return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        return None

    async def create_index(self, *args, **kwargs):
        return "mock_index"

    def _matches(self, doc, query):
        """basic mongodb query matching for tests"""
        for key, value in query.items():
            doc_val = doc.get(key)
            if isinstance(value, dict):
                if "$in" in value:
                    if doc_val not in value["$in"]:
                        return False
                elif "$gte" in value:
                    if doc_val is None or doc_val < value["$gte"]:
                        return False
            elif doc_val != value:
                return False
        return True


class MockDatabase:
    """mock database that mimics the Database class"""

    def __init__(self):
        self.users = MockCollection([
            copy.deepcopy(DOCTOR_DOC),
            copy.deepcopy(DOCTOR_2_DOC),
            copy.deepcopy(PATIENT_DOC),
            copy.deepcopy(PATIENT_2_DOC),
            copy.deepcopy(CONNECTED_PATIENT_DOC),
        ], unique=("email",))
        self.connection_codes = MockCollection([], unique=("code",))

    async def connect(self):
        pass

    async def close(self):
        pass

    def user(self, user_id):
        """direct lookup helper for assertions"""
        for doc in self.users._data:
            if str(doc["_id"]) == user_id:
                return doc
        return None

    def code(self, code):
        for doc in self.connection_codes._data:
            if doc["code"] == code:
                return doc
        return None


@pytest.fixture
def mock_db():
    """create a fresh mock database for each test"""
    return MockDatabase()


@pytest.fixture
def code_store(mock_db):
    return MongoCodeStore(mock_db)


@pytest.fixture
def assignment_store(mock_db):
    return MongoAssignmentStore(mock_db)


def _user_dict(doc):
    """return user dict as get_current_user would return"""
    user = copy.deepcopy(doc)
    user["id"] = str(user.pop("_id"))
    return user


def doctor_session():
    return SessionContext(user_id=DOCTOR_ID, role="doctor", name=DOCTOR_DOC["name"])


def patient_session(patient_id=PATIENT_ID):
    return SessionContext(user_id=patient_id, role="patient")


@pytest.fixture
def doctor_token():
    """jwt access token for the test doctor"""
    return create_access_token({"sub": DOCTOR_ID, "role": "doctor"})


@pytest.fixture
def patient_token():
    """jwt access token for the test patient"""
    return create_access_token({"sub": PATIENT_ID, "role": "patient"})


def _install_overrides(mock_db, code_store, user_doc=None):
    async def override_get_db():
        return mock_db

    async def override_get_code_store():
        return code_store

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_code_store] = override_get_code_store

    if user_doc is not None:
        async def override_get_current_user():
            return _user_dict(user_doc)

        app.dependency_overrides[get_current_user] = override_get_current_user


@pytest_asyncio.fixture
async def client(mock_db, code_store):
    """httpx async test client with mocked storage, real token verification"""
    _install_overrides(mock_db, code_store)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def doctor_client(mock_db, code_store):
    """client authenticated as a doctor"""
    _install_overrides(mock_db, code_store, DOCTOR_DOC)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def patient_client(mock_db, code_store):
    """client authenticated as a patient with no doctor yet"""
    _install_overrides(mock_db, code_store, PATIENT_DOC)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def connected_patient_client(mock_db, code_store):
    """client authenticated as a patient already connected to the test doctor"""
    _install_overrides(mock_db, code_store, CONNECTED_PATIENT_DOC)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

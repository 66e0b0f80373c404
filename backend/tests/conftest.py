# backend/tests/conftest.py

"""
Shared fixtures: an in-memory stand-in for the Motor database.
"""

import copy
import os
import sys
from pathlib import Path

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# server.py reads these at import time
os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "fuel_gauge_test")
os.environ.setdefault("JWT_SECRET", "test-secret")

from calibration_table import CalibrationTable  # noqa: E402
from deletion_authority import AdminPolicy  # noqa: E402

ADMIN_ID = "admin-user"
ALICE_ID = "alice"
BOB_ID = "bob"


def _matches(doc, query):
    for key, condition in query.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in condition):
                return False
            continue

        value = doc.get(key)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$in" and value not in operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
                if op == "$gte" and (value is None or value < operand):
                    return False
                if op == "$lte" and (value is None or value > operand):
                    return False
        elif value != condition:
            return False
    return True


def _project(doc, projection):
    if not projection:
        return copy.deepcopy(doc)
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        result = {k: copy.deepcopy(doc[k]) for k in included if k in doc}
        if projection.get("_id", 1) and "_id" in doc:
            result["_id"] = doc["_id"]
        return result
    return {k: copy.deepcopy(v) for k, v in doc.items() if projection.get(k, 1)}


class MockResult:
    def __init__(self, deleted_count=0, inserted_id=None):
        self.deleted_count = deleted_count
        self.inserted_id = inserted_id


class MockCursor:
    """Mock Motor cursor supporting sort/skip/limit chaining"""
    def __init__(self, docs, fail=False):
        self.docs = docs
        self.fail = fail
        self._skip = 0
        self._limit = 0

    def sort(self, field, direction=1):
        self.docs = sorted(self.docs, key=lambda d: d.get(field), reverse=direction < 0)
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        if self.fail:
            raise PyMongoError("simulated cursor failure")
        docs = self.docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        if length is not None:
            docs = docs[:length]
        return docs


class MockCollection:
    """Mock MongoDB collection"""
    def __init__(self):
        self.data = []
        self.calls = []
        self.fail_on = set()
        # method name -> exception to raise instead of the generic PyMongoError
        self.fail_with = {}

    def _check(self, method):
        self.calls.append(method)
        if method in self.fail_with:
            raise self.fail_with[method]
        if method in self.fail_on:
            raise PyMongoError(f"simulated {method} failure")

    async def insert_one(self, doc):
        self._check("insert_one")
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        self.data.append(stored)
        return MockResult(inserted_id=stored["_id"])

    async def insert_many(self, docs):
        self._check("insert_many")
        for doc in docs:
            stored = copy.deepcopy(doc)
            stored.setdefault("_id", ObjectId())
            self.data.append(stored)
        return MockResult()

    async def find_one(self, query, projection=None):
        self._check("find_one")
        for doc in self.data:
            if _matches(doc, query):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        self.calls.append("find")
        docs = [_project(doc, projection) for doc in self.data if _matches(doc, query or {})]
        return MockCursor(docs, fail="find" in self.fail_on)

    async def count_documents(self, query):
        self._check("count_documents")
        return sum(1 for doc in self.data if _matches(doc, query))

    async def delete_one(self, query):
        self._check("delete_one")
        for i, doc in enumerate(self.data):
            if _matches(doc, query):
                del self.data[i]
                return MockResult(deleted_count=1)
        return MockResult(deleted_count=0)

    async def delete_many(self, query):
        self._check("delete_many")
        kept = [doc for doc in self.data if not _matches(doc, query)]
        deleted = len(self.data) - len(kept)
        self.data = kept
        return MockResult(deleted_count=deleted)

    async def create_index(self, keys, **kwargs):
        return kwargs.get("name", "index")


class MockDB:
    """Mock MongoDB database"""
    def __init__(self):
        self.conversions = MockCollection()
        self.users = MockCollection()
        self.calibration_table = MockCollection()


@pytest.fixture
def mock_db():
    """Mock MongoDB database with three known users"""
    db = MockDB()
    db.users.data.extend([
        {"id": ADMIN_ID, "name": "Admin", "email": "admin@example.com"},
        {"id": ALICE_ID, "name": "Alice", "email": "alice@example.com"},
        {"id": BOB_ID, "name": "Bob", "email": "bob@example.com"},
    ])
    return db


@pytest.fixture
def calibration_table():
    return CalibrationTable.from_matrix()


@pytest.fixture
def admin_policy():
    return AdminPolicy(admin_user_id=ADMIN_ID)

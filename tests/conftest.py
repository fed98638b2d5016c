"""
In-memory stand-in for the Motor database handle.

Implements only the collection calls the controllers make: find_one, find
(sort/skip/limit/to_list), insert_one, update_one, update_many, find_one_and_update,
delete_one, delete_many and count_documents, with $set/$inc/$unset updates and
$ne/$in/$gte/$lte filters.
"""
import asyncio
import copy
import itertools
from types import SimpleNamespace

import pytest

from controllers.permission_service import PermissionService
from controllers.points_controller import PointsLedger
from controllers.budget_controller import BudgetService

OWNER_UID = "owner-001"

_ids = itertools.count(1)


def _matches(doc, query):
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$ne" and value == arg:
                    return False
                if op == "$in" and value not in arg:
                    return False
                if op == "$gte" and (value is None or value < arg):
                    return False
                if op == "$lte" and (value is None or value > arg):
                    return False
        elif value != cond:
            return False
    return True


def _project(doc, projection):
    if doc is None:
        return None
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    includes = [k for k, v in projection.items() if v and k != "_id"]
    if includes:
        out = {k: doc[k] for k in includes if k in doc}
        if projection.get("_id", 1):
            out["_id"] = doc["_id"]
        return out
    for key, keep in projection.items():
        if not keep:
            doc.pop(key, None)
    return doc


def _apply(doc, update):
    for key, value in update.get("$set", {}).items():
        doc[key] = copy.deepcopy(value)
    for key, value in update.get("$inc", {}).items():
        doc[key] = doc.get(key, 0) + value
    for key in update.get("$unset", {}):
        doc.pop(key, None)


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(
            self._docs,
            key=lambda d: (d.get(key) is None, d.get(key)),
            reverse=direction == -1,
        )
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return self._docs[:length] if length else list(self._docs)


class FakeCollection:
    def __init__(self, fail_reads=False):
        self.docs = []
        self.fail_reads = fail_reads

    def _check(self):
        if self.fail_reads:
            raise RuntimeError("database unavailable")

    async def find_one(self, query=None, projection=None):
        self._check()
        for doc in self.docs:
            if _matches(doc, query or {}):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        self._check()
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query or {})])

    async def insert_one(self, doc):
        doc.setdefault("_id", next(_ids))
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if _matches(doc, query):
                _apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            _apply(doc, update)
            result = await self.insert_one(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=result.inserted_id)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def update_many(self, query, update):
        matched = [doc for doc in self.docs if _matches(doc, query)]
        for doc in matched:
            _apply(doc, update)
        return SimpleNamespace(matched_count=len(matched), modified_count=len(matched))

    async def find_one_and_update(self, query, update, projection=None, return_document=False, upsert=False):
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                _apply(doc, update)
                return _project(doc if return_document else before, projection)
        return None

    async def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not _matches(d, query)]
        return SimpleNamespace(deleted_count=before - len(self.docs))

    async def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))


class FakeDatabase:
    def __init__(self, fail_reads=False):
        self._collections = {}
        self._fail_reads = fail_reads

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(self._fail_reads)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def permission_service(fake_db):
    service = PermissionService(fake_db, owner_uids=[OWNER_UID], retry_delay_ms=0)
    run(service.initialize())
    return service


@pytest.fixture
def points_ledger(fake_db):
    return PointsLedger(fake_db)


@pytest.fixture
def budget_service(fake_db):
    return BudgetService(fake_db)

"""Shared fixtures: an in-memory stand-in for the Motor collection API the app uses."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, OperationFailure


class FakeResult:
    def __init__(self, **kw: Any) -> None:
        self.__dict__.update(kw)


class FakeCollection:
    """Async subset of AsyncIOMotorCollection, with unique-index enforcement."""

    def __init__(self, name: str, database: "FakeDatabase") -> None:
        self.name = name
        self.database = database
        self.docs: List[Dict[str, Any]] = []
        self.indexes: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.index_error: Optional[Exception] = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _match(self, doc: Dict[str, Any], flt: Dict[str, Any]) -> bool:
        return all(doc.get(k) == v for k, v in flt.items())

    def _unique_fields(self) -> List[str]:
        return [ix["keys"][0][0] for ix in self.indexes if ix["options"].get("unique")]

    async def create_index(self, keys, **options) -> str:
        if self.index_error is not None:
            raise self.index_error
        self.indexes.append({"keys": list(keys), "options": options})
        return "_".join(f"{k}_{d}" for k, d in keys)

    async def find_one(self, flt: Dict[str, Any], projection: Optional[Dict[str, int]] = None):
        self._check()
        for doc in self.docs:
            if self._match(doc, flt):
                out = copy.deepcopy(doc)
                for k, v in (projection or {}).items():
                    if not v:
                        out.pop(k, None)
                return out
        return None

    async def insert_one(self, doc: Dict[str, Any]) -> FakeResult:
        self._check()
        for field in self._unique_fields():
            if any(d.get(field) == doc.get(field) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key {field}")
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return FakeResult(inserted_id=doc["_id"])

    async def replace_one(self, flt: Dict[str, Any], doc: Dict[str, Any], upsert: bool = False) -> FakeResult:
        self._check()
        for i, existing in enumerate(self.docs):
            if self._match(existing, flt):
                new = copy.deepcopy(doc)
                new["_id"] = existing["_id"]
                self.docs[i] = new
                return FakeResult(matched_count=1, upserted_id=None)
        if not upsert:
            return FakeResult(matched_count=0, upserted_id=None)
        new = copy.deepcopy(doc)
        new["_id"] = ObjectId()
        self.docs.append(new)
        return FakeResult(matched_count=0, upserted_id=new["_id"])

    async def delete_one(self, flt: Dict[str, Any]) -> FakeResult:
        self._check()
        for i, existing in enumerate(self.docs):
            if self._match(existing, flt):
                del self.docs[i]
                return FakeResult(deleted_count=1)
        return FakeResult(deleted_count=0)


class FakeDatabase:
    def __init__(self, name: str = "sessiondb") -> None:
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}

    async def drop_collection(self, name: str) -> None:
        self.collections.pop(name, None)

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, self)
        return self.collections[name]


class FakeAdmin:
    def __init__(self, error: Optional[Exception]) -> None:
        self.error = error

    async def command(self, name: str):
        if self.error is not None:
            raise self.error
        return {"ok": 1}


class FakeClient:
    """Replaces AsyncIOMotorClient; records every construction."""

    instances: List["FakeClient"] = []
    ping_error: Optional[Exception] = None
    url_db: Optional[str] = None

    def __init__(self, url: str, **options: Any) -> None:
        self.url = url
        self.options = options
        self.closed = False
        self.admin = FakeAdmin(FakeClient.ping_error)
        self.databases: Dict[str, FakeDatabase] = {}
        FakeClient.instances.append(self)

    def get_default_database(self, default: Optional[str] = None) -> FakeDatabase:
        name = FakeClient.url_db or default
        return self.databases.setdefault(name, FakeDatabase(name))

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.databases.setdefault(name, FakeDatabase(name))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_client(monkeypatch):
    FakeClient.instances = []
    FakeClient.ping_error = None
    FakeClient.url_db = None
    monkeypatch.setattr("portal.session_store.AsyncIOMotorClient", FakeClient)
    return FakeClient


@pytest.fixture
def index_failure() -> Exception:
    return OperationFailure("index build failed")

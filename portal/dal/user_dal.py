from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from ..settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _out(d: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not d:
        return None
    d["_id"] = str(d["_id"])
    return d


class UserDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_USERS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("username", ASCENDING)], unique=True)

    async def get_by_id(self, id: str) -> Optional[Dict[str, Any]]:
        try:
            oid = ObjectId(id)
        except (InvalidId, TypeError):
            return None
        return _out(await self.col.find_one({"_id": oid}))

    async def get_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return _out(await self.col.find_one({"username": username}))

    async def find_by_credentials(self, *, username: str, password: str) -> Optional[Dict[str, Any]]:
        return _out(await self.col.find_one({"username": username, "password": password}))

    async def ensure_user(self, *, username: str, password: str) -> Dict[str, Any]:
        """
        Return the user named `username`, creating it if missing.
        """
        existing = await self.get_by_username(username)
        if existing:
            return existing
        doc = {"username": username, "password": password, "created_at": _now()}
        try:
            res = await self.col.insert_one(doc)
        except DuplicateKeyError:
            # created concurrently by another worker
            return await self.get_by_username(username)  # type: ignore[return-value]
        doc["_id"] = str(res.inserted_id)
        return doc

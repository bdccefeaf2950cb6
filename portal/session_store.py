from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union
from urllib.parse import quote_plus

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import ConfigurationError, IndexSetupError, StorageError, StoreConnectionError

log = logging.getLogger("portal.session_store")

ONE_DAY_MS = 86400 * 1000
DEFAULT_DBNAME = "sessiondb"
DEFAULT_COLLECTION = "sessions"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 27017
DEFAULT_URL_DB = "test"

# bookkeeping fields are never handed back to callers
_PROJECTION = {"_id": 0, "ttl": 0, "sid": 0}

_EXCLUSIVE_WITH_URL = ("host", "port", "db", "ssl")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExistingDatabase:
    """An already-open Motor database; the store only resolves the collection."""
    db: AsyncIOMotorDatabase


@dataclass(frozen=True)
class ConnectionParams:
    """
    Parameters for a client owned by the store.

    Either a full `url`, or discrete host/port/db/ssl (all optional, with the
    usual local defaults). Mixing the two is rejected here, before any I/O.
    """
    url: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    db: Optional[str] = None
    ssl: Optional[bool] = None
    connect_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.url and any(getattr(self, k) is not None for k in _EXCLUSIVE_WITH_URL):
            raise ConfigurationError(
                "url option is exclusive from host, port, db and ssl options, "
                "please include them in a full url connection string"
            )

    def connection_string(self) -> str:
        if self.url:
            return self.url
        creds = ""
        if self.user and self.password:
            creds = f"{quote_plus(self.user)}:{quote_plus(self.password)}@"
        host = self.host if self.host is not None else DEFAULT_HOST
        port = self.port if self.port is not None else DEFAULT_PORT
        db = self.db if self.db is not None else DEFAULT_URL_DB
        suffix = "?ssl=true" if self.ssl else ""
        return f"mongodb://{creds}{host}:{port}/{db}{suffix}"


StoreSource = Union[ExistingDatabase, ConnectionParams]


class MongoSessionStore:
    """
    Session store for the session middleware: get / set / destroy keyed by sid.

    Initialization (connect, then ttl + unique sid indexes) runs once, in a
    single task shared by every operation. Operations issued before it
    finishes simply wait on that task. Expiry is left to MongoDB's TTL
    monitor; nothing here polls.
    """

    def __init__(
        self,
        source: StoreSource,
        *,
        collection: str = DEFAULT_COLLECTION,
        on_connect: Optional[Callable[[AsyncIOMotorCollection], Any]] = None,
        on_error: Optional[Callable[[BaseException], Any]] = None,
    ) -> None:
        if not isinstance(source, (ExistingDatabase, ConnectionParams)):
            raise ConfigurationError(f"unsupported session store source: {type(source).__name__}")

        self._source = source
        self._collection_name = collection or DEFAULT_COLLECTION
        self._on_connect = on_connect
        self._on_error = on_error
        self._client: Optional[AsyncIOMotorClient] = None
        self._init_task: Optional[asyncio.Task] = None
        self._url = source.connection_string() if isinstance(source, ConnectionParams) else None

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet; initialization starts on first use
            return
        self.start()

    @classmethod
    def from_options(cls, **options: Any) -> "MongoSessionStore":
        """
        Build a store from loose option names (db, collection, url, user,
        password, host, port, ssl, connectOptions).

        A `db` exposing database-level operations (drop_collection) is taken
        to be an open handle; any other non-string `db` is rejected.
        """
        if options.get("url") and any(k in options for k in _EXCLUSIVE_WITH_URL):
            raise ConfigurationError(
                "url option is exclusive from host, port, db and ssl options, "
                "please include them in a full url connection string"
            )

        db = options.get("db")
        source: StoreSource
        if db is not None and not isinstance(db, str):
            if not callable(getattr(db, "drop_collection", None)):
                raise ConfigurationError(f"db must be a database name or an open database, got {type(db).__name__}")
            source = ExistingDatabase(db)
        else:
            source = ConnectionParams(
                url=options.get("url"),
                user=options.get("user"),
                password=options.get("password"),
                host=options.get("host"),
                port=options.get("port"),
                db=db,
                ssl=options.get("ssl"),
                connect_options=dict(options.get("connect_options") or options.get("connectOptions") or {}),
            )

        return cls(
            source,
            collection=options.get("collection") or DEFAULT_COLLECTION,
            on_connect=options.get("on_connect"),
            on_error=options.get("on_error"),
        )

    # ----------------- Lifecycle -----------------

    def start(self) -> "asyncio.Task[AsyncIOMotorCollection]":
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())
            self._init_task.add_done_callback(self._emit)
        return self._init_task

    async def ready(self) -> AsyncIOMotorCollection:
        """Wait for initialization; raises the connection/index error if it failed."""
        return await self._collection()

    @property
    def client(self) -> Optional[AsyncIOMotorClient]:
        """The client this store opened, if any (None for ExistingDatabase)."""
        return self._client

    @property
    def connected(self) -> bool:
        t = self._init_task
        return t is not None and t.done() and not t.cancelled() and t.exception() is None

    async def close(self) -> None:
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        if self._client is not None:
            self._client.close()
            self._client = None

    async def _collection(self) -> AsyncIOMotorCollection:
        # shielded: a cancelled request must not cancel the shared init
        return await asyncio.shield(self.start())

    async def _initialize(self) -> AsyncIOMotorCollection:
        if isinstance(self._source, ExistingDatabase):
            col = self._source.db[self._collection_name]
        else:
            col = await self._connect(self._source)
        await self._ensure_indexes(col)
        return col

    async def _connect(self, params: ConnectionParams) -> AsyncIOMotorCollection:
        try:
            self._client = AsyncIOMotorClient(self._url, **params.connect_options)
            await self._client.admin.command("ping")
        except PyMongoError as e:
            if self._client is not None:
                self._client.close()
                self._client = None
            raise StoreConnectionError(f"could not connect to MongoDB: {e}") from e
        db = self._client.get_default_database(DEFAULT_DBNAME)
        return db[self._collection_name]

    @staticmethod
    async def _ensure_indexes(col: AsyncIOMotorCollection) -> None:
        try:
            await asyncio.gather(
                col.create_index([("ttl", ASCENDING)], expireAfterSeconds=0),
                col.create_index([("sid", ASCENDING)], unique=True),
            )
        except PyMongoError as e:
            raise IndexSetupError(f"could not create session indexes on {col.name}: {e}") from e

    def _emit(self, task: "asyncio.Task[AsyncIOMotorCollection]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("session store init failed collection=%s error=%s", self._collection_name, exc)
            if self._on_error is not None:
                self._on_error(exc)
            return
        col = task.result()
        log.info("session store connected collection=%s", col.name)
        if self._on_connect is not None:
            self._on_connect(col)

    # ----------------- Store contract -----------------

    async def get(self, sid: str) -> Optional[Dict[str, Any]]:
        col = await self._collection()
        try:
            return await col.find_one({"sid": sid}, _PROJECTION)
        except PyMongoError as e:
            raise StorageError(f"failed to load session: {e}") from e

    async def set(self, sid: str, session: Mapping[str, Any], ttl: Optional[int] = None) -> None:
        """
        Upsert the full session document for `sid`.

        `ttl` is a max-age in milliseconds; when falsy, cookie.maxAge (or
        cookie.maxage) is used if numeric, else one day.
        """
        doc = dict(session)
        doc.pop("_id", None)
        cookie_max_age = _cookie_max_age(doc.get("cookie"))
        max_age = ttl or (cookie_max_age if cookie_max_age is not None else ONE_DAY_MS)
        try:
            expires = _now() + timedelta(milliseconds=max_age)
        except (OverflowError, ValueError) as e:
            raise StorageError(f"invalid session max-age {max_age!r}: {e}") from e
        col = await self._collection()

        doc["sid"] = sid
        doc["ttl"] = expires

        try:
            await col.replace_one({"sid": sid}, doc, upsert=True)
        except DuplicateKeyError as e:
            raise StorageError(f"duplicate session id on upsert: {e}") from e
        except PyMongoError as e:
            raise StorageError(f"failed to save session: {e}") from e

    async def destroy(self, sid: str) -> None:
        col = await self._collection()
        try:
            await col.delete_one({"sid": sid})
        except PyMongoError as e:
            raise StorageError(f"failed to destroy session: {e}") from e


# ----------------- Helpers -----------------

def _cookie_max_age(cookie: Any) -> Optional[float]:
    if not isinstance(cookie, Mapping):
        return None
    max_age = cookie.get("maxAge") or cookie.get("maxage")
    if isinstance(max_age, bool) or not isinstance(max_age, (int, float)):
        return None
    return max_age


__all__ = [
    "ExistingDatabase",
    "ConnectionParams",
    "MongoSessionStore",
    "ONE_DAY_MS",
    "DEFAULT_DBNAME",
    "DEFAULT_COLLECTION",
]

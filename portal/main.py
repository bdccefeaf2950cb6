from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from starlette.responses import Response

from .auth import LocalStrategy
from .dal import UserDAL
from .logger import setup_logging
from .middleware.correlation import RequestIdMiddleware
from .middleware.session import StoreSessionMiddleware
from .routers.auth_routes import router as auth_router
from .routers.health_routes import router as health_router
from .session_store import MongoSessionStore
from .settings import settings

setup_logging()
log = logging.getLogger("portal")


async def startup(app: FastAPI) -> None:
    log.info(
        "startup begin mongo_host=%s mongo_db=%s session_collection=%s",
        settings.MONGO_HOST,
        settings.MONGO_DB,
        settings.SESSION_COLLECTION,
    )

    store = MongoSessionStore(
        settings.session_store_options(),
        collection=settings.SESSION_COLLECTION,
    )
    app.state.session_store = store

    # fail startup if mongo or the session indexes are unavailable
    sessions_col = await store.ready()

    users_db = sessions_col.database
    if settings.USERS_DB and store.client is not None:
        users_db = store.client[settings.USERS_DB]

    users = UserDAL(users_db)
    await users.ensure_indexes()
    if settings.SEED_TEST_USER and not await users.get_by_username("test"):
        log.info("test user did not exist; creating test user...")
        await users.ensure_user(username="test", password="test")

    app.state.user_dal = users
    app.state.auth_strategy = LocalStrategy(users)

    log.info("startup complete")


async def shutdown(app: FastAPI) -> None:
    store = getattr(app.state, "session_store", None)
    if store:
        await store.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await startup(app)
        yield
    finally:
        await shutdown(app)


app = FastAPI(title="Portal", lifespan=lifespan)

app.add_middleware(
    StoreSessionMiddleware,
    secret_key=settings.SESSION_SIGNING_SECRET,
    cookie_name=settings.SESSION_COOKIE_NAME,
    max_age_ms=settings.SESSION_MAX_AGE_MS,
    https_only=settings.COOKIE_SECURE,
    same_site=settings.COOKIE_SAMESITE,
)


# ----------------------------
# Request/Response logging middleware
# ----------------------------
@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    start = time.time()
    path = request.url.path

    log.info(
        "REQ method=%s path=%s client=%s",
        request.method,
        path,
        request.client.host if request.client else None,
    )

    try:
        resp: Response = await call_next(request)
        dur_ms = int((time.time() - start) * 1000)
        log.info("RES status=%s dur_ms=%s path=%s", resp.status_code, dur_ms, path)
        return resp
    except Exception:
        dur_ms = int((time.time() - start) * 1000)
        log.exception("ERR dur_ms=%s path=%s", dur_ms, path)
        raise


# outermost, so the request id is set before anything logs
app.add_middleware(RequestIdMiddleware)

app.include_router(health_router)
app.include_router(auth_router)


if __name__ == "__main__":
    uvicorn.run(
        "portal.main:app",
        host="0.0.0.0",
        port=settings.PORT,
    )

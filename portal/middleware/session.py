from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from itsdangerous import BadSignature, URLSafeSerializer
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ..session_store import MongoSessionStore

log = logging.getLogger("portal.session")


class Session(dict):
    """
    Per-request session payload.

    `destroy()` marks it for removal from the store at the end of the request.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, *, is_new: bool = False) -> None:
        super().__init__(data or {})
        self.is_new = is_new
        self.destroyed = False

    def destroy(self) -> None:
        self.clear()
        self.destroyed = True


class StoreSessionMiddleware(BaseHTTPMiddleware):
    """
    Server-side sessions: the cookie carries only a signed sid, the payload
    lives in the session store on app.state.session_store.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        secret_key: str,
        cookie_name: str = "portal.sid",
        max_age_ms: int = 86400 * 1000,
        https_only: bool = False,
        same_site: str = "lax",
    ) -> None:
        super().__init__(app)
        self._serializer = URLSafeSerializer(secret_key, salt="portal-session")
        self.cookie_name = cookie_name
        self.max_age_ms = max_age_ms
        self.https_only = https_only
        self.same_site = same_site

    async def dispatch(self, request: Request, call_next):
        store: MongoSessionStore = request.app.state.session_store

        sid = self._load_sid(request)
        data = await store.get(sid) if sid else None
        if data is None:
            # unknown or expired sid; a fresh one is issued on save
            sid = None

        session = Session(data, is_new=data is None)
        request.state.session = session

        response = await call_next(request)

        if session.destroyed:
            if sid:
                await store.destroy(sid)
                log.debug("session destroyed")
            response.delete_cookie(self.cookie_name, path="/")
            return response

        if session.is_new and not session:
            return response

        sid = sid or uuid.uuid4().hex
        session["cookie"] = self._cookie_meta()
        await store.set(sid, dict(session))
        self._set_cookie(response, sid)
        return response

    def _load_sid(self, request: Request) -> Optional[str]:
        raw = request.cookies.get(self.cookie_name)
        if not raw:
            return None
        try:
            return self._serializer.loads(raw)
        except BadSignature:
            return None

    def _cookie_meta(self) -> Dict[str, Any]:
        return {
            "maxAge": self.max_age_ms,
            "path": "/",
            "httpOnly": True,
            "secure": self.https_only,
            "sameSite": self.same_site,
        }

    def _set_cookie(self, resp: Response, sid: str) -> None:
        resp.set_cookie(
            key=self.cookie_name,
            value=self._serializer.dumps(sid),
            max_age=self.max_age_ms // 1000,
            path="/",
            httponly=True,
            secure=self.https_only,
            samesite=self.same_site,
        )

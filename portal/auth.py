from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from starlette.requests import Request

from .dal.user_dal import UserDAL

log = logging.getLogger("portal.auth")

SESSION_KEY = "passport"


class LocalStrategy:
    """
    Username/password strategy backed by the users collection.

    The session only ever holds the serialized user id; the full user is
    looked up again on each request.
    """

    name = "local"

    def __init__(self, users: UserDAL) -> None:
        self.users = users

    async def authenticate(self, username: Optional[str], password: Optional[str]) -> Optional[Dict[str, Any]]:
        if not username or not password:
            return None
        return await self.users.find_by_credentials(username=username, password=password)

    def serialize_user(self, user: Dict[str, Any]) -> str:
        return str(user["_id"])

    async def deserialize_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.users.get_by_id(user_id)


def _strategy(request: Request) -> LocalStrategy:
    return request.app.state.auth_strategy


def login(request: Request, user: Dict[str, Any]) -> None:
    request.state.session[SESSION_KEY] = {"user": _strategy(request).serialize_user(user)}
    log.info("login user=%s", user.get("username"))


def logout(request: Request) -> None:
    session = request.state.session
    session.pop(SESSION_KEY, None)
    session.destroy()


async def current_user(request: Request) -> Optional[Dict[str, Any]]:
    session = getattr(request.state, "session", None) or {}
    user_id = (session.get(SESSION_KEY) or {}).get("user")
    if not user_id:
        return None
    return await _strategy(request).deserialize_user(user_id)


async def is_authenticated(request: Request) -> bool:
    return await current_user(request) is not None

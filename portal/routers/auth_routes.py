from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, RedirectResponse
from starlette.responses import Response

from .. import auth

router = APIRouter(tags=["auth"])
log = logging.getLogger("portal.auth")

VIEWS_DIR = Path(__file__).resolve().parent.parent / "views"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

async def _read_credentials(request: Request) -> Dict[str, Optional[str]]:
    ctype = request.headers.get("content-type", "")
    if ctype.startswith("application/json"):
        body = await request.json()
        if not isinstance(body, dict):
            body = {}
    else:
        body = dict(await request.form())
    username = body.get("username")
    password = body.get("password")
    return {
        "username": username if isinstance(username, str) else None,
        "password": password if isinstance(password, str) else None,
    }


async def _authenticate(request: Request) -> Optional[dict]:
    creds = await _read_credentials(request)
    strategy: auth.LocalStrategy = request.app.state.auth_strategy
    user = await strategy.authenticate(creds["username"], creds["password"])
    if user is None:
        log.info("login failed username=%s", creds["username"])
    return user


# ---------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------

@router.get("/")
async def index() -> Response:
    body = (VIEWS_DIR / "login.html").read_text(encoding="utf-8")
    # csrf is handled outside this app; keep the template placeholder empty
    return HTMLResponse(body.replace("{csrfToken}", ""))


@router.get("/app")
async def protected_app(request: Request) -> Response:
    if not await auth.is_authenticated(request):
        return RedirectResponse("/", status_code=302)
    return FileResponse(VIEWS_DIR / "app.html", media_type="text/html")


# ---------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------

@router.post("/custom")
async def custom_login(request: Request) -> Response:
    user = await _authenticate(request)
    if user is None:
        return JSONResponse({"success": False}, status_code=401)
    auth.login(request, user)
    return JSONResponse({"success": True})


@router.post("/login")
async def form_login(request: Request) -> Response:
    user = await _authenticate(request)
    if user is None:
        return RedirectResponse("/", status_code=302)
    auth.login(request, user)
    return RedirectResponse("/app", status_code=302)


@router.get("/logout")
async def logout(request: Request) -> Response:
    auth.logout(request)
    return RedirectResponse("/", status_code=302)

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/readyz")
def readyz(request: Request):
    store = getattr(request.app.state, "session_store", None)
    ready = bool(store and store.connected)
    return JSONResponse({"ready": ready}, status_code=200 if ready else 503)

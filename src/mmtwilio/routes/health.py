"""Health, readiness and admin routes."""

import hmac
import logging
import sqlite3

from fastapi import APIRouter, Header, Request, status
from fastapi.responses import JSONResponse

from mmtwilio.db.connection import get_conn
from mmtwilio.errors import MMTwilioError
from mmtwilio.runtime import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _extract_bearer(authorization: str | None) -> str:
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    runtime = get_runtime(request)
    db_ok = True
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1")
    except sqlite3.Error:
        db_ok = False
    configured = runtime.snapshots.loaded
    legacy_migrated = False
    if db_ok:
        try:
            legacy_migrated = runtime.store.legacy_migrated()
        except MMTwilioError:
            db_ok = False
    ok = db_ok and configured
    return JSONResponse(
        status_code=200 if ok else 503,
        content={
            "ok": ok,
            "db": db_ok,
            "configured": configured,
            "legacy_migrated": legacy_migrated,
        },
    )


@router.post("/admin/reload")
async def reload_configuration(
    request: Request,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    runtime = get_runtime(request)
    required = runtime.settings.admin_token.strip()
    provided = _extract_bearer(authorization)
    if not required or not provided or not hmac.compare_digest(provided, required):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"ok": False, "error": "unauthorized"},
        )
    try:
        snapshot = await runtime.snapshots.reload(runtime.settings, runtime.host)
    except MMTwilioError as exc:
        logger.error("Configuration reload failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"ok": False, "error": str(exc)},
        )
    return JSONResponse(
        status_code=200,
        content={"ok": True, "team_id": snapshot.team_id, "bot_user_id": snapshot.bot_user_id},
    )

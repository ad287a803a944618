"""campaign_launcher.api

Thin FastAPI front door over the launch orchestrator.

Endpoints
---------
- GET  /                -> basic root info
- GET  /health          -> basic health check
- POST /launch          -> run a blueprint through a platform adapter (dry_run supported)
- POST /bulk-launch     -> create campaign / ad sets / ads from a wizard launch tree
- POST /insights/sync   -> pull campaign insights for every ad account of a user
- GET  /media/library   -> list images or videos already in the ad account library

Optional API Key
----------------
If you set SERVICE_API_KEY in the environment, requests must include:
  X-API-Key: <SERVICE_API_KEY>

Environment variables
---------------------
- META_ACCESS_TOKEN / META_AD_ACCOUNT_ID / META_PAGE_ID (simple /launch path, not needed for dry runs)
- META_API_VERSION (default: v24.0)
- META_APP_SECRET (adds appsecret_proof)
- LAUNCH_STORE_SOURCE ("db" to use Postgres with DATABASE_URL)
- LAUNCH_STORE_PATH (default: .launch_store.db)
- SERVICE_API_KEY (if set, enforces X-API-Key)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Literal, Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from blueprints import load_blueprint
from bulk_launch import BulkLaunchRequest, launch_bulk_campaign
from graph_client import MetaAPIError, MetaClient, MetaConfig
from insights_sync import InsightSyncError, sync_insights
from launch_runner import LaunchError, run_launch
from launch_store import build_launch_store
from providers import AuthError, PlatformNotImplementedError, create_adapter

logger = logging.getLogger(__name__)

app = FastAPI(title="Campaign Launcher API", version="2.0.0")


class LaunchBody(BaseModel):
    blueprint: Dict[str, Any]
    dry_run: bool = Field(default=False, description="If true, simulates every platform call.")
    platform: Optional[str] = Field(default=None, description="Override the blueprint platform.")


class BulkLaunchBody(BaseModel):
    user_id: str
    ad_account_id: str = Field(description="Internal ad account id (resolved through the store).")
    launch: Dict[str, Any]


class InsightSyncBody(BaseModel):
    user_id: str
    date_preset: str = "last_30d"


def _require_api_key(x_api_key: Optional[str]) -> None:
    expected = (os.getenv("SERVICE_API_KEY") or "").strip()
    if not expected:
        return
    if not x_api_key or x_api_key.strip() != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _get_store():
    return build_launch_store()


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=jsonable_encoder(e.errors()))
    if isinstance(e, MetaAPIError):
        return HTTPException(
            status_code=502,
            detail={
                "message": str(e),
                "http_status": e.http_status,
                "meta_error": e.error,
            },
        )
    if isinstance(e, (LaunchError, AuthError, InsightSyncError, PlatformNotImplementedError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=422, detail=str(e))
    logger.exception("Unhandled error")
    return HTTPException(status_code=500, detail=str(e))


@app.get("/")
def root() -> JSONResponse:
    return JSONResponse({"ok": True, "docs": "/docs", "health": "/health"})


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True}


@app.post("/launch")
def launch(body: LaunchBody, x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        data = dict(body.blueprint)
        if body.platform:
            data["platform"] = body.platform
        blueprint = load_blueprint(data)

        client = None
        if not body.dry_run:
            try:
                client = MetaClient(MetaConfig.from_env())
            except ValueError as e:
                raise HTTPException(status_code=500, detail=f"Server misconfigured: {e}")

        adapter = create_adapter(blueprint.platform, dry_run=body.dry_run, client=client)
        result = run_launch(blueprint, adapter, dry_run=body.dry_run)
        return {"ok": True, "success": result.success, "result": result.as_dict()}
    except Exception as e:
        raise _to_http(e) from e


@app.post("/bulk-launch")
def bulk_launch(body: BulkLaunchBody, x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        request = BulkLaunchRequest.model_validate(body.launch)
        result = launch_bulk_campaign(body.user_id, body.ad_account_id, request, store=_get_store())
        return {"ok": True, **result.as_dict()}
    except Exception as e:
        raise _to_http(e) from e


@app.post("/insights/sync")
def insights_sync(body: InsightSyncBody, x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        report = sync_insights(body.user_id, store=_get_store(), date_preset=body.date_preset)
        return {"ok": True, **report.as_dict()}
    except Exception as e:
        raise _to_http(e) from e


@app.get("/media/library")
def media_library(
    kind: Literal["image", "video"] = "image",
    limit: int = 50,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        client = MetaClient(MetaConfig.from_env())
        items = client.list_ad_images(limit=int(limit)) if kind == "image" else client.list_ad_videos(limit=int(limit))
        return {"ok": True, "kind": kind, "items": items}
    except Exception as e:
        raise _to_http(e) from e
